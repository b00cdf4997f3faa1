"""Console client: local games against the bot and networked games via the relay."""

from __future__ import annotations

import argparse
import logging
import os
import select
import socket
import sys
import threading
from typing import Callable, Optional

from . import config as _cfg
from .battleship import Board, format_coordinate
from .commands import (
    AutoCommand,
    BoardCommand,
    CommandParseError,
    FireCommand,
    PlaceCommand,
    QuitCommand,
    ReadyCommand,
    parse_command,
)
from .events import Event, Subscriber
from .game import LocalGame
from .io_utils import Connection
from .protocol import FrameError, IncompleteError, Message, ProtocolError
from .server import resolve_key, add_logging_flags, configure_logging
from .session import ClientSession, Phase, PhaseError

HOST = _cfg.DEFAULT_HOST
PORT = _cfg.DEFAULT_PORT

logger = logging.getLogger(__name__)

HELP = "Commands: PLACE <A1> <H|V>, AUTO, READY, FIRE <A1>, BOARD, QUIT"


# ------------------------------------------------------------
# Dual-board renderer
# ------------------------------------------------------------


def _print_two_grids(
    left_rows: list[str],
    right_rows: list[str],
    *,
    header_left: str,
    header_right: str,
) -> None:
    """Helper to print two boards side-by-side with custom headers."""
    columns = len(left_rows[0].split())
    numeric_header = "   " + " ".join(f"{i:>2}" for i in range(1, columns + 1))
    board_width = len(numeric_header)

    print(f"\n{f'[{header_left}]'.center(board_width)}   {f'[{header_right}]'.center(board_width)}")
    print(f"{numeric_header}   {numeric_header}")
    for idx in range(len(left_rows)):
        label = chr(ord("A") + idx)
        left = " ".join(f"{c:>2}" for c in left_rows[idx].split())
        right = " ".join(f"{c:>2}" for c in right_rows[idx].split())
        print(f"{label:2} {left}   {label:2} {right}")


def print_boards(opponent: Board, own: Board, *, reveal_opponent: bool = False) -> None:
    _print_two_grids(
        opponent.rows(reveal=reveal_opponent),
        own.rows(reveal=True),
        header_left="Opponent Fleet",
        header_right="Your Fleet",
    )


def _describe(ev: Event) -> Optional[str]:
    """Event -> one line of console text (None if nothing to say)."""
    p = ev.payload
    if ev.type == "phase":
        phase = p["phase"]
        if phase is Phase.WAITING_FOR_OPPONENT:
            return f"Room code: {p['code']} – waiting for opponent..."
        if phase is Phase.JOIN_FAILED:
            return f"Could not join: {p['message']}"
        if phase is Phase.PLACEMENT:
            return "Opponent connected! Place your ships (PLACE <A1> <H|V> or AUTO, then READY)."
        if phase is Phase.BATTLE:
            return "Battle begins! " + ("Your turn." if p["my_turn"] else "Opponent's turn.")
        if phase is Phase.GAME_OVER:
            return "YOU WON!" if p["won"] else "YOU LOST."
        if phase is Phase.OPPONENT_LEFT:
            return "Opponent left the game."
    elif ev.type == "opponent_ready":
        return "Opponent has placed their ships."
    elif ev.type == "result":
        coord = format_coordinate(p["row"], p["col"])
        if not p["hit"]:
            return f"{coord}: Miss... Opponent's turn."
        return f"{coord}: HIT!" + (f" You sunk their {p['sunk']}!" if p["sunk"] else "") + " Opponent's turn."
    elif ev.type == "incoming":
        coord = format_coordinate(p["row"], p["col"])
        if not p["hit"]:
            return f"Opponent fired at {coord} and missed. Your turn."
        return f"Opponent hit {coord}!" + (f" They sunk your {p['sunk']}!" if p["sunk"] else "")
    elif ev.type == "shot":
        coord = format_coordinate(p["row"], p["col"])
        who = "You" if p["attacker"] == "player" else "Enemy"
        text = f"{who} fired at {coord}: {'HIT' if p['hit'] else 'miss'}"
        return text + (f" – sunk {p['sunk']}!" if p["sunk"] else "")
    elif ev.type == "end":
        return "YOU WON!" if p["winner"] == "player" else "YOU LOST."
    return None


def console_subscriber(ev: Event) -> None:
    line = _describe(ev)
    if line:
        print(f"\r{line}")


# ------------------------------------------------------------
# Networked client
# ------------------------------------------------------------


class RemoteClient:
    """A ClientSession wired to a relay connection with a receiver thread."""

    def __init__(self, sock: socket.socket, *, key: Optional[bytes] = None, subscriber: Optional[Subscriber] = None):
        self.conn = Connection(sock, key=key, name="relay")
        self.session = ClientSession(self._send, subscriber=subscriber)
        self.stopped = threading.Event()
        self._receiver: Optional[threading.Thread] = None

    @classmethod
    def connect(
        cls,
        host: str = HOST,
        port: int = PORT,
        *,
        key: Optional[bytes] = None,
        subscriber: Optional[Subscriber] = None,
        timeout: float = 5.0,
    ) -> "RemoteClient":
        sock = socket.create_connection((host, port), timeout=timeout)
        sock.settimeout(None)
        logger.info("Connected to relay at %s:%d", host, port)
        client = cls(sock, key=key, subscriber=subscriber)
        client.start()
        return client

    def _send(self, msg: Message) -> None:
        if not self.conn.send(msg):
            raise ConnectionError("connection to relay lost")

    def start(self) -> None:
        self._receiver = threading.Thread(target=self._recv_loop, name="receiver", daemon=True)
        self._receiver.start()

    def _recv_loop(self) -> None:
        """Pump frames from the relay into the session until the stream ends."""
        try:
            while not self.session.finished:
                try:
                    msg = self.conn.recv()
                except IncompleteError:
                    # Stream closed cleanly
                    break
                except (FrameError, OSError) as exc:
                    logger.warning("Receive failed: %s", exc)
                    break
                try:
                    self.session.handle(msg)
                except (PhaseError, ProtocolError) as exc:
                    logger.warning("Rejected %s: %s", msg.type_name, exc)
        except ConnectionError as exc:
            logger.warning("%s", exc)
        finally:
            self.stopped.set()

    def wait(self, predicate: Callable[[ClientSession], bool], timeout: float = 5.0) -> bool:
        """Poll until *predicate(session)* holds or the receiver stops."""
        step = 0.01
        waited = 0.0
        while waited < timeout:
            if predicate(self.session):
                return True
            if self.stopped.is_set():
                return predicate(self.session)
            self.stopped.wait(step)
            waited += step
        return predicate(self.session)

    def close(self) -> None:
        self.conn.close()
        if self._receiver is not None:
            self._receiver.join(timeout=2.0)


# ------------------------------------------------------------
# Interactive loops
# ------------------------------------------------------------


def _prompt() -> None:
    print(">> ", end="", flush=True)


def _read_line(stop: Optional[threading.Event] = None) -> Optional[str]:
    """Block for one stdin line, giving up early if *stop* is set."""
    while stop is None or not stop.is_set():
        ready, _, _ = select.select([sys.stdin], [], [], 0.5)
        if ready:
            line = sys.stdin.readline()
            return line if line else None
    return None


def run_local(seed: Optional[int] = None, *, read_line: Optional[Callable[[], Optional[str]]] = None) -> None:
    """Play against the bot, offering a rematch after every finished game."""
    read = read_line or _read_line
    while _play_local(seed, read):
        print("Play again? [y/N] ", end="", flush=True)
        answer = read()
        if answer is None or answer.strip().lower() not in ("y", "yes"):
            return


def _play_local(seed: Optional[int], read: Callable[[], Optional[str]]) -> bool:
    """One game; False if the player quit or input ran out before the end."""
    game = LocalGame(seed=seed, subscriber=console_subscriber)
    print(HELP)
    while not game.over:
        if game.started:
            print_boards(game.bot_board, game.player_board)
        elif game.ships_to_place:
            ship = game.ships_to_place[0]
            print(f"Place your {ship.name} (length {ship.length}).")
        _prompt()
        line = read()
        if line is None:
            return False
        try:
            cmd = parse_command(line)
        except CommandParseError as e:
            print(f"ERR {e}")
            continue
        if isinstance(cmd, QuitCommand):
            return False
        try:
            if isinstance(cmd, PlaceCommand):
                if not game.place_next(cmd.row, cmd.col, cmd.horizontal):
                    print("ERR Ship does not fit there.")
            elif isinstance(cmd, AutoCommand):
                game.place_randomly()
            elif isinstance(cmd, ReadyCommand):
                game.start()
                print("All ships placed! Fire at will!")
            elif isinstance(cmd, FireCommand):
                game.fire(cmd.row, cmd.col)
            elif isinstance(cmd, BoardCommand):
                print_boards(game.bot_board, game.player_board)
        except (RuntimeError, ValueError) as e:
            print(f"ERR {e}")
    print_boards(game.bot_board, game.player_board, reveal_opponent=True)
    return True


def run_online(client: RemoteClient, code: Optional[str]) -> None:  # pragma: no cover – interactive
    session = client.session
    if code is None:
        session.create_room()
    else:
        session.join_room(code)
    print(HELP)
    while not client.stopped.is_set() and not session.finished:
        _prompt()
        line = _read_line(client.stopped)
        if line is None:
            break
        try:
            cmd = parse_command(line)
        except CommandParseError as e:
            print(f"ERR {e}")
            continue
        if isinstance(cmd, QuitCommand):
            break
        try:
            if isinstance(cmd, PlaceCommand):
                if not session.place_next(cmd.row, cmd.col, cmd.horizontal):
                    print("ERR Ship does not fit there.")
            elif isinstance(cmd, AutoCommand):
                session.place_fleet_randomly()
                print_boards(session.opponent, session.board)
            elif isinstance(cmd, ReadyCommand):
                session.ready()
            elif isinstance(cmd, FireCommand):
                session.fire(cmd.row, cmd.col)
            elif isinstance(cmd, BoardCommand):
                print_boards(session.opponent, session.board)
        except (PhaseError, ValueError) as e:
            print(f"ERR {e}")
    print_boards(session.opponent, session.board)


# ----------------------------- main -------------------------------


def main(argv: list[str] | None = None) -> None:  # pragma: no cover – CLI entry
    """Interactive CLI client."""
    parser = argparse.ArgumentParser(description="Broadside console client")
    parser.add_argument("--host", default=HOST)
    parser.add_argument("--port", type=int, default=PORT)
    add_logging_flags(parser)
    sub = parser.add_subparsers(dest="mode", required=True)
    p_play = sub.add_parser("play", help="Play against the computer.")
    p_play.add_argument("--seed", type=int, default=None)
    sub.add_parser("host", help="Create a room and wait for an opponent.")
    p_join = sub.add_parser("join", help="Join a room by code.")
    p_join.add_argument("code")
    args = parser.parse_args(argv)

    if args.debug:
        os.environ["BROADSIDE_DEBUG"] = "1"
    configure_logging(args)

    if args.mode == "play":
        run_local(args.seed)
        return

    key = resolve_key(args.secure)
    try:
        client = RemoteClient.connect(args.host, args.port, key=key, subscriber=console_subscriber)
    except OSError as exc:
        print(f"Could not connect to {args.host}:{args.port}: {exc}")
        sys.exit(1)
    try:
        run_online(client, args.code if args.mode == "join" else None)
    except KeyboardInterrupt:
        logger.info("Client exiting")
    finally:
        client.close()


if __name__ == "__main__":  # pragma: no cover
    main()
