"""Client-side session for a networked match.

A ``ClientSession`` is the one place where protocol messages meet the domain
model on a player's machine. It keeps the player's own ``Board`` plus a mirror
``Board`` of the opponent built only from reported attack results, and walks
an explicit phase machine:

    CONNECTING ──room_created──▶ WAITING_FOR_OPPONENT ──player_joined──▶ PLACEMENT
        │  └──────────────game_start (guest)──────────────────────────▶ PLACEMENT
        └──join_error──▶ JOIN_FAILED

    PLACEMENT ──both sides ships_placed──▶ BATTLE ──game_over / fleet sunk──▶ GAME_OVER

    any phase ──opponent_left──▶ OPPONENT_LEFT

Messages that do not fit the current phase raise ``PhaseError`` instead of
being acted on. The host always fires first.

The session is transport-agnostic: it is handed a ``send`` callable and never
touches sockets itself.
"""

from __future__ import annotations

import enum
import logging
import threading
from typing import Any, Callable, List, Optional, Tuple

from . import protocol as proto
from .battleship import Board, Ship, standard_fleet
from .bot_logic import BotLogic
from .config import BOARD_SIZE
from .events import Category, Event, Subscriber
from .protocol import (
    AttackPayload,
    AttackResultPayload,
    ErrorPayload,
    GameOverPayload,
    Message,
    MessageType,
    ProtocolError,
    RoomCode,
)

logger = logging.getLogger(__name__)

Coord = Tuple[int, int]


class Phase(enum.Enum):
    CONNECTING = "connecting"
    WAITING_FOR_OPPONENT = "waiting_for_opponent"
    JOIN_FAILED = "join_failed"
    PLACEMENT = "placement"
    BATTLE = "battle"
    GAME_OVER = "game_over"
    OPPONENT_LEFT = "opponent_left"


TERMINAL_PHASES = frozenset({Phase.JOIN_FAILED, Phase.GAME_OVER, Phase.OPPONENT_LEFT})


class PhaseError(RuntimeError):
    """An operation or inbound message does not fit the session's phase."""


class ClientSession:
    """One player's view of a networked match."""

    def __init__(
        self,
        send: Callable[[Message], Any],
        *,
        subscriber: Optional[Subscriber] = None,
        size: int = BOARD_SIZE,
    ) -> None:
        self._send = send
        self._subs: List[Subscriber] = [subscriber] if subscriber else []
        # The receiver thread and the input thread both drive the session
        self._lock = threading.RLock()

        self.phase = Phase.CONNECTING
        self.is_host: Optional[bool] = None
        self.room_code: Optional[str] = None
        self.error: Optional[str] = None

        self.board = Board(size)
        self.opponent = Board(size)
        self._to_place: List[Ship] = standard_fleet()

        self.ships_placed = False
        self.opponent_ready = False
        self.my_turn = False
        self.pending: Optional[Coord] = None
        self.won: Optional[bool] = None

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def subscribe(self, fn: Subscriber) -> None:
        self._subs.append(fn)

    def _emit(self, ev: Event) -> None:
        for fn in self._subs:
            try:
                fn(ev)
            except Exception:  # noqa: BLE001
                logger.exception("Event subscriber failed for %s", ev)

    def _enter(self, phase: Phase, **info: Any) -> None:
        logger.debug("phase %s -> %s", self.phase.value, phase.value)
        self.phase = phase
        self._emit(Event(Category.SYSTEM, "phase", {"phase": phase, **info}))

    def _require(self, *phases: Phase) -> None:
        if self.phase not in phases:
            raise PhaseError(f"not allowed in phase {self.phase.value}")

    # ------------------------------------------------------------------
    # Outbound: room setup
    # ------------------------------------------------------------------
    def create_room(self) -> None:
        with self._lock:
            self._require(Phase.CONNECTING)
            if self.is_host is not None:
                raise PhaseError("room request already sent")
            self.is_host = True
            self._send(proto.create_room())

    def join_room(self, code: str) -> None:
        with self._lock:
            self._require(Phase.CONNECTING)
            if self.is_host is not None:
                raise PhaseError("room request already sent")
            self.is_host = False
            self.room_code = code.strip().upper()
            self._send(proto.join_room(self.room_code))

    # ------------------------------------------------------------------
    # Outbound: placement
    # ------------------------------------------------------------------
    @property
    def remaining_ships(self) -> List[Ship]:
        return list(self._to_place)

    def place_next(self, row: int, col: int, horizontal: bool) -> bool:
        """Place the next ship of the standard fleet; False if it does not fit."""
        with self._lock:
            self._require(Phase.PLACEMENT)
            if not self._to_place:
                raise PhaseError("fleet already placed")
            if not self.board.place(self._to_place[0], row, col, horizontal):
                return False
            self._to_place.pop(0)
            return True

    def place_fleet_randomly(self, *, seed: Optional[int] = None) -> None:
        with self._lock:
            self._require(Phase.PLACEMENT)
            BotLogic(self.board.size, seed=seed).place_fleet(self.board, self._to_place)
            self._to_place.clear()

    def ready(self) -> None:
        """Tell the opponent our fleet is placed."""
        with self._lock:
            self._require(Phase.PLACEMENT)
            if self._to_place:
                raise PhaseError(f"{len(self._to_place)} ship(s) still to place")
            if self.ships_placed:
                raise PhaseError("ships_placed already sent")
            self.ships_placed = True
            self._send(proto.ships_placed())
            self._maybe_start_battle()

    def _maybe_start_battle(self) -> None:
        if self.ships_placed and self.opponent_ready:
            self.my_turn = bool(self.is_host)
            self._enter(Phase.BATTLE, my_turn=self.my_turn)

    # ------------------------------------------------------------------
    # Outbound: battle
    # ------------------------------------------------------------------
    def fire(self, row: int, col: int) -> None:
        with self._lock:
            self._require(Phase.BATTLE)
            if not self.my_turn or self.pending is not None:
                raise PhaseError("not your turn")
            if not self.opponent.in_bounds(row, col):
                raise ValueError("coordinate off the board")
            if self.opponent.is_attacked(row, col):
                raise ValueError("already attacked this location")
            self.pending = (row, col)
            self._send(proto.attack(row, col))

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------
    def handle(self, msg: Message) -> None:
        """Apply one message from the relay; PhaseError if it is out of phase."""
        with self._lock:
            try:
                handler = self._handlers[MessageType(msg.type)]
            except (ValueError, KeyError):
                raise ProtocolError(f"unexpected message type {msg.type_name!r}") from None
            handler(self, msg)

    def _on_room_created(self, msg: Message) -> None:
        self._require(Phase.CONNECTING)
        if not self.is_host:
            raise PhaseError("room_created without create_room")
        self.room_code = RoomCode.from_message(msg).code
        self._enter(Phase.WAITING_FOR_OPPONENT, code=self.room_code)

    def _on_join_error(self, msg: Message) -> None:
        self._require(Phase.CONNECTING)
        self.error = ErrorPayload.from_message(msg).message
        self._enter(Phase.JOIN_FAILED, message=self.error)

    def _on_player_joined(self, msg: Message) -> None:
        self._require(Phase.WAITING_FOR_OPPONENT)
        self._enter(Phase.PLACEMENT)

    def _on_game_start(self, msg: Message) -> None:
        self._require(Phase.CONNECTING)
        if self.is_host is not False:
            raise PhaseError("game_start without join_room")
        self._enter(Phase.PLACEMENT)

    def _on_ships_placed(self, msg: Message) -> None:
        self._require(Phase.PLACEMENT)
        if self.opponent_ready:
            raise PhaseError("duplicate ships_placed")
        self.opponent_ready = True
        self._emit(Event(Category.SYSTEM, "opponent_ready", {}))
        self._maybe_start_battle()

    def _on_attack(self, msg: Message) -> None:
        self._require(Phase.BATTLE)
        if self.my_turn:
            raise PhaseError("opponent attacked out of turn")
        shot = AttackPayload.from_message(msg)
        outcome = self.board.attack(shot.row, shot.col)
        if outcome.already_attacked:
            logger.warning("Opponent re-attacked (%d,%d)", shot.row, shot.col)
        self._send(proto.attack_result(shot.row, shot.col, outcome.hit, outcome.sunk_name))
        self._emit(
            Event(
                Category.TURN,
                "incoming",
                {"row": shot.row, "col": shot.col, "hit": outcome.hit, "sunk": outcome.sunk_name},
            )
        )
        if self.board.all_sunk():
            self._send(proto.game_over(you_won=True))
            self.won = False
            self._enter(Phase.GAME_OVER, won=False)
            return
        self.my_turn = True

    def _on_attack_result(self, msg: Message) -> None:
        self._require(Phase.BATTLE)
        result = AttackResultPayload.from_message(msg)
        if self.pending != (result.row, result.col):
            raise PhaseError(f"attack_result for ({result.row},{result.col}) does not match pending {self.pending}")
        self.pending = None
        self.opponent.record_result(result.row, result.col, result.hit)
        self.my_turn = False
        self._emit(
            Event(
                Category.TURN,
                "result",
                {"row": result.row, "col": result.col, "hit": result.hit, "sunk": result.sunk_ship_name},
            )
        )

    def _on_game_over(self, msg: Message) -> None:
        self._require(Phase.BATTLE)
        self.won = GameOverPayload.from_message(msg).you_won
        self.my_turn = False
        self._enter(Phase.GAME_OVER, won=self.won)

    def _on_opponent_left(self, msg: Message) -> None:
        if self.phase is Phase.GAME_OVER:
            # Match already decided; the room is just closing
            self._emit(Event(Category.SYSTEM, "opponent_left", {}))
            return
        self.my_turn = False
        self._enter(Phase.OPPONENT_LEFT)

    _handlers = {
        MessageType.ROOM_CREATED: _on_room_created,
        MessageType.JOIN_ERROR: _on_join_error,
        MessageType.PLAYER_JOINED: _on_player_joined,
        MessageType.GAME_START: _on_game_start,
        MessageType.SHIPS_PLACED: _on_ships_placed,
        MessageType.ATTACK: _on_attack,
        MessageType.ATTACK_RESULT: _on_attack_result,
        MessageType.GAME_OVER: _on_game_over,
        MessageType.OPPONENT_LEFT: _on_opponent_left,
    }

    @property
    def finished(self) -> bool:
        return self.phase in TERMINAL_PHASES
