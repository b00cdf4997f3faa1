"""Relay server: accepts connections and pairs them into rooms.

One daemon thread per connection reads frames and hands them to the shared
``RoomRegistry``. ``create_room`` and ``join_room`` are handled by the
registry; every other message is relayed verbatim to the peer. Any read
failure (EOF, socket error, bad frame, idle timeout) ends the worker and tears
the room down.
"""

from __future__ import annotations

import argparse
import contextlib
import logging
import os
import socket
import threading
from typing import Optional, Set

from . import config as _cfg
from .encryption import parse_key
from .io_utils import Connection
from .protocol import FrameError, Message, MessageType, ProtocolError, RoomCode
from . import protocol as proto
from .registry import INVALID_PAYLOAD, Client, RegistryFullError, RoomRegistry

HOST = _cfg.DEFAULT_HOST
PORT = _cfg.DEFAULT_PORT

# Initialize module-level logger
logger = logging.getLogger(__name__)


class RelayServer:
    """Listening socket plus the registry its workers share."""

    def __init__(
        self,
        host: str = HOST,
        port: int = PORT,
        *,
        registry: Optional[RoomRegistry] = None,
        key: Optional[bytes] = None,
        idle_timeout: float = _cfg.IDLE_TIMEOUT,
    ) -> None:
        self.host = host
        self.port = port
        self.registry = registry or RoomRegistry()
        self.key = key
        self.idle_timeout = idle_timeout
        self._sock: Optional[socket.socket] = None
        self._stop = threading.Event()
        self._workers: Set[threading.Thread] = set()
        self._conns: Set[Connection] = set()
        self._conns_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def bind(self) -> tuple[str, int]:
        """Bind and listen; returns the actual (host, port), e.g. for port 0."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((self.host, self.port))
        sock.listen()
        self._sock = sock
        self.host, self.port = sock.getsockname()[:2]
        logger.info("Relay server listening on %s:%d", self.host, self.port)
        return self.host, self.port

    def serve_forever(self) -> None:
        """Accept connections until ``shutdown()`` is called."""
        if self._sock is None:
            self.bind()
        assert self._sock is not None
        while not self._stop.is_set():
            try:
                sock, addr = self._sock.accept()
            except OSError:
                if self._stop.is_set():
                    break
                raise
            logger.info("Connection from %s:%d", *addr[:2])
            self.spawn(sock, name=f"{addr[0]}:{addr[1]}")

    def spawn(self, sock: socket.socket, *, name: str | None = None) -> threading.Thread:
        """Start a worker for an already-connected socket."""
        try:
            # Detect dead peers at the TCP level
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
        except OSError:
            pass  # Not all socket families support this
        conn = Connection(sock, key=self.key, name=name)
        t = threading.Thread(target=self.handle_connection, args=(conn,), name=f"relay-{conn.name}", daemon=True)
        with self._conns_lock:
            self._workers.add(t)
        t.start()
        return t

    def shutdown(self) -> None:
        """Stop accepting and close every live connection."""
        self._stop.set()
        if self._sock is not None:
            # shutdown() wakes a thread blocked in accept(); close() alone may not
            with contextlib.suppress(OSError):
                self._sock.shutdown(socket.SHUT_RDWR)
            with contextlib.suppress(OSError):
                self._sock.close()
        with self._conns_lock:
            conns = list(self._conns)
        for conn in conns:
            conn.close()

    # ------------------------------------------------------------------
    # Per-connection worker
    # ------------------------------------------------------------------
    def handle_connection(self, conn: Connection) -> None:
        """Read loop for one connection; always ends in registry teardown."""
        client = Client(conn, name=conn.name)
        with self._conns_lock:
            self._conns.add(conn)
        if self.idle_timeout > 0:
            conn.set_timeout(self.idle_timeout)
        try:
            while True:
                try:
                    msg = conn.recv()
                except socket.timeout:
                    logger.info("%r idle for %.0fs – dropping", client, self.idle_timeout)
                    break
                except (FrameError, ProtocolError, OSError) as exc:
                    logger.info("%r disconnected: %s", client, exc)
                    break
                self.dispatch(client, msg)
        finally:
            self.registry.disconnect(client)
            conn.close()
            with self._conns_lock:
                self._conns.discard(conn)
                self._workers.discard(threading.current_thread())

    def dispatch(self, client: Client, msg: Message) -> None:
        """Route one inbound message: session control or relay."""
        logger.debug("%r -> %s", client, msg.type_name)
        if msg.type == MessageType.CREATE_ROOM:
            try:
                self.registry.create_room(client)
            except RegistryFullError:
                logger.warning("Registry full – refusing room for %r", client)
                client.send(proto.join_error("No free room codes"))
        elif msg.type == MessageType.JOIN_ROOM:
            try:
                code = RoomCode.from_message(msg).code
            except ProtocolError:
                client.send(proto.join_error(INVALID_PAYLOAD))
                return
            self.registry.join_room(client, code)
        else:
            self.registry.relay(client, msg)


def resolve_key(arg: str | None) -> bytes | None:
    if arg is None:
        return parse_key(_cfg.KEY_HEX) if _cfg.KEY_HEX else None
    return parse_key(arg or _cfg.DEFAULT_KEY_HEX)


def configure_logging(args: argparse.Namespace) -> None:
    """Determine log level from CLI flags and install the root handler."""
    if args.silent:
        level = logging.ERROR
    elif args.debug or _cfg.DEBUG:
        level = logging.DEBUG
    elif args.verbose >= 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def add_logging_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity.")
    parser.add_argument(
        "-s", "--silent", "-q", "--quiet", dest="silent", action="store_true", help="Suppress all output."
    )
    parser.add_argument(
        "--secure",
        nargs="?",
        const="",
        default=None,
        metavar="HEX",
        help="Seal frames with AES-GCM (optional hex key; default key if omitted).",
    )


def main(argv: list[str] | None = None) -> None:  # pragma: no cover – side-effect entrypoint
    """Run the relay server until interrupted."""
    parser = argparse.ArgumentParser(description="Broadside relay server")
    parser.add_argument("--host", default=HOST, help="Address to bind.")
    parser.add_argument("--port", type=int, default=PORT, help="Port to listen on.")
    parser.add_argument(
        "--idle-timeout",
        type=float,
        default=_cfg.IDLE_TIMEOUT,
        help="Drop connections silent for this many seconds (0 disables).",
    )
    add_logging_flags(parser)
    args = parser.parse_args(argv)

    if args.debug:
        os.environ["BROADSIDE_DEBUG"] = "1"
    configure_logging(args)

    key = resolve_key(args.secure)
    if key is not None:
        logger.info("AES-GCM frame sealing ENABLED")

    server = RelayServer(args.host, args.port, key=key, idle_timeout=args.idle_timeout)
    server.bind()
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        server.shutdown()


if __name__ == "__main__":  # pragma: no cover
    main()
