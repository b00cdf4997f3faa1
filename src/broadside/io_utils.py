# io_utils.py
"""
Low-level helpers shared by the relay server and the console client
–––––––––––––––––––––––––––––––––––––––––––––––––––––––––––––––––––
• Connection      – one framed socket with a send lock
• Connection.send – frame + flush a Message; False if the peer is gone
• Connection.recv – blocking read of the next Message
"""

from __future__ import annotations

import contextlib
import itertools
import logging
import socket
import threading
from typing import Optional

from .protocol import FrameError, Message, pack, unpack

logger = logging.getLogger(__name__)

_conn_ids = itertools.count(1)


class Connection:
    """A socket carrying protocol frames in both directions.

    Writes are serialised by a per-connection lock so that the owner's worker
    thread and relays from the peer's worker never interleave frames.
    """

    def __init__(self, sock: socket.socket, *, key: Optional[bytes] = None, name: str | None = None) -> None:
        self.sock = sock
        self.key = key
        self.id = next(_conn_ids)
        self.name = name or f"conn-{self.id}"
        self._rfile = sock.makefile("rb")
        self._wfile = sock.makefile("wb")
        self._send_lock = threading.Lock()
        self.closed = False

    def __repr__(self) -> str:
        return f"<Connection {self.name}>"

    def send(self, msg: Message) -> bool:
        """Write one framed message; False if the peer is gone or it cannot be framed."""
        try:
            frame = pack(msg, self.key)
        except FrameError as exc:
            logger.warning("Not sending %s to %s: %s", msg.type_name, self.name, exc)
            return False
        with self._send_lock:
            if self.closed:
                return False
            try:
                self._wfile.write(frame)
                self._wfile.flush()
            except (BrokenPipeError, ConnectionResetError, ValueError, OSError) as exc:
                # ValueError: write to a file object closed under us
                logger.debug("send() to %s failed – %s", self.name, exc)
                return False
        logger.debug("send() %s -> %s", msg.type_name, self.name)
        return True

    def recv(self) -> Message:
        """Blocking read of the next message.

        Raises IncompleteError on EOF, other FrameError / ProtocolError on bad
        input and OSError (including socket.timeout) on transport failure.
        """
        return unpack(self._rfile, self.key)

    def set_timeout(self, seconds: float | None) -> None:
        self.sock.settimeout(seconds)

    def close(self) -> None:
        """Shut the socket down; safe to call more than once."""
        with self._send_lock:
            if self.closed:
                return
            self.closed = True
        # Shut down first so a reader blocked in recv() wakes up with EOF.
        with contextlib.suppress(OSError):
            self.sock.shutdown(socket.SHUT_RDWR)
        with contextlib.suppress(OSError, ValueError):
            self._wfile.close()
        # The reader file is left to the thread blocked on it; the fd is
        # released once it is collected.
        self.sock.close()
