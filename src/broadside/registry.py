"""Room registry: pairs two connections under a short code and relays between them.

The registry never interprets game payloads. Its only jobs are binding
connections to rooms (create/join), forwarding messages to "the other
occupant", and tearing a room down as soon as either side disconnects.

Locking
-------
* ``RoomRegistry._lock`` (read/write) guards only the code -> Room mapping.
* ``Room.lock`` guards the room's host/guest slots and every send made on the
  room's behalf, so a message is never sent to a slot that is concurrently
  being unbound. Unrelated rooms never contend.

Lock order is always room lock -> registry lock, never the reverse.
"""

from __future__ import annotations

import contextlib
import logging
import random
import threading
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Protocol

from . import config as _cfg
from . import protocol as proto
from .protocol import Message

logger = logging.getLogger(__name__)

ROOM_NOT_FOUND = "Room not found"
ROOM_FULL = "Room is full"
ALREADY_IN_ROOM = "Already in a room"
INVALID_PAYLOAD = "Invalid payload"


class RegistryFullError(RuntimeError):
    """No free room code could be found within the configured attempts."""


class Endpoint(Protocol):
    def send(self, msg: Message) -> bool: ...


class ReadWriteLock:
    """Many concurrent readers or one writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextlib.contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextlib.contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass(eq=False)
class Client:
    """Server-side view of one connection.

    ``room`` is the connection's binding; it is set by create/join and cleared
    by teardown (under the room's lock). The Client does not own the
    connection's lifecycle: the worker that accepted it does.
    """

    conn: Endpoint
    name: str = ""
    room: Optional["Room"] = None

    def send(self, msg: Message) -> bool:
        return self.conn.send(msg)

    def __repr__(self) -> str:
        return f"<Client {self.name or id(self)}>"


class Room:
    """A pending (host only) or matched (host + guest) pair of clients."""

    def __init__(self, code: str, host: Client) -> None:
        self.code = code
        self.host: Optional[Client] = host
        self.guest: Optional[Client] = None
        self.lock = threading.Lock()
        self.closed = False

    def other(self, client: Client) -> Optional[Client]:
        """The occupant opposite *client*; call with ``lock`` held."""
        if client is self.host:
            return self.guest
        if client is self.guest:
            return self.host
        return None

    def __repr__(self) -> str:
        return f"<Room {self.code} host={self.host!r} guest={self.guest!r}>"


class RoomRegistry:
    """Process-wide store of live rooms.

    Constructed once by the server and handed to each connection worker.
    """

    def __init__(self, *, rng: Optional[random.Random] = None, code_attempts: int = _cfg.ROOM_CODE_ATTEMPTS) -> None:
        self._rooms: Dict[str, Room] = {}
        self._lock = ReadWriteLock()
        self._rng = rng or random.SystemRandom()
        self._code_attempts = code_attempts

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------
    def get(self, code: str) -> Optional[Room]:
        with self._lock.read_locked():
            return self._rooms.get(code.upper())

    def __contains__(self, code: str) -> bool:
        return self.get(code) is not None

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._rooms)

    def generate_code(self) -> str:
        """Four independent uniform draws from the letter alphabet."""
        return "".join(self._rng.choice(_cfg.ROOM_CODE_ALPHABET) for _ in range(_cfg.ROOM_CODE_LENGTH))

    # ------------------------------------------------------------------
    # Session control
    # ------------------------------------------------------------------
    def create_room(self, client: Client) -> Optional[str]:
        """Bind *client* as host of a new room and send it ``room_created``.

        Codes that collide with a live room are redrawn. Returns the code, or
        None if the client is already bound to a room (it gets a
        ``join_error`` instead).
        """
        if client.room is not None:
            client.send(proto.join_error(ALREADY_IN_ROOM))
            return None

        with self._lock.write_locked():
            for _ in range(self._code_attempts):
                code = self.generate_code()
                if code not in self._rooms:
                    break
                logger.debug("Room code %s already live – redrawing", code)
            else:
                raise RegistryFullError(f"no free room code after {self._code_attempts} attempts")
            room = Room(code, client)
            self._rooms[code] = room
            client.room = room

        client.send(proto.room_created(code))
        logger.info("Room created: %s by %r", code, client)
        return code

    def join_room(self, client: Client, code: str) -> bool:
        """Bind *client* as guest of the room *code*.

        On success the guest gets ``game_start`` and the host
        ``player_joined``; on failure the client gets ``join_error``.
        """
        if client.room is not None:
            client.send(proto.join_error(ALREADY_IN_ROOM))
            return False

        code = code.strip().upper()
        room = self.get(code)
        if room is None:
            client.send(proto.join_error(ROOM_NOT_FOUND))
            return False

        with room.lock:
            if room.closed:
                # Torn down between lookup and lock
                client.send(proto.join_error(ROOM_NOT_FOUND))
                return False
            if room.guest is not None:
                client.send(proto.join_error(ROOM_FULL))
                return False
            room.guest = client
            client.room = room
            client.send(proto.game_start())
            if room.host is not None:
                room.host.send(proto.player_joined())

        logger.info("Player %r joined room %s", client, code)
        return True

    # ------------------------------------------------------------------
    # Relay
    # ------------------------------------------------------------------
    def relay(self, sender: Client, msg: Message) -> bool:
        """Forward *msg* verbatim to the other occupant of *sender*'s room.

        Silently dropped (returns False) if the sender is unbound or the other
        slot is empty.
        """
        room = sender.room
        if room is None:
            logger.debug("Dropping %s from unbound %r", msg.type_name, sender)
            return False
        with room.lock:
            target = room.other(sender)
            if target is None:
                logger.debug("Dropping %s in room %s – no peer", msg.type_name, room.code)
                return False
            sent = target.send(msg)
        logger.debug("Relayed %s in room %s (%s)", msg.type_name, room.code, "ok" if sent else "peer gone")
        return sent

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------
    def disconnect(self, client: Client) -> None:
        """Tear down *client*'s room, telling the other occupant it was left alone."""
        room = client.room
        if room is None:
            return
        with room.lock:
            if room.closed:
                client.room = None
                return
            target = room.other(client)
            if target is not None:
                target.send(proto.opponent_left())
                target.room = None
            client.room = None
            room.host = room.guest = None
            room.closed = True
            with self._lock.write_locked():
                # Only drop the entry if it still maps to this room
                if self._rooms.get(room.code) is room:
                    del self._rooms[room.code]
        logger.info("Room %s closed after %r disconnected", room.code, client)
