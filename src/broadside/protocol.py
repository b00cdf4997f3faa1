"""Wire protocol: message envelope, typed payloads and frame codec.

Every message is a JSON envelope ``{"type": str, "payload": {...}}`` carried
in exactly one frame.

Frame layout (12-byte header + payload):
0-1  : 0xB5DE       magic bytes
2    : version (1)
3    : flags (bit 0 = AES-GCM sealed payload)
4-7  : len u32 (payload length, big-endian)
8-11 : CRC-32 over header[0:8]+payload
12-  : UTF-8 JSON payload, or nonce||ciphertext+tag when sealed

There are no sequence numbers or acknowledgements: ordering relies entirely on
the stream transport delivering frames in order.

A decoded message re-packs to the plaintext it arrived as, so relaying never
re-encodes (or grows) a peer's payload.
"""

from __future__ import annotations

import enum
import json
import struct
import zlib
from dataclasses import dataclass, field
from typing import IO, Any, Dict, Final, Optional

from .config import MAX_PAYLOAD
from .encryption import DecryptionError, open_sealed, seal

MAGIC: Final[int] = 0xB5DE
VERSION: Final[int] = 1
FLAG_SEALED: Final[int] = 0x01

HEADER_STRUCT = struct.Struct(">HBBII")
HEADER_LEN: Final[int] = HEADER_STRUCT.size


class MessageType(str, enum.Enum):
    """Enumerate the envelope ``type`` strings."""

    # Session control (interpreted by the relay)
    CREATE_ROOM = "create_room"
    ROOM_CREATED = "room_created"
    JOIN_ROOM = "join_room"
    PLAYER_JOINED = "player_joined"
    JOIN_ERROR = "join_error"
    GAME_START = "game_start"
    OPPONENT_LEFT = "opponent_left"

    # Game messages (relayed verbatim between peers)
    SHIPS_PLACED = "ships_placed"
    ATTACK = "attack"
    ATTACK_RESULT = "attack_result"
    GAME_OVER = "game_over"


# Requests the relay handles itself instead of forwarding.
SESSION_CONTROL = frozenset({MessageType.CREATE_ROOM, MessageType.JOIN_ROOM})


class FrameError(Exception):
    """Base for framing problems."""


class CrcError(FrameError):
    """Raised when a CRC-32 check fails while decoding a frame."""


class IncompleteError(FrameError):
    """Raised when the stream closes before a full frame could be read."""


class ProtocolError(ValueError):
    """A frame decoded fine but does not hold a well-formed message."""


@dataclass(frozen=True)
class Message:
    """One envelope.

    ``payload`` is whatever JSON value the sender put there; only the typed
    parsers below insist on an object. A decoded message keeps the exact bytes
    it arrived as in ``raw`` so the relay can forward it untouched.
    """

    type: str
    payload: Any = field(default_factory=dict)
    raw: Optional[bytes] = field(default=None, compare=False, repr=False)

    @property
    def type_name(self) -> str:
        return self.type.value if isinstance(self.type, MessageType) else self.type

    def to_json(self) -> bytes:
        if self.raw is not None:
            return self.raw
        return json.dumps({"type": self.type_name, "payload": self.payload}).encode()

    @classmethod
    def from_json(cls, raw: bytes) -> "Message":
        try:
            obj = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ProtocolError(f"payload is not JSON: {exc}") from exc
        if not isinstance(obj, dict):
            raise ProtocolError("envelope must be a JSON object")
        name = obj.get("type", "")
        if not isinstance(name, str):
            raise ProtocolError("envelope 'type' must be a string")
        payload = obj.get("payload")
        if payload is None:
            payload = {}
        try:
            mtype: str = MessageType(name)
        except ValueError:
            # Unknown types are still relayed; only endpoints reject them.
            mtype = name
        return cls(mtype, payload, bytes(raw))


# ---------------------------------------------------------------------------
# Typed payloads
# ---------------------------------------------------------------------------


def _field(payload: Any, name: str, kind: type) -> Any:
    if not isinstance(payload, dict):
        raise ProtocolError("payload must be an object")
    value = payload.get(name)
    # bool is a subclass of int; keep them apart
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise ProtocolError(f"field {name!r} must be {kind.__name__}")
    return value


@dataclass(frozen=True)
class RoomCode:
    code: str

    @classmethod
    def from_message(cls, msg: Message) -> "RoomCode":
        return cls(_field(msg.payload, "code", str))


@dataclass(frozen=True)
class ErrorPayload:
    message: str

    @classmethod
    def from_message(cls, msg: Message) -> "ErrorPayload":
        return cls(_field(msg.payload, "message", str))


@dataclass(frozen=True)
class AttackPayload:
    row: int
    col: int

    @classmethod
    def from_message(cls, msg: Message) -> "AttackPayload":
        return cls(_field(msg.payload, "row", int), _field(msg.payload, "col", int))


@dataclass(frozen=True)
class AttackResultPayload:
    row: int
    col: int
    hit: bool
    sunk_ship_name: str = ""

    @classmethod
    def from_message(cls, msg: Message) -> "AttackResultPayload":
        row = _field(msg.payload, "row", int)
        col = _field(msg.payload, "col", int)
        hit = _field(msg.payload, "hit", bool)
        sunk = msg.payload.get("sunk_ship_name") or ""
        if not isinstance(sunk, str):
            raise ProtocolError("field 'sunk_ship_name' must be str")
        return cls(row, col, hit, sunk)


@dataclass(frozen=True)
class GameOverPayload:
    you_won: bool

    @classmethod
    def from_message(cls, msg: Message) -> "GameOverPayload":
        return cls(_field(msg.payload, "you_won", bool))


# Constructors ---------------------------------------------------------------


def create_room() -> Message:
    return Message(MessageType.CREATE_ROOM)


def room_created(code: str) -> Message:
    return Message(MessageType.ROOM_CREATED, {"code": code})


def join_room(code: str) -> Message:
    return Message(MessageType.JOIN_ROOM, {"code": code})


def join_error(message: str) -> Message:
    return Message(MessageType.JOIN_ERROR, {"message": message})


def player_joined() -> Message:
    return Message(MessageType.PLAYER_JOINED)


def game_start() -> Message:
    return Message(MessageType.GAME_START)


def opponent_left() -> Message:
    return Message(MessageType.OPPONENT_LEFT)


def ships_placed() -> Message:
    return Message(MessageType.SHIPS_PLACED)


def attack(row: int, col: int) -> Message:
    return Message(MessageType.ATTACK, {"row": row, "col": col})


def attack_result(row: int, col: int, hit: bool, sunk_ship_name: str = "") -> Message:
    payload: Dict[str, Any] = {"row": row, "col": col, "hit": hit}
    if sunk_ship_name:
        payload["sunk_ship_name"] = sunk_ship_name
    return Message(MessageType.ATTACK_RESULT, payload)


def game_over(you_won: bool) -> Message:
    return Message(MessageType.GAME_OVER, {"you_won": you_won})


# ---------------------------------------------------------------------------
# Public pack / unpack
# ---------------------------------------------------------------------------


def _crc(header8: bytes, payload: bytes) -> int:
    return zlib.crc32(header8 + payload) & 0xFFFFFFFF


def pack(msg: Message, key: Optional[bytes] = None) -> bytes:
    """Serialize *msg* into one frame, sealing the payload if *key* is given."""
    payload = msg.to_json()
    flags = 0
    if key is not None:
        flags |= FLAG_SEALED
        payload = seal(key, payload, struct.pack(">HBB", MAGIC, VERSION, flags))
    if len(payload) > MAX_PAYLOAD:
        raise FrameError(f"Payload too large: {len(payload)} bytes")
    header8 = struct.pack(">HBBI", MAGIC, VERSION, flags, len(payload))
    return header8 + struct.pack(">I", _crc(header8, payload)) + payload


def _read_exact(r: IO[bytes], n: int) -> bytes:
    data = r.read(n)
    if data is None or len(data) < n:
        raise IncompleteError(f"expected {n} bytes, got {0 if data is None else len(data)}")
    return data


def unpack(r: IO[bytes], key: Optional[bytes] = None) -> Message:
    """Blocking helper that reads and decodes the next frame from *r*."""
    header = _read_exact(r, HEADER_LEN)
    magic, version, flags, length, crc = HEADER_STRUCT.unpack(header)
    if magic != MAGIC or version != VERSION:
        raise FrameError("magic/version mismatch")
    if flags & ~FLAG_SEALED:
        raise FrameError(f"unknown flags 0x{flags:02x}")
    if length > MAX_PAYLOAD:
        raise FrameError(f"Payload too large: {length} bytes")
    payload = _read_exact(r, length)
    if _crc(header[:8], payload) != crc:
        raise CrcError("CRC-32 mismatch")

    sealed = bool(flags & FLAG_SEALED)
    if sealed != (key is not None):
        raise FrameError("sealed frame without key" if sealed else "plaintext frame on secure connection")
    if key is not None:
        try:
            payload = open_sealed(key, payload, header[:4])
        except DecryptionError as exc:
            raise FrameError(str(exc)) from exc
    return Message.from_json(payload)


__all__ = [
    "MessageType",
    "Message",
    "FrameError",
    "CrcError",
    "IncompleteError",
    "ProtocolError",
    "pack",
    "unpack",
]
