from dataclasses import dataclass
from typing import Union

from .battleship import parse_coordinate


class CommandParseError(Exception):
    """Raised when a line cannot be parsed as a valid command."""


@dataclass(frozen=True)
class FireCommand:
    row: int
    col: int


@dataclass(frozen=True)
class PlaceCommand:
    row: int
    col: int
    horizontal: bool


@dataclass(frozen=True)
class AutoCommand:
    pass


@dataclass(frozen=True)
class ReadyCommand:
    pass


@dataclass(frozen=True)
class BoardCommand:
    pass


@dataclass(frozen=True)
class QuitCommand:
    pass


Command = Union[FireCommand, PlaceCommand, AutoCommand, ReadyCommand, BoardCommand, QuitCommand]

_BARE = {"AUTO": AutoCommand, "READY": ReadyCommand, "BOARD": BoardCommand, "QUIT": QuitCommand}


def _coord(text: str) -> tuple[int, int]:
    try:
        return parse_coordinate(text)
    except ValueError as exc:
        raise CommandParseError(str(exc)) from None


def parse_command(line: str) -> Command:
    if line is None:
        raise CommandParseError("No command to parse")
    raw = line.strip()
    if not raw:
        raise CommandParseError("Empty command")
    parts = raw.split()
    verb = parts[0].upper()
    if verb == "FIRE":
        if len(parts) != 2:
            raise CommandParseError("FIRE requires a coordinate")
        row, col = _coord(parts[1])
        return FireCommand(row=row, col=col)
    elif verb == "PLACE":
        if len(parts) != 3:
            raise CommandParseError("PLACE requires a coordinate and H or V")
        row, col = _coord(parts[1])
        orient = parts[2].upper()
        if orient not in {"H", "V"}:
            raise CommandParseError(f"Invalid orientation: {parts[2]}")
        return PlaceCommand(row=row, col=col, horizontal=orient == "H")
    elif verb in _BARE and len(parts) == 1:
        return _BARE[verb]()
    else:
        raise CommandParseError(f"Unknown command: {raw}")
