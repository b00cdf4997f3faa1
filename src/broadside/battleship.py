"""
battleship.py

Core data structures and rules for Broadside, including:
 - Cell states and the Ship record
 - Board class for ship placement, attack resolution and win detection
 - parse_coordinate / format_coordinate for translating e.g. 'B5' <-> (row, col)

Nothing in here performs I/O. Each player keeps a private Board for their own
fleet and a second "mirror" Board of the opponent that is filled in purely
from reported attack results.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, NamedTuple, Optional, Tuple

from .config import BOARD_SIZE, SHIPS, SHIP_LETTERS

Coord = Tuple[int, int]


class Cell(enum.IntEnum):
    """State of a single grid square."""

    EMPTY = 0
    SHIP = 1
    HIT = 2
    MISS = 3


@dataclass
class Ship:
    """A named ship of fixed length.

    ``positions`` and ``hits`` stay empty until the ship is placed on a board;
    afterwards both have exactly ``length`` entries.
    """

    name: str
    length: int
    positions: List[Coord] = field(default_factory=list)
    hits: List[bool] = field(default_factory=list)

    def is_sunk(self) -> bool:
        """Return True once every occupied square has been hit.

        An unplaced ship is never sunk.
        """
        return bool(self.hits) and all(self.hits)


def standard_fleet() -> List[Ship]:
    """Return fresh, unplaced ships for the standard five-ship fleet."""
    return [Ship(name, length) for name, length in SHIPS]


class AttackOutcome(NamedTuple):
    hit: bool
    already_attacked: bool
    sunk_name: str


def ship_positions(length: int, row: int, col: int, horizontal: bool, size: int = BOARD_SIZE) -> Optional[List[Coord]]:
    """Coordinates covered by a ship, or None if any falls off the grid."""
    positions: List[Coord] = []
    for i in range(length):
        r, c = (row, col + i) if horizontal else (row + i, col)
        if not (0 <= r < size and 0 <= c < size):
            return None
        positions.append((r, c))
    return positions


class Board:
    """
    Represents a single player's grid.

    We store:
      - self.cells: size x size grid of Cell values
      - self.ships: placed ships in placement order

    Placement only ever turns EMPTY into SHIP; attacks only turn SHIP into HIT
    or EMPTY into MISS. HIT and MISS never change again.
    """

    def __init__(self, size: int = BOARD_SIZE):
        """Initialise an empty *size*x*size* board with no ships placed."""
        self.size = size
        self.cells: List[List[Cell]] = [[Cell.EMPTY for _ in range(size)] for _ in range(size)]
        self.ships: List[Ship] = []

    def in_bounds(self, row: int, col: int) -> bool:
        return 0 <= row < self.size and 0 <= col < self.size

    # ------------------------------------------------------------------ #
    # Placement
    # ------------------------------------------------------------------ #
    def can_place(self, ship: Ship, row: int, col: int, horizontal: bool) -> bool:
        """Return True if *ship* fits at (*row*, *col*) over empty water."""
        positions = ship_positions(ship.length, row, col, horizontal, self.size)
        if positions is None:
            return False
        return all(self.cells[r][c] == Cell.EMPTY for r, c in positions)

    def place(self, ship: Ship, row: int, col: int, horizontal: bool) -> bool:
        """Place *ship* and return True, or leave the board untouched and return False."""
        if not self.can_place(ship, row, col, horizontal):
            return False
        positions = ship_positions(ship.length, row, col, horizontal, self.size)
        assert positions is not None
        for r, c in positions:
            self.cells[r][c] = Cell.SHIP
        ship.positions = positions
        ship.hits = [False] * len(positions)
        self.ships.append(ship)
        return True

    # ------------------------------------------------------------------ #
    # Attacks
    # ------------------------------------------------------------------ #
    def attack(self, row: int, col: int) -> AttackOutcome:
        """Resolve a shot at (*row*, *col*).

        Off-grid shots are reported exactly like repeated shots. ``sunk_name``
        is only set by the attack that sinks a ship.
        """
        if not self.in_bounds(row, col):
            return AttackOutcome(False, True, "")

        cell = self.cells[row][col]
        if cell in (Cell.HIT, Cell.MISS):
            return AttackOutcome(False, True, "")

        if cell == Cell.SHIP:
            self.cells[row][col] = Cell.HIT
            for ship in self.ships:
                if (row, col) in ship.positions:
                    ship.hits[ship.positions.index((row, col))] = True
                    if ship.is_sunk():
                        return AttackOutcome(True, False, ship.name)
                    break
            return AttackOutcome(True, False, "")

        self.cells[row][col] = Cell.MISS
        return AttackOutcome(False, False, "")

    def record_result(self, row: int, col: int, hit: bool) -> None:
        """Mirror-board update from an attack result reported by the opponent."""
        if self.in_bounds(row, col):
            self.cells[row][col] = Cell.HIT if hit else Cell.MISS

    def is_attacked(self, row: int, col: int) -> bool:
        return self.in_bounds(row, col) and self.cells[row][col] in (Cell.HIT, Cell.MISS)

    def all_sunk(self) -> bool:
        """True once at least one ship is placed and every placed ship is sunk."""
        return bool(self.ships) and all(ship.is_sunk() for ship in self.ships)

    def ship_at(self, row: int, col: int) -> Optional[Ship]:
        for ship in self.ships:
            if (row, col) in ship.positions:
                return ship
        return None

    # ------------------------------------------------------------------ #
    # Text helpers
    # ------------------------------------------------------------------ #
    def rows(self, *, reveal: bool = False) -> List[str]:
        """Board -> [". . X o ...", ...]; ship letters shown only if *reveal*."""
        out: List[str] = []
        for r in range(self.size):
            cells = []
            for c in range(self.size):
                cell = self.cells[r][c]
                if cell == Cell.HIT:
                    cells.append("X")
                elif cell == Cell.MISS:
                    cells.append("o")
                elif cell == Cell.SHIP and reveal:
                    ship = self.ship_at(r, c)
                    cells.append(SHIP_LETTERS.get(ship.name, "S") if ship else "S")
                else:
                    cells.append(".")
            out.append(" ".join(cells))
        return out


def parse_coordinate(coord_str: str, size: int = BOARD_SIZE) -> Coord:
    """Translate a coordinate like 'B7' into a zero-based (row, col) tuple.

    Raises ValueError for anything outside A1..J10 (on the default board).
    """
    text = coord_str.strip().upper()
    if len(text) < 2 or not text[0].isalpha() or not text[1:].isdigit():
        raise ValueError(f"Invalid coordinate: {coord_str!r}")
    row = ord(text[0]) - ord("A")
    col = int(text[1:]) - 1
    if not (0 <= row < size and 0 <= col < size):
        raise ValueError(f"Coordinate out of range: {coord_str!r}")
    return row, col


def format_coordinate(row: int, col: int) -> str:
    """Convert zero-based (row, col) to a coordinate string like 'A1'."""
    return f"{chr(ord('A') + row)}{col + 1}"
