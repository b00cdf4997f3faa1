from __future__ import annotations

import random
from collections import deque
from typing import Deque, Iterable, Optional, Set, Tuple

from .battleship import Board, Ship, standard_fleet
from .config import BOARD_SIZE

Coord = Tuple[int, int]


class BotLogic:
    """
    Hunt/target opponent
    --------------------
    1. Random mode: fire at a uniformly random square never fired before.
    2. Hunt mode: every HIT queues its four orthogonal neighbours (up, down,
       left, right). Queued squares are fired FIFO; once the queue is empty
       we drop back to random mode.

    There is no orientation tracking: a second hit on the same ship queues
    all four of *its* neighbours as well.
    """

    # ------------------------------------------------------------------ #
    # Construction
    # ------------------------------------------------------------------ #
    def __init__(self, size: int = BOARD_SIZE, *, seed: Optional[int] = None) -> None:
        self.size = size
        self.rnd = random.Random(seed)

        # State
        self.attacked: Set[Coord] = set()
        self.hunt_queue: Deque[Coord] = deque()
        self.hunt_mode: bool = False

    def _legal(self, rc: Coord) -> bool:
        """Inside board and never fired before."""
        r, c = rc
        return 0 <= r < self.size and 0 <= c < self.size and rc not in self.attacked

    # ------------------------------------------------------------------ #
    # Shot selection
    # ------------------------------------------------------------------ #
    def choose_attack(self) -> Coord:
        """Return the next square to fire at and mark it as used.

        Raises RuntimeError once every square has been fired at.
        """
        if self.hunt_mode:
            while self.hunt_queue:
                rc = self.hunt_queue.popleft()
                if rc not in self.attacked:
                    self.attacked.add(rc)
                    return rc
            self.hunt_mode = False

        if len(self.attacked) >= self.size * self.size:
            raise RuntimeError("board exhausted")

        # Rejection sampling; the attacked set only grows so this always finds
        # a free square while one exists.
        while True:
            rc = (self.rnd.randrange(self.size), self.rnd.randrange(self.size))
            if rc not in self.attacked:
                self.attacked.add(rc)
                return rc

    # ------------------------------------------------------------------ #
    # Result handling
    # ------------------------------------------------------------------ #
    def record_hit(self, row: int, col: int) -> None:
        """Enter hunt mode and queue the unexplored neighbours of (*row*, *col*)."""
        self.hunt_mode = True
        for dr, dc in ((-1, 0), (1, 0), (0, -1), (0, 1)):
            nbr = (row + dr, col + dc)
            if self._legal(nbr):
                self.hunt_queue.append(nbr)

    def record_miss(self, row: int, col: int) -> None:
        # A miss only needs the square marked, which choose_attack already did.
        self.attacked.add((row, col))

    def register_result(self, row: int, col: int, hit: bool) -> None:
        if hit:
            self.record_hit(row, col)
        else:
            self.record_miss(row, col)

    # ------------------------------------------------------------------ #
    # Fleet placement
    # ------------------------------------------------------------------ #
    def place_fleet(self, board: Board, ships: Optional[Iterable[Ship]] = None) -> None:
        """Randomly position *ships* (default: the standard fleet) on *board*."""
        for ship in ships if ships is not None else standard_fleet():
            placed = False
            while not placed:
                row = self.rnd.randrange(board.size)
                col = self.rnd.randrange(board.size)
                horizontal = self.rnd.random() < 0.5
                placed = board.place(ship, row, col, horizontal)

    # ------------------------------------------------------------------ #
    # Reset (for testing)
    # ------------------------------------------------------------------ #
    def reset(self) -> None:
        """Forget every shot and leave hunt mode."""
        self.attacked.clear()
        self.hunt_queue.clear()
        self.hunt_mode = False
