"""Single-player match: a human fleet against the hunt/target bot.

Everything runs synchronously on the caller's thread. The human fires via
``fire()``; unless that shot ends the match the bot answers immediately, so a
call always returns with the human to move again (or the game over).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from .battleship import AttackOutcome, Board, Ship, standard_fleet
from .bot_logic import BotLogic
from .config import BOARD_SIZE
from .events import Category, Event, Subscriber

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Shot:
    row: int
    col: int
    hit: bool
    sunk_name: str


@dataclass(frozen=True)
class TurnReport:
    """What happened during one ``fire()`` call."""

    player: Shot
    bot: Optional[Shot]
    winner: Optional[str]  # "player" | "bot" | None while running


class LocalGame:
    """Human vs bot on two private boards."""

    def __init__(self, *, seed: Optional[int] = None, subscriber: Optional[Subscriber] = None) -> None:
        self.player_board = Board(BOARD_SIZE)
        self.bot_board = Board(BOARD_SIZE)
        self.bot = BotLogic(BOARD_SIZE, seed=seed)
        self.ships_to_place: List[Ship] = standard_fleet()
        self.started = False
        self.winner: Optional[str] = None
        self._subs: List[Subscriber] = [subscriber] if subscriber else []

    def _emit(self, ev: Event) -> None:
        for fn in self._subs:
            try:
                fn(ev)
            except Exception:  # noqa: BLE001
                logger.exception("Event subscriber failed for %s", ev)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------
    def place_next(self, row: int, col: int, horizontal: bool) -> bool:
        """Place the human's next ship; False if it does not fit."""
        if self.started:
            raise RuntimeError("game already started")
        if not self.ships_to_place:
            raise RuntimeError("fleet already placed")
        if not self.player_board.place(self.ships_to_place[0], row, col, horizontal):
            return False
        self.ships_to_place.pop(0)
        return True

    def place_randomly(self) -> None:
        if self.started:
            raise RuntimeError("game already started")
        self.bot.place_fleet(self.player_board, self.ships_to_place)
        self.ships_to_place = []

    def start(self) -> None:
        """Place the bot's fleet and open fire."""
        if self.ships_to_place:
            raise RuntimeError(f"{len(self.ships_to_place)} ship(s) still to place")
        self.bot.place_fleet(self.bot_board)
        self.started = True
        self._emit(Event(Category.SYSTEM, "start", {}))

    # ------------------------------------------------------------------
    # Battle
    # ------------------------------------------------------------------
    @property
    def over(self) -> bool:
        return self.winner is not None

    def fire(self, row: int, col: int) -> TurnReport:
        """Human shot followed by the bot's reply.

        Raises ValueError on an off-board or repeated shot (nothing changes).
        """
        if not self.started or self.over:
            raise RuntimeError("game is not running")
        outcome = self.bot_board.attack(row, col)
        if outcome.already_attacked:
            raise ValueError("already attacked this location")
        player_shot = self._shot("player", row, col, outcome)

        if self.bot_board.all_sunk():
            return self._finish("player", player_shot, None)

        bot_shot = self.bot_turn()
        if self.player_board.all_sunk():
            return self._finish("bot", player_shot, bot_shot)
        return TurnReport(player_shot, bot_shot, None)

    def bot_turn(self) -> Shot:
        row, col = self.bot.choose_attack()
        outcome = self.player_board.attack(row, col)
        self.bot.register_result(row, col, outcome.hit)
        return self._shot("bot", row, col, outcome)

    def _shot(self, who: str, row: int, col: int, outcome: AttackOutcome) -> Shot:
        shot = Shot(row, col, outcome.hit, outcome.sunk_name)
        logger.debug("%s fires (%d,%d): hit=%s sunk=%r", who, row, col, outcome.hit, outcome.sunk_name)
        self._emit(
            Event(Category.TURN, "shot", {"attacker": who, "row": row, "col": col, "hit": outcome.hit, "sunk": outcome.sunk_name})
        )
        return shot

    def _finish(self, winner: str, player: Shot, bot: Optional[Shot]) -> TurnReport:
        self.winner = winner
        logger.info("Local game over – %s wins", winner)
        self._emit(Event(Category.TURN, "end", {"winner": winner}))
        return TurnReport(player, bot, winner)
