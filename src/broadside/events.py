"""Lightweight event model used by LocalGame and ClientSession.

The goal is to emit strongly-typed events that the console client (or tests)
can consume without parsing free-text strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Dict


class Category(Enum):
    """High-level event categories."""

    TURN = auto()  # per-turn lifecycle (shot, result, end)
    SYSTEM = auto()  # room / connection / phase changes


@dataclass(frozen=True, slots=True)
class Event:
    """Immutable event emitted by a game loop."""

    category: Category
    type: str  # finer-grained identifier, e.g. "shot", "phase", "end"
    payload: Dict[str, Any]


Subscriber = Callable[[Event], None]
