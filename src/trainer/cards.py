"""Card types shared by the memory models, the scheduler and the card store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Optional, Union

from src.trainer.errors import ContractViolation


class Rating(IntEnum):
    """Outcome of a single drill; values match the FSRS rating scale."""

    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4

    @classmethod
    def parse(cls, value: object) -> "Rating":
        """Return the rating for ``value`` or raise when it is outside the alphabet."""
        if isinstance(value, Rating):
            return value
        if isinstance(value, bool) or not isinstance(value, int):
            raise ContractViolation(f"Rating must be an integer, got {value!r}.")
        try:
            return cls(value)
        except ValueError as exc:
            raise ContractViolation(f"Rating {value!r} is outside 1..4.") from exc


class DisplayTier(IntEnum):
    """How much of a line is revealed as a scaffold; higher tiers reveal more."""

    NONE = 0
    LINE_INITIALS = 1
    WORD_INITIALS = 2
    ALL = 3

    def advanced(self) -> "DisplayTier":
        """One step toward fewer hints; ``NONE`` stays ``NONE``."""
        return DisplayTier(max(self.value - 1, DisplayTier.NONE.value))

    def revealed(self) -> "DisplayTier":
        """One step toward more hints; ``ALL`` stays ``ALL``."""
        return DisplayTier(min(self.value + 1, DisplayTier.ALL.value))


class Lifecycle(IntEnum):
    """Lifecycle state of a standardized card; values follow ``fsrs.State`` where they overlap."""

    NEW = 0
    LEARNING = 1
    REVIEW = 2
    RELEARNING = 3


class Scheme(str, Enum):
    """Scheduling scheme used by a deployment; one store never mixes schemes."""

    EASE = "ease"
    FSRS = "fsrs"


@dataclass(slots=True)
class EaseStreakCard:
    """Memory state for the ease/streak scheme."""

    line_id: str
    due: datetime
    last_review: Optional[datetime]
    display: DisplayTier
    ease: float
    streak: int

    @property
    def scheme(self) -> Scheme:
        return Scheme.EASE


@dataclass(slots=True)
class StandardCard:
    """Memory state for the standardized (FSRS) scheme."""

    line_id: str
    due: datetime
    last_review: Optional[datetime]
    display: DisplayTier
    state: Lifecycle = Lifecycle.NEW
    step: Optional[int] = None
    stability: Optional[float] = None
    difficulty: Optional[float] = None
    reps: int = 0
    lapses: int = 0
    warmup_step: int = 0

    @property
    def scheme(self) -> Scheme:
        return Scheme.FSRS


Card = Union[EaseStreakCard, StandardCard]


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are assumed to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
