"""Memory models: pure transitions from a card and a rating to the next card state."""

from __future__ import annotations

import logging
import math
import random
from dataclasses import replace
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from typing import Dict, Optional, Protocol, Sequence, Tuple

from fsrs import Card as FsrsCard
from fsrs import Rating as FsrsRating
from fsrs import Scheduler as FsrsScheduler
from fsrs import State as FsrsState

from src.trainer.cards import (
    Card,
    DisplayTier,
    EaseStreakCard,
    Lifecycle,
    Rating,
    Scheme,
    StandardCard,
    as_utc,
)
from src.trainer.errors import ContractViolation


LOGGER = logging.getLogger(__name__)


EASE_MIN = 0.0
EASE_MAX = 8.0
EASE_FLOOR = 0.0
MAX_DUE_DAYS = 14
ADVANCE_STREAK = 3
EASE_DELTAS: Dict[Rating, float] = {
    Rating.HARD: 1.0,
    Rating.GOOD: 2.0,
    Rating.EASY: 3.0,
}
# Advancement probability by streak for the probabilistic policy; streaks from 6 always advance.
ADVANCE_PROBABILITIES: Dict[int, float] = {4: 1 / 3, 5: 2 / 3}
ALWAYS_ADVANCE_STREAK = 6

# Initial (ease, display) for lines ingested as already known.
INGEST_STATES: Dict[Rating, Tuple[float, DisplayTier]] = {
    Rating.AGAIN: (0.0, DisplayTier.ALL),
    Rating.HARD: (2.0, DisplayTier.WORD_INITIALS),
    Rating.GOOD: (4.0, DisplayTier.LINE_INITIALS),
    Rating.EASY: (6.0, DisplayTier.NONE),
}

DIFFICULTY_MIN = 1.0
DIFFICULTY_MAX = 10.0
LEARN_RATING = Rating.HARD
WARMUP_RATINGS: Tuple[Rating, ...] = (Rating.AGAIN, Rating.HARD, Rating.HARD, Rating.GOOD)
# Upper difficulty bound for each tier; anything harder shows the whole line.
DIFFICULTY_TIERS: Tuple[Tuple[float, DisplayTier], ...] = (
    (4.0, DisplayTier.NONE),
    (6.0, DisplayTier.LINE_INITIALS),
    (8.0, DisplayTier.WORD_INITIALS),
)


class Advancement(str, Enum):
    """Policy deciding when a success streak advances the display tier."""

    FIXED = "fixed"
    PROBABILISTIC = "probabilistic"


class MemoryModel(Protocol):
    """Interface shared by the scheduling schemes."""

    scheme: Scheme

    def learn(self, line_id: str, now: datetime) -> Card:
        """Return the card for a line introduced through a learn session."""
        ...

    def ingest(self, line_id: str, rating: Rating, now: datetime) -> Card:
        """Return the card for an already-known line rated once during ingest."""
        ...

    def review(self, card: Card, rating: Rating, now: datetime) -> Card:
        """Return the card after a review outcome."""
        ...

    def difficulty_bucket(self, card: Card) -> str:
        """Label used when aggregating statistics."""
        ...


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def start_of_day(day: date, tz: Optional[tzinfo]) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz or timezone.utc)


def sample_normal(mean: float, stddev: float, rng: random.Random) -> float:
    """Draw from Normal(mean, stddev) with the Box-Muller transform."""
    u1 = 1.0 - rng.random()  # (0, 1], keeps log() finite
    u2 = rng.random()
    z = math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)
    return mean + z * stddev


def fuzzed_due_days(ease: float, rng: random.Random) -> int:
    """Number of days until the next review for a card with ``ease``, jittered and clamped."""
    days = round(sample_normal(ease, ease / 4, rng))
    return int(clamp(days, 0, MAX_DUE_DAYS))


def tier_for_difficulty(difficulty: float) -> DisplayTier:
    for upper, tier in DIFFICULTY_TIERS:
        if difficulty < upper:
            return tier
    return DisplayTier.ALL


def _expect_card(card: Card, card_type: type) -> None:
    if not isinstance(card, card_type):
        raise ContractViolation(
            f"Card for line {getattr(card, 'line_id', '?')!r} belongs to a different scheduling scheme."
        )


class EaseStreakModel:
    """Ease/streak scheme: integer-ish ease drives a fuzzed day interval."""

    scheme = Scheme.EASE

    def __init__(
        self,
        advancement: Advancement = Advancement.FIXED,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._advancement = Advancement(advancement)
        self._rng = rng or random.Random()

    def learn(self, line_id: str, now: datetime) -> EaseStreakCard:
        return EaseStreakCard(
            line_id=line_id,
            due=start_of_day(now.date(), now.tzinfo),
            last_review=now,
            display=DisplayTier.ALL,
            ease=EASE_FLOOR,
            streak=0,
        )

    def ingest(self, line_id: str, rating: Rating, now: datetime) -> EaseStreakCard:
        ease, display = INGEST_STATES[Rating.parse(rating)]
        return EaseStreakCard(
            line_id=line_id,
            due=self._due(ease, now),
            last_review=now,
            display=display,
            ease=ease,
            streak=0,
        )

    def review(self, card: Card, rating: Rating, now: datetime) -> EaseStreakCard:
        rating = Rating.parse(rating)
        _expect_card(card, EaseStreakCard)

        if rating is Rating.AGAIN:
            return replace(
                card,
                ease=EASE_FLOOR,
                streak=0,
                display=DisplayTier.ALL,
                due=self._due(EASE_FLOOR, now),
                last_review=now,
            )

        if self._seen_today_and_not_due(card, now):
            LOGGER.debug("Line %s already reviewed today; not crediting the repeat.", card.line_id)
            return replace(card, due=max(card.due, self._due(card.ease, now)), last_review=now)

        ease = clamp(card.ease + EASE_DELTAS[rating], EASE_MIN, EASE_MAX)
        streak = card.streak + 1
        display = card.display
        if display != DisplayTier.NONE and self._should_advance(streak):
            display = display.advanced()
            streak = 0

        return replace(
            card,
            ease=ease,
            streak=streak,
            display=display,
            due=self._due(ease, now),
            last_review=now,
        )

    def difficulty_bucket(self, card: Card) -> str:
        _expect_card(card, EaseStreakCard)
        return f"ease {int(card.ease)}"

    def _due(self, ease: float, now: datetime) -> datetime:
        day = now.date() + timedelta(days=fuzzed_due_days(ease, self._rng))
        return start_of_day(day, now.tzinfo)

    @staticmethod
    def _seen_today_and_not_due(card: EaseStreakCard, now: datetime) -> bool:
        if card.last_review is None:
            return False
        seen_today = card.last_review.astimezone(now.tzinfo).date() == now.date()
        return seen_today and card.due > now

    def _should_advance(self, streak: int) -> bool:
        if self._advancement is Advancement.FIXED:
            return streak >= ADVANCE_STREAK
        if streak >= ALWAYS_ADVANCE_STREAK:
            return True
        return self._rng.random() < ADVANCE_PROBABILITIES.get(streak, 0.0)


class StandardModel:
    """Standardized scheme delegating the memory update to the FSRS scheduler."""

    scheme = Scheme.FSRS

    def __init__(
        self,
        desired_retention: float = 0.9,
        enable_fuzzing: bool = True,
        warmup_ratings: Sequence[Rating] = WARMUP_RATINGS,
        scheduler: Optional[FsrsScheduler] = None,
    ) -> None:
        self._scheduler = scheduler or FsrsScheduler(
            desired_retention=desired_retention,
            enable_fuzzing=enable_fuzzing,
        )
        self._warmup = tuple(Rating.parse(rating) for rating in warmup_ratings)

    @property
    def warmup_length(self) -> int:
        return len(self._warmup)

    def learn(self, line_id: str, now: datetime) -> StandardCard:
        # One outcome for the whole drilled session, however the drills went.
        blank = StandardCard(line_id=line_id, due=as_utc(now), last_review=None, display=DisplayTier.ALL)
        return self._apply(blank, LEARN_RATING, now)

    def ingest(self, line_id: str, rating: Rating, now: datetime) -> StandardCard:
        rating = Rating.parse(rating)
        blank = StandardCard(
            line_id=line_id,
            due=as_utc(now),
            last_review=None,
            display=DisplayTier.ALL,
            warmup_step=len(self._warmup),
        )
        card = self._apply(blank, rating, now)
        return replace(card, display=INGEST_STATES[rating][1])

    def review(self, card: Card, rating: Rating, now: datetime) -> StandardCard:
        rating = Rating.parse(rating)
        _expect_card(card, StandardCard)

        if card.warmup_step < len(self._warmup):
            if card.warmup_step > 0 and not self._reviewed_before_today(card, now):
                # Later warm-up steps wait for the next day; the first one is the same-day exposure.
                LOGGER.debug("Warm-up for line %s already advanced today; deferring to tomorrow.", card.line_id)
                tomorrow = start_of_day(now.date() + timedelta(days=1), now.tzinfo)
                return replace(card, due=as_utc(max(card.due, tomorrow)), last_review=as_utc(now))

            synthetic = self._warmup[card.warmup_step]
            LOGGER.debug(
                "Warm-up %s/%s for line %s: feeding %s instead of %s.",
                card.warmup_step + 1,
                len(self._warmup),
                card.line_id,
                synthetic.name,
                rating.name,
            )
            updated = self._apply(card, synthetic, now)
            return replace(updated, warmup_step=card.warmup_step + 1)

        return self._apply(card, rating, now)

    def difficulty_bucket(self, card: Card) -> str:
        _expect_card(card, StandardCard)
        if card.difficulty is None:
            return "new"
        return f"difficulty {int(card.difficulty)}"

    @staticmethod
    def _reviewed_before_today(card: StandardCard, now: datetime) -> bool:
        if card.last_review is None:
            return True
        return card.last_review.astimezone(now.tzinfo).date() < now.date()

    def _apply(self, card: StandardCard, rating: Rating, now: datetime) -> StandardCard:
        review_time = as_utc(now)
        scheduled, _ = self._scheduler.review_card(
            self._to_fsrs(card),
            FsrsRating(int(rating)),
            review_datetime=review_time,
        )

        difficulty = scheduled.difficulty
        if difficulty is not None:
            difficulty = clamp(difficulty, DIFFICULTY_MIN, DIFFICULTY_MAX)

        lapses = card.lapses
        if rating is Rating.AGAIN:
            display = DisplayTier.ALL
            if card.state is Lifecycle.REVIEW:
                lapses += 1
        elif difficulty is None:
            display = card.display
        else:
            display = min(card.display, tier_for_difficulty(difficulty))

        return replace(
            card,
            due=as_utc(scheduled.due),
            last_review=review_time,
            state=Lifecycle(int(scheduled.state.value)),
            step=scheduled.step,
            stability=scheduled.stability,
            difficulty=difficulty,
            reps=card.reps + 1,
            lapses=lapses,
            display=display,
        )

    @staticmethod
    def _to_fsrs(card: StandardCard) -> FsrsCard:
        if card.state is Lifecycle.NEW or card.stability is None:
            return FsrsCard()
        return FsrsCard(
            state=FsrsState(int(card.state)),
            step=card.step,
            stability=card.stability,
            difficulty=card.difficulty,
            due=as_utc(card.due),
            last_review=as_utc(card.last_review) if card.last_review else None,
        )


def build_memory_model(
    scheme: Scheme,
    *,
    advancement: Advancement = Advancement.FIXED,
    desired_retention: float = 0.9,
    enable_fuzzing: bool = True,
    rng: Optional[random.Random] = None,
) -> MemoryModel:
    """Return the memory model configured for ``scheme``."""
    scheme = Scheme(scheme)
    if scheme is Scheme.EASE:
        return EaseStreakModel(advancement=advancement, rng=rng)
    return StandardModel(desired_retention=desired_retention, enable_fuzzing=enable_fuzzing)
