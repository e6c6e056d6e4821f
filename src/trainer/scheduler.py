"""Scheduler answering due-ness questions and recording outcomes against the card store."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional

from src.db.cards import CardStore
from src.trainer.cards import Card, DisplayTier, EaseStreakCard, Rating, Scheme
from src.trainer.errors import ContractViolation
from src.trainer.lines import LineSource
from src.trainer.srs import LEARN_RATING, MemoryModel


LOGGER = logging.getLogger(__name__)

DEFAULT_DUE_SOON = timedelta(days=1)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class CardStatistics:
    """Aggregated view of the card store, for diagnostics only."""

    total: int = 0
    by_due_day: Dict[str, int] = field(default_factory=dict)
    by_difficulty: Dict[str, int] = field(default_factory=dict)
    by_display: Dict[str, int] = field(default_factory=dict)
    by_state: Dict[str, int] = field(default_factory=dict)


class Scheduler:
    """Runs the memory model against the card store for one line source."""

    def __init__(
        self,
        store: CardStore,
        lines: LineSource,
        model: MemoryModel,
        *,
        strict_reviewable: bool = True,
        due_soon: timedelta = DEFAULT_DUE_SOON,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._lines = lines
        self._model = model
        self._strict_reviewable = strict_reviewable
        self._due_soon = due_soon
        self._clock = clock or _utc_now
        # Writes for one line run one at a time within the process.
        self._line_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @property
    def scheme(self) -> Scheme:
        return self._model.scheme

    @property
    def lines(self) -> LineSource:
        return self._lines

    def now(self) -> datetime:
        return self._clock()

    async def get_card(self, line_id: str) -> Optional[Card]:
        card = await self._store.get(line_id)
        if card is not None:
            self._check_scheme(card)
        return card

    async def is_learnt(self, line_id: str) -> bool:
        return await self.get_card(line_id) is not None

    def card_is_due(self, card: Card, now: Optional[datetime] = None) -> bool:
        return card.due <= (now or self.now())

    def card_is_reviewable(self, card: Card, now: Optional[datetime] = None) -> bool:
        """Due, or due soon and not already seen today, when the strict predicate is enabled."""
        now = now or self.now()
        is_due = self.card_is_due(card, now)
        if not self._strict_reviewable:
            return is_due
        is_due_soon = card.due <= now + self._due_soon
        return is_due or (is_due_soon and (is_due or not self._seen_today(card, now)))

    async def is_due(self, line_id: str) -> bool:
        card = await self.get_card(line_id)
        return card is not None and self.card_is_due(card)

    async def is_reviewable(self, line_id: str) -> bool:
        card = await self.get_card(line_id)
        return card is not None and self.card_is_reviewable(card)

    async def any_due(self, line_ids: Iterable[str]) -> bool:
        now = self.now()
        cards = await self._store.get_many(line_ids)
        return any(self.card_is_due(card, now) for card in cards.values())

    async def any_reviewable(self, line_ids: Iterable[str]) -> bool:
        now = self.now()
        cards = await self._store.get_many(line_ids)
        return any(self.card_is_reviewable(card, now) for card in cards.values())

    async def find_earliest_due(self) -> Optional[str]:
        """Return the reviewable line with the earliest due date, or None."""
        now = self.now()
        horizon = now + self._due_soon if self._strict_reviewable else now
        known = set(self._lines.all_line_ids())
        candidates = [
            card
            for card in await self._store.query_by_due_range(upper=horizon)
            if card.line_id in known and self.card_is_reviewable(card, now)
        ]
        if not candidates:
            LOGGER.info("No line is due for review.")
            return None

        if self.scheme is Scheme.EASE:
            oldest = datetime.min.replace(tzinfo=timezone.utc)
            # Oldest-reviewed first among equally due lines.
            candidates.sort(key=lambda card: (card.due, card.last_review or oldest))
        return candidates[0].line_id

    async def find_first_unlearnt(self) -> Optional[str]:
        """Return the first line in document order without a card, or None."""
        learnt = set(await self._store.get_all_keys())
        for line_id in self._lines.all_line_ids():
            if line_id not in learnt:
                return line_id
        LOGGER.info("Nothing to learn: every line already has a card.")
        return None

    async def display_for(self, line_id: str) -> DisplayTier:
        """Tier a line should be shown at; unlearnt lines are fully revealed."""
        card = await self.get_card(line_id)
        return card.display if card is not None else DisplayTier.ALL

    async def record_review(self, line_id: str, rating: Rating) -> Card:
        """Apply a review outcome to an existing card and persist it."""
        rating = Rating.parse(rating)
        async with self._line_locks[line_id]:
            card = await self.get_card(line_id)
            if card is None:
                raise ContractViolation(f"Cannot record a review for line {line_id!r}: it has not been learnt.")

            updated = self._model.review(card, rating, self.now())
            await self._store.put(updated, rating)
        LOGGER.debug(
            "Recorded %s for line %s; next due %s, display %s.",
            rating.name,
            line_id,
            updated.due.isoformat(),
            updated.display.name,
        )
        return updated

    async def add_new(self, card: Card, rating: Optional[Rating] = None) -> Card:
        """Persist a freshly created card; the line must not have one yet."""
        self._check_scheme(card)
        async with self._line_locks[card.line_id]:
            if await self._store.get(card.line_id) is not None:
                raise ContractViolation(f"Line {card.line_id!r} already has a card.")
            await self._store.add(card, rating)
        LOGGER.info("Created card for line %s (due %s).", card.line_id, card.due.isoformat())
        return card

    async def learn(self, line_id: str) -> Card:
        """Record the single outcome of a learn session for a new line."""
        card = self._model.learn(line_id, self.now())
        return await self.add_new(card, LEARN_RATING)

    async def ingest(self, line_id: str, rating: Rating) -> Card:
        """Create a card for an already-known line straight from one rating."""
        rating = Rating.parse(rating)
        card = self._model.ingest(line_id, rating, self.now())
        return await self.add_new(card, rating)

    async def prune_orphaned_lines(self) -> List[str]:
        """Delete cards whose line no longer exists in the line source."""
        known = set(self._lines.all_line_ids())
        pruned: List[str] = []
        for line_id in await self._store.get_all_keys():
            if line_id in known:
                continue
            await self._store.delete(line_id)
            LOGGER.info("Pruned orphaned line %s.", line_id)
            pruned.append(line_id)
        return pruned

    async def log_stats(self) -> CardStatistics:
        """Log and return card counts by due day, difficulty, display tier and state."""
        cards = await self._store.get_all()
        by_due_day: Counter[str] = Counter()
        by_difficulty: Counter[str] = Counter()
        by_display: Counter[str] = Counter()
        by_state: Counter[str] = Counter()

        for card in cards:
            by_due_day[card.due.date().isoformat()] += 1
            by_difficulty[self._model.difficulty_bucket(card)] += 1
            by_display[card.display.name.lower()] += 1
            if isinstance(card, EaseStreakCard):
                by_state[f"streak {card.streak}"] += 1
            else:
                by_state[card.state.name.lower()] += 1

        stats = CardStatistics(
            total=len(cards),
            by_due_day=dict(sorted(by_due_day.items())),
            by_difficulty=dict(sorted(by_difficulty.items())),
            by_display=dict(by_display),
            by_state=dict(by_state),
        )
        LOGGER.info("Cards: %s in total.", stats.total)
        LOGGER.info("By due day: %s", stats.by_due_day)
        LOGGER.info("By difficulty: %s", stats.by_difficulty)
        LOGGER.info("By display tier: %s", stats.by_display)
        LOGGER.info("By state: %s", stats.by_state)
        return stats

    async def reset(self) -> int:
        """Wipe every card; only ever triggered by an explicit user action."""
        removed = await self._store.clear()
        LOGGER.warning("Reset the card store; %s cards removed.", removed)
        return removed

    @staticmethod
    def _seen_today(card: Card, now: datetime) -> bool:
        if card.last_review is None:
            return False
        return card.last_review.astimezone(now.tzinfo).date() == now.date()

    def _check_scheme(self, card: Card) -> None:
        if card.scheme is not self._model.scheme:
            raise ContractViolation(
                f"Line {card.line_id!r} holds a {card.scheme.value} card but the scheduler runs {self._model.scheme.value}."
            )
