"""Helpers for working with line card persistence."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

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

from . import LineCard, LineReview


def card_from_row(row: LineCard) -> Card:
    """Convert a stored row into the card variant of its scheme."""
    last_review = as_utc(row.last_review) if row.last_review is not None else None
    if Scheme(row.scheme) is Scheme.EASE:
        return EaseStreakCard(
            line_id=row.id,
            due=as_utc(row.due),
            last_review=last_review,
            display=DisplayTier(row.display),
            ease=row.ease if row.ease is not None else 0.0,
            streak=row.streak if row.streak is not None else 0,
        )
    return StandardCard(
        line_id=row.id,
        due=as_utc(row.due),
        last_review=last_review,
        display=DisplayTier(row.display),
        state=Lifecycle(row.state) if row.state is not None else Lifecycle.NEW,
        step=row.step,
        stability=row.stability,
        difficulty=row.difficulty,
        reps=row.reps or 0,
        lapses=row.lapses or 0,
        warmup_step=row.warmup_step or 0,
    )


def apply_card_to_row(card: Card, row: LineCard) -> None:
    """Copy the card's fields onto a row, clearing the other scheme's columns."""
    row.scheme = card.scheme.value
    row.due = as_utc(card.due)
    row.last_review = as_utc(card.last_review) if card.last_review is not None else None
    row.display = int(card.display)

    if isinstance(card, EaseStreakCard):
        row.ease = card.ease
        row.streak = card.streak
        row.state = None
        row.step = None
        row.stability = None
        row.difficulty = None
        row.reps = 0
        row.lapses = 0
        row.warmup_step = 0
        return

    row.ease = None
    row.streak = None
    row.state = int(card.state)
    row.step = card.step
    row.stability = card.stability
    row.difficulty = card.difficulty
    row.reps = card.reps
    row.lapses = card.lapses
    row.warmup_step = card.warmup_step


def _log_review(session: AsyncSession, card: Card, rating: Optional[Rating]) -> None:
    if rating is None:
        return
    session.add(
        LineReview(
            line_id=card.line_id,
            rating=int(rating),
            scheme=card.scheme.value,
            reviewed_at=as_utc(card.last_review or datetime.now(timezone.utc)),
        )
    )


class CardStore:
    """Key-value store of cards with a due-date index; every write commits on its own."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, line_id: str) -> Optional[Card]:
        async with self._session_factory() as session:
            row = await session.get(LineCard, line_id)
            return card_from_row(row) if row is not None else None

    async def get_many(self, line_ids: Iterable[str]) -> Dict[str, Card]:
        """Return the cards that exist among ``line_ids``, keyed by id."""
        ids = list(line_ids)
        if not ids:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(select(LineCard).where(LineCard.id.in_(ids)))
            return {row.id: card_from_row(row) for row in result.scalars()}

    async def put(self, card: Card, rating: Optional[Rating] = None) -> None:
        """Upsert ``card``; when ``rating`` is given, log it as a recorded outcome."""
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(LineCard, card.line_id)
                if row is None:
                    row = LineCard(id=card.line_id)
                    session.add(row)
                apply_card_to_row(card, row)
                await session.flush()
                _log_review(session, card, rating)

    async def add(self, card: Card, rating: Optional[Rating] = None) -> None:
        """Insert a card that must not exist yet; a duplicate id raises ContractViolation."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = LineCard(id=card.line_id)
                    apply_card_to_row(card, row)
                    session.add(row)
                    await session.flush()
                    _log_review(session, card, rating)
        except IntegrityError as exc:
            raise ContractViolation(f"Line {card.line_id!r} already has a card.") from exc

    async def delete(self, line_id: str) -> bool:
        """Delete a card and its review history; returns whether a card existed."""
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(delete(LineReview).where(LineReview.line_id == line_id))
                result = await session.execute(delete(LineCard).where(LineCard.id == line_id))
        return bool(result.rowcount)

    async def get_all(self) -> List[Card]:
        async with self._session_factory() as session:
            result = await session.execute(select(LineCard).order_by(LineCard.id))
            return [card_from_row(row) for row in result.scalars()]

    async def get_all_keys(self) -> List[str]:
        async with self._session_factory() as session:
            result = await session.execute(select(LineCard.id).order_by(LineCard.id))
            return list(result.scalars())

    async def query_by_due_range(
        self,
        lower: Optional[datetime] = None,
        upper: Optional[datetime] = None,
    ) -> List[Card]:
        """Return cards with ``lower <= due <= upper`` ascending by due; open bounds when None."""
        stmt = select(LineCard).order_by(LineCard.due, LineCard.id)
        if lower is not None:
            stmt = stmt.where(LineCard.due >= as_utc(lower))
        if upper is not None:
            stmt = stmt.where(LineCard.due <= as_utc(upper))
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [card_from_row(row) for row in result.scalars()]

    async def count_reviews(self, line_id: str) -> int:
        """Number of outcomes recorded for a line."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(LineReview).where(LineReview.line_id == line_id)
            )
            return int(result.scalar_one())

    async def clear(self) -> int:
        """Delete every card and review; returns the number of cards removed."""
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(delete(LineReview))
                result = await session.execute(delete(LineCard))
        return int(result.rowcount or 0)
