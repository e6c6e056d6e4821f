from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.db.cards import CardStore
from src.trainer.cards import DisplayTier, EaseStreakCard, Lifecycle, Rating, StandardCard
from src.trainer.errors import ContractViolation


NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


def _ease(line_id: str, due_in_days: int) -> EaseStreakCard:
    return EaseStreakCard(
        line_id=line_id,
        due=NOW + timedelta(days=due_in_days),
        last_review=NOW,
        display=DisplayTier.WORD_INITIALS,
        ease=2.0,
        streak=1,
    )


@pytest.mark.asyncio
async def test_put_upserts_and_round_trips_ease_cards(session_factory) -> None:
    store = CardStore(session_factory)
    card = _ease("L1", 2)

    await store.put(card, Rating.GOOD)
    card.streak = 2
    await store.put(card, Rating.GOOD)

    loaded = await store.get("L1")
    assert loaded == card
    assert loaded.due.tzinfo is not None
    assert await store.get_all_keys() == ["L1"]
    assert await store.count_reviews("L1") == 2


@pytest.mark.asyncio
async def test_standard_card_round_trip(session_factory) -> None:
    store = CardStore(session_factory)
    card = StandardCard(
        line_id="L2",
        due=NOW + timedelta(minutes=10),
        last_review=NOW,
        display=DisplayTier.LINE_INITIALS,
        state=Lifecycle.LEARNING,
        step=1,
        stability=2.3,
        difficulty=5.1,
        reps=2,
        lapses=0,
        warmup_step=1,
    )

    await store.put(card)

    assert await store.get("L2") == card
    assert await store.count_reviews("L2") == 0


@pytest.mark.asyncio
async def test_query_by_due_range_orders_ascending(session_factory) -> None:
    store = CardStore(session_factory)
    for line_id, days in (("L1", 3), ("L2", -1), ("L3", 1), ("L4", 10)):
        await store.put(_ease(line_id, days))

    everything = await store.query_by_due_range()
    bounded = await store.query_by_due_range(lower=NOW, upper=NOW + timedelta(days=5))

    assert [card.line_id for card in everything] == ["L2", "L3", "L1", "L4"]
    assert [card.line_id for card in bounded] == ["L3", "L1"]


@pytest.mark.asyncio
async def test_delete_and_clear(session_factory) -> None:
    store = CardStore(session_factory)
    await store.put(_ease("L1", 0), Rating.HARD)
    await store.put(_ease("L2", 0))

    assert await store.delete("L1") is True
    assert await store.delete("L1") is False
    assert await store.count_reviews("L1") == 0
    assert list((await store.get_many(["L1", "L2", "L3"])).keys()) == ["L2"]

    assert await store.clear() == 1
    assert await store.get_all() == []


@pytest.mark.asyncio
async def test_add_rejects_existing_card(session_factory) -> None:
    store = CardStore(session_factory)
    await store.add(_ease("L1", 1), Rating.HARD)

    with pytest.raises(ContractViolation):
        await store.add(_ease("L1", 2), Rating.GOOD)

    assert (await store.get("L1")).due == NOW + timedelta(days=1)
    assert await store.count_reviews("L1") == 1
