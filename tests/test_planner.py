from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Sequence, Tuple

import pytest

from src.db.cards import CardStore
from src.trainer.cards import DisplayTier, EaseStreakCard, Rating
from src.trainer.lines import ScriptLineSource
from src.trainer.planner import PlannerSettings, SessionPlanner, build_chunks
from src.trainer.scheduler import Scheduler
from src.trainer.srs import EaseStreakModel


NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


class _ScriptedDrill:
    """Answers every prompt from a queue of ratings, defaulting to Good."""

    def __init__(self, ratings: Iterable[Rating] = ()) -> None:
        self._ratings = list(ratings)
        self.rated: List[Tuple[str, DisplayTier]] = []
        self.shown: List[List[str]] = []
        self.clears = 0

    async def show(self, line_ids: Sequence[str], tier: DisplayTier) -> None:
        if line_ids:
            self.shown.append(list(line_ids))

    async def rate(self, line_id: str, tier: DisplayTier) -> Rating:
        self.rated.append((line_id, tier))
        return self._ratings.pop(0) if self._ratings else Rating.GOOD

    async def clear(self) -> None:
        self.clears += 1

    @property
    def rated_ids(self) -> List[str]:
        return [line_id for line_id, _ in self.rated]


def _ease(line_id: str, due: datetime, **overrides) -> EaseStreakCard:
    fields = dict(
        line_id=line_id,
        due=due,
        last_review=NOW - timedelta(days=3),
        display=DisplayTier.LINE_INITIALS,
        ease=3.0,
        streak=0,
    )
    fields.update(overrides)
    return EaseStreakCard(**fields)


def _planner(session_factory, source, drill, **settings) -> Tuple[SessionPlanner, CardStore]:
    store = CardStore(session_factory)
    scheduler = Scheduler(store, source, EaseStreakModel(rng=random.Random(5)), clock=lambda: NOW)
    return SessionPlanner(scheduler, drill, PlannerSettings(**settings)), store


def test_build_chunks_expanding_rehearsal_shape() -> None:
    chunks = build_chunks(["C1", "C2"], ["T"], max_chunk=3)

    assert chunks == [["T"], ["C2", "T"], ["C1", "C2", "T"]]
    for shorter, longer in zip(chunks, chunks[1:]):
        assert longer[-len(shorter):] == shorter


def test_build_chunks_caps_at_available_lines() -> None:
    assert build_chunks([], ["A", "B"], max_chunk=3) == [["A"], ["B"], ["A", "B"]]


@pytest.mark.asyncio
async def test_learn_on_empty_store_creates_only_first_line(session_factory) -> None:
    source = ScriptLineSource.from_ids([f"L{index}" for index in range(1, 11)])
    drill = _ScriptedDrill([Rating.AGAIN, Rating.EASY])
    planner, store = _planner(session_factory, source, drill, max_chunk=3)

    learnt = await planner.learn()

    assert learnt == ["L1"]
    assert drill.rated_ids == ["L1"]
    assert await store.get_all_keys() == ["L1"]
    card = await store.get("L1")
    assert card.display is DisplayTier.ALL
    assert card.streak == 0
    assert await store.count_reviews("L1") == 1
    assert drill.clears == 1


@pytest.mark.asyncio
async def test_learn_drills_chunks_with_context_and_records_once_per_line(session_factory) -> None:
    source = ScriptLineSource.from_ids(["L1", "L2", "L3", "L4", "L5"])
    drill = _ScriptedDrill()
    planner, store = _planner(session_factory, source, drill, learn_new_lines=2)
    await store.put(_ease("L1", NOW + timedelta(days=3)))
    await store.put(_ease("L2", NOW + timedelta(days=3)))

    learnt = await planner.learn()

    assert learnt == ["L3", "L4"]
    assert drill.rated_ids == ["L3", "L2", "L3", "L1", "L2", "L3", "L4", "L3", "L4", "L2", "L3", "L4"]
    assert await store.count_reviews("L3") == 1
    assert await store.count_reviews("L4") == 1
    assert await store.get("L5") is None


@pytest.mark.asyncio
async def test_learn_with_nothing_left_is_a_no_op(session_factory) -> None:
    source = ScriptLineSource.from_ids(["L1"])
    drill = _ScriptedDrill()
    planner, store = _planner(session_factory, source, drill)
    await store.put(_ease("L1", NOW + timedelta(days=1)))

    assert await planner.learn() == []
    assert drill.rated == []
    assert drill.clears == 0


@pytest.mark.asyncio
async def test_review_window_trims_unreviewable_edges(session_factory) -> None:
    source = ScriptLineSource.from_ids(["A", "B", "C", "D"])
    drill = _ScriptedDrill()
    planner, store = _planner(session_factory, source, drill, extension_length=1)
    await store.put(_ease("A", NOW + timedelta(days=5)))
    await store.put(_ease("B", NOW - timedelta(days=2)))
    await store.put(_ease("C", NOW - timedelta(days=1)))
    await store.put(_ease("D", NOW + timedelta(days=5)))

    window = await planner.review()

    assert window.lines == ["B", "C"]
    assert window.prefix == ["A"]
    assert window.suffix == ["D"]
    assert drill.rated_ids == ["B", "C"]
    assert drill.shown == [["A"], ["D"]]
    assert await store.count_reviews("A") == 0
    assert await store.count_reviews("B") == 1


@pytest.mark.asyncio
async def test_review_extension_stops_at_unlearnt_lines_and_script_edges(session_factory) -> None:
    source = ScriptLineSource.from_ids(["L1", "L2", "L3", "L4", "L5"])
    drill = _ScriptedDrill()
    planner, store = _planner(session_factory, source, drill, extension_length=3)
    await store.put(_ease("L1", NOW - timedelta(days=1)))
    await store.put(_ease("L2", NOW + timedelta(days=6)))
    await store.put(_ease("L3", NOW - timedelta(hours=1)))

    window = await planner.build_review_window("L1")

    assert window.lines == ["L1", "L2", "L3"]
    assert window.prefix == []
    assert window.suffix == []


async def _stock(store: CardStore, due_ids: Sequence[str], later_ids: Sequence[str]) -> None:
    for line_id in due_ids:
        await store.put(_ease(line_id, NOW - timedelta(hours=1)))
    for line_id in later_ids:
        await store.put(_ease(line_id, NOW + timedelta(days=5)))


@pytest.mark.asyncio
async def test_forward_extension_stops_after_a_run_of_non_reviewable_lines(session_factory) -> None:
    source = ScriptLineSource.from_ids(["T", "X", "Y", "R"])
    planner, store = _planner(session_factory, source, _ScriptedDrill(), extension_length=2)
    await _stock(store, ["T", "R"], ["X", "Y"])

    window = await planner.build_review_window("T")

    assert window.lines == ["T"]
    assert window.prefix == []
    assert window.suffix == ["X", "Y"]


@pytest.mark.asyncio
async def test_forward_extension_resets_the_run_on_a_reviewable_line(session_factory) -> None:
    source = ScriptLineSource.from_ids(["T", "X", "R", "Y", "Z"])
    planner, store = _planner(session_factory, source, _ScriptedDrill(), extension_length=2)
    await _stock(store, ["T", "R"], ["X", "Y", "Z"])

    window = await planner.build_review_window("T")

    assert window.lines == ["T", "X", "R"]
    assert window.prefix == []
    assert window.suffix == ["Y", "Z"]


@pytest.mark.asyncio
async def test_backward_extension_stops_after_a_run_of_non_reviewable_lines(session_factory) -> None:
    source = ScriptLineSource.from_ids(["R", "Y", "X", "T"])
    planner, store = _planner(session_factory, source, _ScriptedDrill(), extension_length=2)
    await _stock(store, ["T", "R"], ["X", "Y"])

    window = await planner.build_review_window("T")

    assert window.lines == ["T"]
    assert window.prefix == ["Y", "X"]
    assert window.suffix == []


@pytest.mark.asyncio
async def test_backward_extension_resets_the_run_on_a_reviewable_line(session_factory) -> None:
    source = ScriptLineSource.from_ids(["Z", "Y", "R", "X", "T"])
    planner, store = _planner(session_factory, source, _ScriptedDrill(), extension_length=2)
    await _stock(store, ["T", "R"], ["X", "Y", "Z"])

    window = await planner.build_review_window("T")

    assert window.lines == ["R", "X", "T"]
    assert window.prefix == ["Z", "Y"]
    assert window.suffix == []


@pytest.mark.asyncio
async def test_review_with_nothing_due_returns_none(session_factory) -> None:
    source = ScriptLineSource.from_ids(["L1"])
    drill = _ScriptedDrill()
    planner, store = _planner(session_factory, source, drill)
    await store.put(_ease("L1", NOW + timedelta(days=5)))

    assert await planner.review() is None
    assert drill.rated == []


@pytest.mark.asyncio
async def test_failed_review_runs_relearn_before_next_line(session_factory) -> None:
    source = ScriptLineSource.from_ids(["L1", "L2", "L3", "L4"])
    drill = _ScriptedDrill([Rating.GOOD, Rating.AGAIN])
    planner, store = _planner(session_factory, source, drill, extension_length=1)
    for line_id in ("L1", "L2", "L3", "L4"):
        await store.put(_ease(line_id, NOW - timedelta(days=1)))

    window = await planner.review()

    assert window.lines == ["L1", "L2", "L3", "L4"]
    assert drill.rated_ids == ["L1", "L2", "L2", "L1", "L2", "L3", "L4"]
    assert (await store.get("L2")).display is DisplayTier.ALL
    assert await store.count_reviews("L2") == 1
    assert ("L2", DisplayTier.ALL) in drill.rated


@pytest.mark.asyncio
async def test_relearn_drills_growing_suffixes_without_recording(session_factory) -> None:
    source = ScriptLineSource.from_ids([f"L{index}" for index in range(1, 8)])
    drill = _ScriptedDrill()
    planner, store = _planner(session_factory, source, drill)

    slices = await planner.relearn("L7")

    assert slices == [
        ["L7"],
        ["L6", "L7"],
        ["L5", "L6", "L7"],
        ["L4", "L5", "L6", "L7"],
        ["L3", "L4", "L5", "L6", "L7"],
    ]
    assert len(drill.rated) == 15
    assert await store.get_all_keys() == []


@pytest.mark.asyncio
async def test_ingest_shows_context_and_creates_cards_from_single_ratings(session_factory) -> None:
    source = ScriptLineSource.from_ids(["L1", "L2", "L3", "L4", "L5", "L6"])
    drill = _ScriptedDrill([Rating.EASY, Rating.HARD, Rating.AGAIN])
    planner, store = _planner(session_factory, source, drill, ingest_max=3)
    await store.put(_ease("L1", NOW + timedelta(days=2)))
    await store.put(_ease("L2", NOW + timedelta(days=2)))

    ingested = await planner.ingest()

    assert ingested == ["L3", "L4", "L5"]
    assert drill.shown == [["L1", "L2"], ["L3", "L4", "L5"]]
    assert all(tier is DisplayTier.LINE_INITIALS for _, tier in drill.rated)
    assert (await store.get("L3")).display is DisplayTier.NONE
    assert (await store.get("L4")).ease == 2.0
    assert (await store.get("L5")).display is DisplayTier.ALL
    assert await store.get("L6") is None
    assert drill.clears == 1


@pytest.mark.asyncio
async def test_review_scene_covers_whole_scene(session_factory) -> None:
    source = ScriptLineSource.from_ids(["A1", "A2", "B1", "B2", "B3"], scene_starts=["A1", "B1"])
    drill = _ScriptedDrill()
    planner, store = _planner(session_factory, source, drill)
    await store.put(_ease("B1", NOW + timedelta(days=9)))
    await store.put(_ease("B2", NOW - timedelta(days=1)))

    span = await planner.review_scene()

    assert span == ["B1", "B2", "B3"]
    assert drill.rated_ids == ["B1", "B2", "B3"]
    assert await store.count_reviews("B1") == 1
    assert await store.count_reviews("B2") == 1
    assert await store.get("B3") is None
