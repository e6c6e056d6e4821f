"""Session planner building line windows for ingest, learn, review and relearn."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Sequence

from src.trainer.cards import DisplayTier, Rating, Scheme
from src.trainer.lines import iter_span, scene_bounds
from src.trainer.scheduler import Scheduler


LOGGER = logging.getLogger(__name__)

DEFAULT_EXTENSION_LENGTH = {Scheme.EASE: 3, Scheme.FSRS: 4}


class Drill(Protocol):
    """Front end that shows lines and collects ratings, one line at a time."""

    async def show(self, line_ids: Sequence[str], tier: DisplayTier) -> None:
        """Display ``line_ids`` as context at ``tier`` without asking for a rating."""
        ...

    async def rate(self, line_id: str, tier: DisplayTier) -> Rating:
        """Present the cursor line at ``tier`` and wait for its rating; peeks are handled here."""
        ...

    async def clear(self) -> None:
        """Hide everything shown since the last clear."""
        ...


@dataclass(frozen=True)
class PlannerSettings:
    """Window sizes used by the planner."""

    extension_length: int = 3
    max_chunk: int = 3
    learn_context: int = 2
    learn_new_lines: int = 1
    ingest_prefix: int = 3
    ingest_max: int = 20
    relearn_lines: int = 5
    ingest_tier: DisplayTier = DisplayTier.LINE_INITIALS


@dataclass(slots=True)
class ReviewWindow:
    """Lines to drill plus the detached, context-only lines around them."""

    lines: List[str]
    prefix: List[str] = field(default_factory=list)
    suffix: List[str] = field(default_factory=list)


def build_chunks(context: Sequence[str], new_lines: Sequence[str], max_chunk: int) -> List[List[str]]:
    """Expanding rehearsal: after each new line, every suffix of length 1..max_chunk of the lines so far."""
    so_far = list(context)
    chunks: List[List[str]] = []
    for line_id in new_lines:
        so_far.append(line_id)
        for size in range(1, min(max_chunk, len(so_far)) + 1):
            chunks.append(so_far[-size:])
    return chunks


class SessionPlanner:
    """Drives one activity at a time; the cursor line is always passed explicitly."""

    def __init__(
        self,
        scheduler: Scheduler,
        drill: Drill,
        settings: Optional[PlannerSettings] = None,
    ) -> None:
        self._scheduler = scheduler
        self._lines = scheduler.lines
        self._drill = drill
        self._settings = settings or PlannerSettings()

    async def ingest(self) -> List[str]:
        """Bulk-introduce already-known lines, one rating each."""
        target = await self._scheduler.find_first_unlearnt()
        if target is None:
            return []

        tier = self._settings.ingest_tier
        prefix: List[str] = []
        for line_id in self._lines.lines_before(target, self._settings.ingest_prefix):
            if await self._scheduler.is_learnt(line_id):
                prefix.append(line_id)
        span = [target] + await self._chain_unlearnt(target, self._settings.ingest_max - 1)

        LOGGER.info("Ingesting %s lines starting at %s.", len(span), target)
        ingested: List[str] = []
        try:
            await self._drill.show(prefix, tier)
            await self._drill.show(span, tier)
            for line_id in span:
                rating = Rating.parse(await self._drill.rate(line_id, tier))
                await self._scheduler.ingest(line_id, rating)
                ingested.append(line_id)
        finally:
            await self._drill.clear()
        return ingested

    async def learn(self) -> List[str]:
        """Introduce new lines through expanding chunks, then record one outcome per line."""
        target = await self._scheduler.find_first_unlearnt()
        if target is None:
            return []

        context = self._lines.lines_before(target, self._settings.learn_context)
        new_lines = [target] + await self._chain_unlearnt(target, self._settings.learn_new_lines - 1)
        chunks = build_chunks(context, new_lines, self._settings.max_chunk)

        LOGGER.info("Learning %s new lines from %s in %s chunks.", len(new_lines), target, len(chunks))
        try:
            for chunk in chunks:
                for line_id in chunk:
                    await self._drill_line(line_id)
        finally:
            await self._drill.clear()

        for line_id in new_lines:
            await self._scheduler.learn(line_id)
        return new_lines

    async def review(self) -> Optional[ReviewWindow]:
        """Review the window around the earliest due line."""
        target = await self._scheduler.find_earliest_due()
        if target is None:
            return None

        window = await self.build_review_window(target)
        LOGGER.info(
            "Reviewing %s lines from %s (%s context before, %s after).",
            len(window.lines),
            window.lines[0],
            len(window.prefix),
            len(window.suffix),
        )
        try:
            await self._show_context(window.prefix)
            for line_id in window.lines:
                await self._review_line(line_id)
            await self._show_context(window.suffix)
        finally:
            await self._drill.clear()
        return window

    async def review_scene(self, line_id: Optional[str] = None) -> List[str]:
        """Run through the whole scene around ``line_id`` (default: the earliest due line)."""
        target = line_id or await self._scheduler.find_earliest_due()
        if target is None:
            return []

        first, last = scene_bounds(self._lines, target)
        span = list(iter_span(self._lines, first, last))
        LOGGER.info("Reviewing scene %s..%s (%s lines).", first, last, len(span))
        try:
            for current in span:
                if await self._scheduler.is_learnt(current):
                    await self._review_line(current)
                else:
                    await self._drill_line(current)
        finally:
            await self._drill.clear()
        return span

    async def relearn(self, line_id: str) -> List[List[str]]:
        """Re-drill growing suffixes of the lines ending at a failed line."""
        lines = self._lines.lines_before(line_id, self._settings.relearn_lines - 1) + [line_id]
        slices: List[List[str]] = []
        for start in range(len(lines) - 1, -1, -1):
            current = lines[start:]
            slices.append(current)
            for current_line in current:
                await self._drill_line(current_line)
        LOGGER.debug("Relearned %s in %s passes.", line_id, len(slices))
        return slices

    async def build_review_window(self, target: str) -> ReviewWindow:
        """Extend around ``target`` while reviewable lines keep appearing, then trim the edges."""
        limit = self._settings.extension_length
        before = await self._extend(target, self._lines.line_before, limit)
        after = await self._extend(target, self._lines.line_after, limit)
        span = list(reversed(before)) + [target] + after

        flags = [await self._scheduler.is_reviewable(line_id) for line_id in span]
        if not any(flags):
            position = len(before)
            return ReviewWindow(lines=[target], prefix=span[:position], suffix=span[position + 1:])

        first = flags.index(True)
        last = len(flags) - 1 - flags[::-1].index(True)
        return ReviewWindow(
            lines=span[first:last + 1],
            prefix=span[:first],
            suffix=span[last + 1:],
        )

    async def _extend(
        self,
        start: str,
        step: Callable[[str], Optional[str]],
        limit: int,
    ) -> List[str]:
        # Stops at the script edge, at an unlearnt line, or after ``limit`` non-reviewable lines in a row.
        added: List[str] = []
        misses = 0
        cursor = start
        while misses < limit:
            following = step(cursor)
            if following is None or not await self._scheduler.is_learnt(following):
                break
            added.append(following)
            cursor = following
            misses = 0 if await self._scheduler.is_reviewable(following) else misses + 1
        return added

    async def _chain_unlearnt(self, start: str, limit: int) -> List[str]:
        chained: List[str] = []
        cursor = start
        while len(chained) < limit:
            following = self._lines.line_after(cursor)
            if following is None or await self._scheduler.is_learnt(following):
                break
            chained.append(following)
            cursor = following
        return chained

    async def _review_line(self, line_id: str) -> Rating:
        rating = await self._drill_line(line_id)
        await self._scheduler.record_review(line_id, rating)
        if rating is Rating.AGAIN:
            await self.relearn(line_id)
        return rating

    async def _drill_line(self, line_id: str) -> Rating:
        tier = await self._scheduler.display_for(line_id)
        return Rating.parse(await self._drill.rate(line_id, tier))

    async def _show_context(self, line_ids: Sequence[str]) -> None:
        for line_id in line_ids:
            await self._drill.show([line_id], await self._scheduler.display_for(line_id))
