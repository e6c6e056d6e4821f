"""Ordered line collections the trainer schedules against."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from src.trainer.errors import ContractViolation


class LineSource(Protocol):
    """Adjacency queries over an ordered, session-stable sequence of line ids."""

    def all_line_ids(self) -> List[str]:
        ...

    def line_before(self, line_id: str) -> Optional[str]:
        ...

    def line_after(self, line_id: str) -> Optional[str]:
        ...

    def lines_before(self, line_id: str, count: int) -> List[str]:
        ...

    def lines_after(self, line_id: str, count: int) -> List[str]:
        ...

    def scene_starts(self) -> List[str]:
        ...


def _normalize(text: str) -> str:
    return " ".join(text.casefold().split())


def _line_key(text: str) -> str:
    return hashlib.sha1(_normalize(text).encode("utf-8")).hexdigest()[:12]


class ScriptLineSource:
    """In-memory line source built from scenes of text lines."""

    def __init__(
        self,
        lines: Sequence[Tuple[str, str]],
        scene_starts: Sequence[str] = (),
    ) -> None:
        self._ids: List[str] = [line_id for line_id, _ in lines]
        self._texts: Dict[str, str] = dict(lines)
        self._positions: Dict[str, int] = {line_id: pos for pos, line_id in enumerate(self._ids)}
        if len(self._positions) != len(self._ids):
            raise ContractViolation("Line ids must be unique.")

        starts = list(scene_starts) or self._ids[:1]
        for start in starts:
            self._position(start)
        self._scene_starts: List[str] = sorted(starts, key=self._positions.__getitem__)

    @classmethod
    def from_ids(cls, line_ids: Sequence[str], scene_starts: Sequence[str] = ()) -> "ScriptLineSource":
        """Build a source whose ids double as the line text."""
        return cls([(line_id, line_id) for line_id in line_ids], scene_starts)

    @classmethod
    def from_scenes(cls, scenes: Sequence[Sequence[str]]) -> "ScriptLineSource":
        """Build a source with content-derived ids, one scene per inner sequence."""
        lines: List[Tuple[str, str]] = []
        starts: List[str] = []
        seen: Dict[str, int] = {}

        for scene in scenes:
            texts = [text.strip() for text in scene if text.strip()]
            for index, text in enumerate(texts):
                key = _line_key(text)
                occurrence = seen.get(key, 0)
                seen[key] = occurrence + 1
                line_id = key if occurrence == 0 else f"{key}-{occurrence}"
                if index == 0:
                    starts.append(line_id)
                lines.append((line_id, text))

        return cls(lines, starts)

    @classmethod
    def from_text(cls, text: str) -> "ScriptLineSource":
        """Build a source where blank lines separate scenes."""
        scenes: List[List[str]] = [[]]
        for raw_line in text.splitlines():
            if raw_line.strip():
                scenes[-1].append(raw_line)
            elif scenes[-1]:
                scenes.append([])
        return cls.from_scenes(scenes)

    @classmethod
    def from_path(cls, path: Path) -> "ScriptLineSource":
        return cls.from_text(Path(path).read_text(encoding="utf-8"))

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, line_id: object) -> bool:
        return line_id in self._positions

    def all_line_ids(self) -> List[str]:
        return list(self._ids)

    def text(self, line_id: str) -> str:
        self._position(line_id)
        return self._texts[line_id]

    def line_before(self, line_id: str) -> Optional[str]:
        pos = self._position(line_id)
        return self._ids[pos - 1] if pos > 0 else None

    def line_after(self, line_id: str) -> Optional[str]:
        pos = self._position(line_id)
        return self._ids[pos + 1] if pos + 1 < len(self._ids) else None

    def lines_before(self, line_id: str, count: int) -> List[str]:
        pos = self._position(line_id)
        return self._ids[max(0, pos - max(0, count)):pos]

    def lines_after(self, line_id: str, count: int) -> List[str]:
        pos = self._position(line_id)
        return self._ids[pos + 1:pos + 1 + max(0, count)]

    def scene_starts(self) -> List[str]:
        return list(self._scene_starts)

    def _position(self, line_id: str) -> int:
        try:
            return self._positions[line_id]
        except KeyError as exc:
            raise ContractViolation(f"Line {line_id!r} is not part of the script.") from exc


def scene_bounds(source: LineSource, line_id: str) -> Tuple[str, str]:
    """Return the first and last line of the scene enclosing ``line_id``."""
    ids = source.all_line_ids()
    if line_id not in ids:
        raise ContractViolation(f"Line {line_id!r} is not part of the script.")
    position = ids.index(line_id)
    starts = [ids.index(start) for start in source.scene_starts()] or [0]

    first = max((start for start in starts if start <= position), default=0)
    following = [start for start in starts if start > position]
    last = following[0] - 1 if following else len(ids) - 1
    return ids[first], ids[last]


def iter_span(source: LineSource, first: str, last: str) -> Iterable[str]:
    """Yield line ids from ``first`` to ``last`` inclusive, in document order."""
    current: Optional[str] = first
    while current is not None:
        yield current
        if current == last:
            return
        current = source.line_after(current)
