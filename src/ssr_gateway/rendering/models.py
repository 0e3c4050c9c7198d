from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Mapping


class RenderState(str, enum.Enum):
    RENDERING = "RENDERING"
    STABLE = "STABLE"
    BUDGET_EXHAUSTED = "BUDGET_EXHAUSTED"
    ROUND_LIMIT_ZERO = "ROUND_LIMIT_ZERO"


@dataclass(frozen=True)
class ResolvedSplit:
    id: str
    markup: str
    ready: bool

    def to_json(self) -> dict[str, Any]:
        return {"markup": self.markup, "ready": self.ready}


@dataclass(frozen=True)
class HeadMetadata:
    title: str | None = None
    meta: tuple[Mapping[str, str], ...] = ()


class HeadTags:
    """Head tags written by components during one render round; the last title wins."""

    def __init__(self) -> None:
        self._title: str | None = None
        self._title_writes = 0
        self._meta: list[dict[str, str]] = []

    def set_title(self, title: str) -> None:
        self._title = title
        self._title_writes += 1

    def add_meta(self, **attrs: str) -> None:
        self._meta.append(dict(attrs))

    def reset(self) -> None:
        self._title = None
        self._title_writes = 0
        self._meta = []

    def checkpoint(self) -> tuple[int, int]:
        return self._title_writes, len(self._meta)

    def since(self, checkpoint: tuple[int, int]) -> HeadMetadata:
        """Return the tags written after ``checkpoint`` was taken."""
        title_writes, meta_count = checkpoint
        title = self._title if self._title_writes > title_writes else None
        return HeadMetadata(title=title, meta=tuple(dict(m) for m in self._meta[meta_count:]))

    def replay(self, head: HeadMetadata) -> None:
        if head.title is not None:
            self.set_title(head.title)
        for meta in head.meta:
            self.add_meta(**meta)

    def collect(self) -> HeadMetadata:
        return HeadMetadata(title=self._title, meta=tuple(dict(m) for m in self._meta))


@dataclass
class RenderContext:
    location: str = "/"
    status_override: int | None = None
    # Chunk names in first-discovery order, without duplicates.
    requested_chunks: list[str] = field(default_factory=list)
    splits: dict[str, ResolvedSplit] = field(default_factory=dict)
    head: HeadTags = field(default_factory=HeadTags)


@dataclass(frozen=True)
class RenderResult:
    markup: str
    chunk_names: tuple[str, ...]
    splits: Mapping[str, ResolvedSplit]
    head_metadata: HeadMetadata
    status_code: int | None = None


@dataclass(frozen=True)
class RenderOutcome:
    state: RenderState
    rounds: int
    result: RenderResult
