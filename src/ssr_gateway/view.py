"""
Capabilities the pipeline needs from the view layer.

The renderer never depends on a concrete component library. A tree is any
``Renderable``; the store behind injected state is any ``StateSource``; head
tags come from a ``HeadCollector``. ``CodeSplit`` is the placeholder a tree
uses to pull in a separately loaded module.
"""
from __future__ import annotations

import html
from typing import TYPE_CHECKING, Any, Protocol

from .rendering.models import HeadMetadata, RenderContext

if TYPE_CHECKING:
    from .rendering.splits import SplitRegistry

__all__ = ["Renderable", "StateSource", "HeadCollector", "CodeSplit"]


class Renderable(Protocol):
    def render(self, context: RenderContext, splits: "SplitRegistry") -> str:
        """
        Render the tree to markup.

        Must be synchronous. Head tags are written to ``context.head``, the
        response status to ``context.status_override``.
        """
        ...


class StateSource(Protocol):
    def snapshot(self) -> Any:
        """Return a JSON-serializable snapshot of the current state."""
        ...


class HeadCollector(Protocol):
    def collect(self) -> HeadMetadata:
        ...


class CodeSplit:
    """Placeholder for a code-split sub-tree.

    Renders the split's markup once the registry has it, and ``fallback``
    while the module is still loading.
    """

    def __init__(self, split_id: str, *, chunk_name: str | None = None, fallback: str = "") -> None:
        self.split_id = split_id
        self.chunk_name = chunk_name
        self.fallback = fallback

    def render(self, context: RenderContext, splits: "SplitRegistry") -> str:
        entry = splits.register(self.split_id, chunk_name=self.chunk_name)
        if not entry.ready:
            return self.fallback
        return f'<div data-split="{html.escape(self.split_id)}">{entry.markup}</div>'
