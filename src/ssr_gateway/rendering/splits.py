"""
Code-split bookkeeping across render rounds.

``ModuleCache`` is shared by every request of the process. It only ever grows:
a module is stored once per split id and never replaced, and concurrent loads
of one id share a single task, so a loader's side effects run at most once
per successful load.

``SplitRegistry`` lives for one request. Components call ``register`` while
rendering; the renderer reads ``is_stable`` and ``progress_token`` to decide
whether another round is worth running.
"""
from __future__ import annotations

import asyncio
import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Awaitable, Callable, Mapping

from ..logs import log_json
from .models import HeadMetadata, RenderContext, ResolvedSplit

if TYPE_CHECKING:
    from ..view import Renderable

__all__ = ["SplitLoader", "ModuleCache", "SplitRegistry"]

SplitLoader = Callable[[], Awaitable["Renderable"]]


class ModuleCache:
    def __init__(self, loaders: Mapping[str, SplitLoader] | None = None) -> None:
        self._loaders: dict[str, SplitLoader] = dict(loaders or {})
        self._modules: dict[str, Renderable] = {}
        self._loading: dict[str, asyncio.Task[Renderable | None]] = {}

    def __contains__(self, split_id: object) -> bool:
        return split_id in self._modules

    def get(self, split_id: str) -> Renderable | None:
        return self._modules.get(split_id)

    def preload(self, split_id: str, module: Renderable) -> None:
        self._modules.setdefault(split_id, module)

    def load(self, split_id: str) -> asyncio.Future[Renderable | None]:
        """
        Start (or join) the load of a split module.

        The returned future resolves to the module, or to None when the
        loader failed; failures are logged and not cached.

        Raises:
            KeyError: If no loader is known for ``split_id``.
        """
        module = self._modules.get(split_id)
        if module is not None:
            done: asyncio.Future[Renderable | None] = asyncio.get_running_loop().create_future()
            done.set_result(module)
            return done
        task = self._loading.get(split_id)
        if task is not None and not task.cancelled():
            return task
        loader = self._loaders.get(split_id)
        if loader is None:
            raise KeyError(f"no loader for split: {split_id}")
        task = asyncio.ensure_future(self._run(split_id, loader))
        self._loading[split_id] = task
        return task

    async def _run(self, split_id: str, loader: SplitLoader) -> Renderable | None:
        try:
            module = await loader()
        except Exception as exc:
            self._loading.pop(split_id, None)
            log_json(
                logging.WARNING,
                "split.load_failed",
                split_id=split_id,
                error=f"{type(exc).__name__}: {exc}",
            )
            return None
        self._modules.setdefault(split_id, module)
        self._loading.pop(split_id, None)
        return self._modules[split_id]


class SplitRegistry:
    def __init__(self, cache: ModuleCache, context: RenderContext) -> None:
        self._cache = cache
        self._context = context
        self._pending: dict[str, asyncio.Future[Renderable | None]] = {}
        # Head tags a split wrote when it became ready, replayed while its entry is frozen.
        self._heads: dict[str, HeadMetadata] = {}

    def register(self, split_id: str, *, chunk_name: str | None = None) -> ResolvedSplit:
        context = self._context
        name = chunk_name or split_id
        if name not in context.requested_chunks:
            context.requested_chunks.append(name)

        entry = context.splits.get(split_id)
        if entry is not None and entry.ready:
            context.head.replay(self._heads.get(split_id, HeadMetadata()))
            return entry

        module = self._cache.get(split_id)
        if module is None:
            future = self._pending.get(split_id)
            if future is None or future.done():
                self._pending[split_id] = self._cache.load(split_id)
            entry = ResolvedSplit(id=split_id, markup="", ready=False)
            context.splits[split_id] = entry
            return entry

        self._pending.pop(split_id, None)
        # Placeholder first, so a split that re-registers itself while rendering sees it pending.
        context.splits[split_id] = ResolvedSplit(id=split_id, markup="", ready=False)
        checkpoint = context.head.checkpoint()
        entry = ResolvedSplit(id=split_id, markup=module.render(context, self), ready=True)
        self._heads[split_id] = context.head.since(checkpoint)
        context.splits[split_id] = entry
        return entry

    def is_stable(self) -> bool:
        return all(entry.ready for entry in self._context.splits.values())

    def snapshot(self) -> Mapping[str, ResolvedSplit]:
        return MappingProxyType(self._context.splits)

    def pending(self) -> list[asyncio.Future[Renderable | None]]:
        return [future for future in self._pending.values() if not future.done()]

    def progress_token(self) -> tuple[int, int]:
        splits = self._context.splits.values()
        return len(self._context.splits), sum(1 for entry in splits if entry.ready)
