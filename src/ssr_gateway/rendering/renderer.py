from __future__ import annotations

import asyncio
import logging
import time
from types import MappingProxyType
from typing import TYPE_CHECKING, Awaitable, Callable

from ..errors import RenderAborted, RenderThrew
from ..logs import log_json
from .models import HeadMetadata, RenderContext, RenderOutcome, RenderResult, RenderState
from .splits import ModuleCache, SplitRegistry

if TYPE_CHECKING:
    from ..view import Renderable

__all__ = ["DEFAULT_MAX_SSR_ROUNDS", "MultiRoundRenderer"]

DEFAULT_MAX_SSR_ROUNDS = 10

AbortCheck = Callable[[], Awaitable[bool]]


class MultiRoundRenderer:
    """
    Re-renders a tree until its code splits settle.

    A round is one synchronous ``render`` call. After each round the loop
    stops when every registered split is ready (STABLE), when the round
    budget is spent, or when the round neither discovered a new split nor saw
    a pending one become ready (both BUDGET_EXHAUSTED). Otherwise it waits,
    at most ``split_wait_s``, for pending modules and renders again.
    BUDGET_EXHAUSTED is a normal outcome: unresolved placeholders are left to
    client-side hydration.
    """

    def __init__(
        self,
        cache: ModuleCache,
        *,
        max_ssr_rounds: int = DEFAULT_MAX_SSR_ROUNDS,
        split_wait_s: float = 2.0,
    ) -> None:
        if max_ssr_rounds < 0:
            raise ValueError("max_ssr_rounds must be >= 0")
        self._cache = cache
        self._max_rounds = max_ssr_rounds
        self._split_wait_s = split_wait_s

    @property
    def max_ssr_rounds(self) -> int:
        return self._max_rounds

    async def run(
        self,
        app: Renderable | None,
        *,
        location: str = "/",
        should_abort: AbortCheck | None = None,
    ) -> RenderOutcome:
        context = RenderContext(location=location)
        if app is None or self._max_rounds == 0:
            return RenderOutcome(
                state=RenderState.ROUND_LIMIT_ZERO,
                rounds=0,
                result=_build_result(context, markup="", head=HeadMetadata()),
            )

        registry = SplitRegistry(self._cache, context)
        rounds = 0
        start = time.monotonic()
        while True:
            if rounds and should_abort is not None and await should_abort():
                raise RenderAborted(rounds)

            before = registry.progress_token()
            context.head.reset()
            try:
                markup = app.render(context, registry)
            except Exception as exc:
                raise RenderThrew(rounds + 1, exc) from exc
            rounds += 1

            log_json(
                logging.DEBUG,
                "render.round",
                location=location,
                round=rounds,
                splits=len(context.splits),
                pending=len(registry.pending()),
            )

            if registry.is_stable():
                state = RenderState.STABLE
                break
            if rounds >= self._max_rounds or registry.progress_token() == before:
                state = RenderState.BUDGET_EXHAUSTED
                break

            pending = registry.pending()
            if pending:
                # asyncio.wait never cancels what it waits on; loads stay shared with other requests.
                await asyncio.wait(pending, timeout=self._split_wait_s)

        log_json(
            logging.INFO,
            "render.finished",
            location=location,
            state=state.value,
            rounds=rounds,
            unresolved=[sid for sid, entry in context.splits.items() if not entry.ready],
            latency_ms=int((time.monotonic() - start) * 1000),
        )
        return RenderOutcome(
            state=state,
            rounds=rounds,
            result=_build_result(context, markup=markup, head=context.head.collect()),
        )


def _build_result(context: RenderContext, *, markup: str, head: HeadMetadata) -> RenderResult:
    return RenderResult(
        markup=markup,
        chunk_names=tuple(context.requested_chunks),
        splits=MappingProxyType(dict(context.splits)),
        head_metadata=head,
        status_code=context.status_override,
    )
