from __future__ import annotations

import asyncio
import logging

import pytest

from ssr_gateway.rendering.models import RenderContext
from ssr_gateway.rendering.splits import ModuleCache, SplitRegistry

from view_stubs import FailingLoader, Loader, Static


def test_register_warm_split_returns_ready_entry() -> None:
    cache = ModuleCache()
    cache.preload("S1", Static("<b>one</b>"))
    context = RenderContext()
    registry = SplitRegistry(cache, context)

    entry = registry.register("S1")

    assert entry.ready is True
    assert entry.markup == "<b>one</b>"
    assert registry.is_stable()
    assert registry.pending() == []
    assert context.requested_chunks == ["S1"]


def test_register_cold_split_returns_pending_and_schedules_load() -> None:
    async def scenario():
        loader = Loader(Static("<b>one</b>"))
        cache = ModuleCache({"S1": loader})
        registry = SplitRegistry(cache, RenderContext())

        entry = registry.register("S1")
        assert entry.ready is False
        assert not registry.is_stable()
        pending = registry.pending()
        assert len(pending) == 1

        await asyncio.wait(pending)
        assert loader.calls == 1
        assert cache.get("S1") is loader.module
        return registry.register("S1")

    entry = asyncio.run(scenario())
    assert entry.ready is True
    assert entry.markup == "<b>one</b>"


def test_chunk_names_are_deduplicated_in_discovery_order() -> None:
    cache = ModuleCache()
    for split_id in ("a", "b", "c"):
        cache.preload(split_id, Static(split_id))
    context = RenderContext()
    registry = SplitRegistry(cache, context)

    registry.register("b")
    registry.register("a")
    registry.register("c", chunk_name="b")
    registry.register("b")

    assert context.requested_chunks == ["b", "a"]


def test_snapshot_is_read_only() -> None:
    cache = ModuleCache()
    cache.preload("S1", Static("x"))
    registry = SplitRegistry(cache, RenderContext())
    registry.register("S1")

    snapshot = registry.snapshot()
    assert set(snapshot) == {"S1"}
    with pytest.raises(TypeError):
        snapshot["S2"] = snapshot["S1"]  # type: ignore[index]


def test_ready_entry_is_frozen() -> None:
    module = Static("first")
    cache = ModuleCache()
    cache.preload("S1", module)
    registry = SplitRegistry(cache, RenderContext())

    first = registry.register("S1")
    module.markup = "second"
    again = registry.register("S1")

    assert again is first
    assert again.markup == "first"
    assert module.calls == 1


def test_unknown_split_raises_key_error() -> None:
    async def scenario():
        registry = SplitRegistry(ModuleCache(), RenderContext())
        registry.register("nope")

    with pytest.raises(KeyError):
        asyncio.run(scenario())


def test_preload_never_replaces_a_module() -> None:
    cache = ModuleCache()
    first = Static("first")
    cache.preload("S1", first)
    cache.preload("S1", Static("second"))
    assert cache.get("S1") is first


def test_failed_load_is_logged_and_not_cached(caplog) -> None:
    loader = FailingLoader()
    cache = ModuleCache({"S1": loader})

    async def scenario():
        assert await cache.load("S1") is None
        assert await cache.load("S1") is None

    with caplog.at_level(logging.WARNING, logger="ssr_gateway"):
        asyncio.run(scenario())

    assert loader.calls == 2
    assert "S1" not in cache
    assert "split.load_failed" in caplog.text


def test_progress_token_counts_discovered_and_ready() -> None:
    async def scenario():
        cache = ModuleCache({"cold": Loader(Static("c"))})
        cache.preload("warm", Static("w"))
        registry = SplitRegistry(cache, RenderContext())
        assert registry.progress_token() == (0, 0)
        registry.register("warm")
        registry.register("cold")
        return registry.progress_token()

    assert asyncio.run(scenario()) == (2, 1)


def test_frozen_entry_replays_head_tags() -> None:
    class Tagged:
        def render(self, context, splits):
            context.head.set_title("Checkout")
            context.head.add_meta(name="robots", content="noindex")
            return "<form></form>"

    cache = ModuleCache()
    cache.preload("S1", Tagged())
    context = RenderContext()
    registry = SplitRegistry(cache, context)
    registry.register("S1")

    context.head.reset()
    context.head.set_title("Shop")
    registry.register("S1")

    head = context.head.collect()
    assert head.title == "Checkout"
    assert head.meta == ({"name": "robots", "content": "noindex"},)
