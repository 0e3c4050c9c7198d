from __future__ import annotations

import asyncio

import pytest

from ssr_gateway.errors import RenderAborted, RenderThrew
from ssr_gateway.rendering.models import RenderState
from ssr_gateway.rendering.renderer import MultiRoundRenderer
from ssr_gateway.rendering.splits import ModuleCache

from view_stubs import Boom, Loader, Page, Static, never_loads, split


def _run(renderer, app, **kwargs):
    return asyncio.run(renderer.run(app, **kwargs))


def test_tree_without_splits_is_stable_after_one_round() -> None:
    app = Page(Static("<p>hello</p>"), title="Home")
    outcome = _run(MultiRoundRenderer(ModuleCache()), app)
    assert outcome.state is RenderState.STABLE
    assert outcome.rounds == 1
    assert app.rounds == 1
    assert outcome.result.markup == "<main><p>hello</p></main>"
    assert outcome.result.head_metadata.title == "Home"
    assert outcome.result.chunk_names == ()


def test_zero_round_limit_skips_the_tree() -> None:
    app = Page(Static("<p>hello</p>"))
    outcome = _run(MultiRoundRenderer(ModuleCache(), max_ssr_rounds=0), app)
    assert outcome.state is RenderState.ROUND_LIMIT_ZERO
    assert outcome.rounds == 0
    assert outcome.result.markup == ""
    assert app.rounds == 0


def test_missing_application_is_not_rendered() -> None:
    outcome = _run(MultiRoundRenderer(ModuleCache()), None)
    assert outcome.state is RenderState.ROUND_LIMIT_ZERO
    assert outcome.result.markup == ""


def test_warm_split_resolves_within_first_round() -> None:
    cache = ModuleCache()
    cache.preload("S1", Static("<b>split one</b>"))
    outcome = _run(MultiRoundRenderer(cache), Page(split("S1")))
    assert outcome.state is RenderState.STABLE
    assert outcome.rounds == 1
    assert outcome.result.splits["S1"].ready is True
    assert outcome.result.splits["S1"].markup == "<b>split one</b>"
    assert "<b>split one</b>" in outcome.result.markup


def test_cold_split_with_single_round_defers_to_client() -> None:
    cache = ModuleCache({"S1": Loader(Static("<b>split one</b>"))})
    outcome = _run(MultiRoundRenderer(cache, max_ssr_rounds=1), Page(split("S1", fallback="<i>loading</i>")))
    assert outcome.state is RenderState.BUDGET_EXHAUSTED
    assert outcome.rounds == 1
    assert outcome.result.markup == "<main><i>loading</i></main>"
    assert outcome.result.splits["S1"].ready is False


def test_cold_split_resolves_in_second_round() -> None:
    loader = Loader(Static("<b>split one</b>"))
    cache = ModuleCache({"S1": loader})
    outcome = _run(MultiRoundRenderer(cache, max_ssr_rounds=2), Page(split("S1")))
    assert outcome.state is RenderState.STABLE
    assert outcome.rounds == 2
    assert "<b>split one</b>" in outcome.result.markup
    assert loader.calls == 1
    assert "S1" in cache


def test_never_resolving_split_exhausts_budget() -> None:
    cache = ModuleCache({"S1": never_loads})
    renderer = MultiRoundRenderer(cache, max_ssr_rounds=2, split_wait_s=0.01)
    outcome = _run(renderer, Page(split("S1")))
    assert outcome.state is RenderState.BUDGET_EXHAUSTED
    assert outcome.rounds == 2
    assert outcome.result.markup == "<main></main>"
    assert outcome.result.splits["S1"].ready is False


def test_no_progress_ends_loop_before_budget() -> None:
    cache = ModuleCache({"S1": never_loads})
    app = Page(split("S1"))
    outcome = _run(MultiRoundRenderer(cache, max_ssr_rounds=10, split_wait_s=0.01), app)
    assert outcome.state is RenderState.BUDGET_EXHAUSTED
    assert outcome.rounds == 2
    assert app.rounds == 2


@pytest.mark.parametrize("delays", [(0.0, 0.03), (0.03, 0.0)])
def test_chunk_order_follows_discovery_not_load_completion(delays) -> None:
    cache = ModuleCache(
        {
            "alpha": Loader(Static("A"), delay=delays[0]),
            "beta": Loader(Static("B"), delay=delays[1]),
        }
    )
    app = Page(split("alpha"), split("beta"), split("alpha"))
    outcome = _run(MultiRoundRenderer(cache, split_wait_s=1.0), app)
    assert outcome.state is RenderState.STABLE
    assert outcome.result.chunk_names == ("alpha", "beta")


def test_chunk_name_defaults_to_split_id_and_can_be_overridden() -> None:
    cache = ModuleCache()
    cache.preload("S1", Static("one"))
    cache.preload("S2", Static("two"))
    outcome = _run(MultiRoundRenderer(cache), Page(split("S1"), split("S2", chunk_name="shared-chunk")))
    assert outcome.result.chunk_names == ("S1", "shared-chunk")


def test_resolved_split_markup_is_rendered_once_per_request() -> None:
    module = Static("<b>once</b>")
    cache = ModuleCache({"S1": Loader(module)})
    app = Page(split("S1"), split("S1"))
    outcome = _run(MultiRoundRenderer(cache), app)
    assert outcome.state is RenderState.STABLE
    assert module.calls == 1
    assert outcome.result.markup.count("<b>once</b>") == 2


def test_render_exception_is_wrapped_with_round() -> None:
    with pytest.raises(RenderThrew) as exc:
        _run(MultiRoundRenderer(ModuleCache()), Boom())
    assert exc.value.round_index == 1
    assert exc.value.code == "RENDER_THREW"
    assert isinstance(exc.value.__cause__, RuntimeError)


def test_abort_stops_further_rounds() -> None:
    cache = ModuleCache({"S1": Loader(Static("x"))})
    app = Page(split("S1"))

    async def aborted() -> bool:
        return True

    with pytest.raises(RenderAborted) as exc:
        _run(MultiRoundRenderer(cache), app, should_abort=aborted)
    assert exc.value.rounds == 1
    assert app.rounds == 1


def test_concurrent_requests_share_one_module_load() -> None:
    loader = Loader(Static("<b>shared</b>"), delay=0.01)
    cache = ModuleCache({"S1": loader})
    renderer = MultiRoundRenderer(cache)

    async def both():
        return await asyncio.gather(
            renderer.run(Page(split("S1"))),
            renderer.run(Page(split("S1"))),
        )

    first, second = asyncio.run(both())
    assert loader.calls == 1
    assert first.result.markup == second.result.markup
    assert first.state is second.state is RenderState.STABLE


def test_status_override_reaches_result() -> None:
    outcome = _run(MultiRoundRenderer(ModuleCache()), Page(Static("gone", status=404)))
    assert outcome.result.status_code == 404


def test_negative_round_limit_rejected() -> None:
    with pytest.raises(ValueError):
        MultiRoundRenderer(ModuleCache(), max_ssr_rounds=-1)


def test_head_tags_from_ready_split_survive_later_rounds() -> None:
    cache = ModuleCache({"cold": Loader(Static("<b>cold</b>"))})
    cache.preload("warm", Static("<b>warm</b>", title="Product page"))
    outcome = _run(MultiRoundRenderer(cache), Page(split("warm"), split("cold")))
    assert outcome.state is RenderState.STABLE
    assert outcome.rounds == 2
    assert outcome.result.head_metadata.title == "Product page"
