"""
Server-side rendering request handler.

``create_request_handler`` binds the build artifacts and caller options into
an async handler. Per request it runs the caller's ``before_render`` hook,
then renders the tree and seals the injected state concurrently, and
assembles the document from both results.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Sequence

from fastapi import Request
from fastapi.responses import HTMLResponse, JSONResponse, Response

from .build_info import BuildInfo
from .config import sanitize_config
from .envelope import build_injection_payload, seal
from .errors import RenderAborted, SsrError
from .logs import log_json
from .manifest import BuildManifest
from .rendering.document import assemble
from .rendering.renderer import DEFAULT_MAX_SSR_ROUNDS, MultiRoundRenderer
from .rendering.splits import ModuleCache, SplitLoader
from .view import Renderable, StateSource

__all__ = [
    "BuildConfig",
    "RenderPreparation",
    "RendererOptions",
    "create_request_handler",
    "default_csp_directives",
]

# Client closed request; the transport is already gone.
CLIENT_CLOSED_REQUEST = 499


@dataclass(frozen=True)
class BuildConfig:
    context: Path
    public_path: str
    manifest: BuildManifest


@dataclass(frozen=True)
class RenderPreparation:
    config_to_inject: Mapping[str, Any] | None = None
    extra_scripts: Sequence[str] = ()
    store: StateSource | None = None


BeforeRender = Callable[[Request, dict[str, Any]], Awaitable[RenderPreparation]]
CspHook = Callable[[dict[str, list[str]]], Mapping[str, Sequence[str]]]
ErrorHandler = Callable[[Request, Exception], "Response | None | Awaitable[Response | None]"]


@dataclass(frozen=True)
class RendererOptions:
    application: Renderable | None = None
    before_render: BeforeRender | None = None
    max_ssr_rounds: int = DEFAULT_MAX_SSR_ROUNDS
    csp_settings_hook: CspHook | None = None
    on_error: ErrorHandler | None = None
    split_loaders: Mapping[str, SplitLoader] = field(default_factory=dict)
    split_wait_s: float = 2.0
    favicon: str = "/favicon.ico"
    app_config: Mapping[str, Any] = field(default_factory=dict)


async def _no_preparation(request: Request, sanitized_config: dict[str, Any]) -> RenderPreparation:
    return RenderPreparation()


def default_csp_directives(nonce: str) -> dict[str, list[str]]:
    return {
        "default-src": ["'self'"],
        "base-uri": ["'self'"],
        "font-src": ["'self'", "https:", "data:"],
        "frame-ancestors": ["'self'"],
        "img-src": ["'self'", "data:"],
        "object-src": ["'none'"],
        "script-src": ["'self'", f"'nonce-{nonce}'"],
        "style-src": ["'self'", "https:", "'unsafe-inline'"],
    }


def _csp_header(directives: Mapping[str, Sequence[str]]) -> str:
    return "; ".join(
        f"{name} {' '.join(values)}" if values else name for name, values in directives.items()
    )


def create_request_handler(
    build_config: BuildConfig,
    options: RendererOptions,
    *,
    build_info: BuildInfo,
    modules: ModuleCache,
) -> Callable[[Request], Awaitable[Response]]:
    sanitized_config = sanitize_config(options.app_config)
    renderer = MultiRoundRenderer(
        modules,
        max_ssr_rounds=options.max_ssr_rounds,
        split_wait_s=options.split_wait_s,
    )
    before_render = options.before_render or _no_preparation

    async def render_page(request: Request) -> Response:
        preparation = await before_render(request, dict(sanitized_config))
        state = preparation.store.snapshot() if preparation.store is not None else None
        payload = build_injection_payload(preparation.config_to_inject or sanitized_config, state)

        render_task = asyncio.ensure_future(
            renderer.run(
                options.application,
                location=request.url.path,
                should_abort=request.is_disconnected,
            )
        )
        seal_task = asyncio.ensure_future(seal(build_info.key, payload))
        try:
            outcome, envelope = await asyncio.gather(render_task, seal_task)
        except BaseException:
            render_task.cancel()
            seal_task.cancel()
            raise

        nonce = secrets.token_urlsafe(16)
        directives = default_csp_directives(nonce)
        if options.csp_settings_hook is not None:
            directives = dict(options.csp_settings_hook(directives))

        result = outcome.result
        document = assemble(
            result,
            envelope,
            build_config.manifest,
            build_config.public_path,
            result.head_metadata,
            preparation.extra_scripts,
            favicon=options.favicon,
            nonce=nonce,
        )
        response = HTMLResponse(document, status_code=result.status_code or 200)
        response.headers["content-security-policy"] = _csp_header(directives)
        response.headers["x-ssr-state"] = outcome.state.value
        response.headers["x-ssr-rounds"] = str(outcome.rounds)
        return response

    async def report_failure(request: Request, exc: Exception) -> Response:
        code = exc.code if isinstance(exc, SsrError) else "INTERNAL_ERROR"
        log_json(
            logging.ERROR,
            "ssr.failed",
            request_id=getattr(request.state, "request_id", None),
            path=request.url.path,
            code=code,
            error=str(exc),
        )
        if options.on_error is not None:
            handled = options.on_error(request, exc)
            if inspect.isawaitable(handled):
                handled = await handled
            if handled is not None:
                return handled
        return JSONResponse(status_code=500, content={"detail": "server-side rendering failed", "code": code})

    async def handler(request: Request) -> Response:
        try:
            return await render_page(request)
        except RenderAborted as exc:
            log_json(logging.INFO, "ssr.aborted", path=request.url.path, rounds=exc.rounds)
            return Response(status_code=CLIENT_CLOSED_REQUEST)
        except Exception as exc:
            return await report_failure(request, exc)

    return handler
