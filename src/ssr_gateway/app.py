from __future__ import annotations

import argparse
import importlib
import logging
import time
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Any

import uvicorn
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request

from .build_info import BuildInfoProvider, write_build_info
from .config import ServerConfig, get_server_config, load_app_config, resolve_app_config_path
from .handler import BuildConfig, RendererOptions, create_request_handler
from .logs import configure_logging, log_json
from .manifest import load_manifest
from .rendering.splits import ModuleCache


def create_app(
    build_config: BuildConfig,
    options: RendererOptions | None = None,
    *,
    log_level: str = "INFO",
) -> FastAPI:
    options = options or RendererOptions()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(log_level)
        # Raises BuildInfoMissing / BuildInfoCorrupt: the app never starts serving without it.
        provider = BuildInfoProvider(build_config.context)
        build_info = await provider.get()
        modules = ModuleCache(options.split_loaders)
        app.state.build_info = build_info
        app.state.modules = modules
        app.state.render = create_request_handler(
            build_config,
            options,
            build_info=build_info,
            modules=modules,
        )
        yield

    app = FastAPI(title="SSR Gateway", lifespan=lifespan)

    @app.middleware("http")
    async def request_logging(request: Request, call_next):
        request_id = request.headers.get("x-request-id", "").strip() or uuid.uuid4().hex
        request.state.request_id = request_id
        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            latency_ms = int((time.monotonic() - start) * 1000)
            log_json(
                logging.ERROR,
                "request.failed",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                latency_ms=latency_ms,
            )
            raise
        latency_ms = int((time.monotonic() - start) * 1000)
        response.headers["x-request-id"] = request_id
        log_json(
            logging.INFO,
            "request.completed",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=latency_ms,
        )
        return response

    @app.get("/healthz")
    async def healthz(request: Request) -> dict[str, Any]:
        return {"ok": True, "build_timestamp": request.app.state.build_info.timestamp}

    @app.get("/{path:path}")
    async def server_side_render(request: Request, path: str):
        return await request.app.state.render(request)

    return app


def _import_options(spec: str) -> RendererOptions:
    module_name, _, attr = spec.partition(":")
    if not module_name or not attr:
        raise ValueError("--options must look like package.module:attribute")
    value = getattr(importlib.import_module(module_name), attr)
    if callable(value) and not isinstance(value, RendererOptions):
        value = value()
    if not isinstance(value, RendererOptions):
        raise ValueError(f"{spec} is not RendererOptions")
    return value


def _build_app_from_config(cfg: ServerConfig, options_spec: str | None) -> FastAPI:
    options = _import_options(options_spec) if options_spec else RendererOptions()
    app_config_path = resolve_app_config_path()
    if not options.app_config and app_config_path.exists():
        options = replace(options, app_config=load_app_config(app_config_path))
    overrides = {
        "max_ssr_rounds": cfg.max_ssr_rounds,
        "split_wait_s": cfg.split_wait_s,
        "favicon": cfg.favicon,
    }
    options = replace(options, **{name: value for name, value in overrides.items() if value is not None})
    build_config = BuildConfig(
        context=cfg.build_context,
        public_path=cfg.public_path,
        manifest=load_manifest(cfg.manifest_path),
    )
    return create_app(build_config, options, log_level=cfg.log_level)


def main() -> None:
    args = _parse_args()
    cfg = get_server_config()
    if args.command == "build-info":
        context = Path(args.build_context) if args.build_context else cfg.build_context
        info = write_build_info(context)
        print(f"wrote {context / '.build-info'} (timestamp {info.timestamp})")
        return
    if args.build_context:
        cfg = replace(cfg, build_context=Path(args.build_context))
    if args.manifest:
        cfg = replace(cfg, manifest_path=Path(args.manifest))
    if args.public_path:
        cfg = replace(cfg, public_path=args.public_path if args.public_path.endswith("/") else args.public_path + "/")
    app = _build_app_from_config(cfg, args.options)
    uvicorn.run(app, host=args.host, port=args.port, reload=False)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ssr-gateway")
    sub = parser.add_subparsers(dest="command", required=True)
    serve = sub.add_parser("serve")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=3000)
    serve.add_argument("--build-context", default=None)
    serve.add_argument("--manifest", default=None)
    serve.add_argument("--public-path", default=None)
    serve.add_argument("--options", default=None, help="package.module:attribute holding RendererOptions")
    info = sub.add_parser("build-info")
    info.add_argument("--build-context", default=None)
    return parser.parse_args()
