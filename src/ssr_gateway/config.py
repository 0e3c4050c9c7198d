"""
Configuration loader for the SSR gateway.

Server settings come from the environment. The application config is a JSON
object that is partly injected into rendered pages, so anything under the
``SECRET`` key is stripped before it can reach a client.
Both are loaded once at startup and immutable during runtime.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping


__all__ = [
    "ServerConfig",
    "load_server_config",
    "get_server_config",
    "load_app_config",
    "resolve_app_config_path",
    "sanitize_config",
    "reset_config_cache",
]

DEFAULT_APP_CONFIG_PATH = Path("config") / "app.json"
SECRET_KEY = "SECRET"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class ServerConfig:
    """Immutable server configuration."""

    # Render loop; None when unset, leaving the caller's options alone
    max_ssr_rounds: int | None
    split_wait_s: float | None

    # Build artifacts
    build_context: Path
    manifest_path: Path
    public_path: str

    # Document
    favicon: str | None

    log_level: str


def _read_int_env(name: str, *, minimum: int) -> int | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return max(minimum, value)


def _normalize_public_path(value: str) -> str:
    value = value.strip() or "/"
    if not value.endswith("/"):
        value += "/"
    return value


def load_server_config() -> ServerConfig:
    build_context = Path(os.getenv("SSR_GATEWAY_BUILD_CONTEXT", ".").strip() or ".")
    manifest_raw = os.getenv("SSR_GATEWAY_MANIFEST", "").strip()
    manifest_path = Path(manifest_raw) if manifest_raw else build_context / "build" / "stats.json"
    log_level = os.getenv("SSR_GATEWAY_LOG_LEVEL", "INFO").strip().upper()
    if log_level not in _LOG_LEVELS:
        log_level = "INFO"
    split_wait_ms = _read_int_env("SSR_GATEWAY_SPLIT_WAIT_MS", minimum=1)
    return ServerConfig(
        max_ssr_rounds=_read_int_env("SSR_GATEWAY_MAX_SSR_ROUNDS", minimum=0),
        split_wait_s=split_wait_ms / 1000 if split_wait_ms is not None else None,
        build_context=build_context,
        manifest_path=manifest_path,
        public_path=_normalize_public_path(os.getenv("SSR_GATEWAY_PUBLIC_PATH", "/")),
        favicon=os.getenv("SSR_GATEWAY_FAVICON", "").strip() or None,
        log_level=log_level,
    )


@lru_cache(maxsize=1)
def get_server_config() -> ServerConfig:
    """
    Get cached server configuration.

    Loads once at first call, immutable thereafter.
    """
    return load_server_config()


def reset_config_cache() -> None:
    """Reset config cache. Only for testing."""
    get_server_config.cache_clear()


def load_app_config(path: Path | None = None) -> dict[str, Any]:
    """
    Load the application config from a JSON file.

    Args:
        path: Path to the config file. Defaults to SSR_GATEWAY_APP_CONFIG,
            then config/app.json.

    Returns:
        The parsed config object.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValueError: If the file is not a JSON object.
    """
    config_path = path or resolve_app_config_path()

    if not config_path.exists():
        raise FileNotFoundError(f"App config not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        try:
            raw = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValueError(f"App config is not valid JSON: {exc}") from exc

    if not isinstance(raw, dict):
        raise ValueError("App config must be a JSON object")
    return raw


def resolve_app_config_path() -> Path:
    """Resolve config path from ENV or default."""
    env_path = os.environ.get("SSR_GATEWAY_APP_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_APP_CONFIG_PATH


def sanitize_config(config: Mapping[str, Any]) -> dict[str, Any]:
    sanitized = dict(config)
    sanitized.pop(SECRET_KEY, None)
    return sanitized
