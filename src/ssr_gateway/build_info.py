"""
Build-time information about the app.

The bundler writes a ``.build-info`` record into the build context: the build
timestamp and a random 32-byte key used to seal injected data. The server
reads it once at startup; without it the process must not begin serving.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .errors import BuildInfoCorrupt, BuildInfoMissing
from .logs import log_json

__all__ = [
    "BUILD_INFO_FILENAME",
    "KEY_SIZE",
    "BuildInfo",
    "BuildInfoProvider",
    "load_build_info",
    "write_build_info",
]

BUILD_INFO_FILENAME = ".build-info"
KEY_SIZE = 32


@dataclass(frozen=True)
class BuildInfo:
    timestamp: str
    key: bytes

    def to_json(self) -> dict[str, str]:
        return {
            "timestamp": self.timestamp,
            "key": base64.b64encode(self.key).decode("ascii"),
        }


def build_info_path(context: Path) -> Path:
    return Path(context) / BUILD_INFO_FILENAME


async def load_build_info(context: Path) -> BuildInfo:
    path = build_info_path(context)
    try:
        raw = await asyncio.to_thread(path.read_bytes)
    except FileNotFoundError as exc:
        raise BuildInfoMissing(path) from exc
    return _parse_build_info(path, raw)


def _parse_build_info(path: Path, raw: bytes) -> BuildInfo:
    try:
        data: Any = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise BuildInfoCorrupt(path, f"not valid JSON ({exc})") from exc
    if not isinstance(data, dict):
        raise BuildInfoCorrupt(path, "record must be a JSON object")

    timestamp = data.get("timestamp")
    if not isinstance(timestamp, str) or not timestamp:
        raise BuildInfoCorrupt(path, "timestamp must be a non-empty string")

    encoded_key = data.get("key")
    if not isinstance(encoded_key, str):
        raise BuildInfoCorrupt(path, "key must be a base64 string")
    try:
        key = base64.b64decode(encoded_key, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise BuildInfoCorrupt(path, "key is not valid base64") from exc
    if len(key) != KEY_SIZE:
        raise BuildInfoCorrupt(path, f"key must be {KEY_SIZE} bytes, got {len(key)}")

    return BuildInfo(timestamp=timestamp, key=key)


def write_build_info(
    context: Path,
    *,
    timestamp: str | None = None,
    key: bytes | None = None,
) -> BuildInfo:
    """Generate and persist a build-info record. Runs at build time, not per request."""
    if key is None:
        key = os.urandom(KEY_SIZE)
    if len(key) != KEY_SIZE:
        raise ValueError(f"key must be {KEY_SIZE} bytes")
    info = BuildInfo(
        timestamp=timestamp or datetime.now(timezone.utc).isoformat(),
        key=key,
    )
    path = build_info_path(context)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(info.to_json()), encoding="utf-8")
    return info


class BuildInfoProvider:
    """
    Process-wide holder of the build info.

    The first ``get()`` starts the load; concurrent callers await the same
    task. Once loaded the value never changes. A failed load is not cached.
    """

    def __init__(self, context: Path) -> None:
        self._context = Path(context)
        self._task: asyncio.Task[BuildInfo] | None = None
        self._info: BuildInfo | None = None

    @property
    def context(self) -> Path:
        return self._context

    @property
    def cached(self) -> BuildInfo | None:
        return self._info

    async def get(self) -> BuildInfo:
        if self._info is not None:
            return self._info
        if self._task is None:
            self._task = asyncio.ensure_future(load_build_info(self._context))
        task = self._task
        try:
            info = await task
        except BaseException:
            if self._task is task and task.done():
                self._task = None
            raise
        if self._info is None:
            self._info = info
            log_json(logging.INFO, "build_info.loaded", timestamp=info.timestamp)
        return self._info
