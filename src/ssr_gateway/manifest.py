from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from .errors import AssetNotFound

__all__ = ["ENTRY_CHUNKS", "BuildManifest", "load_manifest"]

# Chunks loaded on every page, in addition to the code splits found while rendering.
ENTRY_CHUNKS = ("polyfills", "runtime", "main")


@dataclass(frozen=True)
class BuildManifest:
    """Chunk name to output files, in the order the bundler emitted them."""

    assets_by_chunk_name: Mapping[str, tuple[str, ...]]

    @classmethod
    def from_stats(cls, stats: Mapping[str, Any]) -> "BuildManifest":
        raw = stats.get("assetsByChunkName")
        if not isinstance(raw, Mapping):
            raise ValueError("assetsByChunkName must be an object")
        assets: dict[str, tuple[str, ...]] = {}
        for chunk_name, files in raw.items():
            if isinstance(files, str):
                assets[chunk_name] = (files,)
            elif isinstance(files, list) and all(isinstance(f, str) for f in files):
                assets[chunk_name] = tuple(files)
            else:
                raise ValueError(f"assets of chunk {chunk_name!r} must be a string or list of strings")
        return cls(assets_by_chunk_name=assets)

    def __contains__(self, chunk_name: object) -> bool:
        return chunk_name in self.assets_by_chunk_name

    def assets(self, chunk_name: str) -> tuple[str, ...]:
        try:
            return self.assets_by_chunk_name[chunk_name]
        except KeyError as exc:
            raise AssetNotFound(chunk_name) from exc

    def stylesheets(self, chunk_name: str) -> tuple[str, ...]:
        return tuple(f for f in self.assets_by_chunk_name.get(chunk_name, ()) if f.endswith(".css"))

    def scripts(self, chunk_name: str) -> tuple[str, ...]:
        return tuple(f for f in self.assets_by_chunk_name.get(chunk_name, ()) if f.endswith(".js"))

    def entry_chunks(self) -> tuple[str, ...]:
        return tuple(name for name in self.assets_by_chunk_name if name in ENTRY_CHUNKS)


def load_manifest(path: Path) -> BuildManifest:
    """
    Load bundler stats from a JSON file.

    Raises:
        FileNotFoundError: If the stats file doesn't exist.
        ValueError: If it has no usable ``assetsByChunkName`` map.
    """
    if not path.exists():
        raise FileNotFoundError(f"Build manifest not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    if not isinstance(raw, Mapping):
        raise ValueError("build manifest must be a JSON object")
    return BuildManifest.from_stats(raw)
