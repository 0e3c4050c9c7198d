"""
HTML document assembly.

``assemble`` is pure: the same inputs always give the same bytes, which is
what makes cached and repeated renders comparable.
"""
from __future__ import annotations

import html
import json
import logging
from typing import Any, Mapping, Sequence

from ..envelope import Envelope
from ..errors import AssetNotFound
from ..logs import log_json
from ..manifest import BuildManifest
from .models import HeadMetadata, RenderResult, ResolvedSplit

__all__ = ["ROOT_ELEMENT_ID", "assemble", "embed_json"]

ROOT_ELEMENT_ID = "react-view"

_EMBED_ESCAPES = {
    ord("<"): "\\u003C",
    ord(">"): "\\u003E",
    ord("/"): "\\u002F",
    0x2028: "\\u2028",
    0x2029: "\\u2029",
}


def embed_json(value: Any) -> str:
    """Serialize ``value`` as a JSON literal that cannot close or break out of a script tag."""
    text = json.dumps(value, ensure_ascii=False, sort_keys=True, separators=(",", ":"))
    return text.translate(_EMBED_ESCAPES)


def _attr(value: str) -> str:
    return html.escape(value, quote=True)


def _head_tags(head: HeadMetadata) -> list[str]:
    tags = []
    if head.title is not None:
        tags.append(f"<title>{html.escape(head.title, quote=False)}</title>")
    for meta in head.meta:
        attrs = " ".join(f'{_attr(name)}="{_attr(value)}"' for name, value in sorted(meta.items()))
        tags.append(f"<meta {attrs} />")
    return tags


def _stylesheet_links(manifest: BuildManifest, chunk_names: Sequence[str], public_path: str) -> list[str]:
    links = []
    entry_chunks = manifest.entry_chunks()
    for chunk_name in entry_chunks:
        for filename in manifest.stylesheets(chunk_name):
            links.append(f'<link href="{_attr(public_path + filename)}" rel="stylesheet" />')
    for chunk_name in chunk_names:
        if chunk_name in entry_chunks:
            continue
        try:
            files = manifest.assets(chunk_name)
        except AssetNotFound as exc:
            log_json(logging.WARNING, "asset.not_found", code=exc.code, chunk=exc.chunk_name)
            continue
        for filename in (f for f in files if f.endswith(".css")):
            links.append(
                f'<link data-chunk="{_attr(chunk_name)}" '
                f'href="{_attr(public_path + filename)}" rel="stylesheet" />'
            )
    return links


def _entry_scripts(manifest: BuildManifest, public_path: str) -> list[str]:
    return [
        f'<script src="{_attr(public_path + filename)}" type="application/javascript"></script>'
        for chunk_name in manifest.entry_chunks()
        for filename in manifest.scripts(chunk_name)
    ]


def assemble(
    result: RenderResult,
    envelope: Envelope | str,
    manifest: BuildManifest,
    public_path: str,
    head_metadata: HeadMetadata,
    extra_scripts: Sequence[str] = (),
    *,
    favicon: str = "/favicon.ico",
    nonce: str | None = None,
) -> str:
    """
    Build the final HTML document.

    Args:
        result: Output of the final render round.
        envelope: Sealed state, or its already encoded form.
        manifest: Build manifest; chunks it lacks get no stylesheet.
        public_path: Prefix of asset URLs, expected to end with "/".
        head_metadata: Title and meta tags.
        extra_scripts: Markup appended after the entry scripts, verbatim.
        favicon: Favicon URL.
        nonce: CSP nonce for the inline script.

    Returns:
        The document string.
    """
    encoded = envelope.encode() if isinstance(envelope, Envelope) else envelope
    splits: Mapping[str, ResolvedSplit] = result.splits
    split_snapshot = {split_id: entry.to_json() for split_id, entry in splits.items()}
    nonce_attr = f' nonce="{_attr(nonce)}"' if nonce else ""

    lines = ["<!DOCTYPE html>", "<html>", "<head>"]
    lines.extend(_head_tags(head_metadata))
    lines.extend(_stylesheet_links(manifest, result.chunk_names, public_path))
    lines.append(f'<link rel="shortcut icon" href="{_attr(favicon)}" />')
    lines.append('<meta charset="utf-8" />')
    lines.append('<meta content="width=device-width,initial-scale=1.0" name="viewport" />')
    lines.append("</head>")
    lines.append("<body>")
    lines.append(f'<div id="{ROOT_ELEMENT_ID}">{result.markup}</div>')
    lines.append(f'<script id="inj" type="application/javascript"{nonce_attr}>')
    lines.append(f"window.SPLITS = {embed_json(split_snapshot)};")
    lines.append(f"window.INJ = {embed_json(encoded)};")
    lines.append("</script>")
    lines.extend(_entry_scripts(manifest, public_path))
    lines.extend(extra_scripts)
    lines.append("</body>")
    lines.append("</html>")
    return "\n".join(lines)
