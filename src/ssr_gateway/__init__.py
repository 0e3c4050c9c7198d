from .build_info import BuildInfo, BuildInfoProvider, load_build_info, write_build_info
from .envelope import Envelope, open_envelope, seal
from .handler import BuildConfig, RenderPreparation, RendererOptions, create_request_handler
from .manifest import BuildManifest, load_manifest
from .rendering.models import HeadMetadata, RenderResult, RenderState, ResolvedSplit
from .view import CodeSplit

__all__ = [
    "BuildConfig",
    "BuildInfo",
    "BuildInfoProvider",
    "BuildManifest",
    "CodeSplit",
    "Envelope",
    "HeadMetadata",
    "RenderPreparation",
    "RenderResult",
    "RenderState",
    "RendererOptions",
    "ResolvedSplit",
    "create_request_handler",
    "load_build_info",
    "load_manifest",
    "open_envelope",
    "seal",
    "write_build_info",
]
