from __future__ import annotations

from pathlib import Path

__all__ = [
    "SsrError",
    "BuildInfoMissing",
    "BuildInfoCorrupt",
    "CryptoBackendUnavailable",
    "EnvelopeDecodeError",
    "AssetNotFound",
    "RenderThrew",
    "RenderAborted",
]


class SsrError(Exception):
    """Base error for the rendering pipeline."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class BuildInfoMissing(SsrError):
    """The build-info record does not exist under the build context."""

    def __init__(self, path: Path) -> None:
        super().__init__("BUILD_INFO_MISSING", f"Build info not found: {path}")
        self.path = path


class BuildInfoCorrupt(SsrError):
    """The build-info record exists but cannot be parsed."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__("BUILD_INFO_CORRUPT", f"Build info at {path} is invalid: {reason}")
        self.path = path
        self.reason = reason


class CryptoBackendUnavailable(SsrError):
    """No cipher backend or entropy source is available to seal state."""

    def __init__(self, reason: str) -> None:
        super().__init__("CRYPTO_BACKEND_UNAVAILABLE", f"crypto backend unavailable: {reason}")


class EnvelopeDecodeError(SsrError):
    """An envelope could not be decoded, decrypted or parsed."""

    def __init__(self, reason: str) -> None:
        super().__init__("ENVELOPE_DECODE_FAILED", f"cannot open envelope: {reason}")


class AssetNotFound(SsrError):
    """A chunk name has no entry in the build manifest."""

    def __init__(self, chunk_name: str) -> None:
        super().__init__("ASSET_NOT_FOUND", f"chunk not found in manifest: {chunk_name}")
        self.chunk_name = chunk_name


class RenderThrew(SsrError):
    """The view tree raised during a render round."""

    def __init__(self, round_index: int, cause: BaseException) -> None:
        super().__init__(
            "RENDER_THREW",
            f"render round {round_index} raised {type(cause).__name__}: {cause}",
        )
        self.round_index = round_index


class RenderAborted(SsrError):
    """The client went away between render rounds."""

    def __init__(self, rounds: int) -> None:
        super().__init__("RENDER_ABORTED", f"request aborted after {rounds} render round(s)")
        self.rounds = rounds
