"""
Encrypted transport of server state into the rendered page.

The payload is sealed with AES-256-CBC under the per-build key. The key is
shipped in the client bundle, so this keeps injected data away from casual
inspection and tampering in transit; it is not confidential against the
client that received it.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import json
import os
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import CryptoBackendUnavailable, EnvelopeDecodeError

__all__ = [
    "IV_SIZE",
    "Envelope",
    "seal",
    "open_envelope",
    "build_injection_payload",
]

IV_SIZE = 32
_KEY_SIZE = 32
_BLOCK_BYTES = algorithms.AES.block_size // 8


@dataclass(frozen=True)
class Envelope:
    # Only the first block-size bytes of the IV feed CBC; all 32 travel with the ciphertext.
    iv: bytes
    ciphertext: bytes

    def encode(self) -> str:
        return base64.b64encode(self.iv + self.ciphertext).decode("ascii")

    @classmethod
    def decode(cls, text: str) -> "Envelope":
        try:
            raw = base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise EnvelopeDecodeError("not valid base64") from exc
        ciphertext = raw[IV_SIZE:]
        if len(raw) < IV_SIZE + _BLOCK_BYTES or len(ciphertext) % _BLOCK_BYTES:
            raise EnvelopeDecodeError("truncated or misaligned ciphertext")
        return cls(iv=raw[:IV_SIZE], ciphertext=ciphertext)


def build_injection_payload(config: Any, state: Any) -> dict[str, Any]:
    return {"CONFIG": config, "ISTATE": state}


def _check_key(key: bytes) -> None:
    if len(key) != _KEY_SIZE:
        raise ValueError(f"key must be {_KEY_SIZE} bytes")


def _cipher(key: bytes, iv: bytes) -> Cipher:
    try:
        return Cipher(algorithms.AES(key), modes.CBC(iv[:_BLOCK_BYTES]))
    except UnsupportedAlgorithm as exc:
        raise CryptoBackendUnavailable(str(exc)) from exc


async def _random_iv() -> bytes:
    try:
        return await asyncio.to_thread(os.urandom, IV_SIZE)
    except NotImplementedError as exc:
        raise CryptoBackendUnavailable("no OS randomness source") from exc


async def seal(key: bytes, payload: Any) -> Envelope:
    """Encrypt a JSON-serializable payload under a fresh random IV."""
    _check_key(key)
    plaintext = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    iv = await _random_iv()

    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = _cipher(key, iv).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return Envelope(iv=iv, ciphertext=ciphertext)


def open_envelope(key: bytes, envelope: Envelope | str) -> Any:
    """
    Decrypt and parse an envelope.

    Raises:
        EnvelopeDecodeError: On a wrong key or damaged input. A wrong key is
            never allowed to yield data: padding, UTF-8 and JSON failures all
            map to this error.
    """
    _check_key(key)
    if isinstance(envelope, str):
        envelope = Envelope.decode(envelope)

    decryptor = _cipher(key, envelope.iv).decryptor()
    padded = decryptor.update(envelope.ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        plaintext = unpadder.update(padded) + unpadder.finalize()
    except ValueError as exc:
        raise EnvelopeDecodeError("bad padding") from exc
    try:
        return json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise EnvelopeDecodeError("payload is not UTF-8 JSON") from exc
