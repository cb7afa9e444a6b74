"""HMAC signing of outgoing webhook payloads."""
from __future__ import annotations

import hmac
import secrets
from hashlib import sha256

SIGNATURE_PREFIX = "sha256="


def _key(secret: str | bytes) -> bytes:
    return secret.encode("utf-8") if isinstance(secret, str) else secret


def sign(secret: str | bytes, body_bytes: bytes) -> str:
    return hmac.new(_key(secret), body_bytes, sha256).hexdigest()


def signature_header(secret: str | bytes, body_bytes: bytes) -> str:
    return f"{SIGNATURE_PREFIX}{sign(secret, body_bytes)}"


def verify(secret: str | bytes, body_bytes: bytes, signature: str) -> bool:
    """Check a signature in either bare-hex or ``sha256=<hex>`` form."""
    if signature.startswith(SIGNATURE_PREFIX):
        signature = signature[len(SIGNATURE_PREFIX):]
    expected = sign(secret, body_bytes).encode("ascii")
    return hmac.compare_digest(expected, signature.strip().lower().encode("utf-8"))


def generate_secret() -> str:
    return secrets.token_hex(32)
