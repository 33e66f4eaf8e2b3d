"""Base64url helpers used for ids, addresses and owners."""

from __future__ import annotations

import base64
import hashlib


def b64url_encode(data: bytes) -> str:
    """Unpadded base64url, the encoding of every id on the network."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def address_of(owner: bytes) -> str:
    """Wallet address: base64url(sha256(owner public key))."""
    return b64url_encode(hashlib.sha256(owner).digest())


__all__ = ["address_of", "b64url_decode", "b64url_encode"]
