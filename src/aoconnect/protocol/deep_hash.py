"""Arweave deep hash (SHA-384) over nested byte structures.

A blob hashes as ``H(H("blob" + len) + H(data))``; a list folds its items into
an accumulator seeded with ``H("list" + len)``. The data-item signer signs the
deep hash of its fields, so identical fields always give the identical hash.
"""

from __future__ import annotations

import hashlib
from collections.abc import Sequence
from typing import Union

Chunk = Union[bytes, Sequence["Chunk"]]


def _sha384(data: bytes) -> bytes:
    return hashlib.sha384(data).digest()


def deep_hash(data: Chunk) -> bytes:
    if isinstance(data, (bytes, bytearray, memoryview)):
        blob = bytes(data)
        tag = b"blob" + str(len(blob)).encode("ascii")
        return _sha384(_sha384(tag) + _sha384(blob))

    items = list(data)
    acc = _sha384(b"list" + str(len(items)).encode("ascii"))
    for item in items:
        acc = _sha384(acc + deep_hash(item))
    return acc


__all__ = ["deep_hash"]
