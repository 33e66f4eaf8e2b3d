"""
Signed binary envelopes (ANS-104 data items).

Manifesto:
    A message is only handed to the network as a data item: a self-contained,
    content-addressed envelope whose signature covers every field. Building
    one is pure CPU work with no network access, and once built it is never
    mutated: a retried dispatch re-sends the very same bytes, so the receiving
    unit recognises a duplicate by its id instead of admitting a second message.

Layout:
    ::

        ┌──────────────┬───────────┬─────────┬──────────────────┬──────────────────┐
        │ sig type u16 │ signature │ owner   │ target flag (+32)│ anchor flag (+32)│
        ├──────────────┴───────────┴─────────┴──────────────────┴──────────────────┤
        │ tag count u64 │ tag bytes u64 │ avro tag block │ data ...                 │
        └──────────────────────────────────────────────────────────────────────────┘

        all integers little-endian

    signed message = deep_hash(["dataitem", "1", str(sig type), owner,
                                target, anchor, avro tag block, data])
    id             = base64url(sha256(signature))

Examples:
    >>> item = sign_data_item(signer, process_id, tags, None, b"ping")
    >>> item.verify()
    True
    >>> DataItem.from_bytes(item.to_bytes()).id == item.id
    True

Tags:
    data-item, ans-104, envelope, signing, content-addressing, aoconnect
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from dataclasses import dataclass, field

from aoconnect.core.errors import InvalidTagError, SigningError
from aoconnect.protocol.deep_hash import deep_hash
from aoconnect.protocol.encoding import address_of, b64url_decode, b64url_encode
from aoconnect.protocol.signers import SIGNATURE_CONFIG, SignatureType, Signer, verify_signature
from aoconnect.protocol.tags import Tag, deserialize_tags, serialize_tags, validate_tag_set

TARGET_LENGTH = 32
ANCHOR_LENGTH = 32


def _signature_data(
    signature_type: int,
    owner: bytes,
    target: bytes,
    anchor: bytes,
    tag_bytes: bytes,
    data: bytes,
) -> bytes:
    return deep_hash(
        [
            b"dataitem",
            b"1",
            str(signature_type).encode("ascii"),
            owner,
            target,
            anchor,
            tag_bytes,
            data,
        ]
    )


@dataclass(frozen=True)
class DataItem:
    """A parsed or freshly signed envelope. Immutable."""

    signature_type: int
    signature: bytes
    owner: bytes
    target: bytes
    anchor: bytes
    tags: tuple[Tag, ...]
    data: bytes
    raw: bytes = field(repr=False, compare=False)

    @property
    def id(self) -> str:
        return b64url_encode(hashlib.sha256(self.signature).digest())

    @property
    def target_id(self) -> str | None:
        return b64url_encode(self.target) if self.target else None

    @property
    def owner_address(self) -> str:
        return address_of(self.owner)

    def signature_data(self) -> bytes:
        return _signature_data(
            self.signature_type,
            self.owner,
            self.target,
            self.anchor,
            serialize_tags(self.tags),
            self.data,
        )

    def verify(self) -> bool:
        """Check the signature against the embedded owner key."""
        return verify_signature(
            self.signature_type, self.owner, self.signature_data(), self.signature
        )

    def to_bytes(self) -> bytes:
        return self.raw

    def __len__(self) -> int:
        return len(self.raw)

    @classmethod
    def from_bytes(cls, raw: bytes) -> "DataItem":
        """Parse an envelope; raises ``SigningError`` when malformed."""
        try:
            return _parse(bytes(raw))
        except (IndexError, ValueError, InvalidTagError) as e:
            raise SigningError("malformed data item", cause=e)


def _parse(raw: bytes) -> DataItem:
    pos = 0

    def take(n: int) -> bytes:
        nonlocal pos
        if pos + n > len(raw):
            raise ValueError("truncated data item")
        chunk = raw[pos : pos + n]
        pos += n
        return chunk

    signature_type = int.from_bytes(take(2), "little")
    try:
        sig_len, owner_len = SIGNATURE_CONFIG[SignatureType(signature_type)]
    except ValueError:
        raise SigningError(f"unknown signature type {signature_type}")

    signature = take(sig_len)
    owner = take(owner_len)
    target = take(TARGET_LENGTH) if take(1) == b"\x01" else b""
    anchor = take(ANCHOR_LENGTH) if take(1) == b"\x01" else b""
    tag_count = int.from_bytes(take(8), "little")
    tag_length = int.from_bytes(take(8), "little")
    tags = deserialize_tags(take(tag_length))
    if len(tags) != tag_count:
        raise ValueError(f"tag count {tag_count} does not match {len(tags)} decoded tags")
    data = raw[pos:]

    return DataItem(
        signature_type=signature_type,
        signature=signature,
        owner=owner,
        target=target,
        anchor=anchor,
        tags=tuple(tags),
        data=data,
        raw=raw,
    )


def _target_bytes(target: str | bytes | None) -> bytes:
    if not target:
        return b""
    if isinstance(target, str):
        try:
            target = b64url_decode(target)
        except ValueError as e:
            raise SigningError(f"target {target!r} is not base64url", cause=e)
    if len(target) != TARGET_LENGTH:
        raise SigningError(f"target must decode to {TARGET_LENGTH} bytes, got {len(target)}")
    return target


def _anchor_bytes(anchor: str | bytes | None) -> bytes:
    if not anchor:
        return b""
    if isinstance(anchor, str):
        anchor = anchor.encode("utf-8")
    if len(anchor) != ANCHOR_LENGTH:
        raise SigningError(f"anchor must be {ANCHOR_LENGTH} bytes, got {len(anchor)}")
    return anchor


def sign_data_item(
    signer: Signer,
    target: str | bytes | None,
    tags: Iterable[Tag],
    anchor: str | bytes | None,
    data: str | bytes,
    *,
    max_size: int | None = None,
) -> DataItem:
    """Serialize, hash and sign a message into a :class:`DataItem`.

    Args:
        signer: Signing identity; its public key becomes the owner.
        target: Process id (base64url or 32 raw bytes), or ``None``.
        tags: Validated tags, in order.
        anchor: Optional 32-byte anchor (str is UTF-8 encoded).
        data: Payload.
        max_size: Ceiling on the whole envelope in bytes.

    Raises:
        SigningError: Bad key, bad target/anchor, oversize envelope.
        InvalidTagError: Tag set breaks set-level limits.
    """
    if not isinstance(signer, Signer):
        raise SigningError(f"not a signer: {type(signer).__name__}")

    payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
    tags = tuple(tags)
    tag_bytes = validate_tag_set(list(tags))
    target_raw = _target_bytes(target)
    anchor_raw = _anchor_bytes(anchor)
    owner = signer.owner

    if len(owner) != signer.owner_length:
        raise SigningError(f"owner key is {len(owner)} bytes, expected {signer.owner_length}")

    size = (
        2
        + signer.signature_length
        + signer.owner_length
        + 1 + len(target_raw)
        + 1 + len(anchor_raw)
        + 16
        + len(tag_bytes)
        + len(payload)
    )
    if max_size is not None and size > max_size:
        raise SigningError(f"data item is {size} bytes, maximum is {max_size}")

    message = _signature_data(
        int(signer.signature_type), owner, target_raw, anchor_raw, tag_bytes, payload
    )
    try:
        signature = signer.sign(message)
    except (TypeError, ValueError) as e:
        raise SigningError("signing failed", cause=e)
    if len(signature) != signer.signature_length:
        raise SigningError(
            f"signature is {len(signature)} bytes, expected {signer.signature_length}"
        )

    raw = b"".join(
        [
            int(signer.signature_type).to_bytes(2, "little"),
            signature,
            owner,
            b"\x01" + target_raw if target_raw else b"\x00",
            b"\x01" + anchor_raw if anchor_raw else b"\x00",
            len(tags).to_bytes(8, "little"),
            len(tag_bytes).to_bytes(8, "little"),
            tag_bytes,
            payload,
        ]
    )

    return DataItem(
        signature_type=int(signer.signature_type),
        signature=signature,
        owner=owner,
        target=target_raw,
        anchor=anchor_raw,
        tags=tags,
        data=payload,
        raw=raw,
    )


__all__ = ["ANCHOR_LENGTH", "DataItem", "TARGET_LENGTH", "sign_data_item"]
