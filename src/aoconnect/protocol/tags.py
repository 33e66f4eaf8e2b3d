"""
Tag codec: the ordered name/value metadata carried by every data item.

Manifesto:
    Tags are how processes route and interpret messages, so a forged or
    oversized tag set must never reach the signer. ``build_tags`` is a pure
    transformation: it validates, coerces and preserves order, and it never
    touches the network or a key.

Constraints (ANS-104):
    - at most 128 tags
    - names non-empty, at most 1024 bytes (UTF-8)
    - values non-empty, at most 3072 bytes (UTF-8)
    - the Avro-encoded tag block at most ``max_tag_bytes`` (4096)
    - protocol-owned names are reserved for the SDK itself

Wire format:
    ::

        tags := long(count) (bytes(name) bytes(value)){count} long(0)
        long := zig-zag varint
        bytes := long(len) raw

    An empty tag list encodes to zero bytes, not to a lone terminator.

Examples:
    >>> build_tags([{"name": "App-Name", "value": "Test"}, ("Count", 3)])
    [Tag(name='App-Name', value='Test'), Tag(name='Count', value='3')]
    >>> build_tags([("Data-Protocol", "ao")])
    Traceback (most recent call last):
    ...
    InvalidTagError: tag name 'Data-Protocol' is reserved

Tags:
    tags, ans-104, avro, validation, aoconnect
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, NamedTuple

from aoconnect.core.errors import InvalidTagError

MAX_TAGS = 128
MAX_TAG_NAME_BYTES = 1024
MAX_TAG_VALUE_BYTES = 3072
MAX_TAG_BYTES = 4096

DATA_PROTOCOL = "ao"
VARIANT = "ao.TN.1"
SDK_NAME = "aoconnect"

RESERVED_TAG_NAMES = frozenset(
    name.lower() for name in ("Data-Protocol", "Variant", "Type", "SDK", "Module", "Scheduler")
)


class Tag(NamedTuple):
    name: str
    value: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "value": self.value}


TagInput = Tag | Mapping[str, Any] | tuple[Any, Any]


def _coerce(value: Any, *, field: str, tag_name: str | None) -> str:
    if value is None:
        raise InvalidTagError(f"tag {field} must not be None", tag_name=tag_name)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidTagError(f"tag {field} is not valid UTF-8", tag_name=tag_name, cause=e)
    return str(value)


def _split(item: TagInput) -> tuple[Any, Any]:
    if isinstance(item, Tag):
        return item.name, item.value
    if isinstance(item, Mapping):
        if "name" not in item or "value" not in item:
            raise InvalidTagError(f"tag mapping needs 'name' and 'value' keys: {dict(item)!r}")
        return item["name"], item["value"]
    if isinstance(item, tuple) and len(item) == 2:
        return item
    raise InvalidTagError(f"unsupported tag shape: {item!r}")


def build_tags(
    pairs: Iterable[TagInput] | Mapping[str, Any] | None,
    *,
    allow_reserved: Iterable[str] = (),
    max_tag_bytes: int = MAX_TAG_BYTES,
) -> list[Tag]:
    """Validate and normalise caller tags, preserving their order.

    Args:
        pairs: Tag mappings, ``(name, value)`` pairs, ``Tag`` instances, or a
            plain ``{name: value}`` mapping.
        allow_reserved: Reserved names the caller may set (case-insensitive).
        max_tag_bytes: Ceiling on the encoded tag block.

    Raises:
        InvalidTagError: On any constraint violation.
    """
    if pairs is None:
        return []
    if isinstance(pairs, Mapping):
        items: Iterable[TagInput] = list(pairs.items())
    else:
        items = pairs

    permitted = {name.lower() for name in allow_reserved}
    tags: list[Tag] = []

    for item in items:
        raw_name, raw_value = _split(item)
        name = _coerce(raw_name, field="name", tag_name=None)
        value = _coerce(raw_value, field="value", tag_name=name)

        if not name:
            raise InvalidTagError("tag name must not be empty")
        if not value:
            raise InvalidTagError(f"tag {name!r} has an empty value", tag_name=name)
        if len(name.encode("utf-8")) > MAX_TAG_NAME_BYTES:
            raise InvalidTagError(
                f"tag name exceeds {MAX_TAG_NAME_BYTES} bytes", tag_name=name[:64]
            )
        if len(value.encode("utf-8")) > MAX_TAG_VALUE_BYTES:
            raise InvalidTagError(
                f"tag {name!r} value exceeds {MAX_TAG_VALUE_BYTES} bytes", tag_name=name
            )
        if name.lower() in RESERVED_TAG_NAMES and name.lower() not in permitted:
            raise InvalidTagError(f"tag name {name!r} is reserved", tag_name=name)

        tags.append(Tag(name, value))

    validate_tag_set(tags, max_tag_bytes=max_tag_bytes)
    return tags


def validate_tag_set(tags: list[Tag], *, max_tag_bytes: int = MAX_TAG_BYTES) -> bytes:
    """Check set-level limits and return the encoded block."""
    if len(tags) > MAX_TAGS:
        raise InvalidTagError(f"too many tags: {len(tags)} > {MAX_TAGS}")
    encoded = serialize_tags(tags)
    if len(encoded) > max_tag_bytes:
        raise InvalidTagError(
            f"encoded tags are {len(encoded)} bytes, ceiling is {max_tag_bytes}"
        )
    return encoded


def protocol_tags(type_: str, extra: Iterable[tuple[str, str]] = ()) -> list[Tag]:
    """SDK-owned tags appended to every envelope of the given ``Type``."""
    tags = [Tag("Data-Protocol", DATA_PROTOCOL), Tag("Variant", VARIANT), Tag("Type", type_)]
    tags.extend(Tag(name, value) for name, value in extra)
    tags.append(Tag("SDK", SDK_NAME))
    return tags


def compose_tags(
    caller: Iterable[TagInput] | Mapping[str, Any] | None,
    type_: str,
    *,
    extra: Iterable[tuple[str, str]] = (),
    max_tag_bytes: int = MAX_TAG_BYTES,
) -> list[Tag]:
    """Caller tags (validated, reserved names refused) followed by protocol tags."""
    tags = build_tags(caller, max_tag_bytes=max_tag_bytes)
    tags.extend(protocol_tags(type_, extra))
    validate_tag_set(tags, max_tag_bytes=max_tag_bytes)
    return tags


def tag_value(tags: Iterable[Tag | Mapping[str, Any]], name: str) -> str | None:
    """First value for *name* (case-insensitive), or ``None``."""
    wanted = name.lower()
    for tag in tags:
        tag_name, value = _split(tag)
        if str(tag_name).lower() == wanted:
            return str(value)
    return None


# ------------------------------------------------------------------ #
# Avro encoding
# ------------------------------------------------------------------ #


def _encode_long(n: int) -> bytes:
    zz = (n << 1) ^ (n >> 63)
    out = bytearray()
    while zz & ~0x7F:
        out.append((zz & 0x7F) | 0x80)
        zz >>= 7
    out.append(zz)
    return bytes(out)


def _encode_bytes(data: bytes) -> bytes:
    return _encode_long(len(data)) + data


def serialize_tags(tags: Iterable[Tag]) -> bytes:
    """Encode tags as an Avro array of ``{name: bytes, value: bytes}`` records."""
    tags = list(tags)
    if not tags:
        return b""
    parts = [_encode_long(len(tags))]
    for name, value in tags:
        parts.append(_encode_bytes(name.encode("utf-8")))
        parts.append(_encode_bytes(value.encode("utf-8")))
    parts.append(_encode_long(0))
    return b"".join(parts)


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def long(self) -> int:
        shift = 0
        zz = 0
        while True:
            if self.pos >= len(self.data):
                raise InvalidTagError("truncated tag block")
            byte = self.data[self.pos]
            self.pos += 1
            zz |= (byte & 0x7F) << shift
            if not byte & 0x80:
                break
            shift += 7
        return (zz >> 1) ^ -(zz & 1)

    def raw(self) -> bytes:
        length = self.long()
        if length < 0 or self.pos + length > len(self.data):
            raise InvalidTagError("tag length out of range")
        chunk = self.data[self.pos : self.pos + length]
        self.pos += length
        return chunk


def deserialize_tags(data: bytes) -> list[Tag]:
    """Decode an Avro tag block produced by :func:`serialize_tags`."""
    if not data:
        return []
    reader = _Reader(data)
    tags: list[Tag] = []
    while True:
        count = reader.long()
        if count == 0:
            break
        if count < 0:
            # Negative block count is followed by the block's byte size.
            reader.long()
            count = -count
        for _ in range(count):
            try:
                name = reader.raw().decode("utf-8")
                value = reader.raw().decode("utf-8")
            except UnicodeDecodeError as e:
                raise InvalidTagError("tag is not valid UTF-8", cause=e)
            tags.append(Tag(name, value))
    if reader.pos != len(data):
        raise InvalidTagError("trailing bytes after tag block")
    return tags


__all__ = [
    "MAX_TAGS",
    "MAX_TAG_BYTES",
    "MAX_TAG_NAME_BYTES",
    "MAX_TAG_VALUE_BYTES",
    "RESERVED_TAG_NAMES",
    "Tag",
    "build_tags",
    "compose_tags",
    "deserialize_tags",
    "protocol_tags",
    "serialize_tags",
    "tag_value",
    "validate_tag_set",
]
