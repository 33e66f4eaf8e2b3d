"""
HTTP message signatures (RFC 9421) over requests to the units.

Manifesto:
    The units can authenticate a caller from the request alone. The signer
    never reads the body; it signs the request's ``Content-Digest`` instead,
    so streaming bodies and retries of identical bytes sign identically
    once ``created`` is fixed.

Covered components, in this fixed order:
    ``@method``, ``@path``, ``@authority``, ``content-digest``, then any
    extra header fields the caller names.

Headers produced:
    ::

        content-digest:  sha-256=:<base64 sha256(body)>:
        signature-input: sig1=("@method" "@path" "@authority" "content-digest");
                         created=1700000000;keyid="<b64url owner>";alg="ed25519"
        signature:       sig1=:<base64 signature>:

Signature base:
    One line per component, ``"<name>": <value>``, followed by the
    ``"@signature-params"`` line carrying the serialized inner list.

Examples:
    >>> digest = content_digest(item.to_bytes())
    >>> headers = sign_request("POST", "/", {"host": "su.example"}, digest, signer)
    >>> verify_request("POST", "/", headers, body=item.to_bytes())
    True

Tags:
    http-signatures, rfc9421, content-digest, structured-fields, aoconnect
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import re
import time
from collections.abc import Iterable, Mapping

from aoconnect.core.errors import SigningError
from aoconnect.protocol.encoding import b64url_decode
from aoconnect.protocol.signers import SignatureType, Signer, verify_http_signature

BASE_COMPONENTS = ("@method", "@path", "@authority", "content-digest")

ALGORITHMS = {
    "rsa-pss-sha512": SignatureType.ARWEAVE,
    "ed25519": SignatureType.ED25519,
}

_KEY = re.compile(r"^[a-z*][a-z0-9_\-.*]*$")
_FIELD_NAME = re.compile(r"^[!#$%&'*+\-.^_`|~0-9a-z]+$")
_INPUT_MEMBER = re.compile(r'^\s*([a-z*][a-z0-9_\-.*]*)=(\(.*\)(?:;.*)?)\s*$')
_SIGNATURE_MEMBER = re.compile(r"^\s*([a-z*][a-z0-9_\-.*]*)=:([A-Za-z0-9+/=]*):\s*$")
_PARAM = re.compile(r';([a-z*][a-z0-9_\-.*]*)=("(?:[^"\\]|\\.)*"|-?\d+)')


def content_digest(body: bytes) -> str:
    """``Content-Digest`` header value (RFC 9530, sha-256) for *body*."""
    digest = hashlib.sha256(body).digest()
    return f"sha-256=:{base64.b64encode(digest).decode('ascii')}:"


def _sf_string(value: str) -> str:
    if any(ord(ch) < 0x20 or ord(ch) > 0x7E for ch in value):
        raise SigningError(f"value {value!r} is not a valid structured-field string")
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _normalise_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {name.lower(): str(value) for name, value in headers.items()}


def _component_value(
    name: str,
    *,
    method: str,
    path: str,
    authority: str | None,
    headers: Mapping[str, str],
) -> str:
    if name == "@method":
        return method.upper()
    if name == "@path":
        return path.split("?", 1)[0]
    if name == "@authority":
        if not authority:
            raise SigningError("@authority is required; pass authority= or a host header")
        return authority.lower()
    value = headers.get(name)
    if value is None:
        raise SigningError(f"header {name!r} is covered but missing from the request")
    return value.strip()


def signature_base(
    components: Iterable[str],
    params: str,
    *,
    method: str,
    path: str,
    authority: str | None,
    headers: Mapping[str, str],
) -> bytes:
    """Build the RFC 9421 signature base for the given serialized params."""
    lines = [
        f'"{name}": '
        + _component_value(name, method=method, path=path, authority=authority, headers=headers)
        for name in components
    ]
    lines.append(f'"@signature-params": {params}')
    try:
        return "\n".join(lines).encode("ascii")
    except UnicodeEncodeError as e:
        raise SigningError("covered components must be ASCII", cause=e)


def sign_request(
    method: str,
    path: str,
    headers: Mapping[str, str],
    body_digest: str | bytes | None,
    signer: Signer,
    *,
    authority: str | None = None,
    fields: Iterable[str] = (),
    created: int | None = None,
    label: str = "sig1",
) -> dict[str, str]:
    """Sign a request and return a new header dict with the signature fields.

    Args:
        method: HTTP method.
        path: Request target path (any query string is ignored).
        headers: Request headers; names are matched case-insensitively.
        body_digest: ``Content-Digest`` value, or the raw 32-byte sha-256
            digest of the body.
        signer: Signing identity; ``keyid`` is its base64url owner key.
        authority: Host[:port]; falls back to the ``host`` header.
        fields: Extra header fields to cover, after the fixed components.
        created: Unix timestamp; defaults to now.
        label: Signature label.

    Raises:
        SigningError: When a component is missing or cannot be serialized.
    """
    if not method:
        raise SigningError("@method is required")
    if not path:
        raise SigningError("@path is required")
    if body_digest is None:
        raise SigningError("content-digest is required")
    if not isinstance(signer, Signer):
        raise SigningError(f"not a signer: {type(signer).__name__}")
    if not _KEY.match(label):
        raise SigningError(f"invalid signature label {label!r}")

    signed = _normalise_headers(headers)
    if isinstance(body_digest, bytes):
        if len(body_digest) != 32:
            raise SigningError("raw body digest must be a 32-byte sha-256")
        body_digest = f"sha-256=:{base64.b64encode(body_digest).decode('ascii')}:"
    signed["content-digest"] = body_digest
    authority = authority or signed.get("host")

    extra = [name.lower() for name in fields]
    for name in extra:
        if not _FIELD_NAME.match(name) or name in BASE_COMPONENTS:
            raise SigningError(f"invalid covered field {name!r}")
    components = list(BASE_COMPONENTS) + extra

    created = int(time.time()) if created is None else int(created)
    inner = " ".join(_sf_string(name) for name in components)
    params = (
        f"({inner});created={created}"
        f";keyid={_sf_string(signer.key_id)}"
        f";alg={_sf_string(signer.http_algorithm)}"
    )

    base = signature_base(
        components, params, method=method, path=path, authority=authority, headers=signed
    )
    try:
        signature = signer.http_sign(base)
    except (TypeError, ValueError) as e:
        raise SigningError("HTTP signing failed", cause=e)

    signed["signature-input"] = f"{label}={params}"
    signed["signature"] = f"{label}=:{base64.b64encode(signature).decode('ascii')}:"
    return signed


def _member(header: str, pattern: re.Pattern[str], label: str) -> re.Match[str] | None:
    for part in header.split(","):
        match = pattern.match(part)
        if match and match.group(1) == label:
            return match
    return None


def verify_request(
    method: str,
    path: str,
    headers: Mapping[str, str],
    *,
    body: bytes | None = None,
    authority: str | None = None,
    label: str = "sig1",
) -> bool:
    """Check a request signed by :func:`sign_request`.

    The key comes from ``keyid`` and the scheme from ``alg``. When *body* is
    given its digest must match the ``content-digest`` header too.
    """
    received = _normalise_headers(headers)
    signature_input = received.get("signature-input")
    signature_header = received.get("signature")
    if not signature_input or not signature_header:
        return False

    if body is not None and received.get("content-digest") != content_digest(body):
        return False

    input_match = _member(signature_input, _INPUT_MEMBER, label)
    signature_match = _member(signature_header, _SIGNATURE_MEMBER, label)
    if input_match is None or signature_match is None:
        return False

    params = input_match.group(2)
    inner, _, _ = params[1:].partition(")")
    components = re.findall(r'"([^"]+)"', inner)
    values = {name: value.strip('"') for name, value in _PARAM.findall(params)}

    kind = ALGORITHMS.get(values.get("alg", ""))
    if kind is None or "keyid" not in values:
        return False

    try:
        owner = b64url_decode(values["keyid"])
        signature = base64.b64decode(signature_match.group(2), validate=True)
        base = signature_base(
            components,
            params,
            method=method,
            path=path,
            authority=authority or received.get("host"),
            headers=received,
        )
    except (binascii.Error, ValueError, SigningError):
        return False

    return verify_http_signature(kind, owner, base, signature)


__all__ = [
    "ALGORITHMS",
    "BASE_COMPONENTS",
    "content_digest",
    "sign_request",
    "signature_base",
    "verify_request",
]
