"""
Signing identities shared by the data-item signer and the HTTP signer.

A signer wraps an in-memory private key. It is read only after
construction and safe to share across concurrent operations. Loading keys
from files is the caller's business; this module only accepts key objects
or an already-parsed Arweave JWK mapping.

Signature types (ANS-104):
    ::

        type  name      signature  owner   data-item scheme          http alg
        ────  ────────  ─────────  ──────  ────────────────────────  ──────────────
        1     arweave   512 B      512 B   RSA-PSS / SHA-256         rsa-pss-sha512
        2     ed25519   64 B       32 B    Ed25519                   ed25519

Determinism:
    Ed25519 signatures are deterministic. RSA-PSS is randomised by its salt;
    ``ArweaveSigner(salt_length=0)`` makes it deterministic too, which keeps
    a data item's id stable across re-signing.

Examples:
    >>> signer = create_data_item_signer(jwk)          # Arweave JWK dict
    >>> signer.address
    'vLRHFqCw1uHu75xqB4fCDW-QxpkpJxBtFD9g4QYUbfw'
    >>> ed = Ed25519Signer.generate()
    >>> verify_signature(ed.signature_type, ed.owner, b"msg", ed.sign(b"msg"))
    True

Tags:
    signing, rsa-pss, ed25519, jwk, arweave, aoconnect
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from enum import IntEnum
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ed25519, padding, rsa

from aoconnect.core.errors import SigningError
from aoconnect.protocol.encoding import address_of, b64url_decode, b64url_encode

ARWEAVE_KEY_BITS = 4096
ARWEAVE_PUBLIC_EXPONENT = 65537


class SignatureType(IntEnum):
    ARWEAVE = 1
    ED25519 = 2


# signature length, owner length
SIGNATURE_CONFIG: dict[SignatureType, tuple[int, int]] = {
    SignatureType.ARWEAVE: (512, 512),
    SignatureType.ED25519: (64, 32),
}


class Signer(ABC):
    """A keypair able to sign data items and HTTP requests."""

    signature_type: SignatureType
    http_algorithm: str

    @property
    @abstractmethod
    def owner(self) -> bytes:
        """Raw public key as embedded in data items."""

    @abstractmethod
    def sign(self, message: bytes) -> bytes:
        """Sign a data-item deep hash."""

    @abstractmethod
    def http_sign(self, base: bytes) -> bytes:
        """Sign an HTTP signature base."""

    @property
    def signature_length(self) -> int:
        return SIGNATURE_CONFIG[self.signature_type][0]

    @property
    def owner_length(self) -> int:
        return SIGNATURE_CONFIG[self.signature_type][1]

    @property
    def address(self) -> str:
        return address_of(self.owner)

    @property
    def key_id(self) -> str:
        return b64url_encode(self.owner)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(address={self.address!r})"


class ArweaveSigner(Signer):
    """4096-bit RSA key, RSA-PSS signatures."""

    signature_type = SignatureType.ARWEAVE
    http_algorithm = "rsa-pss-sha512"

    def __init__(self, private_key: rsa.RSAPrivateKey, *, salt_length: int = 32):
        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise SigningError("ArweaveSigner needs an RSA private key")
        if private_key.key_size != ARWEAVE_KEY_BITS:
            raise SigningError(
                f"Arweave keys are {ARWEAVE_KEY_BITS}-bit, got {private_key.key_size}"
            )
        if salt_length < 0:
            raise SigningError("salt_length must be >= 0")
        self._key = private_key
        self._salt_length = salt_length
        n = private_key.public_key().public_numbers().n
        self._owner = n.to_bytes(ARWEAVE_KEY_BITS // 8, "big")

    @classmethod
    def from_jwk(cls, jwk: Mapping[str, Any], *, salt_length: int = 32) -> "ArweaveSigner":
        """Build a signer from an Arweave JWK (``kty``, ``n``, ``e``, ``d``, ...)."""
        try:
            def num(field: str) -> int:
                return int.from_bytes(b64url_decode(jwk[field]), "big")

            public = rsa.RSAPublicNumbers(e=num("e"), n=num("n"))
            private = rsa.RSAPrivateNumbers(
                p=num("p"),
                q=num("q"),
                d=num("d"),
                dmp1=num("dp"),
                dmq1=num("dq"),
                iqmp=num("qi"),
                public_numbers=public,
            ).private_key()
        except (KeyError, TypeError, ValueError) as e:
            raise SigningError("malformed Arweave JWK", cause=e)
        return cls(private, salt_length=salt_length)

    @property
    def owner(self) -> bytes:
        return self._owner

    def sign(self, message: bytes) -> bytes:
        return self._key.sign(
            message,
            padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=self._salt_length),
            hashes.SHA256(),
        )

    def http_sign(self, base: bytes) -> bytes:
        return self._key.sign(
            base,
            padding.PSS(mgf=padding.MGF1(hashes.SHA512()), salt_length=64),
            hashes.SHA512(),
        )


class Ed25519Signer(Signer):
    """Ed25519 key; deterministic signatures."""

    signature_type = SignatureType.ED25519
    http_algorithm = "ed25519"

    def __init__(self, private_key: ed25519.Ed25519PrivateKey):
        if not isinstance(private_key, ed25519.Ed25519PrivateKey):
            raise SigningError("Ed25519Signer needs an Ed25519 private key")
        self._key = private_key
        self._owner = private_key.public_key().public_bytes_raw()

    @classmethod
    def from_seed(cls, seed: bytes) -> "Ed25519Signer":
        try:
            return cls(ed25519.Ed25519PrivateKey.from_private_bytes(seed))
        except ValueError as e:
            raise SigningError("Ed25519 seed must be 32 bytes", cause=e)

    @classmethod
    def generate(cls) -> "Ed25519Signer":
        return cls(ed25519.Ed25519PrivateKey.generate())

    @property
    def owner(self) -> bytes:
        return self._owner

    def sign(self, message: bytes) -> bytes:
        return self._key.sign(message)

    def http_sign(self, base: bytes) -> bytes:
        return self._key.sign(base)


def _arweave_public_key(owner: bytes) -> rsa.RSAPublicKey:
    n = int.from_bytes(owner, "big")
    return rsa.RSAPublicNumbers(e=ARWEAVE_PUBLIC_EXPONENT, n=n).public_key()


def verify_signature(
    signature_type: int, owner: bytes, message: bytes, signature: bytes
) -> bool:
    """Verify a data-item signature against the embedded owner."""
    try:
        kind = SignatureType(signature_type)
        if kind is SignatureType.ARWEAVE:
            _arweave_public_key(owner).verify(
                signature,
                message,
                padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.AUTO),
                hashes.SHA256(),
            )
        else:
            ed25519.Ed25519PublicKey.from_public_bytes(owner).verify(signature, message)
    except (InvalidSignature, ValueError):
        return False
    return True


def verify_http_signature(
    signature_type: int, owner: bytes, base: bytes, signature: bytes
) -> bool:
    """Verify an HTTP message signature produced by :meth:`Signer.http_sign`."""
    try:
        kind = SignatureType(signature_type)
        if kind is SignatureType.ARWEAVE:
            _arweave_public_key(owner).verify(
                signature,
                base,
                padding.PSS(mgf=padding.MGF1(hashes.SHA512()), salt_length=padding.PSS.AUTO),
                hashes.SHA512(),
            )
        else:
            ed25519.Ed25519PublicKey.from_public_bytes(owner).verify(signature, base)
    except (InvalidSignature, ValueError):
        return False
    return True


def create_data_item_signer(wallet: Any, **kwargs: Any) -> Signer:
    """Turn what the caller holds into a :class:`Signer`.

    Accepts an existing ``Signer``, an Arweave JWK mapping, or a
    ``cryptography`` RSA / Ed25519 private key object.
    """
    if isinstance(wallet, Signer):
        return wallet
    if isinstance(wallet, Mapping):
        return ArweaveSigner.from_jwk(wallet, **kwargs)
    if isinstance(wallet, rsa.RSAPrivateKey):
        return ArweaveSigner(wallet, **kwargs)
    if isinstance(wallet, ed25519.Ed25519PrivateKey):
        return Ed25519Signer(wallet)
    raise SigningError(f"unsupported wallet type: {type(wallet).__name__}")


__all__ = [
    "ArweaveSigner",
    "Ed25519Signer",
    "SIGNATURE_CONFIG",
    "SignatureType",
    "Signer",
    "create_data_item_signer",
    "verify_http_signature",
    "verify_signature",
]
