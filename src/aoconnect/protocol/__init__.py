"""aoconnect.protocol -- everything that turns a message into signed bytes.

Pure, CPU-only code: no module here performs I/O.

Architecture::

    tags.py        Tag validation and the ANS-104 Avro tag codec
    deep_hash.py   Arweave deep hash (SHA-384)
    signers.py     Signing identities (Arweave RSA-PSS, Ed25519)
    data_item.py   ANS-104 data-item build, parse and verify
    httpsig.py     RFC 9421 request signatures
    encoding.py    base64url helpers
"""

from aoconnect.protocol.data_item import DataItem, sign_data_item
from aoconnect.protocol.deep_hash import deep_hash
from aoconnect.protocol.encoding import address_of, b64url_decode, b64url_encode
from aoconnect.protocol.httpsig import content_digest, sign_request, verify_request
from aoconnect.protocol.signers import (
    ArweaveSigner,
    Ed25519Signer,
    SignatureType,
    Signer,
    create_data_item_signer,
    verify_signature,
)
from aoconnect.protocol.tags import (
    Tag,
    build_tags,
    compose_tags,
    deserialize_tags,
    protocol_tags,
    serialize_tags,
    tag_value,
)

__all__ = [
    "ArweaveSigner",
    "DataItem",
    "Ed25519Signer",
    "SignatureType",
    "Signer",
    "Tag",
    "address_of",
    "b64url_decode",
    "b64url_encode",
    "build_tags",
    "compose_tags",
    "content_digest",
    "create_data_item_signer",
    "deep_hash",
    "deserialize_tags",
    "protocol_tags",
    "serialize_tags",
    "sign_data_item",
    "sign_request",
    "tag_value",
    "verify_request",
    "verify_signature",
]
