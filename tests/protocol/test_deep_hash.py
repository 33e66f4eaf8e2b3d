"""Tests for the SHA-384 deep hash."""

import hashlib

from aoconnect.protocol.deep_hash import deep_hash


def sha384(data: bytes) -> bytes:
    return hashlib.sha384(data).digest()


def test_blob():
    expected = sha384(sha384(b"blob3") + sha384(b"abc"))
    assert deep_hash(b"abc") == expected


def test_empty_list():
    assert deep_hash([]) == sha384(b"list0")


def test_list_folds_items():
    acc = sha384(b"list2")
    acc = sha384(acc + deep_hash(b"a"))
    acc = sha384(acc + deep_hash(b"b"))
    assert deep_hash([b"a", b"b"]) == acc


def test_nesting_changes_hash():
    assert deep_hash([b"a", [b"b"]]) != deep_hash([b"a", b"b"])


def test_bytearray_matches_bytes():
    assert deep_hash(bytearray(b"xyz")) == deep_hash(b"xyz")
