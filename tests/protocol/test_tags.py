"""Tests for tag validation and the Avro tag codec."""

import pytest

from aoconnect.core.errors import InvalidTagError
from aoconnect.protocol.tags import (
    MAX_TAG_VALUE_BYTES,
    MAX_TAGS,
    Tag,
    build_tags,
    compose_tags,
    deserialize_tags,
    protocol_tags,
    serialize_tags,
    tag_value,
)


class TestBuildTags:
    def test_accepts_mixed_shapes_in_order(self):
        tags = build_tags(
            [{"name": "App-Name", "value": "Test"}, ("Count", 3), Tag("Flag", "x")]
        )
        assert tags == [Tag("App-Name", "Test"), Tag("Count", "3"), Tag("Flag", "x")]

    def test_plain_mapping(self):
        assert build_tags({"Action": "Eval"}) == [Tag("Action", "Eval")]

    def test_none_is_empty(self):
        assert build_tags(None) == []

    def test_duplicates_kept(self):
        tags = build_tags([("A", "1"), ("A", "2")])
        assert [t.value for t in tags] == ["1", "2"]

    def test_bool_and_bytes_coerced(self):
        tags = build_tags([("On", True), ("Raw", b"bytes")])
        assert tags == [Tag("On", "true"), Tag("Raw", "bytes")]

    @pytest.mark.parametrize(
        "pair",
        [("", "v"), ("Name", ""), ("Name", None), ("x" * 1025, "v")],
    )
    def test_rejects_bad_pairs(self, pair):
        with pytest.raises(InvalidTagError):
            build_tags([pair])

    def test_rejects_oversize_value(self):
        with pytest.raises(InvalidTagError) as exc_info:
            build_tags([("Big", "v" * (MAX_TAG_VALUE_BYTES + 1))])
        assert exc_info.value.retryable is False

    def test_rejects_too_many(self):
        with pytest.raises(InvalidTagError, match="too many"):
            build_tags([(f"T{i}", "v") for i in range(MAX_TAGS + 1)])

    def test_rejects_oversize_block(self):
        with pytest.raises(InvalidTagError, match="ceiling"):
            build_tags([("A", "v" * 3000), ("B", "v" * 3000)])

    def test_reserved_names_case_insensitive(self):
        with pytest.raises(InvalidTagError, match="reserved"):
            build_tags([("data-protocol", "ao")])

    def test_reserved_can_be_allowed(self):
        assert build_tags([("Type", "Message")], allow_reserved=["type"]) == [
            Tag("Type", "Message")
        ]

    def test_malformed_mapping(self):
        with pytest.raises(InvalidTagError):
            build_tags([{"name": "only-name"}])


class TestProtocolTags:
    def test_protocol_tags_shape(self):
        tags = protocol_tags("Message")
        assert tags[0] == Tag("Data-Protocol", "ao")
        assert Tag("Type", "Message") in tags
        assert tags[-1].name == "SDK"

    def test_compose_appends_after_caller(self):
        tags = compose_tags([("Action", "Eval")], "Process", extra=[("Module", "M")])
        assert tags[0] == Tag("Action", "Eval")
        assert tag_value(tags, "module") == "M"
        assert tag_value(tags, "Type") == "Process"

    def test_compose_refuses_forged_type(self):
        with pytest.raises(InvalidTagError):
            compose_tags([("Type", "Process")], "Message")

    def test_tag_value_missing(self):
        assert tag_value([{"name": "A", "value": "1"}], "B") is None


class TestCodec:
    def test_known_encoding(self):
        assert serialize_tags([Tag("a", "b")]) == b"\x02\x02a\x02b\x00"

    def test_empty_encodes_to_nothing(self):
        assert serialize_tags([]) == b""
        assert deserialize_tags(b"") == []

    def test_decode_preserves_order_and_unicode(self):
        tags = [Tag("Ünïcode", "välue"), Tag("Second", "2"), Tag("Ünïcode", "again")]
        assert deserialize_tags(serialize_tags(tags)) == tags

    def test_decode_negative_block_count(self):
        # Block of one entry with a byte-size prefix, as other Avro writers emit it.
        block = b"\x02a\x02b"
        data = b"\x01" + bytes([len(block) * 2]) + block + b"\x00"
        assert deserialize_tags(data) == [Tag("a", "b")]

    @pytest.mark.parametrize(
        "data", [b"\x02\x02a", b"\x02\x02a\x02b\x00extra", b"\x02\x10a\x02b\x00"]
    )
    def test_decode_rejects_malformed(self, data):
        with pytest.raises(InvalidTagError):
            deserialize_tags(data)
