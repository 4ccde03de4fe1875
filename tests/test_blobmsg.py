"""Tests for the blob attribute wire codec."""

import struct

import pytest

from logread import blobmsg
from logread.blobmsg import BlobType


class TestHeader:
    def test_decode_named_header(self):
        raw_len, attr_id, extended = blobmsg.decode_header(b"\x85\x00\x00\x10")
        assert raw_len == 16
        assert attr_id == BlobType.INT32
        assert extended is True

    def test_decode_anonymous_header(self):
        raw_len, attr_id, extended = blobmsg.decode_header(b"\x00\x00\x00\x24")
        assert (raw_len, attr_id, extended) == (36, 0, False)

    def test_header_must_be_four_bytes(self):
        with pytest.raises(ValueError):
            blobmsg.decode_header(b"\x00\x00\x10")

    def test_pad_len(self):
        assert [blobmsg.pad_len(n) for n in (0, 1, 4, 5, 8, 13)] == [0, 4, 4, 8, 8, 16]


class TestEncode:
    def test_named_int32_layout(self):
        data = blobmsg.encode_attribute(BlobType.INT32, struct.pack("!I", 1), name="id")
        assert data == bytes.fromhex("85000010" "00026964" "00000000" "00000001")

    def test_string_is_nul_terminated_and_padded(self):
        data = blobmsg.encode_attribute(
            BlobType.STRING, blobmsg.encode_value(BlobType.STRING, "abc"), name="m"
        )
        raw_len, _, _ = blobmsg.decode_header(data[:4])
        # header 4 + name header 4 + "abc\0"
        assert raw_len == 12
        assert len(data) == 12
        assert data.endswith(b"abc\0")

    def test_raw_length_excludes_padding(self):
        data = blobmsg.encode_attribute(BlobType.INT8, b"\x01", name="stream")
        raw_len, _, _ = blobmsg.decode_header(data[:4])
        assert raw_len == 4 + 12 + 1
        assert len(data) == 20

    def test_frame_wraps_table(self):
        frame = blobmsg.encode_frame([("lines", BlobType.INT32, 5)])
        raw_len, attr_id, extended = blobmsg.decode_header(frame[:4])
        assert raw_len == len(frame)
        assert attr_id == 0
        assert extended is False

    @pytest.mark.parametrize("blob_type", [BlobType.UNSPEC, BlobType.TABLE, BlobType.ARRAY])
    def test_unencodable_type(self, blob_type):
        with pytest.raises(ValueError):
            blobmsg.encode_value(blob_type, [])


class TestDecode:
    def test_table_of_scalars(self):
        payload = blobmsg.encode_table([
            ("name", BlobType.STRING, "logd"),
            ("count", BlobType.INT64, 2 ** 40),
            ("small", BlobType.INT16, 7),
            ("flag", BlobType.INT8, 1),
            ("ratio", BlobType.DOUBLE, 0.5),
        ])
        assert blobmsg.decode_table(payload) == {
            "name": "logd",
            "count": 2 ** 40,
            "small": 7,
            "flag": 1,
            "ratio": 0.5,
        }

    @pytest.mark.parametrize("blob_type", [BlobType.TABLE, BlobType.ARRAY])
    def test_container_values_not_decoded(self, blob_type):
        with pytest.raises(ValueError):
            blobmsg.decode_value(blob_type, b"")

    def test_string_stops_at_first_nul(self):
        assert blobmsg.decode_value(BlobType.STRING, b"ab\0cd\0") == "ab"

    def test_string_without_terminator(self):
        with pytest.raises(ValueError):
            blobmsg.decode_value(BlobType.STRING, b"abc")

    def test_int_width_must_match(self):
        with pytest.raises(ValueError):
            blobmsg.decode_value(BlobType.INT32, b"\x00\x01")

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            blobmsg.decode_value(42, b"")

    def test_attribute_running_past_end(self):
        data = blobmsg.encode_attribute(BlobType.INT32, b"\0\0\0\1", name="id")
        with pytest.raises(ValueError):
            list(blobmsg.iter_attributes(data[:-2]))

    def test_trailing_bytes_shorter_than_header_ignored(self):
        data = blobmsg.encode_attribute(BlobType.INT32, b"\0\0\0\1", name="id")
        assert len(list(blobmsg.iter_attributes(data + b"\0\0"))) == 1

    def test_truncated_name(self):
        with pytest.raises(ValueError):
            blobmsg.split_name(b"\x00\x10ab")


class TestParseTable:
    POLICY = {"msg": BlobType.STRING, "id": BlobType.INT32}

    def test_picks_policy_fields(self):
        payload = blobmsg.encode_table([
            ("msg", BlobType.STRING, "hello"),
            ("id", BlobType.INT32, 9),
            ("extra", BlobType.INT32, 1),
        ])
        assert blobmsg.parse_table(payload, self.POLICY) == {"msg": "hello", "id": 9}

    def test_mismatched_type_is_skipped(self):
        payload = blobmsg.encode_table([
            ("msg", BlobType.STRING, "hello"),
            ("id", BlobType.STRING, "9"),
        ])
        assert blobmsg.parse_table(payload, self.POLICY) == {"msg": "hello"}

    def test_last_duplicate_wins(self):
        payload = blobmsg.encode_table([
            ("id", BlobType.INT32, 1),
            ("id", BlobType.INT32, 2),
        ])
        assert blobmsg.parse_table(payload, self.POLICY) == {"id": 2}

    def test_nested_table_member_skipped(self):
        nested = blobmsg.encode_attribute(
            BlobType.TABLE, blobmsg.encode_table([("x", BlobType.INT32, 1)]), name="extra"
        )
        payload = nested + blobmsg.encode_table([("id", BlobType.INT32, 4)])
        assert blobmsg.parse_table(payload, self.POLICY) == {"id": 4}

    def test_unnamed_member_is_malformed(self):
        payload = blobmsg.encode_attribute(BlobType.INT32, b"\0\0\0\1")
        with pytest.raises(ValueError):
            blobmsg.parse_table(payload, self.POLICY)
