"""Blob attribute wire format: 4-byte header + payload, padded to 4 bytes.

Header layout (big-endian uint32):
  Bits 0-23:  raw length of the attribute, header included
  Bits 24-30: attribute id (the value type for named attributes)
  Bit 31:     extended flag, set on named (blobmsg) attributes

A named attribute starts its payload with a uint16 name length, the name,
a NUL byte and padding to the next 4-byte boundary. The value follows.

Examples:
  0x03000010 = anonymous STRING attribute, 16 bytes long
  0x85000014 = named INT32 attribute, 20 bytes long
"""

import struct
from enum import IntEnum


class BlobType(IntEnum):
    UNSPEC = 0
    ARRAY = 1
    TABLE = 2
    STRING = 3
    INT64 = 4
    INT32 = 5
    INT16 = 6
    INT8 = 7
    DOUBLE = 8


HEADER_SIZE = 4
HEADER_FORMAT = "!I"
NAME_LEN_FORMAT = "!H"
ALIGN = 4

ID_MASK = 0x7F000000
ID_SHIFT = 24
LEN_MASK = 0x00FFFFFF
EXTENDED = 0x80000000

_SCALAR_FORMATS = {
    BlobType.INT64: "!Q",
    BlobType.INT32: "!I",
    BlobType.INT16: "!H",
    BlobType.INT8: "!B",
    BlobType.DOUBLE: "!d",
}


def pad_len(length: int) -> int:
    """Round a length up to the attribute alignment."""
    return (length + ALIGN - 1) & ~(ALIGN - 1)


def decode_header(header: bytes) -> tuple[int, int, bool]:
    """Decode a 4-byte header into (raw_length, attr_id, extended).

    Raises:
        ValueError: If header is not exactly 4 bytes.
    """
    if len(header) != HEADER_SIZE:
        raise ValueError(f"Header must be {HEADER_SIZE} bytes, got {len(header)}")
    (id_len,) = struct.unpack(HEADER_FORMAT, header)
    return (
        id_len & LEN_MASK,
        (id_len & ID_MASK) >> ID_SHIFT,
        bool(id_len & EXTENDED),
    )


def encode_attribute(attr_id: int, payload: bytes, name: str | None = None) -> bytes:
    """Encode one attribute, padded to the alignment boundary.

    Args:
        attr_id: The attribute id (a BlobType for named attributes).
        payload: The already-encoded value bytes.
        name: Attribute name. When given, the extended flag is set and the
            blobmsg name header is prepended to the payload.

    Returns:
        Header + body + padding.
    """
    if name is not None:
        raw_name = name.encode("utf-8")
        name_header = struct.pack(NAME_LEN_FORMAT, len(raw_name)) + raw_name + b"\0"
        payload = name_header.ljust(pad_len(len(name_header)), b"\0") + payload

    raw_len = HEADER_SIZE + len(payload)
    if raw_len > LEN_MASK:
        raise ValueError(f"Attribute too large: {raw_len} bytes")

    id_len = ((attr_id << ID_SHIFT) & ID_MASK) | raw_len
    if name is not None:
        id_len |= EXTENDED
    return (struct.pack(HEADER_FORMAT, id_len) + payload).ljust(pad_len(raw_len), b"\0")


def encode_value(blob_type: BlobType, value) -> bytes:
    """Encode a python value as the payload of a string or scalar attribute."""
    if blob_type == BlobType.STRING:
        return value.encode("utf-8") + b"\0"
    if blob_type in _SCALAR_FORMATS:
        return struct.pack(_SCALAR_FORMATS[blob_type], value)
    raise ValueError(f"Cannot encode value of type {blob_type!r}")


def encode_table(items: list[tuple[str, BlobType, object]]) -> bytes:
    """Encode (name, type, value) triples as a sequence of named attributes."""
    return b"".join(
        encode_attribute(blob_type, encode_value(blob_type, value), name=name)
        for name, blob_type, value in items
    )


def encode_frame(items: list[tuple[str, BlobType, object]]) -> bytes:
    """Wrap a table in an anonymous outer attribute, ready to stream."""
    return encode_attribute(BlobType.UNSPEC, encode_table(items))


def iter_attributes(data: bytes):
    """Yield (attr_id, extended, body) for each attribute packed in data.

    Trailing bytes shorter than a header are ignored.

    Raises:
        ValueError: If an attribute is shorter than its header or runs past
            the end of data.
    """
    offset = 0
    while len(data) - offset >= HEADER_SIZE:
        raw_len, attr_id, extended = decode_header(data[offset:offset + HEADER_SIZE])
        if raw_len < HEADER_SIZE or offset + raw_len > len(data):
            raise ValueError(
                f"Attribute at offset {offset} has invalid length {raw_len}"
            )
        yield attr_id, extended, data[offset + HEADER_SIZE:offset + raw_len]
        offset += pad_len(raw_len)


def split_name(body: bytes) -> tuple[str, bytes]:
    """Split a named attribute body into (name, value bytes).

    Raises:
        ValueError: If the name header is truncated or not NUL-terminated.
    """
    if len(body) < struct.calcsize(NAME_LEN_FORMAT):
        raise ValueError("Named attribute too short for its name header")
    (name_len,) = struct.unpack(NAME_LEN_FORMAT, body[:2])
    header_len = pad_len(2 + name_len + 1)
    if header_len > len(body) or body[2 + name_len] != 0:
        raise ValueError("Attribute name is truncated or not NUL-terminated")
    name = body[2:2 + name_len].decode("utf-8", errors="replace")
    return name, body[header_len:]


def decode_value(blob_type: int, value: bytes):
    """Decode the value bytes of a typed attribute.

    Raises:
        ValueError: If the length does not fit the type, a string is not
            NUL-terminated, or the type is not a string or scalar.
    """
    if blob_type == BlobType.STRING:
        if not value or value[-1] != 0:
            raise ValueError("String value is not NUL-terminated")
        return value[:value.index(b"\0")].decode("utf-8", errors="replace")
    if blob_type in _SCALAR_FORMATS:
        fmt = _SCALAR_FORMATS[blob_type]
        if len(value) != struct.calcsize(fmt):
            raise ValueError(
                f"{BlobType(blob_type).name} value must be "
                f"{struct.calcsize(fmt)} bytes, got {len(value)}"
            )
        return struct.unpack(fmt, value)[0]
    raise ValueError(f"Cannot decode value of type {blob_type}")


def decode_table(data: bytes) -> dict:
    """Decode a sequence of named attributes into a dict (last name wins)."""
    table = {}
    for attr_id, extended, body in iter_attributes(data):
        if not extended:
            raise ValueError("Table member is missing its name")
        name, value = split_name(body)
        table[name] = decode_value(attr_id, value)
    return table


def parse_table(data: bytes, policy: dict[str, BlobType]) -> dict:
    """Pick the attributes named in policy whose type matches.

    Members with unknown names or a mismatched type are skipped. Members
    missing from the result are simply absent.

    Raises:
        ValueError: If any member attribute is malformed.
    """
    found = {}
    for attr_id, extended, body in iter_attributes(data):
        if not extended:
            raise ValueError("Table member is missing its name")
        name, value = split_name(body)
        expected = policy.get(name)
        if expected is None or attr_id != expected:
            continue
        found[name] = decode_value(attr_id, value)
    return found
