"""Minimal protobuf wire-format reader for the OSM PBF schema.

Only what the PBF messages use: varints, zigzag sints, length-delimited
fields and packed repeated scalars. Schema knowledge lives in ``pbf``.
"""

from __future__ import annotations

from collections.abc import Iterator
from itertools import accumulate

VARINT = 0
FIXED64 = 1
LENGTH_DELIMITED = 2
FIXED32 = 5

_MAX_VARINT_SHIFT = 64


class WireFormatError(ValueError):
    """Bytes do not form a valid protobuf message."""


def read_varint(buf: bytes, pos: int) -> tuple[int, int]:
    """Decode one base-128 varint at ``pos``; returns (value, next_pos)."""
    result = 0
    shift = 0
    end = len(buf)
    while True:
        if pos >= end:
            raise WireFormatError("truncated varint")
        byte = buf[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, pos
        shift += 7
        if shift >= _MAX_VARINT_SHIFT:
            raise WireFormatError("varint longer than 10 bytes")


def zigzag(value: int) -> int:
    return (value >> 1) ^ -(value & 1)


def as_int64(value: int) -> int:
    """Reinterpret an unsigned varint as two's complement int64."""
    value &= (1 << 64) - 1
    return value - (1 << 64) if value >= 1 << 63 else value


def iter_fields(buf: bytes) -> Iterator[tuple[int, int, int | bytes]]:
    """Yield (field_number, wire_type, value) for each field in a message.

    Varints come back as unsigned ints, length-delimited fields as bytes.
    """
    pos = 0
    end = len(buf)
    while pos < end:
        key, pos = read_varint(buf, pos)
        number, wire_type = key >> 3, key & 0x07
        if number == 0:
            raise WireFormatError("field number 0")
        if wire_type == VARINT:
            value, pos = read_varint(buf, pos)
        elif wire_type == LENGTH_DELIMITED:
            length, pos = read_varint(buf, pos)
            if pos + length > end:
                raise WireFormatError("length-delimited field overruns message")
            value = buf[pos:pos + length]
            pos += length
        elif wire_type == FIXED64:
            if pos + 8 > end:
                raise WireFormatError("truncated fixed64")
            value = int.from_bytes(buf[pos:pos + 8], "little")
            pos += 8
        elif wire_type == FIXED32:
            if pos + 4 > end:
                raise WireFormatError("truncated fixed32")
            value = int.from_bytes(buf[pos:pos + 4], "little")
            pos += 4
        else:
            raise WireFormatError(f"unsupported wire type {wire_type}")
        yield number, wire_type, value


def unpack_varints(data: bytes) -> list[int]:
    values = []
    pos = 0
    end = len(data)
    while pos < end:
        value, pos = read_varint(data, pos)
        values.append(value)
    return values


def extend_repeated(target: list[int], wire_type: int, value: int | bytes) -> None:
    """Append a repeated scalar field, packed or not, as raw unsigned values."""
    if wire_type == LENGTH_DELIMITED:
        target.extend(unpack_varints(value))  # type: ignore[arg-type]
    elif wire_type == VARINT:
        target.append(value)  # type: ignore[arg-type]
    else:
        raise WireFormatError(f"unexpected wire type {wire_type} for repeated varint")


def delta_decode(values: list[int]) -> list[int]:
    """Zigzag-decode then running-sum a packed ``sint64`` delta column."""
    return list(accumulate(zigzag(v) for v in values))


def expect_bytes(wire_type: int, value: int | bytes) -> bytes:
    if wire_type != LENGTH_DELIMITED:
        raise WireFormatError("expected a length-delimited field")
    return value  # type: ignore[return-value]


def expect_int(wire_type: int, value: int | bytes) -> int:
    if wire_type != VARINT:
        raise WireFormatError("expected a varint field")
    return value  # type: ignore[return-value]
