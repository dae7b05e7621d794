# -*- coding: utf-8 -*-

"""
Conversion of caller supplied payloads into bytes for transmission.
"""
import numbers

from typing import Any

from .exceptions import UnsupportedPayloadTypeError

DEFAULT_ENCODING = 'utf-8'

_SEQUENCE_TYPES = (list, tuple, range)


def _low_byte(value: numbers.Integral) -> int:
    return int(value) & 0xFF


def to_bytes(value: Any, encoding: str = DEFAULT_ENCODING) -> bytes:
    """
    Convert ``value`` into the bytes that will be written to a port.

    Accepted values:
        bytes: returned as is
        bytearray, memoryview: copied into bytes
        str: encoded with ``encoding``
        integer: a single byte holding its low 8 bits
        list, tuple or range of integers: one byte per element,
            each truncated to its low 8 bits

    Raises:
        UnsupportedPayloadTypeError: for any other value, including
            sequences holding non-integer elements

    Example:
        >>> to_bytes([10, 20, 30]) == to_bytes('\\n\\x14\\x1e')
        True
        >>> to_bytes(0x1FF)
        b'\\xff'
    """
    if isinstance(value, bytes):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode(encoding)
    if isinstance(value, numbers.Integral):
        return bytes((_low_byte(value),))
    if isinstance(value, _SEQUENCE_TYPES):
        for item in value:
            if not isinstance(item, numbers.Integral):
                raise UnsupportedPayloadTypeError(
                    f"Cannot convert sequence element of type "
                    f"{type(item).__name__!r} to a byte"
                )
        return bytes(_low_byte(item) for item in value)

    raise UnsupportedPayloadTypeError(
        f"Cannot convert value of type {type(value).__name__!r} to bytes"
    )
