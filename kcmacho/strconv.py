"""String to unsigned 64-bit integer conversion with C strtoull rules."""

from __future__ import annotations

import string

UINT64_MAX = (1 << 64) - 1

_WHITESPACE = " \t\n\v\f\r"
_DIGITS = string.digits + string.ascii_lowercase


def _digit_value(char: str) -> int:
    index = _DIGITS.find(char.lower())
    return index if index >= 0 else 99


def _parse_prefix(text: str, base: int) -> tuple[int, int]:
    """Parse as much of *text* as strtoull would; return (value, consumed)."""
    pos = 0
    length = len(text)
    while pos < length and text[pos] in _WHITESPACE:
        pos += 1

    negative = False
    if pos < length and text[pos] in "+-":
        negative = text[pos] == "-"
        pos += 1

    def has_hex_digit_at(index: int) -> bool:
        return index < length and _digit_value(text[index]) < 16

    starts_hex = (
        pos + 1 < length
        and text[pos] == "0"
        and text[pos + 1] in "xX"
        and has_hex_digit_at(pos + 2)
    )
    if base == 0:
        if starts_hex:
            base = 16
            pos += 2
        elif pos < length and text[pos] == "0":
            base = 8
        else:
            base = 10
    elif base == 16 and starts_hex:
        pos += 2

    start = pos
    value = 0
    while pos < length and _digit_value(text[pos]) < base:
        value = value * base + _digit_value(text[pos])
        pos += 1

    if pos == start:
        return 0, 0

    if value > UINT64_MAX:
        return UINT64_MAX, pos
    if negative:
        value = (-value) & UINT64_MAX
    return value, pos


def strtoull(text: str, base: int = 0) -> int:
    """Convert the whole of *text* to an unsigned 64-bit integer.

    Base 0 detects a ``0x`` (hexadecimal) or ``0`` (octal) prefix. Values that
    overflow saturate to the maximum, and a leading minus wraps around, as in C.
    Raises ValueError when any part of the text is left unconverted.
    """
    if base != 0 and not 2 <= base <= 36:
        raise ValueError(f"value {text} cannot be converted to uint64 with base {base}")
    value, consumed = _parse_prefix(text, base)
    if consumed != len(text):
        raise ValueError(f"value {text} cannot be converted to uint64 with base {base}")
    return value