"""Local integer addition and subtraction with C ``int`` semantics."""

from __future__ import annotations

import re
import sys
from typing import Optional, Sequence

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def _wrap32(value: int) -> int:
    return (value + 0x80000000) % 0x100000000 - 0x80000000


def add(x: int, y: int) -> int:
    """Return ``x + y`` wrapped to a signed 32-bit integer."""
    return _wrap32(x + y)


def subtract(x: int, y: int) -> int:
    """Return ``x - y`` wrapped to a signed 32-bit integer."""
    return _wrap32(x - y)


def parse_int(text: str) -> int:
    """Read a leading decimal integer; text without one reads as 0."""
    match = _LEADING_INT.match(text)
    if match is None:
        return 0
    return _wrap32(int(match.group(1)))


_USAGE = (
    "Usage: simp num1 num\n"
    "       num1 and num2 must be integer values (for now)\n"
    "       Floating point arithmetic is coming soon - preregister now and\n"
    "       receive our new integrated multiplication program at no extra cost!\n"
)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Print the sum and difference of two integers given on the command line."""
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) != 2:
        sys.stderr.write(_USAGE)
        return 0
    x, y = (parse_int(arg) for arg in args)
    print(f"{x} + {y} = {add(x, y)}")
    print(f"{x} - {y} = {subtract(x, y)}")
    return 0