"""Minimal printf understanding %d, %x, %p, %s and %c."""

from __future__ import annotations

import operator
from typing import Any, TextIO

UPPER_DIGITS = "0123456789ABCDEF"
LOWER_DIGITS = "0123456789abcdef"


def _int32(value: Any) -> int:
    value = operator.index(value)
    return ((value + 2**31) % 2**32) - 2**31


def format_int(
    value: int, base: int = 10, signed: bool = True, digits: str = UPPER_DIGITS
) -> str:
    """Render a 32-bit integer; unsigned rendering treats it as its two's complement."""
    if not 2 <= base <= len(digits):
        raise ValueError(f"unsupported base {base}")
    v = _int32(value)
    negative = signed and v < 0
    x = -v if negative else v & 0xFFFFFFFF
    out = []
    while True:
        x, rem = divmod(x, base)
        out.append(digits[rem])
        if x == 0:
            break
    if negative:
        out.append("-")
    return "".join(reversed(out))


def _cstr(text: str) -> str:
    return text.split("\0", 1)[0]


def format_printf(fmt: str, *args: Any) -> str:
    """Format ``args`` the way the user-level printf does."""
    remaining = iter(args)

    def next_arg() -> Any:
        try:
            return next(remaining)
        except StopIteration:
            raise ValueError(f"not enough arguments for format {fmt!r}") from None

    out: list[str] = []
    after_percent = False
    for ch in _cstr(fmt):
        if not after_percent:
            if ch == "%":
                after_percent = True
            else:
                out.append(ch)
            continue
        after_percent = False
        if ch == "d":
            out.append(format_int(next_arg(), 10, True))
        elif ch in "xp":
            out.append(format_int(next_arg(), 16, False))
        elif ch == "s":
            s = next_arg()
            out.append("(null)" if s is None else _cstr(str(s)))
        elif ch == "c":
            c = next_arg()
            out.append(c if isinstance(c, str) and len(c) == 1 else chr(operator.index(c) & 0xFF))
        elif ch == "%":
            out.append("%")
        else:
            out.append("%" + ch)
    return "".join(out)


def fprintf(stream: TextIO, fmt: str, *args: Any) -> None:
    """Write formatted text to ``stream``."""
    stream.write(format_printf(fmt, *args))