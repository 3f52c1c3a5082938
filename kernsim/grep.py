"""Simple grep supporting only the ^ . * $ operators."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from typing import BinaryIO

_BUFSIZE = 1024


def _match_here(pattern: str, text: str) -> bool:
    if not pattern:
        return True
    if len(pattern) > 1 and pattern[1] == "*":
        return _match_star(pattern[0], pattern[2:], text)
    if pattern == "$":
        return not text
    if text and pattern[0] in (".", text[0]):
        return _match_here(pattern[1:], text[1:])
    return False


def _match_star(c: str, pattern: str, text: str) -> bool:
    pos = 0
    while True:
        if _match_here(pattern, text[pos:]):
            return True
        if pos < len(text) and (text[pos] == c or c == "."):
            pos += 1
        else:
            return False


def match(pattern: str, text: str) -> bool:
    """Whether ``pattern`` matches anywhere in ``text``."""
    if pattern.startswith("^"):
        return _match_here(pattern[1:], text)
    return any(_match_here(pattern, text[start:]) for start in range(len(text) + 1))


def grep(pattern: str, stream: BinaryIO) -> Iterator[bytes]:
    """Yield each newline-terminated line of ``stream`` that matches.

    A final line without a newline is not examined, and a chunk read
    without any newline in it is dropped.
    """
    pending = b""
    while chunk := stream.read(_BUFSIZE - 1 - len(pending)):
        *lines, rest = (pending + chunk).split(b"\n")
        for line in lines:
            if match(pattern, line.decode("latin-1")):
                yield line + b"\n"
        pending = rest if lines else b""


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    out = sys.stdout.buffer
    if not args:
        sys.stderr.write("usage: grep pattern [file ...]\n")
        return 1
    pattern, *paths = args
    if not paths:
        out.writelines(grep(pattern, sys.stdin.buffer))
        out.flush()
        return 0
    for path in paths:
        try:
            stream = open(path, "rb")
        except OSError:
            out.write(f"grep: cannot open {path}\n".encode())
            out.flush()
            return 1
        with stream:
            out.writelines(grep(pattern, stream))
    out.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())