"""Console: line-edited keyboard input, serial and text-screen output."""

from __future__ import annotations

import io
import operator
from collections.abc import Callable, Iterable
from typing import Any, TextIO

from kernsim.printfmt import LOWER_DIGITS, format_int

BACKSPACE = 0x100
INPUT_BUF = 128
COLUMNS = 80
ROWS = 25


def _ctrl(ch: str) -> int:
    return ord(ch) - ord("@")


def _code(c: int | str) -> int:
    return ord(c) if isinstance(c, str) else operator.index(c)


def format_kernel(fmt: str, *args: Any) -> str:
    """Format the way the kernel's cprintf does: %d, %x, %p, %s and %%."""
    if fmt is None:
        raise ValueError("null fmt")
    remaining = iter(args)

    def next_arg() -> Any:
        try:
            return next(remaining)
        except StopIteration:
            raise ValueError(f"not enough arguments for format {fmt!r}") from None

    out: list[str] = []
    chars = iter(fmt.split("\0", 1)[0])
    for ch in chars:
        if ch != "%":
            out.append(ch)
            continue
        ch = next(chars, "")
        if not ch:
            break
        if ch == "d":
            out.append(format_int(next_arg(), 10, True, LOWER_DIGITS))
        elif ch in "xp":
            out.append(format_int(next_arg(), 16, False, LOWER_DIGITS))
        elif ch == "s":
            s = next_arg()
            out.append("(null)" if s is None else str(s))
        elif ch == "%":
            out.append("%")
        else:
            out.append("%" + ch)
    return "".join(out)


class Screen:
    """An 80x25 text screen with a cursor; scrolls when the cursor reaches row 24."""

    def __init__(self) -> None:
        self._cells = [0] * (COLUMNS * ROWS)
        self.pos = 0

    def put(self, c: int | str) -> None:
        c = _code(c)
        pos = self.pos
        if c == ord("\n"):
            pos += COLUMNS - pos % COLUMNS
        elif c == BACKSPACE:
            if pos > 0:
                pos -= 1
        else:
            self._cells[pos] = c & 0xFF
            pos += 1

        if not 0 <= pos <= COLUMNS * ROWS:
            raise RuntimeError("pos under/overflow")

        if pos // COLUMNS >= ROWS - 1:
            self._cells[: 23 * COLUMNS] = self._cells[COLUMNS : 24 * COLUMNS]
            pos -= COLUMNS
            self._cells[pos : 24 * COLUMNS] = [0] * (24 * COLUMNS - pos)

        self.pos = pos
        self._cells[pos] = ord(" ")

    def text(self) -> str:
        """Visible text, trailing blanks and empty rows removed."""
        rows = [
            "".join(chr(c) if c else " " for c in self._cells[r * COLUMNS : (r + 1) * COLUMNS]).rstrip()
            for r in range(ROWS)
        ]
        while rows and not rows[-1]:
            rows.pop()
        return "\n".join(rows)


class Console:
    """Echoes to a serial sink and a screen, and buffers edited input lines."""

    def __init__(
        self,
        sink: TextIO | None = None,
        screen: Screen | None = None,
        procdump: Callable[[], None] | None = None,
    ) -> None:
        self.sink = sink if sink is not None else io.StringIO()
        self.screen = screen if screen is not None else Screen()
        self.procdump = procdump
        self._buf = [0] * INPUT_BUF
        self._r = 0  # read index
        self._w = 0  # write index
        self._e = 0  # edit index

    def putc(self, c: int | str) -> None:
        c = _code(c)
        self.sink.write("\b \b" if c == BACKSPACE else chr(c))
        self.screen.put(c)

    def cprintf(self, fmt: str, *args: Any) -> None:
        for ch in format_kernel(fmt, *args):
            self.putc(ch)

    def interrupt(self, chars: Iterable[int] | str) -> None:
        """Process typed characters: line editing, echo and ^P process dumps."""
        dump = False
        for c in map(_code, chars):
            if c < 0:
                break
            if c == _ctrl("P"):
                dump = True
            elif c == _ctrl("U"):
                while self._e != self._w and self._buf[(self._e - 1) % INPUT_BUF] != ord("\n"):
                    self._e -= 1
                    self.putc(BACKSPACE)
            elif c in (_ctrl("H"), 0x7F):
                if self._e != self._w:
                    self._e -= 1
                    self.putc(BACKSPACE)
            elif c != 0 and self._e - self._r < INPUT_BUF:
                if c == ord("\r"):
                    c = ord("\n")
                self._buf[self._e % INPUT_BUF] = c & 0xFF
                self._e += 1
                self.putc(c)
                if c in (ord("\n"), _ctrl("D")) or self._e == self._r + INPUT_BUF:
                    self._w = self._e
        if dump and self.procdump is not None:
            self.procdump()

    def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes of completed input, stopping after a newline.

        ^D ends the read; an empty result means end of file. Raises
        BlockingIOError when no completed input is waiting.
        """
        if n < 0:
            raise ValueError("negative read size")
        out = bytearray()
        remaining = n
        while remaining > 0:
            if self._r == self._w:
                if out:
                    break
                raise BlockingIOError("no console input available")
            c = self._buf[self._r % INPUT_BUF]
            self._r += 1
            if c == _ctrl("D"):
                if remaining < n:
                    # Keep ^D so the next read returns 0 bytes.
                    self._r -= 1
                break
            out.append(c)
            remaining -= 1
            if c == ord("\n"):
                break
        return bytes(out)

    def write(self, data: bytes | str) -> int:
        """Echo ``data`` to the sink and screen; return the count written."""
        raw = data.encode("latin-1") if isinstance(data, str) else bytes(data)
        for b in raw:
            self.putc(b)
        return len(raw)