"""PC keyboard scancode decoding."""

from __future__ import annotations

from collections.abc import Iterable
from enum import IntEnum


class Key(IntEnum):
    """Codes for special keys."""

    HOME = 0xE0
    END = 0xE1
    UP = 0xE2
    DOWN = 0xE3
    LEFT = 0xE4
    RIGHT = 0xE5
    PAGE_UP = 0xE6
    PAGE_DOWN = 0xE7
    INSERT = 0xE8
    DELETE = 0xE9


_SHIFT = 1 << 0
_CTL = 1 << 1
_ALT = 1 << 2
_CAPSLOCK = 1 << 3
_NUMLOCK = 1 << 4
_SCROLLLOCK = 1 << 5
_E0ESC = 1 << 6


def _ctrl(ch: str) -> int:
    return (ord(ch) - ord("@")) & 0xFF


_SHIFTCODE = {0x1D: _CTL, 0x2A: _SHIFT, 0x36: _SHIFT, 0x38: _ALT, 0x9D: _CTL, 0xB8: _ALT}
_TOGGLECODE = {0x3A: _CAPSLOCK, 0x45: _NUMLOCK, 0x46: _SCROLLLOCK}

_SPECIAL = {
    0xC8: Key.UP,
    0xD0: Key.DOWN,
    0xC9: Key.PAGE_UP,
    0xD1: Key.PAGE_DOWN,
    0xCB: Key.LEFT,
    0xCD: Key.RIGHT,
    0x97: Key.HOME,
    0xCF: Key.END,
    0xD2: Key.INSERT,
    0xD3: Key.DELETE,
}

_KEYPAD_ROWS = [
    "\x00 \x00\x00\x00\x00\x00\x00",
    "\x00\x00\x00\x00\x00\x00\x007",
    "89-456+1",
    "230.\x00\x00\x00\x00",
]

_NORMAL_ROWS = [
    "\x00\x1b123456",
    "7890-=\b\t",
    "qwertyui",
    "op[]\n\x00as",
    "dfghjkl;",
    "'`\x00\\zxcv",
    "bnm,./\x00*",
    *_KEYPAD_ROWS,
]

_SHIFT_ROWS = [
    "\x00\x1b!@#$%^",
    "&*()_+\b\t",
    "QWERTYUI",
    "OP{}\n\x00AS",
    "DFGHJKL:",
    '"~\x00|ZXCV',
    "BNM<>?\x00*",
    *_KEYPAD_ROWS,
]

# '.' is an unmapped key, '\r' is itself, every other letter is Control-letter.
_CTL_ROWS = [
    "........",
    "........",
    "QWERTYUI",
    "OP..\r.AS",
    "DFGHJKL.",
    "...\\ZXCV",
    "BNM../..",
]


def _build(codes: Iterable[int], extras: dict[int, int]) -> list[int]:
    table = [0] * 256
    for index, code in enumerate(codes):
        table[index] = code
    for scancode, code in {**_SPECIAL, **extras}.items():
        table[scancode] = int(code)
    return table


def _ctl_code(ch: str) -> int:
    if ch == ".":
        return 0
    if ch == "\r":
        return ord("\r")
    return _ctrl(ch)


_NORMALMAP = _build((ord(c) for c in "".join(_NORMAL_ROWS)), {0x9C: ord("\n"), 0xB5: ord("/")})
_SHIFTMAP = _build((ord(c) for c in "".join(_SHIFT_ROWS)), {0x9C: ord("\n"), 0xB5: ord("/")})
_CTLMAP = _build((_ctl_code(c) for c in "".join(_CTL_ROWS)), {0x9C: ord("\r"), 0xB5: _ctrl("/")})

_CHARCODE = (_NORMALMAP, _SHIFTMAP, _CTLMAP, _CTLMAP)


class KeyboardDecoder:
    """Turns a stream of scancodes into character codes, tracking modifiers."""

    def __init__(self) -> None:
        self._shift = 0

    def feed(self, scancode: int) -> int | None:
        """Decode one scancode; return the character code, or None if it yields none."""
        if not 0 <= scancode <= 0xFF:
            raise ValueError(f"scancode out of range: {scancode}")
        data = scancode
        if data == 0xE0:
            self._shift |= _E0ESC
            return None
        if data & 0x80:
            if not self._shift & _E0ESC:
                data &= 0x7F
            self._shift &= ~(_SHIFTCODE.get(data, 0) | _E0ESC)
            return None
        if self._shift & _E0ESC:
            data |= 0x80
            self._shift &= ~_E0ESC

        self._shift |= _SHIFTCODE.get(data, 0)
        self._shift ^= _TOGGLECODE.get(data, 0)
        c = _CHARCODE[self._shift & (_CTL | _SHIFT)][data]
        if self._shift & _CAPSLOCK:
            if ord("a") <= c <= ord("z"):
                c += ord("A") - ord("a")
            elif ord("A") <= c <= ord("Z"):
                c += ord("a") - ord("A")
        return c or None


def decode_scancodes(scancodes: Iterable[int]) -> list[int]:
    """Decode a whole scancode sequence with a fresh decoder."""
    decoder = KeyboardDecoder()
    return [c for c in map(decoder.feed, scancodes) if c is not None]