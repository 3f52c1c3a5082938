import io

import pytest

from kernsim.console import BACKSPACE, Console, Screen, format_kernel


def test_format_kernel_hex_is_lowercase():
    text = format_kernel("%x", 0xBEEF)
    assert text == text.lower()
    assert int(text, 16) == 0xBEEF


def test_format_kernel_sequences():
    assert format_kernel("%d %s", -5, None) == "-5 (null)"
    assert format_kernel("%c") == "%c"
    assert format_kernel("50%%") == "50%"
    assert format_kernel("tail%") == "tail"


def test_format_kernel_null_fmt():
    with pytest.raises(ValueError):
        format_kernel(None)


def test_screen_lines_and_backspace():
    screen = Screen()
    for ch in "hiX":
        screen.put(ch)
    screen.put(BACKSPACE)
    screen.put("\n")
    for ch in "there":
        screen.put(ch)
    assert screen.text() == "hi\nthere"


def test_screen_scrolls():
    screen = Screen()
    for i in range(30):
        for ch in f"line{i}\n":
            screen.put(ch)
    lines = screen.text().split("\n")
    assert lines[-1] == "line29"
    assert "line0" not in lines
    assert len(lines) <= 24


def test_line_is_read_after_return():
    console = Console()
    console.interrupt("hello\r")
    assert console.read(128) == b"hello\n"
    assert console.sink.getvalue() == "hello\n"


def test_read_without_input_blocks():
    console = Console()
    console.interrupt("partial")
    with pytest.raises(BlockingIOError):
        console.read(10)


def test_backspace_edits_line():
    console = Console()
    console.interrupt("ab\x7fc\n")
    assert console.read(128) == b"ac\n"
    assert "\b \b" in console.sink.getvalue()


def test_kill_line():
    console = Console()
    console.interrupt("abc\x15d\n")
    assert console.read(128) == b"d\n"


def test_end_of_file():
    console = Console()
    console.interrupt("ab\x04")
    assert console.read(10) == b"ab"
    assert console.read(10) == b""


def test_partial_reads():
    console = Console()
    console.interrupt("hello\n")
    assert console.read(2) == b"he"
    assert console.read(10) == b"llo\n"


def test_procdump_runs_on_ctrl_p():
    calls = []
    console = Console(procdump=lambda: calls.append(True))
    console.interrupt("\x10")
    assert calls == [True]


def test_write_echoes_to_sink_and_screen():
    sink = io.StringIO()
    console = Console(sink=sink)
    assert console.write(b"out\n") == 4
    assert sink.getvalue() == "out\n"
    assert console.screen.text() == "out"


def test_cprintf_goes_to_sink():
    console = Console()
    console.cprintf("cpu%d: starting %d\n", 0, 0)
    assert console.sink.getvalue() == format_kernel("cpu%d: starting %d\n", 0, 0)