"""In-memory pipe with a bounded buffer."""

from __future__ import annotations

import errno

PIPESIZE = 512


class PipeClosed(BrokenPipeError):
    """Write to a pipe whose read end is closed."""


class Pipe:
    """A byte pipe holding at most ``size`` unread bytes.

    Operations that would have to wait for the other end raise
    BlockingIOError instead of waiting.
    """

    def __init__(self, size: int = PIPESIZE) -> None:
        if size < 1:
            raise ValueError("a pipe needs room for at least one byte")
        self.size = size
        self._buffer = bytearray()
        self.read_open = True
        self.write_open = True

    def __len__(self) -> int:
        return len(self._buffer)

    @property
    def closed(self) -> bool:
        """Whether both ends have been closed."""
        return not self.read_open and not self.write_open

    def write(self, data: bytes) -> int:
        """Append ``data``; return its length.

        Writes what fits. If the rest does not fit, raises PipeClosed when
        the read end is closed, and BlockingIOError otherwise, with
        ``characters_written`` set to the bytes that went in.
        """
        data = bytes(data)
        space = self.size - len(self._buffer)
        chunk = data[:space]
        self._buffer += chunk
        if len(chunk) < len(data):
            if not self.read_open:
                raise PipeClosed(errno.EPIPE, "read end of pipe is closed")
            raise BlockingIOError(errno.EAGAIN, "pipe is full", len(chunk))
        return len(data)

    def read(self, n: int) -> bytes:
        """Take up to ``n`` bytes; an empty result means the write end is closed."""
        if n < 0:
            raise ValueError("negative read size")
        if not self._buffer:
            if self.write_open:
                raise BlockingIOError(errno.EAGAIN, "pipe is empty")
            return b""
        out = bytes(self._buffer[:n])
        del self._buffer[:n]
        return out

    def close(self, writable: bool) -> None:
        """Close the write end if ``writable`` is true, else the read end."""
        if writable:
            self.write_open = False
        else:
            self.read_open = False