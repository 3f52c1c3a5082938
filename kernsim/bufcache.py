"""Block buffer cache with least-recently-used recycling."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Protocol

from kernsim.layout import BSIZE

NBUF = 30


class CacheError(Exception):
    """Misuse of the buffer cache, or no buffer free."""


class BlockDevice(Protocol):
    def read_block(self, dev: int, blockno: int) -> bytes: ...

    def write_block(self, dev: int, blockno: int, data: bytes) -> None: ...


@dataclass(eq=False)
class Buffer:
    """Cached copy of one disk block.

    ``valid`` means the data has been read from disk; ``dirty`` means it has
    been modified and must be written before the buffer can be reused.
    """

    dev: int = -1
    blockno: int = -1
    data: bytearray = field(default_factory=lambda: bytearray(BSIZE))
    valid: bool = False
    dirty: bool = False
    refcnt: int = 0
    locked: bool = False


class BufferCache:
    """Caches disk blocks; only one holder may use a buffer at a time."""

    def __init__(self, disk: BlockDevice, nbuf: int = NBUF) -> None:
        if nbuf < 1:
            raise ValueError("the cache needs at least one buffer")
        self.disk = disk
        # Index 0 is the most recently used buffer.
        self._lru = [Buffer() for _ in range(nbuf)]

    def _get(self, dev: int, blockno: int) -> Buffer:
        for buf in self._lru:
            if buf.dev == dev and buf.blockno == blockno:
                if buf.locked:
                    raise CacheError(f"block {blockno} is already held")
                buf.refcnt += 1
                buf.locked = True
                return buf
        # Not cached: recycle the least recently used idle, clean buffer.
        for buf in reversed(self._lru):
            if buf.refcnt == 0 and not buf.dirty:
                buf.dev = dev
                buf.blockno = blockno
                buf.valid = False
                buf.dirty = False
                buf.refcnt = 1
                buf.locked = True
                return buf
        raise CacheError("no buffers")

    def _sync(self, buf: Buffer) -> None:
        if buf.dirty:
            self.disk.write_block(buf.dev, buf.blockno, bytes(buf.data))
            buf.dirty = False
        else:
            buf.data[:] = self.disk.read_block(buf.dev, buf.blockno)
        buf.valid = True

    def read(self, dev: int, blockno: int) -> Buffer:
        """Return a held buffer with the contents of the block."""
        buf = self._get(dev, blockno)
        if not buf.valid:
            self._sync(buf)
        return buf

    def write(self, buf: Buffer) -> None:
        """Write a held buffer's contents to disk."""
        if not buf.locked:
            raise CacheError("write of a buffer that is not held")
        buf.dirty = True
        self._sync(buf)

    def release(self, buf: Buffer) -> None:
        """Give up a held buffer; once idle it becomes the most recently used."""
        if not buf.locked:
            raise CacheError("release of a buffer that is not held")
        buf.locked = False
        buf.refcnt -= 1
        if buf.refcnt == 0:
            self._lru.remove(buf)
            self._lru.insert(0, buf)

    @contextmanager
    def block(self, dev: int, blockno: int) -> Iterator[Buffer]:
        """Hold a block for the duration of a ``with`` statement."""
        buf = self.read(dev, blockno)
        try:
            yield buf
        finally:
            self.release(buf)