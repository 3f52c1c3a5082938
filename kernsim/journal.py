"""Write-ahead redo log grouping file system updates into atomic transactions."""

from __future__ import annotations

import struct
from collections.abc import Iterator
from contextlib import contextmanager

from kernsim.bufcache import Buffer, BufferCache
from kernsim.layout import BSIZE, SuperBlock

LOGSIZE = 30
MAXOPBLOCKS = 10

_COUNT = struct.Struct("<i")


class LogError(Exception):
    """Misuse of the log or a transaction it cannot hold."""


class Log:
    """Physical redo log.

    On disk: a header block listing block numbers, followed by copies of
    those blocks. A transaction commits when no operation is outstanding.
    """

    def __init__(
        self,
        cache: BufferCache,
        dev: int = 1,
        log_size: int = LOGSIZE,
        max_op_blocks: int = MAXOPBLOCKS,
    ) -> None:
        if _COUNT.size * (1 + log_size) >= BSIZE:
            raise LogError("log header too big")
        self.cache = cache
        self.dev = dev
        self.log_size = log_size
        self.max_op_blocks = max_op_blocks
        with cache.block(dev, 1) as buf:
            sb = SuperBlock.unpack(bytes(buf.data))
        self.start = sb.logstart
        self.size = sb.nlog
        self.outstanding = 0
        self.committing = False
        self._blocks: list[int] = []
        self.recover()

    @property
    def pending(self) -> tuple[int, ...]:
        """Block numbers logged in the current transaction."""
        return tuple(self._blocks)

    def _install(self) -> None:
        for tail, blockno in enumerate(self._blocks):
            lbuf = self.cache.read(self.dev, self.start + tail + 1)
            dbuf = self.cache.read(self.dev, blockno)
            dbuf.data[:] = lbuf.data
            self.cache.write(dbuf)
            self.cache.release(lbuf)
            self.cache.release(dbuf)

    def _read_head(self) -> None:
        with self.cache.block(self.dev, self.start) as buf:
            (n,) = _COUNT.unpack_from(buf.data)
            if not 0 <= n <= self.log_size:
                raise LogError(f"corrupt log header: {n} blocks")
            self._blocks = list(struct.unpack_from(f"<{n}i", buf.data, _COUNT.size))

    def _write_head(self) -> None:
        buf = self.cache.read(self.dev, self.start)
        try:
            packed = struct.pack(f"<i{len(self._blocks)}i", len(self._blocks), *self._blocks)
            buf.data[: len(packed)] = packed
            self.cache.write(buf)
        finally:
            self.cache.release(buf)

    def recover(self) -> None:
        """Install any committed transaction found on disk, then clear the log."""
        self._read_head()
        self._install()
        self._blocks = []
        self._write_head()

    def begin_op(self) -> None:
        """Start a file system operation."""
        if self.committing:
            raise LogError("log is committing")
        if len(self._blocks) + (self.outstanding + 1) * self.max_op_blocks > self.log_size:
            raise LogError("operation might exhaust log space")
        self.outstanding += 1

    def end_op(self) -> None:
        """Finish an operation; the last outstanding one commits."""
        if self.outstanding < 1:
            raise LogError("end_op outside of transaction")
        if self.committing:
            raise LogError("log.committing")
        self.outstanding -= 1
        if self.outstanding == 0:
            self.committing = True
            try:
                self._commit()
            finally:
                self.committing = False

    def _write_log(self) -> None:
        for tail, blockno in enumerate(self._blocks):
            to = self.cache.read(self.dev, self.start + tail + 1)
            src = self.cache.read(self.dev, blockno)
            to.data[:] = src.data
            self.cache.write(to)
            self.cache.release(src)
            self.cache.release(to)

    def _commit(self) -> None:
        if self._blocks:
            self._write_log()
            self._write_head()
            self._install()
            self._blocks = []
            self._write_head()

    def log_write(self, buf: Buffer) -> None:
        """Record a modified buffer in the transaction, pinning it in the cache."""
        n = len(self._blocks)
        if n >= self.log_size or n >= self.size - 1:
            raise LogError("too big a transaction")
        if self.outstanding < 1:
            raise LogError("log_write outside of trans")
        if buf.blockno not in self._blocks:
            self._blocks.append(buf.blockno)
        buf.dirty = True

    @contextmanager
    def transaction(self) -> Iterator[Log]:
        """Wrap ``begin_op``/``end_op`` around a block of code."""
        self.begin_op()
        try:
            yield self
        finally:
            self.end_op()