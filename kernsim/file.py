"""Open file table: reference-counted handles on inodes and pipes."""

from __future__ import annotations

import errno
from dataclasses import dataclass
from enum import Enum

from kernsim.fs import FileSystem, FsError, Inode
from kernsim.layout import BSIZE, Stat
from kernsim.pipe import Pipe

NFILE = 100


class FileKind(Enum):
    """What an open file refers to."""

    NONE = 0
    PIPE = 1
    INODE = 2


@dataclass(eq=False)
class OpenFile:
    """One entry of the open file table."""

    kind: FileKind = FileKind.NONE
    ref: int = 0
    readable: bool = False
    writable: bool = False
    pipe: Pipe | None = None
    ip: Inode | None = None
    off: int = 0


class FileTable:
    """A fixed number of open files shared by all users of a file system."""

    def __init__(self, fs: FileSystem, nfile: int = NFILE) -> None:
        if nfile < 1:
            raise ValueError("the file table needs at least one entry")
        self.fs = fs
        self._files = [OpenFile() for _ in range(nfile)]

    def alloc(self) -> OpenFile:
        """Claim a free entry with one reference."""
        for f in self._files:
            if f.ref == 0:
                f.ref = 1
                return f
        raise OSError(errno.ENFILE, "file table overflow")

    def open_inode(self, ip: Inode, readable: bool, writable: bool) -> OpenFile:
        """Open a referenced inode; the file takes over that reference."""
        f = self.alloc()
        f.kind = FileKind.INODE
        f.ip = ip
        f.pipe = None
        f.off = 0
        f.readable = readable
        f.writable = writable
        return f

    def pipe(self) -> tuple[OpenFile, OpenFile]:
        """Create a pipe; return its (read end, write end)."""
        f0 = self.alloc()
        try:
            f1 = self.alloc()
        except OSError:
            self.close(f0)
            raise
        p = Pipe()
        f0.kind, f0.readable, f0.writable, f0.pipe, f0.ip = FileKind.PIPE, True, False, p, None
        f1.kind, f1.readable, f1.writable, f1.pipe, f1.ip = FileKind.PIPE, False, True, p, None
        return f0, f1

    def dup(self, f: OpenFile) -> OpenFile:
        if f.ref < 1:
            raise FsError("filedup")
        f.ref += 1
        return f

    def close(self, f: OpenFile) -> None:
        """Drop a reference; the last one releases the pipe end or inode."""
        if f.ref < 1:
            raise FsError("fileclose")
        f.ref -= 1
        if f.ref > 0:
            return
        kind, pipe, ip, writable = f.kind, f.pipe, f.ip, f.writable
        f.kind = FileKind.NONE
        f.pipe = None
        f.ip = None
        if kind is FileKind.PIPE and pipe is not None:
            pipe.close(writable)
        elif kind is FileKind.INODE and ip is not None:
            with self.fs.log.transaction():
                self.fs.put(ip)

    def stat(self, f: OpenFile) -> Stat:
        if f.kind is not FileKind.INODE or f.ip is None:
            raise OSError(errno.EBADF, "stat of a file that is not an inode")
        self.fs.lock(f.ip)
        try:
            return self.fs.stat(f.ip)
        finally:
            self.fs.unlock(f.ip)

    def read(self, f: OpenFile, n: int) -> bytes:
        """Read up to ``n`` bytes, advancing the offset of an inode file."""
        if not f.readable:
            raise OSError(errno.EBADF, "file not open for reading")
        if f.kind is FileKind.PIPE and f.pipe is not None:
            return f.pipe.read(n)
        if f.kind is FileKind.INODE and f.ip is not None:
            self.fs.lock(f.ip)
            try:
                data = self.fs.read(f.ip, f.off, n)
                f.off += len(data)
            finally:
                self.fs.unlock(f.ip)
            return data
        raise FsError("fileread")

    def write(self, f: OpenFile, data: bytes) -> int:
        """Write all of ``data``; inode writes go a few blocks per transaction."""
        if not f.writable:
            raise OSError(errno.EBADF, "file not open for writing")
        if f.kind is FileKind.PIPE and f.pipe is not None:
            return f.pipe.write(data)
        if f.kind is not FileKind.INODE or f.ip is None:
            raise FsError("filewrite")
        data = bytes(data)
        # Inode, indirect block, allocation blocks and two blocks of slop
        # for unaligned writes must fit in one transaction.
        max_chunk = ((self.fs.log.max_op_blocks - 1 - 1 - 2) // 2) * BSIZE
        if max_chunk <= 0:
            raise FsError("log transactions too small for a write")
        done = 0
        while done < len(data):
            chunk = data[done : done + max_chunk]
            with self.fs.log.transaction():
                self.fs.lock(f.ip)
                try:
                    r = self.fs.write(f.ip, f.off, chunk)
                    if r > 0:
                        f.off += r
                finally:
                    self.fs.unlock(f.ip)
            if r != len(chunk):
                raise FsError("short filewrite")
            done += r
        return len(data)