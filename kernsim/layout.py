"""On-disk file system layout: constants and packed little-endian structures."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum

ROOTINO = 1
BSIZE = 512
NDIRECT = 12
NINDIRECT = BSIZE // 4
MAXFILE = NDIRECT + NINDIRECT
DIRSIZ = 14
BPB = BSIZE * 8

_SUPERBLOCK = struct.Struct("<7I")
_DINODE = struct.Struct(f"<4hI{NDIRECT + 1}I")
_DIRENT = struct.Struct(f"<H{DIRSIZ}s")

IPB = BSIZE // _DINODE.size


class FileType(IntEnum):
    """Kinds of inode."""

    DIR = 1
    FILE = 2
    DEV = 3


def _require(data: bytes, size: int, what: str) -> None:
    if len(data) < size:
        raise ValueError(f"{what} needs {size} bytes, got {len(data)}")


@dataclass
class SuperBlock:
    """Describes the disk layout."""

    size: int = 0
    nblocks: int = 0
    ninodes: int = 0
    nlog: int = 0
    logstart: int = 0
    inodestart: int = 0
    bmapstart: int = 0

    SIZE = _SUPERBLOCK.size

    def pack(self) -> bytes:
        return _SUPERBLOCK.pack(
            self.size,
            self.nblocks,
            self.ninodes,
            self.nlog,
            self.logstart,
            self.inodestart,
            self.bmapstart,
        )

    @classmethod
    def unpack(cls, data: bytes) -> SuperBlock:
        _require(data, _SUPERBLOCK.size, "superblock")
        return cls(*_SUPERBLOCK.unpack_from(data))

    def inode_block(self, inum: int) -> int:
        """Block holding inode ``inum``."""
        return inum // IPB + self.inodestart

    def bitmap_block(self, blockno: int) -> int:
        """Bitmap block holding the bit for block ``blockno``."""
        return blockno // BPB + self.bmapstart


@dataclass
class DiskInode:
    """Inode as stored on disk."""

    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))

    SIZE = _DINODE.size

    def __post_init__(self) -> None:
        if len(self.addrs) != NDIRECT + 1:
            raise ValueError(f"an inode holds exactly {NDIRECT + 1} addresses")

    def pack(self) -> bytes:
        return _DINODE.pack(
            int(self.type), self.major, self.minor, self.nlink, self.size, *self.addrs
        )

    @classmethod
    def unpack(cls, data: bytes) -> DiskInode:
        _require(data, _DINODE.size, "inode")
        values = _DINODE.unpack_from(data)
        return cls(*values[:5], addrs=list(values[5:]))


@dataclass
class DirEntry:
    """Directory entry: inode number and a name of at most DIRSIZ bytes."""

    inum: int
    name: str

    SIZE = _DIRENT.size

    def pack(self) -> bytes:
        return _DIRENT.pack(self.inum, self.name.encode("utf-8")[:DIRSIZ])

    @classmethod
    def unpack(cls, data: bytes) -> DirEntry:
        _require(data, _DIRENT.size, "directory entry")
        inum, raw = _DIRENT.unpack_from(data)
        return cls(inum, raw.split(b"\0", 1)[0].decode("utf-8", "replace"))


@dataclass
class Stat:
    """Metadata reported for an inode."""

    type: int
    dev: int
    ino: int
    nlink: int
    size: int