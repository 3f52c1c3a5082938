"""Build a file system image holding a root directory and a set of files."""

from __future__ import annotations

import struct
import sys
from collections.abc import Iterable
from pathlib import Path

from kernsim.layout import (
    BPB,
    BSIZE,
    IPB,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    ROOTINO,
    DirEntry,
    DiskInode,
    FileType,
    SuperBlock,
)

FSSIZE = 1000
LOGSIZE = 30
NINODES = 200

_INDIRECT = struct.Struct(f"<{NINDIRECT}I")


class ImageBuilder:
    """Lays out a fresh image and appends files to its root directory.

    Layout: [ boot block | superblock | log | inode blocks | bitmap | data blocks ]
    """

    def __init__(
        self, fs_size: int = FSSIZE, log_size: int = LOGSIZE, ninodes: int = NINODES
    ) -> None:
        self.fs_size = fs_size
        self.nlog = log_size
        self.nbitmap = fs_size // BPB + 1
        self.ninodeblocks = ninodes // IPB + 1
        self.nmeta = 2 + log_size + self.ninodeblocks + self.nbitmap
        self.nblocks = fs_size - self.nmeta
        if self.nblocks <= 0:
            raise ValueError("image too small for its metadata")
        self.sb = SuperBlock(
            size=fs_size,
            nblocks=self.nblocks,
            ninodes=ninodes,
            nlog=log_size,
            logstart=2,
            inodestart=2 + log_size,
            bmapstart=2 + log_size + self.ninodeblocks,
        )
        self.free_inode = 1
        self.free_block = self.nmeta
        self._image = bytearray(fs_size * BSIZE)
        self._finished = False

        self.write_sector(1, self.sb.pack().ljust(BSIZE, b"\0"))
        self.root = self.alloc_inode(FileType.DIR)
        for name in (".", ".."):
            self.append(self.root, DirEntry(self.root, name).pack())

    @property
    def image(self) -> bytes:
        return bytes(self._image)

    def _check_sector(self, sec: int) -> int:
        if not 0 <= sec < self.fs_size:
            raise ValueError(f"sector {sec} outside image")
        return sec * BSIZE

    def write_sector(self, sec: int, data: bytes) -> None:
        off = self._check_sector(sec)
        if len(data) != BSIZE:
            raise ValueError(f"a sector is {BSIZE} bytes, got {len(data)}")
        self._image[off : off + BSIZE] = data

    def read_sector(self, sec: int) -> bytes:
        off = self._check_sector(sec)
        return bytes(self._image[off : off + BSIZE])

    def _inode_slot(self, inum: int) -> tuple[int, int]:
        return self.sb.inode_block(inum), (inum % IPB) * DiskInode.SIZE

    def read_inode(self, inum: int) -> DiskInode:
        block, off = self._inode_slot(inum)
        return DiskInode.unpack(self.read_sector(block)[off : off + DiskInode.SIZE])

    def write_inode(self, inum: int, dinode: DiskInode) -> None:
        block, off = self._inode_slot(inum)
        data = bytearray(self.read_sector(block))
        data[off : off + DiskInode.SIZE] = dinode.pack()
        self.write_sector(block, data)

    def alloc_inode(self, type_: FileType | int) -> int:
        if self.free_inode >= self.sb.ninodes:
            raise ValueError("out of inodes")
        inum = self.free_inode
        self.free_inode += 1
        self.write_inode(inum, DiskInode(type=int(type_), nlink=1))
        return inum

    def _alloc_block(self) -> int:
        if self.free_block >= self.fs_size:
            raise ValueError("out of blocks")
        blockno = self.free_block
        self.free_block += 1
        return blockno

    def _block_for(self, din: DiskInode, fbn: int) -> int:
        if fbn < NDIRECT:
            if din.addrs[fbn] == 0:
                din.addrs[fbn] = self._alloc_block()
            return din.addrs[fbn]
        if din.addrs[NDIRECT] == 0:
            din.addrs[NDIRECT] = self._alloc_block()
        indirect = list(_INDIRECT.unpack(self.read_sector(din.addrs[NDIRECT])))
        slot = fbn - NDIRECT
        if indirect[slot] == 0:
            indirect[slot] = self._alloc_block()
            self.write_sector(din.addrs[NDIRECT], _INDIRECT.pack(*indirect))
        return indirect[slot]

    def append(self, inum: int, data: bytes) -> None:
        """Append ``data`` to the end of inode ``inum``."""
        din = self.read_inode(inum)
        off = din.size
        pos = 0
        while pos < len(data):
            fbn = off // BSIZE
            if fbn >= MAXFILE:
                raise ValueError("file too large")
            blockno = self._block_for(din, fbn)
            n1 = min(len(data) - pos, (fbn + 1) * BSIZE - off)
            start = off - fbn * BSIZE
            block = bytearray(self.read_sector(blockno))
            block[start : start + n1] = data[pos : pos + n1]
            self.write_sector(blockno, block)
            pos += n1
            off += n1
        din.size = off
        self.write_inode(inum, din)

    def add_file(self, name: str, data: bytes) -> int:
        """Add a file to the root directory; a leading '_' is dropped from its name."""
        if self._finished:
            raise RuntimeError("image already finished")
        if "/" in name:
            raise ValueError(f"file name must not contain '/': {name}")
        if name.startswith("_"):
            name = name[1:]
        inum = self.alloc_inode(FileType.FILE)
        self.append(self.root, DirEntry(inum, name).pack())
        self.append(inum, data)
        return inum

    def _write_bitmap(self, used: int) -> None:
        if used >= BPB:
            raise ValueError("too many blocks in use for one bitmap block")
        bits = bytearray(BSIZE)
        for i in range(used):
            bits[i // 8] |= 1 << (i % 8)
        self.write_sector(self.sb.bmapstart, bits)

    def finish(self) -> bytes:
        """Round up the root directory size, write the bitmap and return the image."""
        if self._finished:
            raise RuntimeError("image already finished")
        din = self.read_inode(self.root)
        din.size = (din.size // BSIZE + 1) * BSIZE
        self.write_inode(self.root, din)
        self._write_bitmap(self.free_block)
        self._finished = True
        return self.image


def make_filesystem(
    files: Iterable[tuple[str, bytes]],
    fs_size: int = FSSIZE,
    log_size: int = LOGSIZE,
    ninodes: int = NINODES,
) -> bytes:
    """Build a complete image holding ``files`` as (name, data) pairs."""
    builder = ImageBuilder(fs_size, log_size, ninodes)
    for name, data in files:
        builder.add_file(name, data)
    return builder.finish()


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        print("Usage: mkfs fs.img files...", file=sys.stderr)
        return 1
    image_path, *inputs = args

    builder = ImageBuilder()
    assert builder.root == ROOTINO
    print(
        f"nmeta {builder.nmeta} (boot, super, log blocks {builder.nlog} "
        f"inode blocks {builder.ninodeblocks}, bitmap blocks {builder.nbitmap}) "
        f"blocks {builder.nblocks} total {builder.fs_size}"
    )

    try:
        for path in inputs:
            if "/" in path:
                raise ValueError(f"{path}: name must not contain '/'")
            try:
                data = Path(path).read_bytes()
            except OSError as exc:
                print(f"{path}: {exc.strerror}", file=sys.stderr)
                return 1
            builder.add_file(path, data)
        print(f"balloc: first {builder.free_block} blocks have been allocated")
        image = builder.finish()
    except ValueError as exc:
        print(f"mkfs: {exc}", file=sys.stderr)
        return 1
    print(f"balloc: write bitmap block at sector {builder.sb.bmapstart}")

    try:
        Path(image_path).write_bytes(image)
    except OSError as exc:
        print(f"{image_path}: {exc.strerror}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())