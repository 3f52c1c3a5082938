"""File system: block allocation, inodes, directories and path names.

Every operation that changes the disk goes through the log, so callers
wrap such calls in ``log.transaction()``.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Protocol

from kernsim.bufcache import BufferCache
from kernsim.journal import Log
from kernsim.layout import (
    BPB,
    BSIZE,
    DIRSIZ,
    IPB,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    ROOTINO,
    DirEntry,
    DiskInode,
    FileType,
    Stat,
    SuperBlock,
)

NINODE = 50

_ADDR = struct.Struct("<I")
_INDIRECT = struct.Struct(f"<{NINDIRECT}I")


class FsError(Exception):
    """A file system operation failed or was misused."""


class Device(Protocol):
    def read(self, n: int) -> bytes: ...

    def write(self, data: bytes) -> int: ...


@dataclass(eq=False)
class Inode:
    """In-memory copy of an inode.

    ``ref`` counts in-memory references; the fields from ``type`` on are
    only meaningful while ``valid`` is set, which locking guarantees.
    """

    dev: int = 0
    inum: int = 0
    ref: int = 0
    locked: bool = False
    valid: bool = False
    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))


def skip_element(path: str) -> tuple[str, str] | None:
    """Split off the next path element.

    Returns ``(name, rest)`` where ``rest`` has no leading slashes and
    ``name`` is cut to DIRSIZ characters, or None if no element is left.
    """
    path = path.lstrip("/")
    if not path:
        return None
    element, _, rest = path.partition("/")
    return element[:DIRSIZ], rest.lstrip("/")


def _name_key(name: str) -> bytes:
    return name.encode("utf-8")[:DIRSIZ]


class FileSystem:
    """Inode cache and file system operations on one device."""

    def __init__(
        self, cache: BufferCache, log: Log, dev: int = 1, ninode: int = NINODE
    ) -> None:
        if ninode < 1:
            raise ValueError("the inode cache needs at least one entry")
        self.cache = cache
        self.log = log
        self.dev = dev
        self._inodes = [Inode() for _ in range(ninode)]
        self._devices: dict[int, Device] = {}
        with cache.block(dev, 1) as buf:
            self.sb = SuperBlock.unpack(bytes(buf.data))

    def register_device(self, major: int, device: Device) -> None:
        """Route reads and writes of device inodes with this major number."""
        if major < 0:
            raise ValueError(f"bad major device number {major}")
        self._devices[major] = device

    # Blocks.

    def _zero_block(self, blockno: int) -> None:
        with self.cache.block(self.dev, blockno) as buf:
            buf.data[:] = bytes(BSIZE)
            self.log.log_write(buf)

    def _balloc(self) -> int:
        size = self.sb.size
        for base in range(0, size, BPB):
            found = None
            with self.cache.block(self.dev, self.sb.bitmap_block(base)) as buf:
                for bi in range(min(BPB, size - base)):
                    mask = 1 << (bi % 8)
                    if not buf.data[bi // 8] & mask:
                        buf.data[bi // 8] |= mask
                        self.log.log_write(buf)
                        found = base + bi
                        break
            if found is not None:
                self._zero_block(found)
                return found
        raise FsError("balloc: out of blocks")

    def _bfree(self, blockno: int) -> None:
        with self.cache.block(self.dev, self.sb.bitmap_block(blockno)) as buf:
            bi = blockno % BPB
            mask = 1 << (bi % 8)
            if not buf.data[bi // 8] & mask:
                raise FsError("freeing free block")
            buf.data[bi // 8] &= ~mask & 0xFF
            self.log.log_write(buf)

    # Inodes.

    def _slot(self, inum: int) -> tuple[int, int]:
        return self.sb.inode_block(inum), (inum % IPB) * DiskInode.SIZE

    def alloc_inode(self, type_: FileType | int) -> Inode:
        """Allocate a free on-disk inode of the given type; return it unlocked."""
        for inum in range(1, self.sb.ninodes):
            blockno, off = self._slot(inum)
            with self.cache.block(self.dev, blockno) as buf:
                din = DiskInode.unpack(bytes(buf.data[off : off + DiskInode.SIZE]))
                if din.type != 0:
                    continue
                buf.data[off : off + DiskInode.SIZE] = DiskInode(type=int(type_)).pack()
                self.log.log_write(buf)
            return self.get_inode(inum)
        raise FsError("ialloc: no inodes")

    def get_inode(self, inum: int) -> Inode:
        """Find or create the cache entry for ``inum``; neither locks nor reads it."""
        empty = None
        for ip in self._inodes:
            if ip.ref > 0 and ip.dev == self.dev and ip.inum == inum:
                ip.ref += 1
                return ip
            if empty is None and ip.ref == 0:
                empty = ip
        if empty is None:
            raise FsError("iget: no inodes")
        empty.dev = self.dev
        empty.inum = inum
        empty.ref = 1
        empty.valid = False
        empty.locked = False
        return empty

    def dup(self, ip: Inode) -> Inode:
        ip.ref += 1
        return ip

    def lock(self, ip: Inode) -> None:
        """Lock the inode, reading it from disk if needed."""
        if ip is None or ip.ref < 1:
            raise FsError("ilock")
        if ip.locked:
            raise FsError(f"inode {ip.inum} is already locked")
        ip.locked = True
        if ip.valid:
            return
        blockno, off = self._slot(ip.inum)
        with self.cache.block(ip.dev, blockno) as buf:
            din = DiskInode.unpack(bytes(buf.data[off : off + DiskInode.SIZE]))
        ip.type = din.type
        ip.major = din.major
        ip.minor = din.minor
        ip.nlink = din.nlink
        ip.size = din.size
        ip.addrs = list(din.addrs)
        ip.valid = True
        if ip.type == 0:
            ip.locked = False
            raise FsError("ilock: no type")

    def unlock(self, ip: Inode) -> None:
        if ip is None or not ip.locked or ip.ref < 1:
            raise FsError("iunlock")
        ip.locked = False

    def put(self, ip: Inode) -> None:
        """Drop a reference; the last one to an unlinked inode frees it on disk."""
        if ip.locked:
            raise FsError(f"put of locked inode {ip.inum}")
        if ip.ref < 1:
            raise FsError("put of unreferenced inode")
        ip.locked = True
        try:
            if ip.valid and ip.nlink == 0 and ip.ref == 1:
                self.truncate(ip)
                ip.type = 0
                self.update(ip)
                ip.valid = False
        finally:
            ip.locked = False
        ip.ref -= 1

    def unlock_put(self, ip: Inode) -> None:
        self.unlock(ip)
        self.put(ip)

    def _require_locked(self, ip: Inode) -> None:
        if not ip.locked:
            raise FsError(f"inode {ip.inum} is not locked")

    def update(self, ip: Inode) -> None:
        """Copy a locked in-memory inode to disk."""
        self._require_locked(ip)
        blockno, off = self._slot(ip.inum)
        din = DiskInode(
            type=ip.type,
            major=ip.major,
            minor=ip.minor,
            nlink=ip.nlink,
            size=ip.size,
            addrs=list(ip.addrs),
        )
        with self.cache.block(ip.dev, blockno) as buf:
            buf.data[off : off + DiskInode.SIZE] = din.pack()
            self.log.log_write(buf)

    def _bmap(self, ip: Inode, bn: int) -> int:
        if bn < NDIRECT:
            if ip.addrs[bn] == 0:
                ip.addrs[bn] = self._balloc()
            return ip.addrs[bn]
        bn -= NDIRECT
        if bn >= NINDIRECT:
            raise FsError("bmap: out of range")
        if ip.addrs[NDIRECT] == 0:
            ip.addrs[NDIRECT] = self._balloc()
        with self.cache.block(ip.dev, ip.addrs[NDIRECT]) as buf:
            (addr,) = _ADDR.unpack_from(buf.data, bn * _ADDR.size)
            if addr == 0:
                addr = self._balloc()
                _ADDR.pack_into(buf.data, bn * _ADDR.size, addr)
                self.log.log_write(buf)
        return addr

    def truncate(self, ip: Inode) -> None:
        """Free every block of a locked inode and set its size to zero."""
        self._require_locked(ip)
        for i in range(NDIRECT):
            if ip.addrs[i]:
                self._bfree(ip.addrs[i])
                ip.addrs[i] = 0
        if ip.addrs[NDIRECT]:
            with self.cache.block(ip.dev, ip.addrs[NDIRECT]) as buf:
                entries = _INDIRECT.unpack(bytes(buf.data))
            for addr in entries:
                if addr:
                    self._bfree(addr)
            self._bfree(ip.addrs[NDIRECT])
            ip.addrs[NDIRECT] = 0
        ip.size = 0
        self.update(ip)

    def stat(self, ip: Inode) -> Stat:
        self._require_locked(ip)
        return Stat(type=ip.type, dev=ip.dev, ino=ip.inum, nlink=ip.nlink, size=ip.size)

    def _device(self, ip: Inode) -> Device:
        device = self._devices.get(ip.major)
        if device is None:
            raise FsError(f"no device with major number {ip.major}")
        return device

    def read(self, ip: Inode, off: int, n: int) -> bytes:
        """Read up to ``n`` bytes at ``off`` from a locked inode."""
        self._require_locked(ip)
        if ip.type == FileType.DEV:
            return self._device(ip).read(n)
        if off < 0 or n < 0 or off > ip.size:
            raise FsError("read outside file")
        n = min(n, ip.size - off)
        out = bytearray()
        while len(out) < n:
            start = off % BSIZE
            m = min(n - len(out), BSIZE - start)
            with self.cache.block(ip.dev, self._bmap(ip, off // BSIZE)) as buf:
                out += buf.data[start : start + m]
            off += m
        return bytes(out)

    def write(self, ip: Inode, off: int, data: bytes) -> int:
        """Write ``data`` at ``off`` into a locked inode, growing it if needed."""
        self._require_locked(ip)
        if ip.type == FileType.DEV:
            return self._device(ip).write(bytes(data))
        n = len(data)
        if off < 0 or off > ip.size:
            raise FsError("write outside file")
        if off + n > MAXFILE * BSIZE:
            raise FsError("file too large")
        pos = 0
        while pos < n:
            start = off % BSIZE
            m = min(n - pos, BSIZE - start)
            with self.cache.block(ip.dev, self._bmap(ip, off // BSIZE)) as buf:
                buf.data[start : start + m] = data[pos : pos + m]
                self.log.log_write(buf)
            pos += m
            off += m
        if n > 0 and off > ip.size:
            ip.size = off
            self.update(ip)
        return n

    # Directories.

    def _entries(self, dp: Inode):
        for off in range(0, dp.size, DirEntry.SIZE):
            raw = self.read(dp, off, DirEntry.SIZE)
            if len(raw) != DirEntry.SIZE:
                raise FsError("short directory entry")
            yield off, DirEntry.unpack(raw)

    def dir_lookup(self, dp: Inode, name: str) -> tuple[Inode, int] | None:
        """Find ``name`` in locked directory ``dp``; return (inode, offset) or None."""
        self._require_locked(dp)
        if dp.type != FileType.DIR:
            raise FsError("dirlookup not DIR")
        key = _name_key(name)
        for off, de in self._entries(dp):
            if de.inum != 0 and _name_key(de.name) == key:
                return self.get_inode(de.inum), off
        return None

    def dir_link(self, dp: Inode, name: str, inum: int) -> None:
        """Add an entry (name, inum) to locked directory ``dp``."""
        found = self.dir_lookup(dp, name)
        if found is not None:
            ip = found[0]
            if ip is dp:
                ip.ref -= 1
            else:
                self.put(ip)
            raise FsError(f"{name}: name already exists")
        off = dp.size
        for entry_off, de in self._entries(dp):
            if de.inum == 0:
                off = entry_off
                break
        if self.write(dp, off, DirEntry(inum, name).pack()) != DirEntry.SIZE:
            raise FsError("dirlink")

    # Paths.

    def _namex(self, path: str, parent: bool, cwd: Inode | None) -> tuple[Inode, str]:
        if path.startswith("/") or cwd is None:
            ip = self.get_inode(ROOTINO)
        else:
            ip = self.dup(cwd)
        name = ""
        while (step := skip_element(path)) is not None:
            name, path = step
            self.lock(ip)
            if ip.type != FileType.DIR:
                self.unlock_put(ip)
                raise FsError(f"{name}: parent is not a directory")
            if parent and not path:
                self.unlock(ip)
                return ip, name
            found = self.dir_lookup(ip, name)
            if found is None:
                self.unlock_put(ip)
                raise FsError(f"{name}: no such file or directory")
            self.unlock_put(ip)
            ip = found[0]
        if parent:
            self.put(ip)
            raise FsError("path has no final element")
        return ip, name

    def lookup(self, path: str, cwd: Inode | None = None) -> Inode:
        """Return the unlocked, referenced inode named by ``path``."""
        return self._namex(path, False, cwd)[0]

    def lookup_parent(self, path: str, cwd: Inode | None = None) -> tuple[Inode, str]:
        """Return the parent directory of ``path`` and its final element."""
        return self._namex(path, True, cwd)