"""A disk held entirely in memory."""

from __future__ import annotations

from os import PathLike
from pathlib import Path

from kernsim.layout import BSIZE


class DiskError(Exception):
    """A request the disk cannot serve."""


class MemoryDisk:
    """Block device backed by a byte image."""

    def __init__(self, image: bytes = b"", dev: int = 1) -> None:
        self._data = bytearray(image)
        self.dev = dev
        self.nblocks = len(self._data) // BSIZE

    @classmethod
    def from_path(cls, path: str | PathLike, dev: int = 1) -> MemoryDisk:
        return cls(Path(path).read_bytes(), dev)

    @property
    def image(self) -> bytes:
        return bytes(self._data)

    def _offset(self, dev: int, blockno: int) -> int:
        if dev != self.dev:
            raise DiskError(f"request not for disk {self.dev}")
        if not 0 <= blockno < self.nblocks:
            raise DiskError("block out of range")
        return blockno * BSIZE

    def read_block(self, dev: int, blockno: int) -> bytes:
        off = self._offset(dev, blockno)
        return bytes(self._data[off : off + BSIZE])

    def write_block(self, dev: int, blockno: int, data: bytes) -> None:
        off = self._offset(dev, blockno)
        if len(data) != BSIZE:
            raise ValueError(f"a block is {BSIZE} bytes, got {len(data)}")
        self._data[off : off + BSIZE] = data

    def save(self, path: str | PathLike) -> None:
        Path(path).write_bytes(self._data)