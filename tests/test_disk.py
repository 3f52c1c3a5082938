import pytest

from kernsim.disk import DiskError, MemoryDisk
from kernsim.layout import BSIZE


def test_fresh_disk_reads_zeros():
    disk = MemoryDisk(bytes(4 * BSIZE))
    assert disk.nblocks == 4
    assert disk.read_block(1, 3) == bytes(BSIZE)


def test_write_then_read():
    disk = MemoryDisk(bytes(4 * BSIZE))
    payload = bytes(range(256)) * 2
    disk.write_block(1, 2, payload)
    assert disk.read_block(1, 2) == payload
    assert disk.read_block(1, 1) == bytes(BSIZE)
    assert disk.image[2 * BSIZE : 3 * BSIZE] == payload


def test_wrong_device():
    disk = MemoryDisk(bytes(BSIZE))
    with pytest.raises(DiskError):
        disk.read_block(0, 0)


def test_block_out_of_range():
    disk = MemoryDisk(bytes(2 * BSIZE))
    with pytest.raises(DiskError):
        disk.read_block(1, 2)
    with pytest.raises(DiskError):
        disk.write_block(1, -1, bytes(BSIZE))


def test_partial_block_ignored():
    disk = MemoryDisk(bytes(2 * BSIZE + 100))
    assert disk.nblocks == 2


def test_write_wrong_length():
    disk = MemoryDisk(bytes(BSIZE))
    with pytest.raises(ValueError):
        disk.write_block(1, 0, b"short")


def test_save_and_load(tmp_path):
    disk = MemoryDisk(bytes(3 * BSIZE), dev=1)
    disk.write_block(1, 1, b"\x42" * BSIZE)
    path = tmp_path / "fs.img"
    disk.save(path)
    loaded = MemoryDisk.from_path(path)
    assert loaded.read_block(1, 1) == b"\x42" * BSIZE
    assert loaded.image == disk.image