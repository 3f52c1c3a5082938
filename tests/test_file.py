import errno

import pytest

from kernsim.bufcache import BufferCache
from kernsim.disk import MemoryDisk
from kernsim.file import FileKind, FileTable
from kernsim.fs import FileSystem, FsError
from kernsim.journal import Log
from kernsim.layout import FileType
from kernsim.mkfs import make_filesystem

README = b"hello world\n"


def _mount(files=(("README", README),)):
    cache = BufferCache(MemoryDisk(make_filesystem(files)))
    return FileSystem(cache, Log(cache))


def _lookup(fs, path):
    with fs.log.transaction():
        return fs.lookup(path)


def _new_file(fs, nlink=1):
    with fs.log.transaction():
        ip = fs.alloc_inode(FileType.FILE)
        fs.lock(ip)
        ip.nlink = nlink
        fs.update(ip)
        fs.unlock(ip)
    return ip


def test_read_inode_file_advances_offset():
    fs = _mount()
    table = FileTable(fs)
    f = table.open_inode(_lookup(fs, "/README"), True, False)
    assert table.read(f, 5) == README[:5]
    assert f.off == 5
    assert table.read(f, 100) == README[5:]
    assert table.read(f, 100) == b""


def test_stat_reports_size_and_type():
    fs = _mount()
    table = FileTable(fs)
    f = table.open_inode(_lookup(fs, "/README"), True, False)
    st = table.stat(f)
    assert st.size == len(README)
    assert st.type == FileType.FILE


def test_write_overwrites_and_reads_back():
    fs = _mount()
    table = FileTable(fs)
    ip = _lookup(fs, "/README")
    w = table.open_inode(fs.dup(ip), False, True)
    assert table.write(w, b"abc") == 3
    assert w.off == 3
    r = table.open_inode(ip, True, False)
    assert table.read(r, 100) == b"abc" + README[3:]


def test_large_write_spans_several_transactions():
    fs = _mount()
    table = FileTable(fs)
    ip = _new_file(fs)
    data = bytes(range(250)) * 16
    w = table.open_inode(fs.dup(ip), False, True)
    assert table.write(w, data) == len(data)
    table.close(w)
    r = table.open_inode(ip, True, False)
    assert table.stat(r).size == len(data)
    assert table.read(r, len(data) + 10) == data
    assert fs.log.pending == ()


def test_close_drops_inode_reference():
    fs = _mount()
    table = FileTable(fs)
    ip = _lookup(fs, "/README")
    before = ip.ref
    f = table.open_inode(ip, True, False)
    table.close(f)
    assert ip.ref == before - 1
    assert f.kind is FileKind.NONE


def test_closing_last_reference_to_unlinked_inode_frees_it():
    fs = _mount()
    table = FileTable(fs)
    ip = _new_file(fs, nlink=0)
    inum = ip.inum
    f = table.open_inode(ip, True, True)
    table.write(f, b"gone soon")
    table.close(f)
    again = fs.get_inode(inum)
    with pytest.raises(FsError):
        fs.lock(again)


def test_dup_keeps_file_open_until_last_close():
    fs = _mount()
    table = FileTable(fs)
    f = table.open_inode(_lookup(fs, "/README"), True, False)
    table.dup(f)
    table.close(f)
    assert f.ref == 1
    assert table.read(f, 5) == README[:5]
    table.close(f)
    with pytest.raises(FsError):
        table.close(f)


def test_table_overflow():
    fs = _mount()
    table = FileTable(fs, nfile=2)
    table.alloc()
    table.alloc()
    with pytest.raises(OSError) as info:
        table.alloc()
    assert info.value.errno == errno.ENFILE


def test_failed_pipe_returns_its_slot():
    fs = _mount()
    table = FileTable(fs, nfile=1)
    with pytest.raises(OSError):
        table.pipe()
    assert table.alloc().ref == 1


def test_pipe_ends_carry_data_and_eof():
    fs = _mount()
    table = FileTable(fs)
    rd, wr = table.pipe()
    assert table.write(wr, b"through") == 7
    assert table.read(rd, 100) == b"through"
    table.close(wr)
    assert table.read(rd, 100) == b""


def test_wrong_direction_is_rejected():
    fs = _mount()
    table = FileTable(fs)
    rd, wr = table.pipe()
    with pytest.raises(OSError) as info:
        table.read(wr, 1)
    assert info.value.errno == errno.EBADF
    with pytest.raises(OSError):
        table.write(rd, b"x")


def test_stat_of_pipe_is_rejected():
    fs = _mount()
    table = FileTable(fs)
    rd, _ = table.pipe()
    with pytest.raises(OSError) as info:
        table.stat(rd)
    assert info.value.errno == errno.EBADF