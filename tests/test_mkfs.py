import struct

import pytest

from kernsim.layout import (
    BSIZE,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    ROOTINO,
    DirEntry,
    FileType,
    SuperBlock,
)
from kernsim.mkfs import ImageBuilder, main, make_filesystem


def _read_file(builder, inum):
    din = builder.read_inode(inum)
    blocks = [a for a in din.addrs[:NDIRECT] if a]
    if din.addrs[NDIRECT]:
        indirect = struct.unpack(f"<{NINDIRECT}I", builder.read_sector(din.addrs[NDIRECT]))
        blocks += [a for a in indirect if a]
    data = b"".join(builder.read_sector(b) for b in blocks)
    return data[: din.size]


def _root_entries(builder):
    raw = _read_file(builder, builder.root)
    return [
        DirEntry.unpack(raw[i : i + DirEntry.SIZE])
        for i in range(0, len(raw), DirEntry.SIZE)
        if DirEntry.unpack(raw[i : i + DirEntry.SIZE]).inum
    ]


def test_superblock_written():
    builder = ImageBuilder(fs_size=200, log_size=10, ninodes=40)
    sb = SuperBlock.unpack(builder.read_sector(1))
    assert sb == builder.sb
    assert sb.size == 200
    assert sb.nblocks + builder.nmeta == sb.size
    assert sb.logstart == 2
    assert sb.inodestart == 2 + 10
    assert sb.bmapstart == sb.inodestart + builder.ninodeblocks


def test_root_directory():
    builder = ImageBuilder()
    assert builder.root == ROOTINO
    assert builder.read_inode(ROOTINO).type == FileType.DIR
    entries = _root_entries(builder)
    assert [(e.inum, e.name) for e in entries] == [(ROOTINO, "."), (ROOTINO, "..")]


def test_add_file_strips_underscore_and_stores_data():
    builder = ImageBuilder()
    payload = bytes(range(256)) * 30
    inum = builder.add_file("_cat", payload)
    assert _root_entries(builder)[-1] == DirEntry(inum, "cat")
    din = builder.read_inode(inum)
    assert din.type == FileType.FILE
    assert din.nlink == 1
    assert din.size == len(payload)
    assert din.addrs[NDIRECT] != 0
    assert _read_file(builder, inum) == payload


def test_append_in_pieces_matches_single_append():
    builder = ImageBuilder()
    inum = builder.alloc_inode(FileType.FILE)
    for chunk in (b"hello ", b"x" * 700, b" world"):
        builder.append(inum, chunk)
    assert _read_file(builder, inum) == b"hello " + b"x" * 700 + b" world"


def test_finish_rounds_root_and_writes_bitmap():
    builder = ImageBuilder()
    builder.add_file("README", b"text\n")
    before = builder.read_inode(ROOTINO).size
    image = builder.finish()
    after = builder.read_inode(ROOTINO).size
    assert after % BSIZE == 0
    assert after // BSIZE == before // BSIZE + 1
    bitmap = image[builder.sb.bmapstart * BSIZE :][:BSIZE]
    used = builder.free_block
    for i in range(used + 16):
        assert bool(bitmap[i // 8] & (1 << (i % 8))) == (i < used)


def test_finish_twice_rejected():
    builder = ImageBuilder()
    builder.finish()
    with pytest.raises(RuntimeError):
        builder.finish()
    with pytest.raises(RuntimeError):
        builder.add_file("late", b"")


def test_slash_in_name_rejected():
    with pytest.raises(ValueError):
        ImageBuilder().add_file("a/b", b"")


def test_file_too_large():
    with pytest.raises(ValueError):
        ImageBuilder().add_file("big", bytes(MAXFILE * BSIZE + 1))


def test_max_size_file_fits():
    builder = ImageBuilder()
    payload = b"\x07" * (MAXFILE * BSIZE)
    inum = builder.add_file("big", payload)
    assert _read_file(builder, inum) == payload


def test_out_of_inodes():
    builder = ImageBuilder(ninodes=3)
    builder.add_file("one", b"")
    with pytest.raises(ValueError):
        builder.add_file("two", b"")


def test_make_filesystem():
    image = make_filesystem([("_echo", b"abc")], fs_size=300)
    assert len(image) == 300 * BSIZE
    assert SuperBlock.unpack(image[BSIZE:]).size == 300


def test_main_writes_image(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "README").write_bytes(b"hello\n")
    (tmp_path / "_ls").write_bytes(b"\x7fELF")
    assert main(["fs.img", "README", "_ls"]) == 0
    image = (tmp_path / "fs.img").read_bytes()
    assert len(image) == ImageBuilder().sb.size * BSIZE
    assert "balloc: first" in capsys.readouterr().out


def test_main_usage(capsys):
    assert main([]) == 1
    assert "Usage" in capsys.readouterr().err


def test_main_missing_input(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert main(["fs.img", "absent"]) == 1