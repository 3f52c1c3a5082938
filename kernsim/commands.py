"""The echo, cat and ls commands, run against a file system image."""

from __future__ import annotations

import sys
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from kernsim.bufcache import BufferCache
from kernsim.disk import MemoryDisk
from kernsim.fs import FileSystem, FsError, Inode
from kernsim.journal import Log
from kernsim.layout import BSIZE, DIRSIZ, DirEntry, FileType, Stat

_PATH_MAX = 512


def echo(args: Iterable[str]) -> str:
    """Join the arguments with spaces and end with a newline."""
    args = list(args)
    return " ".join(args) + "\n" if args else ""


@contextmanager
def _opened(fs: FileSystem, path: str) -> Iterator[Inode]:
    with fs.log.transaction():
        ip = fs.lookup(path)
    try:
        fs.lock(ip)
        try:
            yield ip
        finally:
            fs.unlock(ip)
    finally:
        with fs.log.transaction():
            fs.put(ip)


def _read_all(fs: FileSystem, ip: Inode) -> bytes:
    out = bytearray()
    while chunk := fs.read(ip, len(out), BSIZE):
        out += chunk
    return bytes(out)


def cat(fs: FileSystem, paths: Iterable[str]) -> bytes:
    """Return the contents of the named files, one after another."""
    out = bytearray()
    for path in paths:
        with _opened(fs, path) as ip:
            out += _read_all(fs, ip)
    return bytes(out)


def format_name(path: str) -> str:
    """Final element of ``path``, blank-padded to DIRSIZ characters."""
    name = path.rsplit("/", 1)[-1]
    if len(name) >= DIRSIZ:
        return name
    return name.ljust(DIRSIZ)


def _line(path: str, st: Stat) -> str:
    return f"{format_name(path)} {st.type} {st.ino} {st.size}"


def _stat_path(fs: FileSystem, path: str) -> Stat:
    with _opened(fs, path) as ip:
        return fs.stat(ip)


def list_directory(fs: FileSystem, path: str) -> list[str]:
    """Lines describing ``path``: itself for a file, its entries for a directory."""
    with _opened(fs, path) as ip:
        st = fs.stat(ip)
        if st.type == FileType.FILE:
            return [_line(path, st)]
        if st.type != FileType.DIR:
            return []
        if len(path) + 1 + DIRSIZ + 1 > _PATH_MAX:
            return ["ls: path too long"]
        content = _read_all(fs, ip)

    lines = []
    for off in range(0, len(content) - DirEntry.SIZE + 1, DirEntry.SIZE):
        de = DirEntry.unpack(content[off : off + DirEntry.SIZE])
        if de.inum == 0:
            continue
        child = f"{path}/{de.name}"
        try:
            lines.append(_line(child, _stat_path(fs, child)))
        except FsError:
            lines.append(f"ls: cannot stat {child}")
    return lines


def _mount(image_path: str) -> FileSystem:
    cache = BufferCache(MemoryDisk.from_path(image_path))
    return FileSystem(cache, Log(cache))


_USAGE = "usage: commands echo args... | cat image [file ...] | ls image [path ...]\n"


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        sys.stderr.write(_USAGE)
        return 1
    command, *rest = args
    if command == "echo":
        sys.stdout.write(echo(rest))
        return 0
    if command not in ("cat", "ls") or not rest:
        sys.stderr.write(_USAGE)
        return 1

    image, *paths = rest
    try:
        fs = _mount(image)
    except OSError as exc:
        sys.stderr.write(f"{image}: {exc.strerror}\n")
        return 1

    if command == "cat":
        sys.stdout.flush()
        out = sys.stdout.buffer
        if not paths:
            while chunk := sys.stdin.buffer.read(BSIZE):
                out.write(chunk)
            out.flush()
            return 0
        for path in paths:
            try:
                data = cat(fs, [path])
            except FsError:
                out.write(f"cat: cannot open {path}\n".encode())
                out.flush()
                return 1
            out.write(data)
        out.flush()
        return 0

    for path in paths or ["."]:
        try:
            lines = list_directory(fs, path)
        except FsError:
            sys.stderr.write(f"ls: cannot open {path}\n")
            continue
        for line in lines:
            print(line)
    return 0


if __name__ == "__main__":
    sys.exit(main())