# kernsim

A small model of a classic teaching kernel's storage stack, written as an
ordinary Python library with no dependencies beyond the standard library.

| Module | What it holds |
| --- | --- |
| `kernsim.layout` | On-disk constants and packed structures: `SuperBlock`, `DiskInode`, `DirEntry`, `Stat`, `FileType` |
| `kernsim.disk` | `MemoryDisk`, a block device backed by a byte image |
| `kernsim.mkfs` | `ImageBuilder` and `make_filesystem` for building images |
| `kernsim.bufcache` | `BufferCache`, a block cache with least-recently-used recycling |
| `kernsim.journal` | `Log`, a write-ahead redo log with recovery on start-up |
| `kernsim.fs` | `FileSystem`: block allocation, inodes, directories, path lookup |
| `kernsim.pipe` | `Pipe`, a bounded byte pipe |
| `kernsim.file` | `FileTable` of reference-counted `OpenFile` entries on inodes and pipes |
| `kernsim.console` | `Console` with line-edited input and an 80x25 `Screen` |
| `kernsim.kbd` | `KeyboardDecoder` and `decode_scancodes` for PC scancodes |
| `kernsim.printfmt` | `format_printf` / `fprintf` understanding `%d %x %p %s %c` |
| `kernsim.grep` | `match` and `grep` with the `^ . * $` operators |
| `kernsim.commands` | `echo`, `cat`, `list_directory` and `format_name` |

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Building a disk image

```
kernsim-mkfs fs.img README.md notes.txt
```

This writes a 1000-block image holding the named files in its root
directory. File names may not contain `/`, a leading underscore is dropped,
and names are cut to 14 bytes.

From Python, `make_filesystem` takes `(name, data)` pairs and returns the image:

```python
from kernsim.mkfs import make_filesystem

image = make_filesystem([("hello.txt", b"hello\n")])
```

## Reading an image

```python
from kernsim.disk import MemoryDisk
from kernsim.bufcache import BufferCache
from kernsim.journal import Log
from kernsim.fs import FileSystem
from kernsim.commands import cat, list_directory

disk = MemoryDisk.from_path("fs.img")
cache = BufferCache(disk)
log = Log(cache)          # replays any committed transaction left in the log
fs = FileSystem(cache, log)

print(list_directory(fs, "/"))   # one "name type inum size" line per entry
print(cat(fs, ["/hello.txt"]))   # b'hello\n'
```

## Changing an image

Every change goes through `Log.transaction()`; the blocks touched inside it
are committed as one unit when the outermost transaction ends.

```python
from kernsim.layout import FileType

with fs.log.transaction():
    ip = fs.alloc_inode(FileType.FILE)
    fs.lock(ip)
    ip.nlink = 1
    fs.update(ip)
    fs.write(ip, 0, b"new contents\n")
    root = fs.lookup("/")
    fs.lock(root)
    fs.dir_link(root, "new.txt", ip.inum)
    fs.unlock_put(root)
    fs.unlock_put(ip)

disk.save("fs.img")
```

Failures raise exceptions: `FsError`, `LogError`, `CacheError` and
`DiskError` for the respective layers.

## Command-line tools

`kernsim-fs` takes the command first, then the image:

```
kernsim-fs ls fs.img /
kernsim-fs cat fs.img /hello.txt
kernsim-fs echo some words
```

`ls` with no path lists the root directory; `cat` with no path copies
standard input to standard output.

Search text with the small regular-expression matcher:

```
kernsim-grep 'ab*c' file.txt
```

With no file arguments, `kernsim-grep` reads standard input. Only
newline-terminated lines are examined.

## What it does not do

There are no processes, scheduler or system calls, and no shell: the file
system is driven by calling its methods directly. Nothing ever waits on
another party: `Console.read` and `Pipe.read`/`Pipe.write` raise
`BlockingIOError` where a kernel would put the caller to sleep, and
`Log.begin_op` raises `LogError` instead of waiting for log space. The
command-line tools only read images; there are no commands for creating
directories, linking or removing files.