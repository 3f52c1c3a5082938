"""A simulated teaching-kernel file system: image builder, buffer cache, log, inodes, pipes and small tools."""

__version__ = "0.1.0"