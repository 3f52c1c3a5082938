[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kernsim"
version = "0.1.0"
description = "A simulated teaching-kernel file system: disk images, buffer cache, write-ahead log, inodes, pipes and small user tools"
requires-python = ">=3.10"
dependencies = []
keywords = ["filesystem", "operating-system", "simulation", "journal", "inode", "teaching"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Education",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
    "Topic :: Education",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
kernsim-mkfs = "kernsim.mkfs:main"
kernsim-grep = "kernsim.grep:main"
kernsim-fs = "kernsim.commands:main"

[tool.hatch.build.targets.wheel]
packages = ["kernsim"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
