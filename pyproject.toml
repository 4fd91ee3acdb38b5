[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "spillfs"
version = "0.1.0"
description = "Memory-first temporary file store that spills chunked files to disk"
requires-python = ">=3.10"
dependencies = []
keywords = ["temporary files", "memory", "chunk allocator", "spill to disk", "filesystem"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["spillfs"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
