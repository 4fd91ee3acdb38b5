"""Pieces of a spill file and the work items that move them to disk."""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Union

from spillfs.allocator import AllocatedChunk


@dataclass(frozen=True)
class DiskChunk:
    """A run of ``length`` bytes stored in the backing file at ``offset``."""

    offset: int
    length: int

    def __len__(self) -> int:
        return self.length


@dataclass(eq=False)
class MemoryChunk:
    """A run of bytes still held in an allocator chunk."""

    chunk: AllocatedChunk

    def __len__(self) -> int:
        return len(self.chunk)


class SharedFile:
    """A backing file shared between a spill file and the flush workers."""

    def __init__(self, path: Union[str, os.PathLike], handle: BinaryIO) -> None:
        self.path = Path(path)
        self.handle = handle
        self.lock = threading.Lock()

    @classmethod
    def create(cls, path: Union[str, os.PathLike]) -> SharedFile:
        """Create (or truncate) the file at ``path`` and open it for writing."""
        return cls(path, open(path, "wb"))


@dataclass(eq=False)
class AppendFlush:
    """Append an in-memory chunk to the end of the backing file.

    ``on_flushed`` receives the file offset and the number of bytes written.
    """

    chunk: MemoryChunk
    on_flushed: Callable[[int, int], None]


@dataclass(eq=False)
class WriteAtFlush:
    """Write a buffer at a fixed offset of the backing file, then release it."""

    buffer: AllocatedChunk
    offset: int


@dataclass(eq=False)
class FlushableItem:
    """One unit of work for the flush workers."""

    underlying_file: SharedFile
    mode: Union[AppendFlush, WriteAtFlush]