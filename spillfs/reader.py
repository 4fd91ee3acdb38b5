"""Sequential reader over a spill file's chunks, in memory or on disk."""

from __future__ import annotations

import io
import os
import sys
from pathlib import Path
from typing import List, Optional, Union

from spillfs.internal import MemoryFileInternal, OpenMode

PathLike = Union[str, os.PathLike]


class FileReader:
    """Reads a registered spill file, or a plain file found on disk."""

    def __init__(
        self,
        path: PathLike,
        file: MemoryFileInternal,
        chunks_count: int,
        prefetch_amount: Optional[int],
    ) -> None:
        self._path = Path(path)
        self._file = file
        self._chunks_count = chunks_count
        self._prefetch_amount = prefetch_amount
        self._index = 0
        self._view = memoryview(b"")
        self._pos = 0
        self._closed = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def prefetch_amount(self) -> Optional[int]:
        return self._prefetch_amount

    def _set_chunk_info(self, index: int) -> None:
        self._view = self._file.chunk_view(index)
        self._pos = 0

    @classmethod
    def open(
        cls, path: PathLike, prefetch_amount: Optional[int] = None
    ) -> Optional[FileReader]:
        """Open ``path`` for reading, or return None if it does not exist."""
        file = MemoryFileInternal.retrieve_reference(path)
        if file is None:
            file = MemoryFileInternal.create_from_fs(path)
            if file is None:
                return None
        file.open(OpenMode.READ)
        chunks_count = file.get_chunks_count()
        reader = cls(path, file, chunks_count, prefetch_amount)
        if chunks_count > 0:
            reader._set_chunk_info(0)
        return reader

    def total_file_size(self) -> int:
        return len(self._file)

    def close(self) -> None:
        """Release this reader's open reference on the file."""
        if self._closed:
            return
        self._closed = True
        self._file.close()

    def close_and_remove(self, remove_fs: bool) -> bool:
        """Close the reader and unregister the file; see ``MemoryFileInternal.delete``."""
        self.close()
        return MemoryFileInternal.delete(self._path, remove_fs)

    def _take(self, size: int) -> bytes:
        parts: List[bytes] = []
        remaining = size
        while remaining > 0:
            if self._pos == len(self._view):
                if self._index + 1 >= self._chunks_count:
                    break
                self._index += 1
                self._set_chunk_info(self._index)
                continue
            amount = min(remaining, len(self._view) - self._pos)
            parts.append(bytes(self._view[self._pos : self._pos + amount]))
            self._pos += amount
            remaining -= amount
        return b"".join(parts)

    def read(self, size: Optional[int] = -1) -> bytes:
        """Read up to ``size`` bytes, or everything left if ``size`` is negative."""
        if size is None or size < 0:
            return self._take(sys.maxsize)
        return self._take(size)

    def readinto(self, buffer) -> int:
        """Fill ``buffer`` from the file, returning the number of bytes copied."""
        view = memoryview(buffer).cast("B")
        data = self._take(len(view))
        view[: len(data)] = data
        return len(data)

    def read_exact(self, size: int) -> bytes:
        """Read exactly ``size`` bytes or raise EOFError."""
        data = self._take(size)
        if len(data) != size:
            raise EOFError("Unexpected error while reading")
        return data

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        """Move to an absolute position that lies inside the file."""
        if whence != io.SEEK_SET:
            raise io.UnsupportedOperation("only absolute seeks are supported")
        if offset < 0:
            raise ValueError("negative seek position")
        remaining = offset
        for index in range(self._chunks_count):
            length = len(self._file.get_chunk(index))
            if remaining < length:
                break
            remaining -= length
        else:
            raise EOFError("Unexpected eof")
        self._index = index
        self._set_chunk_info(index)
        self._pos = remaining
        return offset

    def tell(self) -> int:
        """Current absolute position."""
        if self._chunks_count == 0:
            return 0
        before = sum(len(self._file.get_chunk(i)) for i in range(self._index))
        return before + self._pos

    def clone(self) -> FileReader:
        """An independent reader at the same position."""
        self._file.open(OpenMode.READ)
        other = FileReader(self._path, self._file, self._chunks_count, self._prefetch_amount)
        other._index = self._index
        other._view = self._view
        other._pos = self._pos
        return other

    def __enter__(self) -> FileReader:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()