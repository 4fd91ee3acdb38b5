"""Append-only writer that fills allocator chunks and hands them to a spill file."""

from __future__ import annotations

import os
import sys
import threading
from pathlib import Path
from typing import Optional, Union

from spillfs.allocator import CHUNKS_ALLOCATOR, AllocatedChunk
from spillfs.internal import MAX_START_WRITE, MemoryFileInternal, MemoryFileMode, OpenMode

PathLike = Union[str, os.PathLike]


class FileWriter:
    """Writes a new spill file; safe to share between threads."""

    def __init__(self, path: PathLike, file: MemoryFileInternal, buffer: AllocatedChunk) -> None:
        self._path = Path(path)
        self._file = file
        self._buffer: Optional[AllocatedChunk] = buffer
        self._file_length = 0
        self._lock = threading.Lock()
        self._closed = False

    @property
    def path(self) -> Path:
        return self._path

    @classmethod
    def create(cls, path: PathLike, mode: MemoryFileMode) -> FileWriter:
        """Create a new file at ``path`` kept according to ``mode``."""
        buffer = CHUNKS_ALLOCATOR.request_chunk()
        try:
            file = MemoryFileInternal.create_new(path, mode)
            file.open(OpenMode.WRITE)
        except BaseException:
            buffer.release()
            raise
        return cls(path, file, buffer)

    def __len__(self) -> int:
        with self._lock:
            buffered = len(self._buffer) if self._buffer is not None else 0
            return len(self._file) + buffered

    def _require_open(self) -> AllocatedChunk:
        if self._closed or self._buffer is None:
            raise ValueError("I/O operation on closed file")
        return self._buffer

    def write_at_start(self, data: bytes) -> None:
        """Overwrite the first bytes of the file; at most 128 bytes."""
        if len(data) > MAX_START_WRITE:
            raise ValueError(f"at most {MAX_START_WRITE} bytes can be written at start")
        with self._lock:
            buffer = self._require_open()
            if self._file.write_at_start(data):
                return
            view = buffer.mutable_view()
            if len(data) > len(view):
                raise ValueError("data is longer than the bytes written so far")
            view[: len(data)] = data

    def write_all_parallel(self, data, el_size: int = 1) -> int:
        """Append ``data`` as one unit and return its start position in the file.

        When the data spans chunks, each chunk receives a whole number of
        ``el_size``-byte elements.
        """
        payload = memoryview(data).cast("B")
        with self._lock:
            buffer = self._require_open()
            offset = buffer.write_bytes_noextend(payload)
            if offset is not None:
                return self._file_length + offset

            position = self._file_length + len(buffer)
            self._file_length = position
            new_buffer, parts = self._file.reserve_space(buffer, len(payload), el_size)
            self._buffer = new_buffer
            self._file_length += len(payload) - len(new_buffer)

            start = 0
            try:
                for view, _ in parts:
                    end = start + len(view)
                    view[:] = payload[start:end]
                    start = end
            finally:
                for _, release in parts:
                    if release is not None:
                        release()

            if self._file.is_on_disk():
                self._file.flush_chunks(sys.maxsize)
            return position

    def write(self, data) -> int:
        """Append ``data``, returning its length."""
        self.write_all_parallel(data, 1)
        return memoryview(data).nbytes

    def flush(self) -> None:
        """Check the writer is open and queue any full chunks of a disk file."""
        with self._lock:
            self._require_open()
            if self._file.is_on_disk():
                self._file.flush_chunks(sys.maxsize)

    def close(self) -> None:
        """Hand the last buffer to the file and close it; later calls do nothing."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            buffer, self._buffer = self._buffer, None
            if buffer is not None:
                if len(buffer) > 0:
                    self._file.add_chunk(buffer)
                    if self._file.is_on_disk():
                        self._file.flush_chunks(sys.maxsize)
                else:
                    buffer.release()
            self._file.close()

    def __enter__(self) -> FileWriter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __del__(self) -> None:
        if not getattr(self, "_closed", True):
            try:
                self.close()
            except Exception:
                pass