"""Buffered reader that refills from an underlying stream in fixed-size blocks."""

from __future__ import annotations

from typing import BinaryIO


class VecReader:
    """Reads through an internal buffer of fixed capacity.

    Errors from the underlying stream are treated as end of stream.
    """

    def __init__(self, capacity: int, reader: BinaryIO) -> None:
        self._capacity = capacity
        self._reader = reader
        self._buffer = b""
        self._pos = 0
        self._stream_ended = False

    def _update_buffer(self) -> None:
        try:
            data = self._reader.read(self._capacity) if self._capacity > 0 else b""
        except OSError:
            data = b""
        self._buffer = bytes(data or b"")
        self._stream_ended = not self._buffer
        self._pos = 0

    def read_bytes(self, size: int) -> bytes:
        """Read up to ``size`` bytes; fewer only at end of stream."""
        parts = []
        remaining = size
        while remaining > 0:
            if self._pos == len(self._buffer):
                self._update_buffer()
                if self._pos == len(self._buffer):
                    break
            amount = min(remaining, len(self._buffer) - self._pos)
            parts.append(self._buffer[self._pos : self._pos + amount])
            self._pos += amount
            remaining -= amount
        return b"".join(parts)

    def read(self, size: int = -1) -> bytes:
        """Read ``size`` bytes, or everything left if ``size`` is negative."""
        if size is None or size < 0:
            chunks = []
            while True:
                block = self.read_bytes(max(self._capacity, 1))
                if not block:
                    return b"".join(chunks)
                chunks.append(block)
        return self.read_bytes(size)

    def readinto(self, buffer) -> int:
        """Fill ``buffer`` from the stream, returning the number of bytes copied."""
        view = memoryview(buffer).cast("B")
        data = self.read_bytes(len(view))
        view[: len(data)] = data
        return len(data)

    def into_inner(self) -> BinaryIO:
        """The underlying stream."""
        return self._reader