"""Fixed-size memory chunks handed out from large contiguous regions."""

from __future__ import annotations

import math
import mmap
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from spillfs.logging import log_info, log_warn
from spillfs.memory_data_size import MemoryDataSize

OUT_OF_MEMORY_ALLOCATION_SIZE = MemoryDataSize.from_mebioctets(256)
MAXIMUM_CHUNK_SIZE_LOG = 18
MINIMUM_CHUNK_SIZE_LOG = 12

_PRESSURE_WAIT_SECONDS = 0.025
_MAX_TRIES = 10
_DRAIN_POLL_SECONDS = 0.01
_DEINIT_POLL_SECONDS = 0.2


class AllocatedChunk:
    """A writable block of ``2 ** max_len_log2`` bytes with a fill length."""

    def __init__(
        self,
        buffer,
        max_len_log2: int,
        on_release: Optional[Callable[[], None]] = None,
    ) -> None:
        view = memoryview(buffer).cast("B")
        if view.readonly:
            raise ValueError("chunk buffer must be writable")
        capacity = 1 << max_len_log2
        if len(view) < capacity:
            raise ValueError(
                f"chunk buffer holds {len(view)} bytes, {capacity} are needed"
            )
        self._view = view[:capacity]
        self._max_len_log2 = max_len_log2
        self._on_release = on_release
        self._len = 0
        self._lock = threading.Lock()
        self._released = False

    def _check_alive(self) -> None:
        if self._released:
            raise RuntimeError("chunk has been released")

    def write_bytes_noextend(self, data) -> Optional[int]:
        """Append ``data`` if it fits, returning the offset it was written at."""
        self._check_alive()
        payload = memoryview(data).cast("B")
        size = len(payload)
        with self._lock:
            offset = self._len
            if offset + size > self.max_len():
                return None
            self._len = offset + size
        self._view[offset : offset + size] = payload
        return offset

    def write_zero_bytes_noextend(self, length: int) -> None:
        """Append ``length`` zero bytes."""
        self._check_alive()
        with self._lock:
            offset = self._len
            if offset + length > self.max_len():
                raise ValueError("not enough space left in chunk")
            self._len = offset + length
        self._view[offset : offset + length] = bytes(length)

    def prealloc_bytes(self, length: int) -> memoryview:
        """Reserve ``length`` bytes at the end and return a writable view on them."""
        self._check_alive()
        with self._lock:
            offset = self._len
            if offset + length > self.max_len():
                raise ValueError("not enough space left in chunk")
            self._len = offset + length
        return self._view[offset : offset + length]

    def has_space_for(self, length: int) -> bool:
        return self._len + length <= self.max_len()

    def __len__(self) -> int:
        return self._len

    def max_len(self) -> int:
        return 1 << self._max_len_log2

    def remaining_bytes(self) -> int:
        return self.max_len() - self._len

    def clear(self) -> None:
        self._len = 0

    def get(self) -> memoryview:
        """Read-only view on the filled part of the chunk."""
        self._check_alive()
        return self._view[: self._len].toreadonly()

    def mutable_view(self) -> memoryview:
        """Writable view on the filled part of the chunk."""
        self._check_alive()
        return self._view[: self._len]

    def set_len(self, length: int) -> None:
        if not 0 <= length <= self.max_len():
            raise ValueError("length outside chunk capacity")
        self._len = length

    def zero_memory(self) -> None:
        """Overwrite the whole capacity with zeros."""
        self._check_alive()
        self._view[:] = bytes(self.max_len())

    def release(self) -> None:
        """Give the memory back to its owner; later calls do nothing."""
        if self._released:
            return
        self._released = True
        self._view = memoryview(bytearray())
        callback, self._on_release = self._on_release, None
        if callback is not None:
            callback()

    def __del__(self) -> None:
        if not getattr(self, "_released", True):
            try:
                self.release()
            except Exception:
                pass


@dataclass(eq=False)
class _Slot:
    region: Optional[mmap.mmap]
    offset: int
    view: memoryview
    generation: int


def _saturating_count(ratio: float) -> int:
    if math.isnan(ratio) or ratio <= 0:
        return 0
    if math.isinf(ratio):
        raise MemoryError("requested memory size is infinite")
    return int(ratio)


class ChunksAllocator:
    """Pool of equally sized chunks that grows when it runs dry."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.RLock())
        self._free: List[_Slot] = []
        self._buffers: List[Tuple[Optional[mmap.mmap], int]] = []
        self._initialized = False
        self._generation = 0
        self._min_free_chunks = 0
        self._chunks_total_count = 0
        self._chunk_padded_size = 0
        self._chunk_usable_size = 0
        self._chunks_log_size = 0
        self._reduce_pressure: Optional[Callable[[], bool]] = None
        self._flush_all: Optional[Callable[[], None]] = None

    def set_pressure_hooks(
        self,
        reduce_pressure: Optional[Callable[[], bool]],
        flush_all: Optional[Callable[[], None]],
    ) -> None:
        """Install the callbacks used to free memory when the pool is empty."""
        self._reduce_pressure = reduce_pressure
        self._flush_all = flush_all

    def _allocate_contiguous(self, chunks_count: int) -> List[_Slot]:
        padded = self._chunk_padded_size
        usable = self._chunk_usable_size
        self._chunks_total_count += chunks_count
        self._min_free_chunks = chunks_count
        if chunks_count == 0:
            self._buffers.append((None, 0))
            return []
        region = mmap.mmap(-1, chunks_count * padded)
        self._buffers.append((region, chunks_count))
        base = memoryview(region)
        return [
            _Slot(
                region,
                index * padded,
                base[index * padded : index * padded + usable],
                self._generation,
            )
            for index in reversed(range(chunks_count))
        ]

    def initialize(
        self, memory: MemoryDataSize, chunks_log_size: int, min_chunks_count: int
    ) -> None:
        """Reserve ``memory`` split into chunks; a second call does nothing."""
        with self._cond:
            if self._initialized:
                return
            log_size = min(MAXIMUM_CHUNK_SIZE_LOG, max(MINIMUM_CHUNK_SIZE_LOG, chunks_log_size))
            usable = 1 << log_size
            padded = usable
            chunks_count = max(
                min_chunks_count,
                _saturating_count(memory / MemoryDataSize.from_octets(padded)),
            )
            self._chunk_padded_size = padded
            self._chunk_usable_size = usable
            self._chunks_log_size = log_size
            self._free.extend(self._allocate_contiguous(chunks_count))
            self._initialized = True
        log_info(
            f"Allocator initialized: mem: {memory} chunks: {chunks_count} log2: {log_size}"
        )

    def _madvise(self, region: Optional[mmap.mmap], offset: int, length: int) -> None:
        if region is None or length <= 0 or not hasattr(mmap, "MADV_DONTNEED"):
            return
        if offset % mmap.PAGESIZE != 0:
            return
        try:
            region.madvise(mmap.MADV_DONTNEED, offset, length)
        except (OSError, ValueError):
            pass

    def giveback_free_memory(self) -> None:
        """Tell the system the pages of free chunks are no longer needed."""
        with self._cond:
            pagesize = mmap.PAGESIZE
            length = (self._chunk_padded_size // pagesize) * pagesize
            for slot in self._free:
                self._madvise(slot.region, slot.offset, length)

    def giveback_all_memory(self) -> None:
        """Flush everything, wait for every chunk to return, then drop all pages."""
        if self._flush_all is not None:
            self._flush_all()
        while True:
            with self._cond:
                if len(self._free) == self._chunks_total_count:
                    break
            time.sleep(_DRAIN_POLL_SECONDS)
        with self._cond:
            for region, chunks_count in self._buffers:
                self._madvise(region, 0, chunks_count * self._chunk_padded_size)

    def _give_back(self, slot: _Slot) -> None:
        with self._cond:
            if slot.generation == self._generation:
                self._free.append(slot)
                self._cond.notify()

    def request_chunk(self) -> AllocatedChunk:
        """Take a free chunk, waiting or growing the pool if none is available."""
        if self._chunk_usable_size == 0:
            raise RuntimeError("allocator is not initialized")
        tries = 0
        self._cond.acquire()
        try:
            while True:
                if self._free:
                    slot = self._free.pop()
                    self._min_free_chunks = min(self._min_free_chunks, len(self._free))
                    return AllocatedChunk(
                        slot.view,
                        self._chunks_log_size,
                        on_release=lambda slot=slot: self._give_back(slot),
                    )

                self._cond.release()
                try:
                    reduced = (
                        self._reduce_pressure() if self._reduce_pressure is not None else False
                    )
                finally:
                    self._cond.acquire()
                if not reduced:
                    tries += 1

                if not self._free:
                    if self._cond.wait(_PRESSURE_WAIT_SECONDS):
                        tries = 0
                        continue

                if tries > _MAX_TRIES:
                    if not self._free:
                        multiplier = 1 << max(len(self._buffers) - 1, 0)
                        extra = (
                            OUT_OF_MEMORY_ALLOCATION_SIZE.as_bytes() * multiplier
                        ) // self._chunk_usable_size
                        self._free.extend(self._allocate_contiguous(extra))
                        log_info(
                            f"Allocated {extra} extra chunks for temporary files "
                            f"({OUT_OF_MEMORY_ALLOCATION_SIZE * float(multiplier)})"
                        )
                    tries = 0
        finally:
            self._cond.release()

    def get_free_memory(self) -> MemoryDataSize:
        with self._cond:
            return MemoryDataSize.from_octets(len(self._free) * self._chunk_usable_size)

    def get_reserved_memory(self) -> MemoryDataSize:
        with self._cond:
            used = self._chunks_total_count - self._min_free_chunks
            return MemoryDataSize.from_octets(used * self._chunk_usable_size)

    def get_total_memory(self) -> MemoryDataSize:
        with self._cond:
            return MemoryDataSize.from_octets(
                self._chunks_total_count * self._chunk_usable_size
            )

    def deinitialize(self) -> None:
        """Wait for every chunk to be released, then free all regions."""
        counter = 0
        while True:
            with self._cond:
                if len(self._free) == self._chunks_total_count:
                    self._free.clear()
                    self._chunks_total_count = 0
                    self._generation += 1
                    buffers, self._buffers = self._buffers, []
                    self._initialized = False
                    break
            time.sleep(_DEINIT_POLL_SECONDS)
            counter += 1
            if counter % 256 == 0:
                log_warn("WARNING: Cannot flush all the data!")

        for region, _ in buffers:
            if region is None:
                continue
            try:
                region.close()
            except BufferError:
                pass


CHUNKS_ALLOCATOR = ChunksAllocator()