"""Registry and state of spill files kept in memory chunks or on disk."""

from __future__ import annotations

import enum
import mmap
import os
import threading
import weakref
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from spillfs.allocator import CHUNKS_ALLOCATOR, AllocatedChunk
from spillfs.chunks import AppendFlush, DiskChunk, FlushableItem, MemoryChunk, SharedFile
from spillfs.flush import GlobalFlush
from spillfs.logging import log_info

PathLike = Union[str, os.PathLike]

MAX_START_WRITE = 128


class _ModeKind(enum.Enum):
    ALWAYS_MEMORY = "always_memory"
    PREFER_MEMORY = "prefer_memory"
    DISK_ONLY = "disk_only"


@dataclass(frozen=True)
class MemoryFileMode:
    """Where a file keeps its data."""

    kind: _ModeKind
    swap_priority: int = 0

    @classmethod
    def always_memory(cls) -> MemoryFileMode:
        return cls(_ModeKind.ALWAYS_MEMORY)

    @classmethod
    def prefer_memory(cls, swap_priority: int) -> MemoryFileMode:
        return cls(_ModeKind.PREFER_MEMORY, swap_priority)

    @classmethod
    def disk_only(cls) -> MemoryFileMode:
        return cls(_ModeKind.DISK_ONLY)


class OpenMode(enum.Enum):
    NONE = "none"
    READ = "read"
    WRITE = "write"


class _FileState(enum.Enum):
    NOT_OPENED = "not_opened"
    MEMORY_ONLY = "memory_only"
    MEMORY_PREFERRED = "memory_preferred"


@dataclass(eq=False)
class _WriteMode:
    file: SharedFile
    chunk_position: int = 0


@dataclass(eq=False)
class _ReadMode:
    mapping: Optional[object]


class _ChunkSlot:
    """Holds a chunk and blocks access to it while it is being flushed."""

    def __init__(self, content: Union[DiskChunk, MemoryChunk]) -> None:
        self.content = content
        self._cond = threading.Condition()
        self._readers = 0
        self._flushing = False

    def try_begin_flush(self) -> bool:
        with self._cond:
            if self._flushing or self._readers:
                return False
            self._flushing = True
            return True

    def finish_flush(self, offset: int, length: int) -> None:
        with self._cond:
            old = self.content
            self.content = DiskChunk(offset, length)
            self._flushing = False
            self._cond.notify_all()
        if isinstance(old, MemoryChunk):
            old.chunk.release()

    def wait_idle(self) -> Union[DiskChunk, MemoryChunk]:
        with self._cond:
            self._cond.wait_for(lambda: not self._flushing)
            return self.content

    def pin(self) -> Callable[[], None]:
        with self._cond:
            self._cond.wait_for(lambda: not self._flushing)
            self._readers += 1
        released = False

        def release() -> None:
            nonlocal released
            if released:
                return
            released = True
            with self._cond:
                self._readers -= 1
                self._cond.notify_all()

        return release


_FILES_LOCK = threading.Lock()
_FILES: Dict[Path, "MemoryFileInternal"] = {}

_SWAP_LOCK = threading.Lock()
_SWAPPABLE: Dict[Tuple[int, Path], "weakref.ref[MemoryFileInternal]"] = {}


def _map_file(path: Path) -> Optional[object]:
    try:
        with open(path, "rb") as handle:
            if os.fstat(handle.fileno()).st_size == 0:
                return b""
            return mmap.mmap(handle.fileno(), 0, access=mmap.ACCESS_READ)
    except (OSError, ValueError):
        return None


def _create_writing_file(path: Path) -> _WriteMode:
    # Remove a leftover file from a previous run.
    try:
        os.remove(path)
    except OSError:
        pass
    return _WriteMode(SharedFile.create(path))


class MemoryFileInternal:
    """A file whose content is a list of chunks in memory or in its backing file."""

    def __init__(
        self,
        path: Path,
        memory_mode: MemoryFileMode,
        memory: List[_ChunkSlot],
        can_flush: bool,
    ) -> None:
        self._lock = threading.RLock()
        self._path = path
        self._file: Union[_FileState, _WriteMode, _ReadMode] = _FileState.NOT_OPENED
        self._memory_mode = memory_mode
        self._open_mode: Tuple[OpenMode, int] = (OpenMode.NONE, 0)
        self._memory = memory
        self._on_swap_list = False
        self._can_flush = can_flush

    @property
    def path(self) -> Path:
        return self._path

    @property
    def memory_mode(self) -> MemoryFileMode:
        return self._memory_mode

    @classmethod
    def create_new(cls, path: PathLike, memory_mode: MemoryFileMode) -> MemoryFileInternal:
        """Create an empty file and register it under ``path``."""
        key = Path(path)
        new_file = cls(key, memory_mode, [], can_flush=True)
        with _FILES_LOCK:
            _FILES[key] = new_file
        return new_file

    @classmethod
    def create_from_fs(cls, path: PathLike) -> Optional[MemoryFileInternal]:
        """Register an existing regular file as one disk chunk, or return None."""
        key = Path(path)
        if not key.is_file():
            return None
        try:
            length = key.stat().st_size
        except OSError:
            return None
        new_file = cls(
            key,
            MemoryFileMode.disk_only(),
            [_ChunkSlot(DiskChunk(0, length))],
            can_flush=False,
        )
        with _FILES_LOCK:
            _FILES[key] = new_file
        return new_file

    @classmethod
    def debug_dump_files(cls) -> None:
        """Log every registered file with its chunk count."""
        with _FILES_LOCK:
            files = list(_FILES.values())
        for file in files:
            log_info(f"File '{file.path}' => chunks: {file.get_chunks_count()}")

    @classmethod
    def retrieve_reference(cls, path: PathLike) -> Optional[MemoryFileInternal]:
        with _FILES_LOCK:
            return _FILES.get(Path(path))

    @classmethod
    def active_files_count(cls) -> int:
        with _FILES_LOCK:
            return len(_FILES)

    @classmethod
    def delete(cls, path: PathLike, remove_fs: bool) -> bool:
        """Unregister a file; with ``remove_fs`` also drop its stored data."""
        key = Path(path)
        with _FILES_LOCK:
            file = _FILES.pop(key, None)
        if file is None:
            return False
        if remove_fs:
            mode = file.memory_mode
            if mode.kind is _ModeKind.PREFER_MEMORY:
                with _SWAP_LOCK:
                    _SWAPPABLE.pop((mode.swap_priority, key), None)
            elif mode.kind is _ModeKind.DISK_ONLY:
                try:
                    os.remove(key)
                except OSError:
                    pass
        return True

    @classmethod
    def delete_directory(cls, directory: PathLike, remove_fs: bool) -> bool:
        """Delete every registered file below ``directory``."""
        base = Path(directory)
        with _FILES_LOCK:
            to_delete = [key for key in _FILES if key.is_relative_to(base)]
        all_succeeded = True
        for key in to_delete:
            all_succeeded &= cls.delete(key, remove_fs)
        return all_succeeded

    def is_on_disk(self) -> bool:
        return self._memory_mode.kind is _ModeKind.DISK_ONLY

    def is_memory_preferred(self) -> bool:
        return self._memory_mode.kind is _ModeKind.PREFER_MEMORY

    def get_chunk(self, index: int) -> Union[DiskChunk, MemoryChunk]:
        with self._lock:
            return self._memory[index].content

    def get_chunks_count(self) -> int:
        with self._lock:
            return len(self._memory)

    def chunk_view(self, index: int) -> memoryview:
        """Read-only view on the bytes of chunk ``index``."""
        with self._lock:
            slot = self._memory[index]
            state = self._file
        content = slot.wait_idle()
        if isinstance(content, MemoryChunk):
            return content.chunk.get()
        if not isinstance(state, _ReadMode):
            raise RuntimeError("Error, wrong underlying file!")
        if state.mapping is None:
            raise RuntimeError(f"File {self._path} could not be mapped")
        return memoryview(state.mapping)[content.offset : content.offset + content.length]

    def open(self, mode: OpenMode) -> None:
        """Open for reading or writing; reopening in the same mode is counted."""
        with self._lock:
            current, count = self._open_mode
            if current is mode:
                self._open_mode = (mode, count + 1)
                return
            if current is not OpenMode.NONE:
                raise RuntimeError(f"File {self._path} is already opened!")
            if mode is OpenMode.READ:
                self._open_mode = (OpenMode.READ, 1)
                self._can_flush = False
                if self._memory_mode.kind is not _ModeKind.DISK_ONLY:
                    self._file = _FileState.MEMORY_ONLY
                else:
                    for slot in self._memory:
                        slot.wait_idle()
                    if isinstance(self._file, _WriteMode):
                        with self._file.file.lock:
                            self._file.file.handle.flush()
                    self._file = _ReadMode(_map_file(self._path))
            elif mode is OpenMode.WRITE:
                self._open_mode = (OpenMode.WRITE, 1)
                kind = self._memory_mode.kind
                if kind is _ModeKind.ALWAYS_MEMORY:
                    self._file = _FileState.MEMORY_ONLY
                elif kind is _ModeKind.PREFER_MEMORY:
                    self._file = _FileState.MEMORY_PREFERRED
                else:
                    self._file = _create_writing_file(self._path)

    def close(self) -> None:
        """Drop one open reference; the last one flushes the backing file."""
        with self._lock:
            mode, count = self._open_mode
            if count == 0:
                raise RuntimeError(f"File {self._path} is not opened")
            count -= 1
            if count == 0:
                mode = OpenMode.NONE
                if isinstance(self._file, _WriteMode):
                    with self._file.file.lock:
                        self._file.file.handle.flush()
            self._open_mode = (mode, count)

    def _put_on_swappable_list(self) -> None:
        if self.is_memory_preferred() and not self._on_swap_list:
            self._on_swap_list = True
            with _SWAP_LOCK:
                _SWAPPABLE[(self._memory_mode.swap_priority, self._path)] = weakref.ref(self)

    def reserve_space(
        self, last_chunk: AllocatedChunk, size: int, el_size: int
    ) -> Tuple[AllocatedChunk, List[Tuple[memoryview, Optional[Callable[[], None]]]]]:
        """Reserve ``size`` bytes, in whole elements per chunk, after ``last_chunk``.

        Filled chunks are appended to the file. Returns the chunk to keep
        writing into and the writable views in order; a view paired with a
        release function belongs to a chunk that cannot be flushed until that
        function is called.
        """
        if el_size <= 0:
            raise ValueError("element size must be positive")
        chunk = last_chunk
        parts: List[Tuple[memoryview, Optional[Callable[[], None]]]] = []
        while True:
            if chunk.max_len() < el_size:
                raise ValueError("element size exceeds chunk capacity")
            rem_elements = chunk.remaining_bytes() // el_size
            el_bytes = min(size, rem_elements * el_size)
            view = chunk.prealloc_bytes(el_bytes) if el_bytes > 0 else None
            size -= el_bytes
            if size > 0:
                with self._lock:
                    slot = _ChunkSlot(MemoryChunk(chunk))
                    self._memory.append(slot)
                    if view is not None:
                        parts.append((view, slot.pin()))
                    self._put_on_swappable_list()
                chunk = CHUNKS_ALLOCATOR.request_chunk()
            else:
                if view is not None:
                    parts.append((view, None))
                return chunk, parts

    def add_chunk(self, chunk: AllocatedChunk) -> None:
        """Append a filled chunk to the file."""
        with self._lock:
            self._memory.append(_ChunkSlot(MemoryChunk(chunk)))
            self._put_on_swappable_list()

    def flush_chunks(self, limit: int) -> int:
        """Queue up to ``limit`` pending chunks for writing; return how many."""
        with self._lock:
            if not self._can_flush:
                return 0
            if self._file in (_FileState.NOT_OPENED, _FileState.MEMORY_PREFERRED):
                self._file = _create_writing_file(self._path)
            state = self._file
            if not isinstance(state, _WriteMode):
                return 0
            flushed = 0
            while flushed < limit and state.chunk_position < len(self._memory):
                slot = self._memory[state.chunk_position]
                if not isinstance(slot.content, MemoryChunk):
                    state.chunk_position += 1
                    continue
                if not slot.try_begin_flush():
                    break
                GlobalFlush.add_item_to_flush_queue(
                    FlushableItem(state.file, AppendFlush(slot.content, slot.finish_flush))
                )
                state.chunk_position += 1
                flushed += 1
            return flushed

    def flush_pending_chunks_count(self) -> int:
        with self._lock:
            state = self._file
            if isinstance(state, _WriteMode):
                return len(self._memory) - state.chunk_position
            if state is _FileState.MEMORY_PREFERRED:
                return len(self._memory)
            return 0

    def has_flush_pending_chunks(self) -> bool:
        return self.flush_pending_chunks_count() > 0

    def change_to_disk_only(self) -> None:
        """Switch a memory-preferring file to writing through to disk."""
        with self._lock:
            if self.is_memory_preferred():
                self._memory_mode = MemoryFileMode.disk_only()
                self._file = _create_writing_file(self._path)

    def has_only_one_chunk(self) -> bool:
        with self._lock:
            return len(self._memory) == 1

    def write_at_start(self, data: bytes) -> bool:
        """Overwrite the first bytes of the file.

        Returns False when the file has no chunks yet, so the bytes belong in
        the caller's current buffer.
        """
        if len(data) > MAX_START_WRITE:
            raise ValueError(f"at most {MAX_START_WRITE} bytes can be written at start")
        with self._lock:
            if not self._memory:
                return False
            content = self._memory[0].wait_idle()
            if isinstance(content, DiskChunk):
                state = self._file
                if not isinstance(state, _WriteMode):
                    raise RuntimeError(f"File {self._path} is not open for writing on disk")
                with state.file.lock:
                    handle = state.file.handle
                    position = handle.tell()
                    handle.seek(0)
                    handle.write(data)
                    handle.seek(position)
                    handle.flush()
            else:
                view = content.chunk.mutable_view()
                if len(data) > len(view):
                    raise ValueError("data is longer than the first chunk")
                view[: len(data)] = data
            return True

    def __len__(self) -> int:
        with self._lock:
            return sum(len(slot.content) for slot in self._memory)


def take_swappable_file() -> Optional[MemoryFileInternal]:
    """Remove and return the first swappable file with chunks still to flush."""
    with _SWAP_LOCK:
        entries = sorted(_SWAPPABLE.items(), key=lambda item: item[0])
    for key, ref in entries:
        file = ref()
        if file is None:
            continue
        if file.is_memory_preferred() and file.has_flush_pending_chunks():
            with _SWAP_LOCK:
                if _SWAPPABLE.get(key) is ref:
                    del _SWAPPABLE[key]
                    return file
    return None