"""Setup, teardown and housekeeping of the spill file system."""

from __future__ import annotations

import os
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from spillfs.allocator import CHUNKS_ALLOCATOR
from spillfs.chunks import SharedFile
from spillfs.flush import GlobalFlush
from spillfs.internal import MemoryFileInternal, take_swappable_file
from spillfs.memory_data_size import MemoryDataSize

PathLike = Union[str, os.PathLike]

_flush_map_lock = threading.Lock()
_flush_map: Optional[Dict[Path, List[SharedFile]]] = None


@dataclass(frozen=True)
class RemoveFileMode:
    """Whether removing a file also drops its stored data."""

    delete_entry: bool = False
    remove_fs: bool = False

    @classmethod
    def keep(cls) -> RemoveFileMode:
        return cls()

    @classmethod
    def remove(cls, remove_fs: bool) -> RemoveFileMode:
        return cls(True, remove_fs)


class MemoryFs:
    """Process-wide operations on spill files."""

    @staticmethod
    def init(
        memory_size: MemoryDataSize,
        flush_queue_size: int,
        threads_count: int,
        min_chunks_count: int,
    ) -> None:
        """Set up the chunk allocator and the flush workers."""
        global _flush_map
        chunk_size = (memory_size / float(min_chunks_count)).as_bytes()
        suggested_log = 1
        while (1 << (suggested_log + 1)) <= chunk_size:
            suggested_log += 1

        CHUNKS_ALLOCATOR.initialize(memory_size, suggested_log, min_chunks_count)
        CHUNKS_ALLOCATOR.set_pressure_hooks(MemoryFs.reduce_pressure, MemoryFs.flush_all_to_disk)
        with _flush_map_lock:
            _flush_map = {}
        GlobalFlush.init(flush_queue_size, threads_count)

    @staticmethod
    def remove_file(file: PathLike, remove_mode: RemoveFileMode) -> None:
        """Remove a registered file; raise FileNotFoundError if it is unknown."""
        if not remove_mode.delete_entry:
            return
        if not MemoryFileInternal.delete(file, remove_mode.remove_fs):
            raise FileNotFoundError(f"No such spill file: {file}")

    @staticmethod
    def get_file_size(file: PathLike) -> Optional[int]:
        """Size of a registered file, else of the file on disk, else None."""
        registered = MemoryFileInternal.retrieve_reference(file)
        if registered is not None:
            return len(registered)
        try:
            return os.stat(file).st_size
        except OSError:
            return None

    @staticmethod
    def ensure_flushed(file: PathLike) -> None:
        """Forget any pending flush bookkeeping for ``file``."""
        with _flush_map_lock:
            if _flush_map is None:
                raise RuntimeError("memory file system is not initialized")
            _flush_map.pop(Path(file), None)

    @staticmethod
    def remove_directory(directory: PathLike, remove_fs: bool) -> bool:
        return MemoryFileInternal.delete_directory(directory, remove_fs)

    @staticmethod
    def flush_all_to_disk() -> None:
        GlobalFlush.flush_to_disk()

    @staticmethod
    def free_memory() -> None:
        CHUNKS_ALLOCATOR.giveback_free_memory()

    @staticmethod
    def terminate() -> None:
        """Stop the flush workers and release all allocator memory."""
        global _flush_map
        GlobalFlush.terminate()
        CHUNKS_ALLOCATOR.deinitialize()
        with _flush_map_lock:
            _flush_map = None

    @staticmethod
    def reduce_pressure() -> bool:
        """Spill one memory-preferring file to disk if the flush queue has room.

        Returns True if a file was spilled or flushes are still pending.
        """
        current, max_size = GlobalFlush.global_queue_occupation()
        if current * 3 < max_size:
            file = take_swappable_file()
            if file is not None:
                file.change_to_disk_only()
                file.flush_chunks(sys.maxsize)
                return True
        return not GlobalFlush.is_queue_empty()