"""Memory-first temporary file store that spills chunked files to disk."""

__version__ = "0.1.0"

__all__ = [
    "allocator",
    "chunks",
    "flush",
    "internal",
    "logging",
    "memory_data_size",
    "memory_fs",
    "phase_times_monitor",
    "process_stats",
    "reader",
    "scoped_thread_local",
    "utils",
    "vec_reader",
    "writer",
]