# spillfs

spillfs is a store for temporary files that keeps data in memory first.
Each file is a list of fixed-size chunks. The chunks come from a shared
pool. When the pool is empty, files opened with `prefer_memory` are
switched to disk, and background threads write their chunks out. A reader
reads a file the same way whether its chunks are in memory or on disk.

## Installation

```
pip install .
```

## Quick start

```python
import tempfile
from pathlib import Path

from spillfs.internal import MemoryFileMode
from spillfs.memory_data_size import MemoryDataSize
from spillfs.memory_fs import MemoryFs, RemoveFileMode
from spillfs.reader import FileReader
from spillfs.writer import FileWriter

# 64 MiB pool, flush queue of 1024 items, 2 flush threads, at least 16 chunks
MemoryFs.init(MemoryDataSize.from_mebioctets(64), 1024, 2, 16)

path = Path(tempfile.mkdtemp()) / "part-0.tmp"

with FileWriter.create(path, MemoryFileMode.prefer_memory(3)) as writer:
    writer.write(b"hello, world")

reader = FileReader.open(path, None)
reader.seek(7)
print(reader.read(5))          # b'world'
reader.close()

MemoryFs.remove_file(path, RemoveFileMode.remove(True))
MemoryFs.terminate()
```

`FileReader.open` returns `None` when the path is neither registered nor
present on disk. If the path is only on disk, the reader opens that file
as a single chunk.

## File modes

- `MemoryFileMode.always_memory()`: the file's chunks stay in memory.
- `MemoryFileMode.prefer_memory(swap_priority)`: the chunks stay in memory
  until the pool runs dry. `MemoryFs.reduce_pressure` then switches the file
  to disk and queues its chunks for writing. It picks the file with the
  lowest `(swap_priority, path)` that still has chunks to write.
- `MemoryFileMode.disk_only()`: every chunk is queued for writing to the
  backing file as soon as it is full.

## Writing and reading

- `FileWriter.write(data)` appends bytes. `FileWriter.write_all_parallel(data, el_size)`
  appends bytes as one unit and returns the start position of the unit in
  the file. When the data runs into a new chunk, each chunk receives a whole
  number of `el_size`-byte elements. A writer can be shared between threads.
- `FileWriter.write_at_start(data)` overwrites up to 128 bytes at the start
  of the file.
- `FileWriter.close()`, or leaving its `with` block, hands the last buffer
  to the file.
- `FileReader` provides `read`, `readinto`, `read_exact` (raises `EOFError`
  on a short read), `seek`, `tell`, `clone`, `total_file_size` and
  `close_and_remove(remove_fs)`.

## Housekeeping

`MemoryFs` also provides `get_file_size`, `remove_directory`,
`flush_all_to_disk` (blocks until the flush queue is empty),
`free_memory` (tells the system that the pages of free chunks are no longer
needed) and `terminate` (stops the flush threads and frees the pool).
`MemoryFs.remove_file` raises `FileNotFoundError` for a file that is not
registered.

## Other modules

- `spillfs.memory_data_size.MemoryDataSize`: data sizes in SI and binary
  units, with arithmetic and comparisons. `str()` picks the largest binary
  unit in which the value is at least one, for example `"1\u00a0MiB"`. A
  format spec applies to the number: `f"{size:.2}"` gives `"1.00\u00a0MiB"`.
  The separator is a non-breaking space.
- `spillfs.allocator.ChunksAllocator` and the shared `CHUNKS_ALLOCATOR`: the
  chunk pool. When it stays empty it grows by 256 MiB, and by twice as much
  for each region added after that.
- `spillfs.flush.GlobalFlush`: the bounded flush queue and its worker threads.
- `spillfs.phase_times_monitor.PhaseTimesMonitor`: times named phases and
  reports them through `spillfs.logging`. `format_duration` renders a
  duration in seconds, for example `"1.50s"`.
- `spillfs.process_stats.ProcessStats.get()`: CPU times (in nanoseconds)
  and resident memory of the running process. Also `parse_proc_stat` and
  `filetime_to_duration`.
- `spillfs.scoped_thread_local.ScopedThreadLocal`: one lazily created value
  per thread. The value is checked out with `get()` and handed back with
  `release()` or a `with` block.
- `spillfs.vec_reader.VecReader`: a reader that buffers any binary stream
  in fixed-size blocks.
- `spillfs.utils`: `memory_size_to_log2` and the `PanicOnDrop` guard.

Log messages go to standard output by default. To send them elsewhere, call
`spillfs.logging.set_logger_function(callback)`. The callback receives a
`LogLevel` and the message. Passing `None` restores printing.

## What it does not do

- It has no command-line tool. It is a library only.
- Files cannot be reopened for writing or appended to after their writer
  is closed. Readers support only absolute seeks.
- On Linux, `ProcessStats.get()` reads `/proc/self/stat`. On other systems
  it uses `resource.getrusage`, which reports peak rather than current
  resident memory. Where `resource` is missing, the call raises
  `SystemCallError`.
- `PhaseTimesMonitor` reports wall-clock times and allocator memory only.
  It does not sample CPU use in the background.

## Running the tests

```
pip install .[test]
pytest
```