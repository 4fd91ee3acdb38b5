"""Background workers that write queued chunks to their backing files."""

from __future__ import annotations

import queue
import threading
from typing import List, Optional, Tuple

from spillfs.allocator import AllocatedChunk
from spillfs.chunks import AppendFlush, FlushableItem, SharedFile, WriteAtFlush
from spillfs.logging import log_warn

_STOP = object()


class GlobalFlush:
    """Process-wide bounded flush queue served by a pool of worker threads."""

    _state_lock = threading.RLock()
    _take_lock = threading.Lock()
    _queue: Optional[queue.Queue] = None
    _capacity = 0
    _threads: List[threading.Thread] = []

    @classmethod
    def _require_queue(cls) -> queue.Queue:
        work_queue = cls._queue
        if work_queue is None:
            raise RuntimeError("flush queue is not initialized")
        return work_queue

    @classmethod
    def global_queue_occupation(cls) -> Tuple[int, int]:
        """Number of queued items and the queue capacity."""
        work_queue = cls._require_queue()
        return work_queue.qsize(), cls._capacity

    @classmethod
    def is_queue_empty(cls) -> bool:
        return cls._require_queue().qsize() == 0

    @classmethod
    def add_item_to_flush_queue(cls, item: FlushableItem) -> None:
        """Queue an item, blocking while the queue is full."""
        cls._require_queue().put(item)

    @classmethod
    def _process(cls, item: FlushableItem) -> None:
        handle = item.underlying_file.handle
        mode = item.mode
        if isinstance(mode, AppendFlush):
            offset = handle.tell()
            data = mode.chunk.chunk.get()
            length = len(data)
            handle.write(data)
            handle.flush()
            mode.on_flushed(offset, length)
        else:
            handle.seek(mode.offset)
            handle.write(mode.buffer.get())
            handle.flush()
            mode.buffer.release()

    @classmethod
    def _flush_thread(cls, work_queue: queue.Queue) -> None:
        while True:
            cls._take_lock.acquire()
            item = work_queue.get()
            if item is _STOP:
                cls._take_lock.release()
                work_queue.task_done()
                return
            # Holding the file lock before letting others take from the queue
            # keeps sequential writes to one file in order.
            file_lock = item.underlying_file.lock
            file_lock.acquire()
            cls._take_lock.release()
            try:
                cls._process(item)
            except Exception as error:
                log_warn(f"Error while flushing {item.underlying_file.path}: {error}")
            finally:
                file_lock.release()
                work_queue.task_done()

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._queue is not None

    @classmethod
    def init(cls, flush_queue_size: int, threads_count: int) -> None:
        """Create the queue and start ``max(1, threads_count)`` workers."""
        with cls._state_lock:
            if cls._queue is not None:
                cls.terminate()
            work_queue: queue.Queue = queue.Queue(maxsize=max(1, flush_queue_size))
            cls._capacity = flush_queue_size
            cls._queue = work_queue
            threads = []
            for _ in range(max(1, threads_count)):
                thread = threading.Thread(
                    target=cls._flush_thread,
                    args=(work_queue,),
                    name="flushing-thread",
                    daemon=True,
                )
                thread.start()
                threads.append(thread)
            cls._threads = threads

    @classmethod
    def schedule_disk_write(
        cls, file: SharedFile, buffer: AllocatedChunk, offset: int
    ) -> None:
        """Queue ``buffer`` to be written at ``offset`` of ``file``."""
        cls.add_item_to_flush_queue(FlushableItem(file, WriteAtFlush(buffer, offset)))

    @classmethod
    def flush_to_disk(cls) -> None:
        """Block until every queued item has been written."""
        cls._require_queue().join()

    @classmethod
    def terminate(cls) -> None:
        """Flush everything, stop the workers and drop the queue."""
        with cls._state_lock:
            work_queue = cls._require_queue()
            work_queue.join()
            threads, cls._threads = cls._threads, []
            for _ in threads:
                work_queue.put(_STOP)
            for thread in threads:
                thread.join()
            cls._queue = None
            cls._capacity = 0