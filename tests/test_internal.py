import pytest

from spillfs.allocator import CHUNKS_ALLOCATOR
from spillfs.chunks import DiskChunk, MemoryChunk
from spillfs.flush import GlobalFlush
from spillfs.internal import (
    MemoryFileInternal,
    MemoryFileMode,
    OpenMode,
    take_swappable_file,
)
from spillfs.logging import set_logger_function
from spillfs.memory_data_size import MemoryDataSize


@pytest.fixture(scope="module", autouse=True)
def allocator():
    CHUNKS_ALLOCATOR.initialize(MemoryDataSize.from_mebioctets(1), 12, 16)
    yield


@pytest.fixture
def flush_pool():
    GlobalFlush.init(16, 2)
    yield
    GlobalFlush.terminate()


def _filled_chunk(data: bytes):
    chunk = CHUNKS_ALLOCATOR.request_chunk()
    chunk.write_bytes_noextend(data)
    return chunk


def test_memory_file_mode_constructors():
    assert MemoryFileMode.prefer_memory(3) == MemoryFileMode.prefer_memory(3)
    assert MemoryFileMode.prefer_memory(3) != MemoryFileMode.prefer_memory(4)
    assert MemoryFileMode.always_memory() != MemoryFileMode.disk_only()
    assert MemoryFileMode.prefer_memory(7).swap_priority == 7


def test_registry_lifecycle(tmp_path):
    path = tmp_path / "reg.tmp"
    before = MemoryFileInternal.active_files_count()
    file = MemoryFileInternal.create_new(path, MemoryFileMode.always_memory())
    assert MemoryFileInternal.retrieve_reference(str(path)) is file
    assert MemoryFileInternal.active_files_count() == before + 1
    assert MemoryFileInternal.delete(path, True) is True
    assert MemoryFileInternal.delete(path, True) is False
    assert MemoryFileInternal.retrieve_reference(path) is None


def test_create_from_fs(tmp_path):
    assert MemoryFileInternal.create_from_fs(tmp_path / "missing") is None
    assert MemoryFileInternal.create_from_fs(tmp_path) is None
    path = tmp_path / "existing.bin"
    path.write_bytes(b"stored on disk")
    file = MemoryFileInternal.create_from_fs(path)
    assert len(file) == len(b"stored on disk")
    assert file.is_on_disk()
    assert file.has_only_one_chunk()
    assert file.flush_chunks(10) == 0
    file.open(OpenMode.READ)
    assert bytes(file.chunk_view(0)) == b"stored on disk"
    file.close()
    MemoryFileInternal.delete(path, False)
    assert path.exists()


def test_open_modes(tmp_path):
    path = tmp_path / "modes.tmp"
    file = MemoryFileInternal.create_new(path, MemoryFileMode.always_memory())
    file.open(OpenMode.WRITE)
    file.open(OpenMode.WRITE)
    with pytest.raises(RuntimeError):
        file.open(OpenMode.READ)
    file.close()
    with pytest.raises(RuntimeError):
        file.open(OpenMode.READ)
    file.close()
    file.open(OpenMode.READ)
    file.close()
    with pytest.raises(RuntimeError):
        file.close()
    MemoryFileInternal.delete(path, True)


def test_memory_file_read_back(tmp_path):
    path = tmp_path / "mem.tmp"
    file = MemoryFileInternal.create_new(path, MemoryFileMode.always_memory())
    file.open(OpenMode.WRITE)
    file.add_chunk(_filled_chunk(b"one"))
    file.add_chunk(_filled_chunk(b"two!"))
    assert len(file) == 7
    assert file.get_chunks_count() == 2
    assert file.flush_pending_chunks_count() == 0
    file.close()
    file.open(OpenMode.READ)
    assert b"".join(bytes(file.chunk_view(i)) for i in range(2)) == b"onetwo!"
    assert isinstance(file.get_chunk(0), MemoryChunk)
    file.close()
    MemoryFileInternal.delete(path, True)


def test_disk_only_flush(flush_pool, tmp_path):
    path = tmp_path / "disk.tmp"
    file = MemoryFileInternal.create_new(path, MemoryFileMode.disk_only())
    file.open(OpenMode.WRITE)
    file.add_chunk(_filled_chunk(b"payload data"))
    assert file.flush_pending_chunks_count() == 1
    assert file.flush_chunks(10) == 1
    GlobalFlush.flush_to_disk()
    assert isinstance(file.get_chunk(0), DiskChunk)
    assert file.flush_pending_chunks_count() == 0
    file.close()
    assert path.read_bytes() == b"payload data"
    file.open(OpenMode.READ)
    assert bytes(file.chunk_view(0)) == b"payload data"
    file.close()
    MemoryFileInternal.delete(path, True)


def test_flush_respects_limit(flush_pool, tmp_path):
    path = tmp_path / "limit.tmp"
    file = MemoryFileInternal.create_new(path, MemoryFileMode.disk_only())
    file.open(OpenMode.WRITE)
    for data in (b"a", b"b", b"c"):
        file.add_chunk(_filled_chunk(data))
    assert file.flush_chunks(2) == 2
    assert file.flush_pending_chunks_count() == 1
    assert file.flush_chunks(5) == 1
    GlobalFlush.flush_to_disk()
    file.close()
    assert path.read_bytes() == b"abc"
    MemoryFileInternal.delete(path, True)


def test_swappable_file_and_disk_switch(flush_pool, tmp_path):
    path = tmp_path / "swap.tmp"
    file = MemoryFileInternal.create_new(path, MemoryFileMode.prefer_memory(0))
    file.open(OpenMode.WRITE)
    file.add_chunk(_filled_chunk(b"swap me"))
    assert file.is_memory_preferred()
    assert file.flush_pending_chunks_count() == 1
    taken = []
    while (candidate := take_swappable_file()) is not None:
        taken.append(candidate)
    assert file in taken
    file.change_to_disk_only()
    assert file.is_on_disk()
    assert file.flush_chunks(100) == 1
    GlobalFlush.flush_to_disk()
    file.close()
    assert path.read_bytes() == b"swap me"
    MemoryFileInternal.delete(path, True)


def test_reserve_space_spans_chunks(tmp_path):
    path = tmp_path / "reserve.tmp"
    file = MemoryFileInternal.create_new(path, MemoryFileMode.always_memory())
    file.open(OpenMode.WRITE)
    first = CHUNKS_ALLOCATOR.request_chunk()
    capacity = first.max_len()
    size = capacity + 10
    current, parts = file.reserve_space(first, size, 1)
    assert sum(len(view) for view, _ in parts) == size
    assert file.get_chunks_count() == 1
    assert len(current) == 10
    for view, release in parts:
        view[:] = b"\x07" * len(view)
        if release is not None:
            release()
    assert len(file) == capacity
    file.close()
    MemoryFileInternal.delete(path, True)


def test_reserve_space_rejects_oversized_elements(tmp_path):
    path = tmp_path / "big.tmp"
    file = MemoryFileInternal.create_new(path, MemoryFileMode.always_memory())
    chunk = CHUNKS_ALLOCATOR.request_chunk()
    with pytest.raises(ValueError):
        file.reserve_space(chunk, 10, chunk.max_len() + 1)
    with pytest.raises(ValueError):
        file.reserve_space(chunk, 10, 0)
    MemoryFileInternal.delete(path, True)


def test_write_at_start(tmp_path):
    path = tmp_path / "start.tmp"
    file = MemoryFileInternal.create_new(path, MemoryFileMode.always_memory())
    assert file.write_at_start(b"HD") is False
    file.add_chunk(_filled_chunk(b"xxxxbody"))
    assert file.write_at_start(b"HEAD") is True
    assert bytes(file.chunk_view(0)) == b"HEADbody"
    with pytest.raises(ValueError):
        file.write_at_start(bytes(129))
    MemoryFileInternal.delete(path, True)


def test_write_at_start_on_disk(flush_pool, tmp_path):
    path = tmp_path / "start_disk.tmp"
    file = MemoryFileInternal.create_new(path, MemoryFileMode.disk_only())
    file.open(OpenMode.WRITE)
    file.add_chunk(_filled_chunk(b"0000rest"))
    file.flush_chunks(10)
    GlobalFlush.flush_to_disk()
    assert file.write_at_start(b"ABCD") is True
    file.add_chunk(_filled_chunk(b"-tail"))
    file.flush_chunks(10)
    GlobalFlush.flush_to_disk()
    file.close()
    assert path.read_bytes() == b"ABCDrest-tail"
    MemoryFileInternal.delete(path, True)


def test_delete_directory(tmp_path):
    inside = tmp_path / "dir"
    a = MemoryFileInternal.create_new(inside / "a.tmp", MemoryFileMode.always_memory())
    b = MemoryFileInternal.create_new(inside / "sub" / "b.tmp", MemoryFileMode.always_memory())
    outside = tmp_path / "other.tmp"
    MemoryFileInternal.create_new(outside, MemoryFileMode.always_memory())
    assert MemoryFileInternal.delete_directory(inside, True) is True
    assert MemoryFileInternal.retrieve_reference(a.path) is None
    assert MemoryFileInternal.retrieve_reference(b.path) is None
    assert MemoryFileInternal.retrieve_reference(outside) is not None
    MemoryFileInternal.delete(outside, True)


def test_debug_dump_files_logs_paths(tmp_path):
    path = tmp_path / "dump.tmp"
    file = MemoryFileInternal.create_new(path, MemoryFileMode.always_memory())
    file.add_chunk(_filled_chunk(b"z"))
    messages = []
    set_logger_function(lambda level, message: messages.append(message))
    try:
        MemoryFileInternal.debug_dump_files()
    finally:
        set_logger_function(None)
    assert f"File '{path}' => chunks: 1" in messages
    MemoryFileInternal.delete(path, True)