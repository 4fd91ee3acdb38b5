import pytest

from spillfs.allocator import CHUNKS_ALLOCATOR
from spillfs.internal import MemoryFileInternal, MemoryFileMode, take_swappable_file
from spillfs.memory_data_size import MemoryDataSize
from spillfs.memory_fs import MemoryFs, RemoveFileMode
from spillfs.reader import FileReader
from spillfs.writer import FileWriter


@pytest.fixture(scope="module", autouse=True)
def memory_fs():
    MemoryFs.init(MemoryDataSize.from_mebioctets(16), 1024, 3, 16)
    yield
    MemoryFs.flush_all_to_disk()


@pytest.fixture
def empty_swap_list():
    while take_swappable_file() is not None:
        pass
    MemoryFs.flush_all_to_disk()


def chunk_size():
    chunk = CHUNKS_ALLOCATOR.request_chunk()
    try:
        return chunk.max_len()
    finally:
        chunk.release()


def pattern(length):
    return bytes(i % 251 for i in range(length))


def test_memory_fs_round_trip(tmp_path):
    data = bytes(x % 256 for x in range(3337))
    paths = [tmp_path / f"{i}.tmp" for i in range(4)]
    for path in paths:
        with FileWriter.create(path, MemoryFileMode.prefer_memory(3)) as file:
            for _ in range(64):
                file.write(data)
        with FileReader.open(path) as reader:
            reader.seek(17 + 3337 * 12)
            assert reader.read_exact(4) == data[17:21]

    MemoryFs.flush_all_to_disk()

    for path in paths:
        with FileReader.open(path) as reader:
            for _ in range(64):
                assert reader.read_exact(3337) == data
            assert reader.read(3337) == b""
    assert MemoryFs.remove_directory(tmp_path, True) is True


def test_remove_file_keep(tmp_path):
    path = tmp_path / "keep.tmp"
    with FileWriter.create(path, MemoryFileMode.always_memory()) as writer:
        writer.write(b"content")
    assert MemoryFs.remove_file(path, RemoveFileMode.keep()) is None
    assert MemoryFileInternal.retrieve_reference(path) is not None
    assert MemoryFs.get_file_size(path) == len(b"content")


def test_remove_file_unknown_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        MemoryFs.remove_file(tmp_path / "nothing.tmp", RemoveFileMode.remove(True))


def test_remove_file_deletes_disk_data(tmp_path):
    path = tmp_path / "disk.tmp"
    with FileWriter.create(path, MemoryFileMode.disk_only()) as writer:
        writer.write(pattern(2 * chunk_size()))
    MemoryFs.flush_all_to_disk()
    assert path.exists()
    MemoryFs.remove_file(path, RemoveFileMode.remove(True))
    assert not path.exists()
    assert MemoryFileInternal.retrieve_reference(path) is None


def test_get_file_size(tmp_path):
    registered = tmp_path / "registered.tmp"
    data = pattern(chunk_size() + 33)
    with FileWriter.create(registered, MemoryFileMode.always_memory()) as writer:
        writer.write(data)
    plain = tmp_path / "plain.bin"
    plain.write_bytes(b"hello")
    assert MemoryFs.get_file_size(registered) == len(data)
    assert MemoryFs.get_file_size(plain) == len(b"hello")
    assert MemoryFs.get_file_size(tmp_path / "missing.bin") is None


def test_remove_directory(tmp_path):
    inner = tmp_path / "dir"
    inner.mkdir()
    inside = [inner / "a.tmp", inner / "b.tmp"]
    outside = tmp_path / "outside.tmp"
    for path in [*inside, outside]:
        with FileWriter.create(path, MemoryFileMode.always_memory()) as writer:
            writer.write(b"x")
    assert MemoryFs.remove_directory(inner, False) is True
    assert all(MemoryFileInternal.retrieve_reference(p) is None for p in inside)
    assert MemoryFileInternal.retrieve_reference(outside) is not None


def test_reduce_pressure_without_candidates(empty_swap_list):
    assert MemoryFs.reduce_pressure() is False


def test_reduce_pressure_spills_file(tmp_path, empty_swap_list):
    path = tmp_path / "spill.tmp"
    data = pattern(3 * chunk_size() + 5)
    writer = FileWriter.create(path, MemoryFileMode.prefer_memory(3))
    writer.write(data)
    assert MemoryFs.reduce_pressure() is True
    assert MemoryFileInternal.retrieve_reference(path).is_on_disk()
    writer.close()
    MemoryFs.flush_all_to_disk()
    assert path.read_bytes() == data


def test_free_memory_keeps_accounting():
    before = CHUNKS_ALLOCATOR.get_free_memory()
    MemoryFs.free_memory()
    assert CHUNKS_ALLOCATOR.get_free_memory() == before


def test_remove_file_mode_values():
    assert RemoveFileMode.keep() == RemoveFileMode(False, False)
    assert RemoveFileMode.remove(True).remove_fs is True
    assert RemoveFileMode.remove(False).delete_entry is True