import itertools
import threading

import pytest

from spillfs.scoped_thread_local import ScopedThreadLocal


def test_get_returns_allocated_value():
    local = ScopedThreadLocal(lambda: [])
    var = local.get()
    var.value.append(1)
    assert var.value == [1]


def test_second_get_without_release_fails():
    local = ScopedThreadLocal(lambda: [])
    local.get()
    with pytest.raises(RuntimeError, match="taken multiple times"):
        local.get()


def test_release_returns_same_object():
    local = ScopedThreadLocal(lambda: [])
    first = local.get()
    obj = first.value
    first.release()
    second = local.get()
    assert second.value is obj


def test_alloc_called_once_per_thread():
    created = []

    def alloc():
        obj = object()
        created.append(obj)
        return obj

    local = ScopedThreadLocal(alloc)
    first = local.get()
    first_value = first.value
    first.release()
    second = local.get()
    assert second.value is first_value
    assert created == [first_value]


def test_threads_get_distinct_values():
    counter = itertools.count()
    local = ScopedThreadLocal(lambda: next(counter))
    main_value = local.get()
    seen = []

    def worker():
        with local.get() as var:
            seen.append(var.value)

    thread = threading.Thread(target=worker)
    thread.start()
    thread.join()
    assert main_value.value == 0
    assert seen == [1]


def test_context_manager_releases():
    local = ScopedThreadLocal(lambda: [])
    with local.get() as var:
        var.value.append("a")
    with local.get() as var:
        assert var.value == ["a"]


def test_take_and_put_back():
    local = ScopedThreadLocal(lambda: [])
    var = local.get()
    taken = var.take()
    taken.append(5)
    var.put_back(taken)
    var.release()
    assert local.get().value == [5]


def test_put_back_into_full_variable_fails():
    local = ScopedThreadLocal(lambda: [])
    var = local.get()
    with pytest.raises(RuntimeError):
        var.put_back([])


def test_release_after_take_fails():
    local = ScopedThreadLocal(lambda: [])
    var = local.get()
    var.take()
    with pytest.raises(RuntimeError, match="not managed correctly"):
        var.release()


def test_value_setter_replaces_value():
    local = ScopedThreadLocal(lambda: 0)
    var = local.get()
    var.value = 7
    var.release()
    assert local.get().value == 7


def test_get_after_close_fails():
    local = ScopedThreadLocal(lambda: [])
    local.close()
    with pytest.raises(RuntimeError):
        local.get()