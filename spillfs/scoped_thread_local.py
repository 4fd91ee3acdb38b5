"""Per-thread values that are borrowed and handed back explicitly."""

from __future__ import annotations

import threading
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")

_EMPTY = object()


class _Slot:
    __slots__ = ("value",)

    def __init__(self, value: object) -> None:
        self.value = value


class ThreadLocalVariable(Generic[T]):
    """A value borrowed from a ScopedThreadLocal for the current thread."""

    def __init__(self, owner: ScopedThreadLocal[T], slot: _Slot, value: T) -> None:
        self._owner = owner
        self._slot = slot
        self._var: object = value
        self._released = False

    @property
    def value(self) -> T:
        """The borrowed value."""
        if self._var is _EMPTY:
            raise RuntimeError("Thread local variable has been taken")
        return self._var  # type: ignore[return-value]

    @value.setter
    def value(self, new_value: T) -> None:
        if self._var is _EMPTY:
            raise RuntimeError("Thread local variable has been taken")
        self._var = new_value

    def take(self) -> T:
        """Remove the value, leaving this variable empty until put back."""
        if self._var is _EMPTY:
            raise RuntimeError("Thread local variable has been taken")
        value, self._var = self._var, _EMPTY
        return value  # type: ignore[return-value]

    def put_back(self, value: T) -> None:
        """Store a value in an empty variable."""
        if self._var is not _EMPTY:
            raise RuntimeError("Thread local variable already holds a value")
        self._var = value

    def release(self) -> None:
        """Return the value to its thread's slot so it can be borrowed again."""
        if self._released:
            return
        if self._var is _EMPTY:
            raise RuntimeError("Thread local variable not managed correctly")
        if self._owner._closed:
            raise RuntimeError("Scoped thread local has been closed")
        self._released = True
        self._slot.value, self._var = self._var, _EMPTY

    def __enter__(self) -> ThreadLocalVariable[T]:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class ScopedThreadLocal(Generic[T]):
    """A lazily created value per thread, borrowed through ``get``."""

    def __init__(self, alloc: Callable[[], T]) -> None:
        self._alloc = alloc
        self._slots: dict[int, _Slot] = {}
        self._lock = threading.Lock()
        self._closed = False

    def get(self) -> ThreadLocalVariable[T]:
        """Borrow the current thread's value, creating it on first use."""
        ident = threading.get_ident()
        with self._lock:
            if self._closed:
                raise RuntimeError("Scoped thread local has been closed")
            slot: Optional[_Slot] = self._slots.get(ident)
        if slot is None:
            slot = _Slot(self._alloc())
            with self._lock:
                self._slots[ident] = slot
        if slot.value is _EMPTY:
            raise RuntimeError("Thread local variable taken multiple times, aborting!")
        value, slot.value = slot.value, _EMPTY
        return ThreadLocalVariable(self, slot, value)  # type: ignore[arg-type]

    def close(self) -> None:
        """Drop every thread's stored value."""
        with self._lock:
            self._closed = True
            self._slots.clear()