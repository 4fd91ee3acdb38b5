"""Small helpers shared across the package."""

from __future__ import annotations

from spillfs.memory_data_size import MemoryDataSize


def memory_size_to_log2(size: MemoryDataSize) -> int:
    """Smallest power of two exponent whose power is at least ``size``."""
    octets = size.as_bytes()
    if octets <= 0:
        raise ValueError("memory size must be at least one octet")
    return (octets * 2 - 1).bit_length() - 1


class PanicOnDrop:
    """Guard that fails loudly when its scope ends without being disengaged."""

    def __init__(self, message: str) -> None:
        self.message = message
        self._engaged = True

    def disengage(self) -> None:
        """Mark the guard as satisfied so leaving its scope is allowed."""
        self._engaged = False

    def __enter__(self) -> PanicOnDrop:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._engaged:
            self._engaged = False
            raise RuntimeError(f"Cannot drop value: {self.message}") from exc