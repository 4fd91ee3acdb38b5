"""Timing of named processing phases, reported through the package logger."""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

from spillfs.allocator import CHUNKS_ALLOCATOR
from spillfs.logging import log_info

_DURATION_UNITS = (
    (1_000_000_000, "s"),
    (1_000_000, "ms"),
    (1_000, "µs"),
    (1, "ns"),
)


def format_duration(seconds: float) -> str:
    """Render a duration with two decimals in the largest fitting unit."""
    if math.isnan(seconds) or seconds < 0:
        raise ValueError("duration must be a non-negative number of seconds")
    nanos = int(round(seconds * 1_000_000_000))
    for divisor, suffix in _DURATION_UNITS:
        if nanos >= divisor or divisor == 1:
            integer, fraction = divmod(nanos, divisor)
            break
    hundredths, remainder = divmod(fraction * 100, divisor)
    if remainder > 0 and remainder * 2 >= divisor:
        hundredths += 1
    if hundredths == 100:
        integer += 1
        hundredths = 0
    return f"{integer}.{hundredths:02d}{suffix}"


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return f"{value:.2f}"


@dataclass(frozen=True)
class PhaseResult:
    """A completed phase and how long it took, in seconds."""

    name: str
    time: float


class PhaseTimesMonitor:
    """Tracks the wall-clock time of the run and of each named phase."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._timer: Optional[float] = None
        self._phase: Optional[Tuple[str, float]] = None
        self._results: List[PhaseResult] = []

    @property
    def results(self) -> Tuple[PhaseResult, ...]:
        """Completed phases in the order they finished."""
        with self._lock:
            return tuple(self._results)

    def init(self) -> None:
        """Start the global wall clock."""
        with self._lock:
            self._timer = time.monotonic()

    def _end_phase(self) -> None:
        if self._phase is None:
            return
        name, started = self._phase
        self._phase = None
        elapsed = time.monotonic() - started
        log_info(
            f"Finished {name}. phase duration: {format_duration(elapsed)} "
            f"gtime: {format_duration(self.get_wallclock())}"
        )
        self._results.append(PhaseResult(name, elapsed))

    def start_phase(self, name: str) -> None:
        """Close the running phase, if any, and begin a new one."""
        with self._lock:
            self._end_phase()
            log_info(f"Started {name}")
            self._phase = (name, time.monotonic())

    def get_wallclock(self) -> float:
        """Seconds since ``init``, or zero before it."""
        with self._lock:
            if self._timer is None:
                return 0.0
            return time.monotonic() - self._timer

    def get_phase_desc(self) -> str:
        """Name of the running phase, or an empty string."""
        with self._lock:
            return self._phase[0] if self._phase is not None else ""

    def get_phase_timer(self) -> float:
        """Seconds since the running phase started, or zero."""
        with self._lock:
            if self._phase is None:
                return 0.0
            return time.monotonic() - self._phase[1]

    def get_formatted_counter(self) -> str:
        """Phase and global times followed by the allocator's memory use."""
        total = CHUNKS_ALLOCATOR.get_total_memory()
        free = CHUNKS_ALLOCATOR.get_free_memory()
        used_percent = (1.0 - free / total) * 100.0
        return (
            f" ptime: {format_duration(self.get_phase_timer())}"
            f" gtime: {format_duration(self.get_wallclock())}"
            f" memory: {total - free:.2} {_format_float(used_percent)}%"
        )

    def get_formatted_counter_without_memory(self) -> str:
        """Phase and global times."""
        return (
            f" ptime: {format_duration(self.get_phase_timer())}"
            f" gtime: {format_duration(self.get_wallclock())}"
        )

    def print_stats(self, end_message: str) -> None:
        """Close the running phase and log the total and per-phase times."""
        with self._lock:
            self._end_phase()
            log_info(end_message)
            log_info(f"TOTAL TIME: {format_duration(self.get_wallclock())}")
            log_info("Final stats:")
            for result in self._results:
                log_info(f"\t{result.name} \t=> {format_duration(result.time)}")


PHASES_TIMES_MONITOR = PhaseTimesMonitor()