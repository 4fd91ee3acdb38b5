"""Resident memory and CPU time used so far by the running process."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Union

_PROC_STAT_PATH = Path("/proc/self/stat")
_NANOS_PER_SECOND = 1_000_000_000
_U32_LIMIT = 1 << 32

# Positions inside /proc/self/stat, counted from the field after the command name.
_UTIME_INDEX = 11
_STIME_INDEX = 12
_RSS_INDEX = 21


class ProcessStatsError(Exception):
    """Base class for failures while collecting process statistics."""


class FileReadError(ProcessStatsError):
    """A file could not be read."""

    def __init__(self, path: Union[str, os.PathLike], cause: BaseException) -> None:
        self.path = Path(path)
        self.cause = cause
        super().__init__(f"Failed to read from file `{self.path}`: {cause}")


class FileContentsMalformedError(ProcessStatsError):
    """A file's contents were not in the expected format."""

    def __init__(self) -> None:
        super().__init__("File contents are in unexpected format")


class SystemCallError(ProcessStatsError):
    """A system interface reported an error."""

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"Call to system-native API errored: {cause}")


@dataclass(frozen=True)
class ProcessStats:
    """CPU times in nanoseconds and resident memory in bytes."""

    cpu_time_user: int
    cpu_time_kernel: int
    memory_usage_bytes: int

    @property
    def cpu_time_user_seconds(self) -> float:
        return self.cpu_time_user / _NANOS_PER_SECOND

    @property
    def cpu_time_kernel_seconds(self) -> float:
        return self.cpu_time_kernel / _NANOS_PER_SECOND

    @classmethod
    def get(cls) -> ProcessStats:
        """Collect the statistics of the current process."""
        if sys.platform.startswith("linux"):
            return _linux_info(_PROC_STAT_PATH)
        return _portable_info()


def _seconds_to_nanos(seconds: float) -> int:
    return int(round(seconds * _NANOS_PER_SECOND))


def parse_proc_stat(
    text: Union[str, bytes], page_size: int, ticks_per_second: int
) -> ProcessStats:
    """Build statistics from the contents of a ``/proc/<pid>/stat`` file."""
    if ticks_per_second <= 0:
        raise ValueError("ticks_per_second must be positive")
    if isinstance(text, (bytes, bytearray)):
        text = bytes(text).decode("utf-8", errors="replace")

    open_paren = text.find("(")
    close_paren = text.rfind(")")
    if open_paren < 0 or close_paren < open_paren:
        raise FileContentsMalformedError()

    fields = text[close_paren + 1 :].split()
    try:
        int(text[:open_paren].strip())
        utime = int(fields[_UTIME_INDEX])
        stime = int(fields[_STIME_INDEX])
        rss = int(fields[_RSS_INDEX])
    except (IndexError, ValueError) as error:
        raise FileContentsMalformedError() from error

    return ProcessStats(
        cpu_time_user=_seconds_to_nanos(utime / ticks_per_second),
        cpu_time_kernel=_seconds_to_nanos(stime / ticks_per_second),
        memory_usage_bytes=rss * page_size,
    )


def _linux_info(path: Path) -> ProcessStats:
    try:
        page_size = os.sysconf("SC_PAGE_SIZE")
        ticks_per_second = os.sysconf("SC_CLK_TCK")
    except (OSError, ValueError) as error:
        raise SystemCallError(error) from error
    try:
        contents = path.read_bytes()
    except OSError as error:
        raise FileReadError(path, error) from error
    return parse_proc_stat(contents, page_size, ticks_per_second)


def _portable_info() -> ProcessStats:
    times = os.times()
    try:
        import resource
    except ImportError as error:
        raise SystemCallError(
            OSError("resident memory size is not available on this platform")
        ) from error
    try:
        usage = resource.getrusage(resource.RUSAGE_SELF)
    except OSError as error:
        raise SystemCallError(error) from error
    rss = usage.ru_maxrss if sys.platform == "darwin" else usage.ru_maxrss * 1024
    return ProcessStats(
        cpu_time_user=_seconds_to_nanos(times.user),
        cpu_time_kernel=_seconds_to_nanos(times.system),
        memory_usage_bytes=rss,
    )


def filetime_to_duration(low: int, high: int) -> int:
    """Nanoseconds held by a FILETIME split into its low and high 32-bit parts."""
    if not (0 <= low < _U32_LIMIT and 0 <= high < _U32_LIMIT):
        raise ValueError("FILETIME parts must be unsigned 32-bit values")
    hundred_nanos = (high << 32) | low
    seconds, remainder = divmod(hundred_nanos, 10**7)
    return seconds * _NANOS_PER_SECOND + remainder * 100