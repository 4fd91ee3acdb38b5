"""Process-wide logging hook with a print fallback."""

from __future__ import annotations

import enum
import threading
from typing import Callable, Optional

LoggerCallback = Callable[["LogLevel", str], None]


class LogLevel(enum.Enum):
    """Severity of a log message."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


_callback_lock = threading.Lock()
_callback: Optional[LoggerCallback] = None


def log(level: LogLevel, message: str) -> None:
    """Send a message to the installed callback, or print it if none is set."""
    with _callback_lock:
        callback = _callback
    if callback is not None:
        callback(level, message)
    else:
        print(message)


def log_info(message: str) -> None:
    """Log a message at info level."""
    log(LogLevel.INFO, message)


def log_warn(message: str) -> None:
    """Log a message at warning level."""
    log(LogLevel.WARNING, message)


def set_logger_function(callback: Optional[LoggerCallback]) -> None:
    """Install the function that receives every log message.

    Passing ``None`` restores printing to standard output.
    """
    global _callback
    with _callback_lock:
        _callback = callback