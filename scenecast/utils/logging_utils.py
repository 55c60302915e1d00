"""
Log formatting with elapsed-time stamps.

Every record carries ``app_time``, the time since the server started, so
connect, submit and broadcast lines from one session can be lined up
without doing clock arithmetic on wall-clock timestamps.
"""

import logging
import time
from typing import Optional

DEFAULT_LOG_FORMAT = "%(asctime)s - %(app_time)s - %(name)s - %(levelname)s - %(message)s"

_app_start_time: Optional[float] = None


def format_app_time(elapsed_seconds: float) -> str:
    """Render elapsed seconds as ``mm:ss.mmm`` (minutes keep growing past 99)."""
    elapsed_seconds = max(0.0, elapsed_seconds)
    minutes = int(elapsed_seconds // 60)
    seconds = elapsed_seconds - minutes * 60
    return f"{minutes:02d}:{seconds:06.3f}"


class AppTimeFormatter(logging.Formatter):
    """Formatter that adds ``app_time`` to each record."""

    def __init__(
        self, fmt: Optional[str] = None, datefmt: Optional[str] = None, app_start_time: Optional[float] = None
    ):
        super().__init__(fmt or DEFAULT_LOG_FORMAT, datefmt)
        self.app_start_time = app_start_time if app_start_time is not None else time.time()

    def format(self, record):
        record.app_time = format_app_time(record.created - self.app_start_time)
        return super().format(record)


def get_app_start_time() -> float:
    """Start time shared by all formatters; fixed on first use."""
    global _app_start_time
    if _app_start_time is None:
        _app_start_time = time.time()
    return _app_start_time


def set_app_start_time(start_time: float) -> None:
    global _app_start_time
    _app_start_time = start_time


def create_app_time_formatter(fmt: Optional[str] = None, datefmt: Optional[str] = None) -> AppTimeFormatter:
    return AppTimeFormatter(fmt=fmt, datefmt=datefmt, app_start_time=get_app_start_time())
