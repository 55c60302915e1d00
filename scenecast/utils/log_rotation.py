"""
Size-based log rotation.

A background thread watches the server log and, once it passes the size
limit, moves it to ``<name>.1<suffix>`` (replacing any earlier backup) and
reopens the root logger's file handler on a fresh file. At most two files
are kept on disk.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..const import LOG_MAX_SIZE_MB

logger = logging.getLogger(__name__)

_BYTES_PER_MB = 1024 * 1024


def file_size_mb(path: Path) -> float:
    """Size of ``path`` in MB, 0 when it is missing or unreadable."""
    try:
        return path.stat().st_size / _BYTES_PER_MB
    except FileNotFoundError:
        return 0.0
    except OSError as e:
        logger.warning(f"Failed to get size of {path}: {e}")
        return 0.0


class LogRotator:
    """Rotates one log file in a daemon thread."""

    def __init__(self, log_file_path, check_interval: float = 300, max_size_mb: float = LOG_MAX_SIZE_MB):
        """
        Args:
            log_file_path: Log file written by the root logger's FileHandler
            check_interval: Seconds between size checks
            max_size_mb: Size at which the file is rotated
        """
        self.log_file_path = Path(log_file_path)
        self.backup_log_path = self.log_file_path.with_name(f"{self.log_file_path.stem}.1{self.log_file_path.suffix}")
        self.check_interval = check_interval
        self.max_size_mb = max_size_mb

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def needs_rotation(self) -> bool:
        return file_size_mb(self.log_file_path) >= self.max_size_mb

    def _detach_file_handlers(self) -> List[logging.FileHandler]:
        root_logger = logging.getLogger()
        target = str(self.log_file_path.absolute())
        detached = [
            handler
            for handler in root_logger.handlers
            if isinstance(handler, logging.FileHandler) and handler.baseFilename == target
        ]
        for handler in detached:
            handler.close()
            root_logger.removeHandler(handler)
        return detached

    def _reattach_file_handler(self, template: logging.FileHandler) -> None:
        handler = logging.FileHandler(str(self.log_file_path), mode="a", encoding="utf-8")
        handler.setFormatter(template.formatter)
        handler.setLevel(template.level)
        logging.getLogger().addHandler(handler)

    def rotate(self, force: bool = False) -> bool:
        """
        Rotate the log when it is over the limit (or unconditionally with ``force``).

        Returns:
            True when the file was moved to the backup name
        """
        if not self.log_file_path.exists():
            return False
        if not force and not self.needs_rotation():
            return False

        logger.info(f"Rotating {self.log_file_path} ({file_size_mb(self.log_file_path):.1f}MB)")

        try:
            self.backup_log_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove backup log {self.backup_log_path}: {e}")

        # The handle must be released before the rename
        detached = self._detach_file_handlers()
        try:
            self.log_file_path.rename(self.backup_log_path)
        except OSError as e:
            logger.error(f"Failed to rotate log file {self.log_file_path}: {e}")
            return False
        finally:
            if detached:
                self._reattach_file_handler(detached[0])

        logger.info(f"Rotated {self.log_file_path} -> {self.backup_log_path}")
        return True

    def _worker(self) -> None:
        logger.debug(f"Log rotation worker started, checking every {self.check_interval}s")
        while not self._stop_event.is_set():
            try:
                self.rotate()
            except Exception as e:
                logger.error(f"Error in log rotation worker: {e}")
            self._stop_event.wait(self.check_interval)

    def start(self) -> bool:
        if self.running:
            logger.warning("Log rotator is already running")
            return False

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._worker, name="LogRotator", daemon=True)
        self._thread.start()
        logger.info(f"Log rotator started: monitoring {self.log_file_path} (max {self.max_size_mb}MB)")
        return True

    def stop(self, timeout: float = 5.0) -> bool:
        if not self.running:
            return True

        self._stop_event.set()
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning(f"Log rotator thread did not stop within {timeout}s")
            return False

        self._thread = None
        logger.info("Log rotator stopped")
        return True

    def get_log_stats(self) -> Dict[str, Any]:
        main_size_mb = file_size_mb(self.log_file_path)
        backup_size_mb = file_size_mb(self.backup_log_path)
        return {
            "main_log_path": str(self.log_file_path),
            "main_log_size_mb": main_size_mb,
            "backup_log_path": str(self.backup_log_path),
            "backup_log_size_mb": backup_size_mb,
            "total_size_mb": main_size_mb + backup_size_mb,
            "max_size_mb": self.max_size_mb,
            "is_running": self.running,
        }
