"""Bounded in-memory capture of the log lines of one debug run."""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 10 * 1024 * 1024
DEFAULT_IDLE_CLEANUP_SECONDS = 300.0
KEEP_FRACTION = 0.8
NO_LOG_MESSAGE = "No debug log available"
BANNER = "=" * 80


class DebugCapture(logging.Handler):
    """
    Append-only text buffer for one detection run.

    Lines are added either directly through log() or, while attached, from
    any record emitted on the package logger. When the buffer exceeds
    max_size the oldest text is dropped so that roughly 80% of the cap
    remains, and a single truncation marker is put at the head.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        idle_cleanup_seconds: float = DEFAULT_IDLE_CLEANUP_SECONDS,
        logger_name: str = "creditsdetect",
    ):
        super().__init__(level=logging.DEBUG)
        self.max_size = max_size
        self.idle_cleanup_seconds = idle_cleanup_seconds
        self.logger_name = logger_name
        self.truncation_count = 0
        self._buffer: Optional[str] = None
        self._buffer_lock = threading.Lock()
        self._cleanup_timer: Optional[threading.Timer] = None
        self._attached = False
        self._previous_level: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self._buffer is not None

    def start(self, title: str = "Credits Detection Debug Log", settings: Optional[Dict[str, Any]] = None):
        """Begin a new capture, discarding any previous one."""
        self._cancel_cleanup()
        header: List[str] = [BANNER, title, f"Started: {datetime.now():%Y-%m-%d %H:%M:%S}", BANNER]
        if settings:
            header.append("Configuration:")
            for key, value in settings.items():
                header.append(f"  {key}: {value}")
            header.append(BANNER)
        with self._buffer_lock:
            self._buffer = "\n".join(header) + "\n\n"
            self.truncation_count = 0
        if not self._attached:
            package_logger = logging.getLogger(self.logger_name)
            self._previous_level = package_logger.level
            if package_logger.getEffectiveLevel() > logging.DEBUG:
                package_logger.setLevel(logging.DEBUG)
            package_logger.addHandler(self)
            self._attached = True

    def log(self, level: str, message: str):
        """Append a timestamped line. Does nothing when no capture is active."""
        now = datetime.now()
        line = f"[{now:%Y-%m-%d %H:%M:%S}.{now.microsecond // 1000:03d}] [{level.upper()}] {message}\n"
        with self._buffer_lock:
            if self._buffer is None:
                return
            self._buffer += line
            if len(self._buffer) > self.max_size:
                self._truncate()

    def _truncate(self):
        keep = int(self.max_size * KEEP_FRACTION)
        removed = len(self._buffer) - keep
        self._buffer = (
            f"[TRUNCATED: Removed {removed} characters to prevent memory growth]\n\n"
            + self._buffer[removed:]
        )
        self.truncation_count += 1

    def emit(self, record: logging.LogRecord):
        try:
            self.log(record.levelname, record.getMessage())
        except Exception:
            self.handleError(record)

    def retrieve(self) -> str:
        """Return the captured text and end the capture."""
        self._cancel_cleanup()
        with self._buffer_lock:
            text = self._buffer
            self._buffer = None
        self._detach()
        if text is None:
            return NO_LOG_MESSAGE
        return text + f"\n{BANNER}\nRetrieved: {datetime.now():%Y-%m-%d %H:%M:%S}\n{BANNER}\n"

    def discard(self):
        self._cancel_cleanup()
        with self._buffer_lock:
            self._buffer = None
        self._detach()

    def schedule_cleanup(self):
        """Discard the capture if it is not retrieved within the idle period."""
        self._cancel_cleanup()
        if self._buffer is None:
            return
        self._cleanup_timer = threading.Timer(self.idle_cleanup_seconds, self._expire)
        self._cleanup_timer.daemon = True
        self._cleanup_timer.start()

    def _expire(self):
        logger.info("Debug log was not retrieved and has been discarded")
        self.discard()

    def _cancel_cleanup(self):
        if self._cleanup_timer is not None:
            self._cleanup_timer.cancel()
            self._cleanup_timer = None

    def _detach(self):
        if self._attached:
            package_logger = logging.getLogger(self.logger_name)
            package_logger.removeHandler(self)
            if self._previous_level is not None:
                package_logger.setLevel(self._previous_level)
            self._attached = False
