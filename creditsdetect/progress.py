"""Shared progress state for the processing queue."""

import threading
from datetime import datetime
from typing import Any, Dict, Optional


class ProgressState:
    """
    Progress of the current queue run.

    Written by the queue worker, read by any number of observers through
    snapshot(). Every mutation happens under one lock so a snapshot never
    sees a half-applied update.
    """

    def __init__(self):
        self.lock = threading.Lock()
        self._reset_fields()

    def _reset_fields(self):
        self.is_running = False
        self.total_items = 0
        self.processed_items = 0
        self.successful_items = 0
        self.failed_items = 0
        self.current_item = ""
        self.current_item_progress = 0.0
        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self.failure_reasons: Dict[str, str] = {}
        self.success_details: Dict[str, str] = {}

    def reset(self, total_items: int = 0, is_running: bool = False):
        with self.lock:
            self._reset_fields()
            self.total_items = total_items
            self.is_running = is_running
            if is_running:
                self.start_time = datetime.now()

    def update(self, **values: Any):
        """Set one or more fields atomically."""
        with self.lock:
            for name, value in values.items():
                if not hasattr(self, name) or name == "lock":
                    raise AttributeError(f"Unknown progress field: {name}")
                setattr(self, name, value)

    def add_total(self, count: int = 1):
        with self.lock:
            self.total_items += count

    def record_success(self, label: str, detail: str):
        with self.lock:
            self.processed_items += 1
            self.successful_items += 1
            self.success_details[label] = detail

    def record_failure(self, label: str, reason: str):
        with self.lock:
            self.processed_items += 1
            self.failed_items += 1
            self.failure_reasons[label] = reason

    def finish(self, status: str, item_progress: Optional[float] = None):
        with self.lock:
            self.is_running = False
            self.end_time = datetime.now()
            self.current_item = status
            if item_progress is not None:
                self.current_item_progress = item_progress

    def _percent_complete(self) -> float:
        if self.total_items <= 0:
            return 0.0
        return min(100.0, self.processed_items * 100.0 / self.total_items)

    def _estimated_seconds_remaining(self) -> Optional[float]:
        if not self.is_running or self.start_time is None or self.processed_items == 0:
            return None
        elapsed = (datetime.now() - self.start_time).total_seconds()
        per_item = elapsed / self.processed_items
        remaining = max(0, self.total_items - self.processed_items)
        return per_item * remaining

    @property
    def percent_complete(self) -> float:
        with self.lock:
            return self._percent_complete()

    def snapshot(self) -> Dict[str, Any]:
        """Return a consistent copy of the state for observers."""
        with self.lock:
            return {
                "is_running": self.is_running,
                "total_items": self.total_items,
                "processed_items": self.processed_items,
                "successful_items": self.successful_items,
                "failed_items": self.failed_items,
                "current_item": self.current_item,
                "current_item_progress": self.current_item_progress,
                "start_time": self.start_time,
                "end_time": self.end_time,
                "failure_reasons": dict(self.failure_reasons),
                "success_details": dict(self.success_details),
                "percent_complete": self._percent_complete(),
                "estimated_seconds_remaining": self._estimated_seconds_remaining(),
            }
