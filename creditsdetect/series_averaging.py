"""Per-series average credits start, used when an episode's own detection fails."""

import logging
import threading
from collections import defaultdict
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class SeriesAveraging:
    """Remembers successful detections per series for the lifetime of the service."""

    def __init__(self, minimum_episodes: int = 3):
        self.minimum_episodes = minimum_episodes
        self._lock = threading.Lock()
        self._timestamps: Dict[str, List[float]] = defaultdict(list)

    def record(self, series_id: Optional[str], timestamp: float):
        if not series_id or timestamp <= 0:
            return
        with self._lock:
            self._timestamps[series_id].append(timestamp)

    def average(self, series_id: Optional[str]) -> Optional[float]:
        """Average credits start, or None with fewer than minimum_episodes recorded."""
        if not series_id:
            return None
        with self._lock:
            values = list(self._timestamps.get(series_id, []))
        if len(values) < max(1, self.minimum_episodes):
            return None
        return sum(values) / len(values)

    def clear(self, series_id: Optional[str] = None):
        with self._lock:
            if series_id is None:
                self._timestamps.clear()
            else:
                self._timestamps.pop(series_id, None)
