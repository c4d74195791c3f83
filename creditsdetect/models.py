"""Data types shared across the detection pipeline."""

from dataclasses import dataclass, field
from typing import Dict, Optional

TICKS_PER_SECOND = 10_000_000


@dataclass
class SeriesRef:
    """A series as reported by the catalog."""
    id: str
    name: str
    library_id: Optional[str] = None
    provider_ids: Dict[str, str] = field(default_factory=dict)


@dataclass
class EpisodeRef:
    """
    An episode as reported by the catalog.

    ``duration`` is in seconds and may be unknown (None) until probed.
    """
    id: str
    name: str
    path: str
    series_id: Optional[str] = None
    series_name: Optional[str] = None
    season_number: Optional[int] = None
    episode_number: Optional[int] = None
    duration: Optional[float] = None
    library_id: Optional[str] = None
    provider_ids: Dict[str, str] = field(default_factory=dict)

    @property
    def is_special(self) -> bool:
        return self.season_number is None or self.season_number == 0

    @property
    def label(self) -> str:
        """Human label used as the key in progress reports."""
        if self.series_name and self.season_number is not None and self.episode_number is not None:
            return f"{self.series_name} S{self.season_number:02d}E{self.episode_number:02d}"
        return self.name


@dataclass
class Marker:
    """A chapter marker. ``kind`` is None when the store has no marker kinds."""
    name: str
    start_ticks: int
    kind: Optional[str] = None

    @property
    def start_seconds(self) -> float:
        return self.start_ticks / TICKS_PER_SECOND


@dataclass
class DetectionCandidate:
    method_name: str
    timestamp: float
    confidence: float
    priority: int


@dataclass
class QueueEntry:
    episode: EpisodeRef
    is_manual: bool = False
    is_dry_run: bool = False


@dataclass
class ProcessResult:
    """Outcome of processing one episode."""
    success: bool
    timestamp: float = 0.0
    failure_reason: str = ""
    detail: str = ""


@dataclass
class RequestResult:
    """Outcome of a request made through the service surface."""
    success: bool
    message: str
    item_count: int = 0


def seconds_to_ticks(seconds: float) -> int:
    return int(round(seconds * TICKS_PER_SECOND))


def format_timestamp(seconds: float) -> str:
    """Format seconds as m:ss, or h:mm:ss for an hour or more."""
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"
