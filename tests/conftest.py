"""Shared fixtures and fakes for creditsdetect tests."""

import threading
from typing import Callable, Dict, List, Optional, Union

import pytest

from creditsdetect.catalog import ItemStore
from creditsdetect.config import DetectorConfig
from creditsdetect.methods.base import DetectionMethod
from creditsdetect.models import EpisodeRef, Marker, SeriesRef


class FakeMethod(DetectionMethod):
    """Detection method answering from a path -> timestamp map."""

    def __init__(
        self,
        name: str = "Fake",
        results: Optional[Dict[str, Union[float, Exception]]] = None,
        confidence: float = 0.9,
        priority: int = 1,
        enabled: bool = True,
        default: float = 0.0,
        error: str = "nothing found",
    ):
        super().__init__()
        self._name = name
        self.results = results or {}
        self._confidence = confidence
        self._priority = priority
        self.enabled = enabled
        self.default = default
        self.error = error
        self.calls: List[str] = []

    @property
    def name(self):
        return self._name

    @property
    def confidence(self):
        return self._confidence

    @property
    def priority(self):
        return self._priority

    @property
    def is_enabled(self):
        return self.enabled

    def detect_credits(self, video_path, duration, cancel_event=None, on_progress=None):
        self.calls.append(video_path)
        self.last_error = ""
        result = self.results.get(video_path, self.default)
        if isinstance(result, Exception):
            raise result
        if result <= 0:
            self.last_error = self.error
        return result


class InMemoryStore(ItemStore):
    def __init__(self, series=None, episodes=None, supports_marker_kind=True):
        self.supports_marker_kind = supports_marker_kind
        self.series = {s.id: s for s in (series or [])}
        self.episodes = {e.id: e for e in (episodes or [])}
        self.chapters: Dict[str, List[Marker]] = {}

    def list_episodes(self, series_id=None, season_number=None, library_id=None):
        return [
            e for e in self.episodes.values()
            if (series_id is None or e.series_id == series_id)
            and (season_number is None or e.season_number == season_number)
            and (library_id is None or e.library_id == library_id)
        ]

    def list_series(self, library_id=None):
        return [s for s in self.series.values() if library_id is None or s.library_id == library_id]

    def get_episode(self, episode_id):
        return self.episodes.get(episode_id)

    def get_series(self, series_id):
        return self.series.get(series_id)

    def get_chapters(self, item_id):
        return list(self.chapters.get(item_id, []))

    def save_chapters(self, item_id, markers):
        self.chapters[item_id] = list(markers)


def make_episode(number: int, tmp_path=None, series_id: str = "s1", season: int = 1, duration: float = 1500.0, **kwargs) -> EpisodeRef:
    path = f"/videos/show/s{season:02d}e{number:02d}.mkv"
    if tmp_path is not None:
        video = tmp_path / f"s{season:02d}e{number:02d}.mkv"
        video.write_bytes(b"")
        path = str(video)
    return EpisodeRef(
        id=f"{series_id}-{season}-{number}",
        name=f"Episode {number}",
        path=path,
        series_id=series_id,
        series_name="Show",
        season_number=season,
        episode_number=number,
        duration=duration,
        **kwargs,
    )


@pytest.fixture
def config():
    return DetectorConfig(inter_item_delay_seconds=0)


@pytest.fixture
def series():
    return SeriesRef(id="s1", name="Show", library_id="tv", provider_ids={"Tvdb": "7001"})


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    event = threading.Event()
    deadline = timeout
    while deadline > 0:
        if predicate():
            return True
        event.wait(0.01)
        deadline -= 0.01
    return predicate()
