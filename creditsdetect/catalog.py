"""Media catalog and chapter store interfaces, plus a JSON file implementation."""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Union

from creditsdetect.errors import ConfigError
from creditsdetect.models import EpisodeRef, Marker, SeriesRef

logger = logging.getLogger(__name__)


class ItemStore(ABC):
    """Where episodes come from and where their chapter markers live."""

    #: Whether stored markers carry a kind (e.g. CreditsStart) besides a name.
    supports_marker_kind = False

    @abstractmethod
    def list_episodes(
        self,
        series_id: Optional[str] = None,
        season_number: Optional[int] = None,
        library_id: Optional[str] = None,
    ) -> List[EpisodeRef]:
        """Episodes matching every given filter, ordered by season and episode."""

    @abstractmethod
    def list_series(self, library_id: Optional[str] = None) -> List[SeriesRef]:
        pass

    @abstractmethod
    def get_episode(self, episode_id: str) -> Optional[EpisodeRef]:
        pass

    @abstractmethod
    def get_series(self, series_id: str) -> Optional[SeriesRef]:
        pass

    @abstractmethod
    def get_chapters(self, item_id: str) -> List[Marker]:
        pass

    @abstractmethod
    def save_chapters(self, item_id: str, markers: List[Marker]) -> None:
        pass


def _episode_sort_key(episode: EpisodeRef):
    return (
        episode.series_name or "",
        episode.season_number if episode.season_number is not None else -1,
        episode.episode_number if episode.episode_number is not None else -1,
        episode.name,
    )


class JsonItemStore(ItemStore):
    """
    Catalog read from a JSON file, chapters kept in a second JSON file.

    Catalog format::

        {"series": [{"id": "s1", "name": "Show", "library_id": "tv",
                     "provider_ids": {"Tvdb": "123"}}],
         "episodes": [{"id": "e1", "name": "Pilot", "path": "/tv/show/s01e01.mkv",
                       "series_id": "s1", "season_number": 1, "episode_number": 1}]}

    Chapters are stored as ``{episode_id: [{"name", "start_ticks", "kind"}]}``.
    """

    supports_marker_kind = True

    def __init__(self, catalog_path: Union[str, Path], chapters_path: Optional[Union[str, Path]] = None):
        self.catalog_path = Path(catalog_path).expanduser()
        if chapters_path is None:
            chapters_path = self.catalog_path.with_name(self.catalog_path.stem + ".chapters.json")
        self.chapters_path = Path(chapters_path).expanduser()
        self._lock = threading.Lock()

        self._series: Dict[str, SeriesRef] = {}
        self._episodes: Dict[str, EpisodeRef] = {}
        self._chapters: Dict[str, List[Marker]] = {}
        self._load()

    def _load(self):
        try:
            with open(self.catalog_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Could not read catalog {self.catalog_path}: {e}") from e

        for item in data.get("series", []):
            series = SeriesRef(
                id=str(item["id"]),
                name=item.get("name", ""),
                library_id=item.get("library_id"),
                provider_ids=dict(item.get("provider_ids", {})),
            )
            self._series[series.id] = series

        for item in data.get("episodes", []):
            series = self._series.get(str(item.get("series_id"))) if item.get("series_id") is not None else None
            episode = EpisodeRef(
                id=str(item["id"]),
                name=item.get("name", ""),
                path=item.get("path", ""),
                series_id=series.id if series else item.get("series_id"),
                series_name=series.name if series else item.get("series_name"),
                season_number=item.get("season_number"),
                episode_number=item.get("episode_number"),
                duration=item.get("duration"),
                library_id=item.get("library_id") or (series.library_id if series else None),
                provider_ids=dict(item.get("provider_ids", {})),
            )
            self._episodes[episode.id] = episode

        if self.chapters_path.exists():
            try:
                with open(self.chapters_path, "r", encoding="utf-8") as f:
                    chapters = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigError(f"Could not read chapters {self.chapters_path}: {e}") from e
            for item_id, markers in chapters.items():
                self._chapters[item_id] = [
                    Marker(m.get("name", ""), int(m.get("start_ticks", 0)), m.get("kind")) for m in markers
                ]
        logger.debug(f"Loaded {len(self._series)} series and {len(self._episodes)} episodes from {self.catalog_path}")

    def _write_chapters(self):
        data = {
            item_id: [{"name": m.name, "start_ticks": m.start_ticks, "kind": m.kind} for m in markers]
            for item_id, markers in self._chapters.items()
        }
        tmp_path = self.chapters_path.with_suffix(self.chapters_path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.chapters_path)

    def list_episodes(
        self,
        series_id: Optional[str] = None,
        season_number: Optional[int] = None,
        library_id: Optional[str] = None,
    ) -> List[EpisodeRef]:
        episodes = [
            e for e in self._episodes.values()
            if (series_id is None or e.series_id == series_id)
            and (season_number is None or e.season_number == season_number)
            and (library_id is None or e.library_id == library_id)
        ]
        return sorted(episodes, key=_episode_sort_key)

    def list_series(self, library_id: Optional[str] = None) -> List[SeriesRef]:
        series = [s for s in self._series.values() if library_id is None or s.library_id == library_id]
        return sorted(series, key=lambda s: s.name)

    def get_episode(self, episode_id: str) -> Optional[EpisodeRef]:
        return self._episodes.get(episode_id)

    def get_series(self, series_id: str) -> Optional[SeriesRef]:
        return self._series.get(series_id)

    def get_chapters(self, item_id: str) -> List[Marker]:
        with self._lock:
            return list(self._chapters.get(item_id, []))

    def save_chapters(self, item_id: str, markers: List[Marker]) -> None:
        with self._lock:
            self._chapters[item_id] = list(markers)
            self._write_chapters()
