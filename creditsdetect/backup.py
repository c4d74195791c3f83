"""Export and import of credits markers as a versioned JSON document."""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from creditsdetect.catalog import ItemStore
from creditsdetect.errors import ConfigError
from creditsdetect.markers import ChapterMarkerService
from creditsdetect.models import TICKS_PER_SECOND, EpisodeRef

logger = logging.getLogger(__name__)

BACKUP_VERSION = "1.0"
PROVIDER_FIELDS = {"Tvdb": "TvdbId", "Tmdb": "TmdbId", "Imdb": "ImdbId"}
EPISODE_PROVIDER_KEY = "Tvdb"


@dataclass
class ImportResult:
    imported: int = 0
    skipped: int = 0
    not_found: int = 0
    errors: int = 0

    @property
    def message(self) -> str:
        return (
            f"Imported {self.imported}, skipped {self.skipped}, "
            f"not found {self.not_found}, errors {self.errors}"
        )


def _without_nulls(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


class CreditsBackupService:
    """Moves credits markers between libraries, matching episodes by their ids."""

    def __init__(self, store: ItemStore, marker_service: ChapterMarkerService):
        self.store = store
        self.marker_service = marker_service

    def _episodes(self, library_ids: Optional[Iterable[str]]) -> List[EpisodeRef]:
        if not library_ids:
            return self.store.list_episodes()
        episodes = []
        for library_id in library_ids:
            episodes.extend(self.store.list_episodes(library_id=library_id))
        return episodes

    def _entry(self, episode: EpisodeRef) -> Dict[str, Any]:
        series = self.store.get_series(episode.series_id) if episode.series_id else None
        marker = self.marker_service.get_credits_marker(episode)
        entry = {
            "SeriesName": series.name if series else episode.series_name,
            "SeriesId": episode.series_id,
            "TvdbEpisodeId": episode.provider_ids.get(EPISODE_PROVIDER_KEY),
            "SeasonNumber": episode.season_number,
            "EpisodeNumber": episode.episode_number,
            "EpisodeName": episode.name,
            "EpisodeId": episode.id,
            "FilePath": episode.path,
            "CreditsStartTicks": marker.start_ticks if marker else None,
        }
        if series:
            for provider, field_name in PROVIDER_FIELDS.items():
                entry[field_name] = series.provider_ids.get(provider)
        return _without_nulls(entry)

    def export_backup(self, library_ids: Optional[Iterable[str]] = None, only_with_credits: bool = True) -> str:
        """
        Serialize credits markers to JSON.

        Args:
            library_ids: Limit the export to these libraries (None = everything)
            only_with_credits: Leave out episodes without a credits marker

        Returns:
            The backup document as a JSON string
        """
        entries = [self._entry(e) for e in self._episodes(library_ids)]
        total = len(entries)
        with_credits = sum(1 for e in entries if "CreditsStartTicks" in e)
        if only_with_credits:
            entries = [e for e in entries if "CreditsStartTicks" in e]
        document = {
            "Version": BACKUP_VERSION,
            "BackupDate": datetime.now().isoformat(timespec="seconds"),
            "TotalEpisodes": total,
            "EpisodesWithCredits": with_credits,
            "Entries": entries,
        }
        logger.info(f"Exported {with_credits} credits markers")
        return json.dumps(document, indent=2)

    def _match(self, entry: Dict[str, Any], episodes: List[EpisodeRef]) -> Optional[EpisodeRef]:
        tvdb_episode = entry.get("TvdbEpisodeId")
        if tvdb_episode:
            for episode in episodes:
                if episode.provider_ids.get(EPISODE_PROVIDER_KEY) == str(tvdb_episode):
                    return episode
        episode_id = entry.get("EpisodeId")
        if episode_id:
            episode = self.store.get_episode(str(episode_id))
            if episode:
                return episode
        file_path = entry.get("FilePath")
        if file_path:
            for episode in episodes:
                if episode.path == file_path:
                    return episode

        season, number = entry.get("SeasonNumber"), entry.get("EpisodeNumber")
        if season is None or number is None:
            return None
        for episode in episodes:
            if episode.season_number != season or episode.episode_number != number or not episode.series_id:
                continue
            series = self.store.get_series(episode.series_id)
            if series is None:
                continue
            for provider, field_name in PROVIDER_FIELDS.items():
                wanted = entry.get(field_name)
                if wanted and series.provider_ids.get(provider) == str(wanted):
                    return episode
        return None

    def import_backup(self, document: str, overwrite: bool = False) -> ImportResult:
        """
        Restore credits markers from a backup document.

        Raises:
            ConfigError: If the document is not a valid backup
        """
        try:
            data = json.loads(document)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid backup document: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("Entries"), list):
            raise ConfigError("Invalid backup document: missing Entries")
        if data.get("Version") != BACKUP_VERSION:
            logger.warning(f"Backup version {data.get('Version')} differs from {BACKUP_VERSION}, importing anyway")

        episodes = self.store.list_episodes()
        result = ImportResult()
        for entry in data["Entries"]:
            ticks = entry.get("CreditsStartTicks")
            if not ticks:
                result.skipped += 1
                continue
            episode = self._match(entry, episodes)
            if episode is None:
                result.not_found += 1
                continue
            if not overwrite and self.marker_service.has_credits_marker(episode):
                result.skipped += 1
                continue
            try:
                self.marker_service.save_credits_marker(episode, int(ticks) / TICKS_PER_SECOND)
                result.imported += 1
            except (OSError, ValueError) as e:
                logger.error(f"Could not import credits for {episode.label}: {e}")
                result.errors += 1
        logger.info(result.message)
        return result
