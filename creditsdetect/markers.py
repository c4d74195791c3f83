"""Reading and writing credits chapter markers."""

import logging
from typing import Dict, List, Optional

from creditsdetect.catalog import ItemStore
from creditsdetect.models import EpisodeRef, Marker, TICKS_PER_SECOND, seconds_to_ticks

logger = logging.getLogger(__name__)

CREDITS_MARKER_NAME = "Credits"
CREDITS_KIND = "CreditsStart"
LEGACY_CREDITS_KIND = "Credits"
CREDITS_NAME_HINTS = ("credit", "end title", "ending")
LATE_POSITION_FRACTION = 0.80
SHORT_NAME_LENGTH = 3


class _Unsupported:
    def __repr__(self):
        return "UNSUPPORTED"

    def __bool__(self):
        return False


UNSUPPORTED = _Unsupported()


class MarkerKindAdapter:
    """
    Access to the optional kind of a marker.

    Negotiated once from the store: stores without marker kinds get
    UNSUPPORTED from try_get_marker_kind and False from try_set_marker_kind.
    """

    def __init__(self, supported: bool):
        self.supported = supported

    @classmethod
    def negotiate(cls, store: ItemStore) -> "MarkerKindAdapter":
        supported = bool(getattr(store, "supports_marker_kind", False))
        logger.debug(f"Marker kinds {'supported' if supported else 'not supported'} by {type(store).__name__}")
        return cls(supported)

    def try_get_marker_kind(self, marker: Marker):
        if not self.supported:
            return UNSUPPORTED
        return marker.kind

    def try_set_marker_kind(self, marker: Marker, kind: str) -> bool:
        if not self.supported:
            return False
        marker.kind = kind
        return True


class ChapterMarkerService:
    """Finds, replaces and lists credits markers in the item store."""

    def __init__(self, store: ItemStore, kind_adapter: Optional[MarkerKindAdapter] = None):
        self.store = store
        self.kind_adapter = kind_adapter or MarkerKindAdapter.negotiate(store)

    def is_credits_marker(self, marker: Marker, duration: Optional[float] = None) -> bool:
        kind = self.kind_adapter.try_get_marker_kind(marker)
        if kind is not UNSUPPORTED and kind in (CREDITS_KIND, LEGACY_CREDITS_KIND):
            return True
        name = (marker.name or "").lower()
        if any(hint in name for hint in CREDITS_NAME_HINTS):
            return True
        if duration and duration > 0 and len(name.strip()) <= SHORT_NAME_LENGTH:
            return marker.start_seconds >= duration * LATE_POSITION_FRACTION
        return False

    def get_credits_marker(self, episode: EpisodeRef) -> Optional[Marker]:
        for marker in self.store.get_chapters(episode.id):
            if self.is_credits_marker(marker):
                return marker
        return None

    def has_credits_marker(self, episode: EpisodeRef) -> bool:
        return self.get_credits_marker(episode) is not None

    def save_credits_marker(self, episode: EpisodeRef, seconds: float, duration: Optional[float] = None) -> Marker:
        """
        Replace any existing credits marker of the episode with one at seconds.

        Returns:
            The marker that was stored
        """
        duration = duration if duration is not None else episode.duration
        markers = [m for m in self.store.get_chapters(episode.id) if not self.is_credits_marker(m, duration)]
        marker = Marker(CREDITS_MARKER_NAME, seconds_to_ticks(seconds))
        self.kind_adapter.try_set_marker_kind(marker, CREDITS_KIND)
        markers.append(marker)
        markers.sort(key=lambda m: m.start_ticks)
        self.store.save_chapters(episode.id, markers)
        logger.info(f"Saved credits marker for {episode.label} at {seconds:.1f}s")
        return marker

    def remove_credits_marker(self, episode: EpisodeRef) -> bool:
        markers = self.store.get_chapters(episode.id)
        kept = [m for m in markers if not self.is_credits_marker(m, episode.duration)]
        if len(kept) == len(markers):
            return False
        self.store.save_chapters(episode.id, kept)
        logger.info(f"Removed credits marker from {episode.label}")
        return True

    def get_series_markers(self, series_id: str) -> List[Dict[str, object]]:
        """One entry per episode of the series with its credits start, if any."""
        entries = []
        for episode in self.store.list_episodes(series_id=series_id):
            marker = self.get_credits_marker(episode)
            entries.append({
                "episode_id": episode.id,
                "label": episode.label,
                "season_number": episode.season_number,
                "episode_number": episode.episode_number,
                "credits_start_ticks": marker.start_ticks if marker else None,
                "credits_start_seconds": marker.start_ticks / TICKS_PER_SECOND if marker else None,
            })
        return entries
