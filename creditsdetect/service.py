"""Request surface tying the catalog, queue and detectors together."""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from creditsdetect.backup import CreditsBackupService, ImportResult
from creditsdetect.catalog import ItemStore
from creditsdetect.config import DetectorConfig
from creditsdetect.coordinator import DetectionCoordinator
from creditsdetect.debug_capture import DebugCapture
from creditsdetect.markers import ChapterMarkerService
from creditsdetect.methods.base import DetectionMethod
from creditsdetect.methods.ocr import OcrDetectionMethod
from creditsdetect.models import EpisodeRef, RequestResult
from creditsdetect.ocr_client import OcrClient
from creditsdetect.paths import cleanup_orphaned_frame_dirs
from creditsdetect.pipeline import EpisodeProcessingPipeline
from creditsdetect.processed_tracker import DEFAULT_FILENAME, ProcessedFilesTracker
from creditsdetect.queue_controller import ProcessingQueueController
from creditsdetect.series_averaging import SeriesAveraging

logger = logging.getLogger(__name__)


class CreditsDetectionService:
    """
    One detection service instance with its own queue, caches and progress.

    Call start() before enqueueing work and stop() when done.
    """

    def __init__(
        self,
        config: DetectorConfig,
        store: ItemStore,
        methods: Optional[Sequence[DetectionMethod]] = None,
    ):
        self.config = config
        self.store = store
        self.marker_service = ChapterMarkerService(store)
        self.methods = list(methods) if methods is not None else [OcrDetectionMethod(config)]
        self.coordinator = DetectionCoordinator(config, self.methods)
        self.series_averaging = SeriesAveraging(config.minimum_episodes_for_averaging)

        self.processed_tracker = None
        if config.skip_previously_processed:
            tracker_path = config.processed_files_path or str(Path.home() / ".creditsdetect" / DEFAULT_FILENAME)
            self.processed_tracker = ProcessedFilesTracker(tracker_path)

        self.pipeline = EpisodeProcessingPipeline(
            config,
            self.coordinator,
            store,
            self.marker_service,
            series_averaging=self.series_averaging,
            processed_tracker=self.processed_tracker,
        )
        self.debug_capture = DebugCapture()
        self.controller = ProcessingQueueController(
            config, self.pipeline, self.coordinator, self.marker_service, self.debug_capture
        )
        self.backup = CreditsBackupService(store, self.marker_service)
        self._started = False

    def start(self):
        if self._started:
            return
        if self.config.enable_detailed_logging:
            logging.getLogger("creditsdetect").setLevel(logging.DEBUG)
        cleanup_orphaned_frame_dirs(self.config.temp_folder_path)
        self._started = True
        logger.info(f"Credits detection started with {len([m for m in self.methods if m.is_enabled])} enabled methods")

    def stop(self):
        self.controller.stop()
        self._started = False
        logger.info("Credits detection stopped")

    def _begin_debug(self, debug: bool):
        if debug:
            self.debug_capture.start(settings=self.config.to_dict())

    def enqueue_episode(self, episode_id: str, dry_run: bool = False, debug: bool = False) -> RequestResult:
        episode = self.store.get_episode(episode_id)
        if episode is None:
            return RequestResult(False, f"Episode {episode_id} not found")
        self._begin_debug(debug)
        if not self.controller.enqueue(episode, is_manual=True, is_dry_run=dry_run):
            return RequestResult(False, f"Could not queue {episode.label}")
        return RequestResult(True, f"Queued {episode.label}", 1)

    def enqueue_series(
        self,
        series_id: str,
        dry_run: bool = False,
        debug: bool = False,
        season_number: Optional[int] = None,
    ) -> RequestResult:
        """Queue every regular episode of a series (specials are left out)."""
        series = self.store.get_series(series_id)
        episodes = [
            e for e in self.store.list_episodes(series_id=series_id, season_number=season_number)
            if not e.is_special
        ]
        if not episodes:
            return RequestResult(False, f"No episodes found for series {series_id}")
        self._begin_debug(debug)
        count = self.controller.enqueue_batch(episodes, is_dry_run=dry_run)
        name = series.name if series else series_id
        return RequestResult(count > 0, f"Queued {count} episodes of {name}", count)

    def enqueue_library(
        self,
        library_id: Optional[str] = None,
        dry_run: bool = False,
        debug: bool = False,
        only_missing: bool = True,
    ) -> RequestResult:
        """Queue the regular episodes of one library, or of the whole catalog."""
        episodes = [e for e in self.store.list_episodes(library_id=library_id) if not e.is_special]
        if only_missing:
            episodes = [e for e in episodes if not self.marker_service.has_credits_marker(e)]
        if not episodes:
            return RequestResult(True, "No episodes need processing", 0)
        self._begin_debug(debug)
        count = self.controller.enqueue_batch(episodes, is_dry_run=dry_run)
        return RequestResult(count > 0, f"Queued {count} episodes", count)

    def trigger_detection(self, limit: int = 0) -> RequestResult:
        """
        Scheduled run over the configured libraries.

        Episodes go through the regular (non-manual) enqueue path, so the
        skip policy and processed-id memory apply.
        """
        library_ids: Iterable[Optional[str]] = self.config.library_ids or [None]
        queued = 0
        for library_id in library_ids:
            for episode in self.store.list_episodes(library_id=library_id):
                if episode.is_special:
                    continue
                if limit and queued >= limit:
                    break
                if self.controller.enqueue(episode):
                    queued += 1
        return RequestResult(True, f"Scheduled {queued} episodes", queued)

    def on_item_added(self, episode: EpisodeRef) -> bool:
        """Automatic detection for an episode that just appeared in the catalog."""
        if not self.config.enable_auto_detection or episode.is_special:
            return False
        if self.config.library_ids and episode.library_id not in self.config.library_ids:
            return False
        logger.info(f"New episode {episode.label}, queueing automatic detection")
        return self.controller.enqueue(episode)

    def cancel(self) -> RequestResult:
        dropped = self.controller.cancel()
        return RequestResult(True, "Processing cancelled", dropped)

    def clear_queue(self) -> RequestResult:
        dropped = self.controller.clear_queue()
        return RequestResult(True, f"Cleared {dropped} queued items", dropped)

    def get_progress(self) -> Dict[str, Any]:
        return self.controller.get_progress()

    def get_debug_log(self) -> str:
        return self.debug_capture.retrieve()

    def test_ocr_connection(self, endpoint: Optional[str] = None) -> RequestResult:
        endpoint = endpoint or self.config.ocr_endpoint
        if not endpoint:
            return RequestResult(False, "OCR endpoint not configured")
        client = OcrClient(endpoint, probe_timeout=self.config.ocr_probe_timeout)
        try:
            if client.is_available():
                return RequestResult(True, f"OCR endpoint {endpoint} is reachable")
            return RequestResult(False, f"OCR endpoint {endpoint} is not accessible")
        finally:
            client.close()

    def get_series_markers(self, series_id: str) -> List[Dict[str, Any]]:
        return self.marker_service.get_series_markers(series_id)

    def update_credits_marker(self, episode_id: str, seconds: float) -> RequestResult:
        """Set an episode's credits start by hand; seconds <= 0 removes it."""
        episode = self.store.get_episode(episode_id)
        if episode is None:
            return RequestResult(False, f"Episode {episode_id} not found")
        if seconds <= 0:
            removed = self.marker_service.remove_credits_marker(episode)
            return RequestResult(True, "Credits marker removed" if removed else "No credits marker to remove", int(removed))
        self.marker_service.save_credits_marker(episode, seconds)
        return RequestResult(True, f"Credits marker set for {episode.label}", 1)

    def export_backup(self, library_ids: Optional[Iterable[str]] = None) -> str:
        return self.backup.export_backup(library_ids)

    def import_backup(self, document: str, overwrite: bool = False) -> ImportResult:
        return self.backup.import_backup(document, overwrite)
