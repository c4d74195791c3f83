"""End-to-end processing of a single episode."""

import logging
import os
import threading
from contextlib import contextmanager
from typing import List, Optional, Tuple

from creditsdetect.catalog import ItemStore
from creditsdetect.config import DetectorConfig
from creditsdetect.coordinator import BatchCache, DetectionCoordinator
from creditsdetect.errors import CreditsDetectError
from creditsdetect.frame_extractor import probe_duration
from creditsdetect.markers import ChapterMarkerService
from creditsdetect.methods.base import ProgressCallback
from creditsdetect.models import EpisodeRef, ProcessResult
from creditsdetect.paths import normalize_path
from creditsdetect.processed_tracker import ProcessedFilesTracker
from creditsdetect.series_averaging import SeriesAveraging

logger = logging.getLogger(__name__)

CPU_THROTTLE_BASE_SECONDS = 1.0
PRIORITY_INCREMENT = 10


@contextmanager
def lowered_thread_priority(enabled: bool, increment: int = PRIORITY_INCREMENT):
    """Raise the niceness of the calling thread for the duration of the block."""
    thread_id = None
    original = None
    if enabled:
        if hasattr(os, "setpriority"):
            try:
                thread_id = threading.get_native_id()
                original = os.getpriority(os.PRIO_PROCESS, thread_id)
                os.setpriority(os.PRIO_PROCESS, thread_id, min(19, original + increment))
            except OSError as e:
                logger.warning(f"Could not lower thread priority: {e}")
                original = None
        else:
            logger.warning("Thread priority lowering is not supported on this platform")
    try:
        yield
    finally:
        if original is not None:
            try:
                os.setpriority(os.PRIO_PROCESS, thread_id, original)
            except OSError as e:
                logger.warning(f"Could not restore thread priority: {e}")


class EpisodeProcessingPipeline:
    """Locates, probes, detects and persists the credits marker of one episode."""

    def __init__(
        self,
        config: DetectorConfig,
        coordinator: DetectionCoordinator,
        store: ItemStore,
        marker_service: ChapterMarkerService,
        series_averaging: Optional[SeriesAveraging] = None,
        processed_tracker: Optional[ProcessedFilesTracker] = None,
    ):
        self.config = config
        self.coordinator = coordinator
        self.store = store
        self.marker_service = marker_service
        self.series_averaging = series_averaging
        self.processed_tracker = processed_tracker

    def process(
        self,
        episode: EpisodeRef,
        is_dry_run: bool = False,
        is_batch_mode: bool = False,
        batch_cache: Optional[BatchCache] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ProcessResult:
        """
        Process one episode.

        Never raises: unexpected errors are logged and returned as a failed result.
        """
        try:
            with lowered_thread_priority(self.config.lower_thread_priority):
                return self._process(episode, is_dry_run, is_batch_mode, batch_cache, on_progress)
        except Exception as e:
            logger.error(f"Unexpected error processing {episode.label}: {e}", exc_info=True)
            return ProcessResult(False, 0.0, f"Unexpected error: {e}")
        finally:
            self._throttle()

    def _process(
        self,
        episode: EpisodeRef,
        is_dry_run: bool,
        is_batch_mode: bool,
        batch_cache: Optional[BatchCache],
        on_progress: Optional[ProgressCallback],
    ) -> ProcessResult:
        cfg = self.config
        path = normalize_path(episode.path, cfg.path_substitutions)
        if not path or not os.path.exists(path):
            logger.warning(f"File not found for {episode.label}: {path}")
            return ProcessResult(False, 0.0, f"File not found: {path}")

        if cfg.skip_previously_processed and self.processed_tracker and self.processed_tracker.is_processed(path):
            logger.info(f"Skipping {episode.label}: file already processed")
            return ProcessResult(True, 0.0, "", detail="previously processed")

        duration = self._duration(episode, path)
        if duration <= 0:
            return ProcessResult(False, 0.0, "Could not determine video duration")

        timestamp, reason = self._detect(episode, path, duration, is_batch_mode, batch_cache, on_progress)
        # a message alongside a timestamp tags a fallback estimate
        detail = reason if timestamp > 0 else ""
        if timestamp <= 0 and cfg.use_series_averaging and self.series_averaging:
            average = self.series_averaging.average(episode.series_id)
            if average is not None and 0 < average < duration:
                logger.info(f"{episode.label}: applied series average {average:.1f}s")
                timestamp, detail = average, "Applied series average"

        if timestamp <= 0:
            return ProcessResult(False, 0.0, reason or "No credits detected")

        if not detail and self.series_averaging:
            self.series_averaging.record(episode.series_id, timestamp)

        if is_dry_run:
            logger.info(f"Dry run: {episode.label} credits at {timestamp:.1f}s (not saved)")
        else:
            self.marker_service.save_credits_marker(episode, timestamp, duration)
            if self.processed_tracker:
                self.processed_tracker.mark_processed(path, timestamp)
        return ProcessResult(True, timestamp, "", detail=detail)

    def _duration(self, episode: EpisodeRef, path: str) -> float:
        if episode.duration and episode.duration > 0:
            return episode.duration
        try:
            return probe_duration(path, timeout=self.config.probe_timeout)
        except CreditsDetectError as e:
            logger.warning(f"Duration probe failed for {episode.label}: {e}")
            return 0.0

    def _detect(
        self,
        episode: EpisodeRef,
        path: str,
        duration: float,
        is_batch_mode: bool,
        batch_cache: Optional[BatchCache],
        on_progress: Optional[ProgressCallback],
    ) -> Tuple[float, str]:
        if self.config.use_episode_comparison and episode.series_id:
            if is_batch_mode and batch_cache is not None:
                siblings = batch_cache.sibling_ids(episode)
                logger.debug(f"{episode.label}: batch analysis against {len(siblings)} cached episodes")
                return self.coordinator.analyze_batch_detection_results(episode.id, siblings)

            comparison = self._find_siblings(episode)
            if len(comparison) >= 2:
                return self.coordinator.detect_credits_with_comparison(episode, duration, comparison, on_progress)
            logger.debug(f"{episode.label}: only {len(comparison)} comparable episodes, detecting independently")

        return self.coordinator.detect_credits(path, duration, episode.id, on_progress)

    def _find_siblings(self, episode: EpisodeRef) -> List[EpisodeRef]:
        """Same-season episodes with existing files, up to minimum_episodes_to_compare."""
        siblings = []
        limit = self.config.minimum_episodes_to_compare
        for other in self.store.list_episodes(series_id=episode.series_id, season_number=episode.season_number):
            if other.id == episode.id:
                continue
            if not os.path.exists(normalize_path(other.path, self.config.path_substitutions)):
                continue
            siblings.append(other)
            if limit > 0 and len(siblings) >= limit:
                break
        return siblings

    def _throttle(self):
        delay = self.config.delay_between_episodes_ms / 1000.0
        limit = self.config.cpu_usage_limit
        if 0 < limit < 100:
            delay += CPU_THROTTLE_BASE_SECONDS * (100 - limit) / limit
        if delay > 0:
            self.coordinator.cancel_event.wait(delay)
