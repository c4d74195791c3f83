"""Runs detection methods and fuses their results, optionally across episodes."""

import logging
import threading
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from creditsdetect.config import DetectorConfig
from creditsdetect.errors import CreditsDetectError
from creditsdetect.frame_extractor import probe_duration
from creditsdetect.fusion import (
    SelectionStrategy,
    agreement_confidence,
    describe_candidates,
    fallback_timestamp,
    select_by_correlation,
    select_by_strategy,
)
from creditsdetect.methods.base import DetectionMethod, ProgressCallback
from creditsdetect.models import DetectionCandidate, EpisodeRef
from creditsdetect.paths import normalize_path

logger = logging.getLogger(__name__)

NO_DETECTION_MESSAGE = "No credits detected by any enabled method"
UNKNOWN_METHOD_CONFIDENCE = 0.5
UNKNOWN_METHOD_PRIORITY = 99
FALLBACK_CONFIDENCE = 0.6
FALLBACK_PRIORITY = 1

BatchProgressCallback = Callable[[float, str], None]


class BatchCache:
    """
    Raw per-episode detections gathered before a batch is analyzed.

    Written only while pre-computing, then read-only until the next clear.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._results: Dict[str, List[Tuple[str, float]]] = {}
        self._episodes: Dict[str, EpisodeRef] = {}

    def put(self, episode: EpisodeRef, results: List[Tuple[str, float]]):
        with self._lock:
            self._results[episode.id] = list(results)
            self._episodes[episode.id] = episode

    def get(self, episode_id: str) -> Optional[List[Tuple[str, float]]]:
        with self._lock:
            results = self._results.get(episode_id)
            return list(results) if results is not None else None

    def __contains__(self, episode_id: str) -> bool:
        with self._lock:
            return episode_id in self._results

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def sibling_ids(self, episode: EpisodeRef) -> List[str]:
        """Cached episodes of the same series and season, excluding the episode itself."""
        with self._lock:
            return [
                other.id
                for other in self._episodes.values()
                if other.id != episode.id
                and other.series_id == episode.series_id
                and other.season_number == episode.season_number
            ]

    def clear(self):
        with self._lock:
            self._results.clear()
            self._episodes.clear()


class DetectionCoordinator:
    """
    Runs every enabled detection method and combines what they find.

    Single-episode detection fuses candidates with the configured selection
    strategy. Cross-episode detection also runs the methods on sibling
    episodes, raises the confidence of candidates the siblings agree with,
    and can fall back to a series-derived estimate when an episode finds
    nothing itself.
    """

    def __init__(
        self,
        config: DetectorConfig,
        methods: Sequence[DetectionMethod],
        duration_probe: Optional[Callable[[str], float]] = None,
    ):
        self.config = config
        self.methods = list(methods)
        self.batch_cache = BatchCache()
        self.cancel_event = threading.Event()
        self._duration_probe = duration_probe or (lambda path: probe_duration(path, timeout=config.probe_timeout))

    @property
    def strategy(self) -> SelectionStrategy:
        return SelectionStrategy.parse(self.config.detection_result_selection)

    @property
    def primary_method_name(self) -> str:
        enabled = [m for m in self.methods if m.is_enabled]
        return enabled[0].name if enabled else "Detection"

    def _method_confidence(self, method_name: str) -> float:
        for method in self.methods:
            if method.name == method_name:
                return method.confidence
        return UNKNOWN_METHOD_CONFIDENCE

    def _method_priority(self, method_name: str) -> int:
        for method in self.methods:
            if method.name == method_name:
                return method.priority
        return UNKNOWN_METHOD_PRIORITY

    def cancel(self):
        """Ask in-flight detection to stop at its next checkpoint."""
        self.cancel_event.set()

    def reset_cancellation(self):
        self.cancel_event.clear()

    def clear_cache(self):
        self.batch_cache.clear()
        logger.debug("Batch detection cache cleared")

    def run_all_methods(
        self,
        video_path: str,
        duration: float,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Tuple[List[DetectionCandidate], Dict[str, str]]:
        """
        Run every enabled method once.

        Returns:
            Tuple of (candidates with timestamp > 0, errors keyed by method name)
        """
        candidates: List[DetectionCandidate] = []
        errors: Dict[str, str] = {}
        for method in self.methods:
            if not method.is_enabled:
                continue
            if self.cancel_event.is_set():
                errors[method.name] = "Detection cancelled"
                break
            try:
                timestamp = method.detect_credits(video_path, duration, self.cancel_event, on_progress)
            except Exception as e:
                logger.error(f"{method.name} failed on {video_path}: {e}", exc_info=True)
                errors[method.name] = str(e) or e.__class__.__name__
                continue

            if timestamp > 0:
                candidates.append(DetectionCandidate(method.name, timestamp, method.confidence, method.priority))
                logger.debug(f"{method.name} found credits at {timestamp:.1f}s")
            elif method.last_error:
                errors[method.name] = method.last_error
        return candidates, errors

    @staticmethod
    def _failure_reason(errors: Dict[str, str]) -> str:
        if errors:
            return "; ".join(f"{name}: {message}" for name, message in errors.items())
        return NO_DETECTION_MESSAGE

    def detect_credits(
        self,
        video_path: str,
        duration: float,
        episode_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Tuple[float, str]:
        """
        Detect credits in one episode.

        Returns:
            Tuple of (timestamp, failure_reason); the reason is empty on success
        """
        candidates, errors = self.run_all_methods(video_path, duration, on_progress)
        if not candidates:
            return 0.0, self._failure_reason(errors)

        result = select_by_strategy(candidates, self.strategy, self.config.correlation_window_seconds)
        logger.info(
            f"Episode {episode_id or video_path}: {describe_candidates(candidates)} -> "
            f"{result:.1f}s ({self.strategy.value})"
        )
        return result, ""

    def _episode_duration(self, episode: EpisodeRef) -> float:
        if episode.duration and episode.duration > 0:
            return episode.duration
        try:
            return self._duration_probe(normalize_path(episode.path, self.config.path_substitutions))
        except CreditsDetectError as e:
            logger.warning(f"Could not determine duration of {episode.label}: {e}")
            return 0.0

    def _raw_results(self, episode: EpisodeRef) -> Optional[List[Tuple[str, float]]]:
        """(method, timestamp) pairs for an episode, None if its duration is unknown."""
        duration = self._episode_duration(episode)
        if duration <= 0:
            return None
        path = normalize_path(episode.path, self.config.path_substitutions)
        candidates, _ = self.run_all_methods(path, duration)
        return [(c.method_name, c.timestamp) for c in candidates]

    def _fuse_with_comparisons(
        self,
        episode_label: str,
        own_results: Sequence[Tuple[str, float]],
        comparison_results: List[List[Tuple[str, float]]],
        comparison_count: int,
        use_strategy: bool,
    ) -> Tuple[float, str]:
        """
        Fuse own detections against the comparison episodes.

        On success the message is empty, or names the fallback method when
        the timestamp is a series estimate rather than a detection.
        """
        if not own_results:
            if self.config.enable_failed_episode_fallback:
                estimate = fallback_timestamp(
                    comparison_results, self.config.minimum_success_rate_for_fallback, comparison_count
                )
                if estimate is not None and estimate > 0:
                    fallback = DetectionCandidate(
                        f"{self.primary_method_name} (Fallback)", estimate, FALLBACK_CONFIDENCE, FALLBACK_PRIORITY
                    )
                    logger.info(f"{episode_label}: using {fallback.method_name} estimate {estimate:.1f}s")
                    return fallback.timestamp, fallback.method_name
                return 0.0, "No credits detected and too few comparison episodes succeeded for fallback"
            return 0.0, NO_DETECTION_MESSAGE

        window = self.config.correlation_window_seconds
        scored = []
        for method_name, timestamp in own_results:
            candidate = DetectionCandidate(
                method_name, timestamp, self._method_confidence(method_name), self._method_priority(method_name)
            )
            candidate.confidence = agreement_confidence(candidate, comparison_results, window, comparison_count)
            scored.append(candidate)

        if use_strategy:
            result = select_by_strategy(scored, self.strategy, window)
        else:
            result = select_by_correlation(scored, window)
        logger.info(
            f"{episode_label}: {len(scored)} candidates compared against {comparison_count} episodes -> {result:.1f}s"
        )
        return result, ""

    def detect_credits_with_comparison(
        self,
        episode: EpisodeRef,
        duration: float,
        comparison_episodes: Sequence[EpisodeRef],
        on_progress: Optional[ProgressCallback] = None,
    ) -> Tuple[float, str]:
        """
        Detect credits in one episode, weighing agreement with sibling episodes.

        Falls back to detect_credits when fewer than two comparison episodes
        are given. Comparison episodes whose duration is unknown count as
        episodes without detections.

        Returns:
            Tuple of (timestamp, message); the message is the failure reason
            when nothing was found, and the fallback method name when the
            timestamp is a series estimate
        """
        path = normalize_path(episode.path, self.config.path_substitutions)
        if len(comparison_episodes) < 2:
            logger.debug(f"{episode.label}: fewer than 2 comparison episodes, detecting independently")
            return self.detect_credits(path, duration, episode.id, on_progress)

        own_candidates, errors = self.run_all_methods(path, duration, on_progress)
        own_results = [(c.method_name, c.timestamp) for c in own_candidates]

        comparison_results: List[List[Tuple[str, float]]] = []
        for other in comparison_episodes:
            if self.cancel_event.is_set():
                return 0.0, "Detection cancelled"
            results = self._raw_results(other)
            if results is None:
                logger.debug(f"{other.label}: unknown duration, counted as a comparison episode without detections")
            else:
                comparison_results.append(results)

        result, reason = self._fuse_with_comparisons(
            episode.label, own_results, comparison_results, len(comparison_episodes), True
        )
        if result <= 0 and errors and not self.config.enable_failed_episode_fallback:
            reason = self._failure_reason(errors)
        return result, reason

    def pre_compute_batch_detections(
        self,
        episodes: Sequence[EpisodeRef],
        on_progress: Optional[BatchProgressCallback] = None,
    ) -> int:
        """
        Run single-episode detection on every episode into the batch cache.

        Args:
            episodes: Episodes of the batch, processed in order
            on_progress: Called with (fraction 0-1, episode label) before each episode

        Returns:
            Number of episodes cached
        """
        self.clear_cache()
        total = len(episodes)
        for i, episode in enumerate(episodes):
            if self.cancel_event.is_set():
                logger.info("Batch pre-computation cancelled")
                break
            if on_progress:
                on_progress(i / total if total else 1.0, episode.label)
            results = self._raw_results(episode)
            if results is None:
                logger.warning(f"{episode.label}: unknown duration, cached without detections")
                results = []
            self.batch_cache.put(episode, results)
            logger.debug(f"Cached {len(results)} detections for {episode.label}")
        if on_progress:
            on_progress(1.0, "")
        return len(self.batch_cache)

    def analyze_batch_detection_results(self, episode_id: str, comparison_ids: Sequence[str]) -> Tuple[float, str]:
        """
        Fuse cached detections for one episode against cached siblings.

        Reads the cache only, so repeated calls give the same answer until
        the cache changes. Returns the same (timestamp, message) pair as
        detect_credits_with_comparison.
        """
        own_results = self.batch_cache.get(episode_id)
        if own_results is None:
            logger.warning(f"No cached detections for episode {episode_id}")
            return 0.0, "No cached detection results for episode"

        other_ids = [other_id for other_id in comparison_ids if other_id != episode_id]
        comparison_results = []
        for other_id in other_ids:
            cached = self.batch_cache.get(other_id)
            if cached is not None:
                comparison_results.append(cached)

        return self._fuse_with_comparisons(episode_id, own_results, comparison_results, len(other_ids), False)
