"""Bounded work queue drained by a single background worker."""

import logging
import queue
import threading
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from creditsdetect.config import DetectorConfig
from creditsdetect.coordinator import DetectionCoordinator
from creditsdetect.debug_capture import DebugCapture
from creditsdetect.markers import ChapterMarkerService
from creditsdetect.models import EpisodeRef, ProcessResult, QueueEntry, format_timestamp
from creditsdetect.pipeline import EpisodeProcessingPipeline
from creditsdetect.progress import ProgressState

logger = logging.getLogger(__name__)

BATCH_MODE_MINIMUM_ITEMS = 3
PRECOMPUTE_PROGRESS_SHARE = 50.0

STATUS_COMPLETE = "Complete"
STATUS_DRY_RUN_COMPLETE = "Dry Run Complete"
STATUS_CANCELLED = "Cancelled"
STATUS_CANCELLING = "Cancelling..."


class ProcessingQueueController:
    """
    Owns the processing queue, the worker and the shared progress state.

    At most one worker drains the queue at a time: the worker entry point
    takes a binary semaphore without blocking and returns immediately if
    another worker holds it. Enqueues made while a worker is active only
    append to the queue and raise the expected total.
    """

    def __init__(
        self,
        config: DetectorConfig,
        pipeline: EpisodeProcessingPipeline,
        coordinator: DetectionCoordinator,
        marker_service: ChapterMarkerService,
        debug_capture: Optional[DebugCapture] = None,
    ):
        self.config = config
        self.pipeline = pipeline
        self.coordinator = coordinator
        self.marker_service = marker_service
        self.debug_capture = debug_capture or DebugCapture()
        self.progress = ProgressState()

        self._queue: "queue.Queue[QueueEntry]" = queue.Queue(maxsize=config.queue_capacity)
        self._worker_semaphore = threading.Semaphore(1)
        self._state_lock = threading.RLock()
        self._cancel_requested = threading.Event()
        self._processed_ids: Dict[str, datetime] = {}
        self._worker_thread: Optional[threading.Thread] = None

        self._is_processing = False
        self._batch_mode = False
        self._run_is_dry_run = False
        self._skips_since_idle = False

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    @property
    def is_batch_mode(self) -> bool:
        return self._batch_mode

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    def get_progress(self) -> Dict[str, Any]:
        return self.progress.snapshot()

    def _put(self, entry: QueueEntry) -> bool:
        try:
            self._queue.put_nowait(entry)
            return True
        except queue.Full:
            logger.warning(
                f"Processing queue is full ({self.config.queue_capacity} items), dropping {entry.episode.label}"
            )
            return False

    def _drain_pending(self) -> int:
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
                dropped += 1
            except queue.Empty:
                return dropped

    def _prune_processed(self, now: datetime):
        retention = self.config.processed_id_retention_hours
        if retention <= 0:
            return
        cutoff = now - timedelta(hours=retention)
        with self._state_lock:
            for episode_id in [k for k, seen in self._processed_ids.items() if seen < cutoff]:
                del self._processed_ids[episode_id]

    def _remember_processed(self, episode_id: str):
        """Record a finished episode; expired and oldest-beyond-limit ids are dropped."""
        now = datetime.now()
        with self._state_lock:
            self._prune_processed(now)
            # re-insert so dict order stays oldest first
            self._processed_ids.pop(episode_id, None)
            self._processed_ids[episode_id] = now
            limit = self.config.processed_id_limit
            while limit > 0 and len(self._processed_ids) > limit:
                del self._processed_ids[next(iter(self._processed_ids))]

    def _record_skip(self, episode: EpisodeRef):
        if not self._is_processing and not self._skips_since_idle:
            self.progress.reset()
            self._skips_since_idle = True
        self.progress.add_total(1)
        self.progress.record_success(episode.label, "already exists")
        logger.debug(f"{episode.label} already has a credits marker, skipping")

    def enqueue(self, episode: EpisodeRef, is_manual: bool = False, is_dry_run: bool = False) -> bool:
        """
        Add one episode to the queue, starting the worker if idle.

        Returns:
            True if the episode was queued or recorded as already done
        """
        with self._state_lock:
            if self._is_processing and self._cancel_requested.is_set():
                logger.info(f"Cancellation in progress, not queueing {episode.label}")
                return False
            if not self._is_processing:
                self._cancel_requested.clear()
                self.coordinator.reset_cancellation()

            if not is_manual and not is_dry_run:
                self._prune_processed(datetime.now())
                if episode.id in self._processed_ids:
                    logger.debug(f"{episode.label} was already processed, skipping")
                    return False
                if self.config.only_process_missing and self.marker_service.has_credits_marker(episode):
                    self._record_skip(episode)
                    return True

            if not self._put(QueueEntry(episode, is_manual, is_dry_run)):
                return False

            if self._is_processing:
                self.progress.add_total(1)
                return True

            if self._skips_since_idle:
                self.progress.update(is_running=True, start_time=datetime.now(), end_time=None)
                self.progress.add_total(1)
            else:
                self.progress.reset(total_items=1, is_running=True)
            self._skips_since_idle = False
            self._run_is_dry_run = is_dry_run
            self._batch_mode = False
            self._is_processing = True

        self._spawn_worker()
        return True

    def enqueue_batch(self, episodes: Sequence[EpisodeRef], is_dry_run: bool = False) -> int:
        """
        Replace pending work with a batch of episodes.

        Clears the batch cache, the pending queue and progress, then queues
        every episode. With enough episodes and cross-episode comparison plus
        correlation scoring enabled, detections are pre-computed for the whole
        batch before the items are analyzed.

        Returns:
            Number of episodes queued
        """
        episodes = list(episodes)
        with self._state_lock:
            self.coordinator.clear_cache()
            self._drain_pending()
            self._cancel_requested.clear()
            self.coordinator.reset_cancellation()
            for episode in episodes:
                self._processed_ids.pop(episode.id, None)

            queued: List[EpisodeRef] = [e for e in episodes if self._put(QueueEntry(e, True, is_dry_run))]
            self.progress.reset(total_items=len(queued), is_running=bool(queued))
            self._skips_since_idle = False
            self._run_is_dry_run = is_dry_run

            use_batch = (
                len(queued) >= BATCH_MODE_MINIMUM_ITEMS
                and self.config.use_episode_comparison
                and self.config.use_correlation_scoring
            )
            if self._is_processing:
                if use_batch:
                    logger.info("Worker is busy, batch will be processed sequentially")
                self._batch_mode = False
                return len(queued)
            if not queued:
                return 0
            self._batch_mode = use_batch
            self._is_processing = True

        logger.info(f"Queued batch of {len(queued)} episodes ({'batch' if use_batch else 'sequential'} mode)")
        self._spawn_worker(queued if use_batch else None)
        return len(queued)

    def cancel(self) -> int:
        """
        Stop processing: drain the queue, forget processed ids and signal
        in-flight detection to stop.

        Returns:
            Number of pending entries dropped
        """
        with self._state_lock:
            self._cancel_requested.set()
            self.coordinator.cancel()
            dropped = self._drain_pending()
            self._processed_ids.clear()
            if self._is_processing:
                self.progress.update(current_item=STATUS_CANCELLING)
            else:
                self.progress.finish(STATUS_CANCELLED)
                self.debug_capture.discard()
        logger.info(f"Processing cancelled, {dropped} queued items dropped")
        return dropped

    def clear_queue(self) -> int:
        """Drop pending entries without cancelling the item in progress."""
        with self._state_lock:
            dropped = self._drain_pending()
            if dropped:
                with self.progress.lock:
                    self.progress.total_items = max(self.progress.processed_items, self.progress.total_items - dropped)
        logger.info(f"Cleared {dropped} items from the processing queue")
        return dropped

    def _spawn_worker(self, precompute_episodes: Optional[List[EpisodeRef]] = None):
        self._worker_thread = threading.Thread(
            target=self.process_queue,
            args=(precompute_episodes,),
            name="credits-detection-worker",
            daemon=True,
        )
        self._worker_thread.start()

    def process_queue(self, precompute_episodes: Optional[List[EpisodeRef]] = None) -> bool:
        """
        Worker entry point: drain the queue until it is empty or cancelled.

        Returns:
            False if another worker was already active
        """
        if not self._worker_semaphore.acquire(blocking=False):
            logger.debug("Queue worker already active")
            return False

        released = False
        try:
            if precompute_episodes:
                self._precompute(precompute_episodes)
            while True:
                self._drain()
                with self._state_lock:
                    if self._cancel_requested.is_set() or self._queue.empty():
                        self._finalize()
                        self._is_processing = False
                        self._worker_semaphore.release()
                        released = True
                        break
        finally:
            if not released:
                with self._state_lock:
                    self._is_processing = False
                    self._batch_mode = False
                    self._worker_semaphore.release()
        return True

    def _precompute(self, episodes: List[EpisodeRef]):
        total = len(episodes)

        def report(fraction: float, label: str):
            self.progress.update(
                current_item=f"Pre-analyzing: {label}" if label else "Pre-analysis complete",
                current_item_progress=fraction * PRECOMPUTE_PROGRESS_SHARE,
                processed_items=int(fraction * total),
            )

        try:
            cached = self.coordinator.pre_compute_batch_detections(episodes, report)
            logger.info(f"Pre-computed detections for {cached}/{total} episodes")
        except Exception as e:
            logger.error(f"Batch pre-computation failed, continuing sequentially: {e}", exc_info=True)
            self._batch_mode = False
            self.coordinator.clear_cache()
        finally:
            self.progress.update(processed_items=0)

    def _drain(self):
        while not self._cancel_requested.is_set():
            try:
                entry = self._queue.get_nowait()
            except queue.Empty:
                return
            self._process_entry(entry)
            if self._cancel_requested.is_set():
                return
            if self.config.inter_item_delay_seconds > 0 and not self._queue.empty():
                self._cancel_requested.wait(self.config.inter_item_delay_seconds)

    def _process_entry(self, entry: QueueEntry):
        episode = entry.episode
        label = episode.label
        self.progress.update(current_item=label, current_item_progress=0.0)

        def on_progress(percent: float, message: str):
            self.progress.update(current_item_progress=max(0.0, min(100.0, percent)))

        started = time.monotonic()
        try:
            result = self.pipeline.process(
                episode,
                is_dry_run=entry.is_dry_run,
                is_batch_mode=self._batch_mode,
                batch_cache=self.coordinator.batch_cache if self._batch_mode else None,
                on_progress=on_progress,
            )
        except Exception as e:
            logger.error(f"Error processing {label}: {e}", exc_info=True)
            result = ProcessResult(False, 0.0, f"Unexpected error: {e}")

        if self._cancel_requested.is_set():
            logger.info(f"{label} interrupted by cancellation")
            return

        if not entry.is_dry_run:
            self._remember_processed(episode.id)

        if result.success:
            detail = format_timestamp(result.timestamp) if result.timestamp > 0 else ""
            if result.detail:
                detail = f"{detail} ({result.detail})" if detail else result.detail
            self.progress.record_success(label, detail)
            logger.info(f"{label}: credits at {detail} ({time.monotonic() - started:.1f}s)")
        else:
            self.progress.record_failure(label, result.failure_reason)
            logger.info(f"{label}: {result.failure_reason}")
        self.progress.update(current_item_progress=100.0)

    def _finalize(self):
        self._batch_mode = False
        if self._cancel_requested.is_set():
            self._drain_pending()
            self.progress.finish(STATUS_CANCELLED)
            self.debug_capture.discard()
            logger.info("Processing cancelled")
            return
        status = STATUS_DRY_RUN_COMPLETE if self._run_is_dry_run else STATUS_COMPLETE
        self.progress.finish(status, item_progress=100.0)
        self.debug_capture.schedule_cleanup()
        snapshot = self.progress.snapshot()
        logger.info(
            f"{status}: {snapshot['successful_items']} succeeded, {snapshot['failed_items']} failed "
            f"of {snapshot['total_items']}"
        )

    def wait_until_idle(self, timeout: Optional[float] = None, poll_interval: float = 0.1) -> bool:
        """Block until no worker is active. Returns False on timeout."""
        deadline = time.monotonic() + timeout if timeout is not None else None
        while self._is_processing:
            if deadline is not None and time.monotonic() > deadline:
                return False
            time.sleep(poll_interval)
        return True

    def stop(self, timeout: float = 10.0):
        """Cancel outstanding work and wait for the worker to exit."""
        if self._is_processing:
            self.cancel()
        thread = self._worker_thread
        if thread is not None and thread.is_alive():
            thread.join(timeout)
