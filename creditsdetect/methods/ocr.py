"""Credits detection by OCR keyword matching on sampled end-of-episode frames."""

import logging
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Generator, Iterable, List, NamedTuple, Optional, Tuple

from PIL import UnidentifiedImageError

from creditsdetect.config import DetectorConfig
from creditsdetect.errors import FrameExtractionError, OcrServiceError
from creditsdetect.frame_extractor import iter_extracted_frames, start_frame_extraction
from creditsdetect.keywords import find_keyword_matches, parse_keywords
from creditsdetect.methods.base import DetectionMethod, ProgressCallback
from creditsdetect.ocr_client import OcrClient, OcrResult
from creditsdetect.paths import create_frame_dir, remove_dir_with_retries

logger = logging.getLogger(__name__)

OCR_METHOD_NAME = "OCR Detection"
OCR_BASE_CONFIDENCE = 0.95
MATCH_WINDOW_SECONDS = 10.0


class MatchRecord(NamedTuple):
    timestamp: float
    match_count: int
    keywords: Tuple[str, ...] = ()


def compute_analysis_window(
    duration: float,
    minutes_from_end: float,
    search_start_fraction: float,
    stop_seconds_from_end: float,
    max_analysis_duration: float,
) -> Tuple[float, float]:
    """
    Work out which part of the video to sample.

    Returns:
        Tuple of (start_seconds, length_seconds)
    """
    if minutes_from_end > 0:
        start = max(0.0, duration - minutes_from_end * 60)
    else:
        start = duration * search_start_fraction

    end = duration
    if stop_seconds_from_end > 0 and duration - stop_seconds_from_end > start:
        end = duration - stop_seconds_from_end

    length = end - start
    if max_analysis_duration > 0:
        length = min(length, max_analysis_duration)
    return start, max(0.0, length)


def resolve_credits_start(
    records: Iterable[MatchRecord],
    minimum_matches: int,
    window_seconds: float = MATCH_WINDOW_SECONDS,
) -> float:
    """
    Pick the credits start from keyword match records.

    The earliest record whose trailing window holds at least minimum_matches
    records wins. If no window qualifies, a first record that matched two or
    more keywords is accepted on its own.

    Returns:
        Credits start in seconds, or 0.0
    """
    ordered = sorted(records, key=lambda r: r.timestamp)
    if not ordered:
        return 0.0
    minimum_matches = max(1, minimum_matches)

    for i, record in enumerate(ordered):
        window_end = record.timestamp + window_seconds
        count = sum(1 for other in ordered[i:] if other.timestamp <= window_end)
        if count >= minimum_matches:
            return record.timestamp

    if ordered[0].match_count >= 2:
        return ordered[0].timestamp
    return 0.0


def _batched(frames: Iterable[Tuple[int, Path]], size: int) -> Generator[List[Tuple[int, Path]], None, None]:
    batch = []
    for frame in frames:
        batch.append(frame)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


class OcrDetectionMethod(DetectionMethod):
    """Samples frames near the end of an episode and looks for credits vocabulary."""

    def __init__(self, config: DetectorConfig, client: Optional[OcrClient] = None):
        super().__init__()
        self.config = config
        self.client = client or OcrClient(
            config.ocr_endpoint,
            languages=config.ocr_languages,
            request_timeout=config.ocr_request_timeout,
            probe_timeout=config.ocr_probe_timeout,
            max_dimension=config.ocr_max_dimension,
        )
        self.detection_reason = ""

    @property
    def name(self) -> str:
        return OCR_METHOD_NAME

    @property
    def confidence(self) -> float:
        return OCR_BASE_CONFIDENCE

    @property
    def priority(self) -> int:
        return self.config.ocr_detection_priority

    @property
    def is_enabled(self) -> bool:
        return self.config.enable_ocr_detection

    def _fail(self, message: str) -> float:
        self.last_error = message
        logger.info(f"{OCR_METHOD_NAME}: {message}")
        return 0.0

    def detect_credits(
        self,
        video_path: str,
        duration: float,
        cancel_event: Optional[threading.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> float:
        self.last_error = ""
        self.detection_reason = ""
        cfg = self.config

        if not cfg.ocr_endpoint:
            return self._fail("OCR endpoint not configured")
        keywords = parse_keywords(cfg.ocr_detection_keywords)
        if not keywords:
            return self._fail("No OCR keywords configured")
        if duration <= 0:
            return self._fail("Invalid video duration")

        if not self.client.is_available():
            logger.warning(f"OCR endpoint {cfg.ocr_endpoint} is not accessible")
            return self._fail(f"OCR endpoint {cfg.ocr_endpoint} is not accessible")

        start, length = compute_analysis_window(
            duration,
            cfg.ocr_minutes_from_end,
            cfg.ocr_detection_search_start,
            cfg.ocr_stop_seconds_from_end,
            cfg.ocr_max_analysis_duration,
        )
        if length <= 0 or cfg.ocr_frame_rate <= 0:
            return self._fail("Analysis window is empty")
        logger.debug(
            f"Analyzing {Path(video_path).name} from {start:.1f}s for {length:.1f}s at {cfg.ocr_frame_rate} fps"
        )

        frame_dir = create_frame_dir(cfg.temp_folder_path)
        try:
            return self._scan_frames(video_path, start, length, frame_dir, keywords, cancel_event, on_progress)
        except FrameExtractionError as e:
            return self._fail(str(e))
        finally:
            remove_dir_with_retries(frame_dir)

    def _extract_frames(
        self,
        video_path: str,
        start: float,
        length: float,
        frame_dir: Path,
        cancel_event: Optional[threading.Event],
    ) -> Generator[Tuple[int, Path], None, None]:
        cfg = self.config
        process = start_frame_extraction(
            video_path,
            start,
            length,
            cfg.ocr_frame_rate,
            frame_dir,
            image_format=cfg.ocr_image_format,
            jpeg_qscale=cfg.ffmpeg_jpeg_qscale,
            max_frames=cfg.ocr_max_frames_to_process,
        )
        timeout = cfg.extract_timeout
        if timeout <= 0:
            timeout = (cfg.ocr_max_analysis_duration / 60 + 5) * 60 if cfg.ocr_max_analysis_duration > 0 else 1800
        return iter_extracted_frames(process, frame_dir, cfg.ocr_image_format, timeout, cancel_event)

    def _recognize_frame(self, frame: Path) -> Optional[OcrResult]:
        try:
            return self.client.recognize(frame)
        except OcrServiceError as e:
            logger.warning(str(e))
            return None
        except (UnidentifiedImageError, OSError) as e:
            logger.warning(f"Could not read frame {frame.name}: {e}")
            return None

    def _scan_frames(
        self,
        video_path: str,
        start: float,
        length: float,
        frame_dir: Path,
        keywords: List[str],
        cancel_event: Optional[threading.Event],
        on_progress: Optional[ProgressCallback],
    ) -> float:
        cfg = self.config
        minimum_matches = max(1, cfg.ocr_minimum_matches)
        expected_frames = max(1, math.ceil(length * cfg.ocr_frame_rate))
        if cfg.ocr_max_frames_to_process > 0:
            expected_frames = min(expected_frames, cfg.ocr_max_frames_to_process)
        parallel = max(1, cfg.ocr_parallel_requests)

        records: List[MatchRecord] = []
        frames_analyzed = 0
        failed_requests = 0
        frames = self._extract_frames(video_path, start, length, frame_dir, cancel_event)
        executor = ThreadPoolExecutor(max_workers=parallel) if parallel > 1 else None
        try:
            for batch in _batched(frames, parallel):
                if cancel_event is not None and cancel_event.is_set():
                    return self._fail("Detection cancelled")

                paths = [path for _, path in batch]
                if executor is not None:
                    results = list(executor.map(self._recognize_frame, paths))
                else:
                    results = [self._recognize_frame(path) for path in paths]

                for (index, _), result in zip(batch, results):
                    frames_analyzed += 1
                    timestamp = start + (index - 1) / cfg.ocr_frame_rate
                    if on_progress:
                        on_progress(min(100.0, frames_analyzed * 100.0 / expected_frames), f"OCR frame {frames_analyzed}/{expected_frames}")
                    if result is None:
                        failed_requests += 1
                        continue
                    if not result.text:
                        continue
                    if (
                        cfg.ocr_minimum_confidence > 0
                        and result.confidence is not None
                        and result.confidence < cfg.ocr_minimum_confidence
                    ):
                        continue

                    matched = find_keyword_matches(result.text, keywords, cfg.ocr_keyword_fuzzy_threshold)
                    if not matched:
                        continue
                    records.append(MatchRecord(timestamp, len(matched), tuple(matched)))
                    logger.debug(f"Frame at {timestamp:.1f}s matched {', '.join(matched)}")

                    if len(records) >= minimum_matches:
                        credits_start = resolve_credits_start(records, minimum_matches)
                        if credits_start > 0:
                            logger.info(
                                f"Credits found at {credits_start:.1f}s after {frames_analyzed} frames, stopping early"
                            )
                            self.detection_reason = self._build_reason(records, credits_start)
                            return credits_start

                if cfg.ocr_delay_between_frames_ms > 0:
                    time.sleep(cfg.ocr_delay_between_frames_ms / 1000.0)
        finally:
            frames.close()
            if executor is not None:
                executor.shutdown(wait=True)

        if cancel_event is not None and cancel_event.is_set():
            return self._fail("Detection cancelled")
        if frames_analyzed == 0:
            return self._fail("No frames extracted for OCR analysis")
        if failed_requests == frames_analyzed:
            return self._fail(f"OCR requests failed for all {frames_analyzed} frames")

        credits_start = resolve_credits_start(records, minimum_matches)
        if credits_start <= 0:
            return self._fail(f"No OCR keywords found in {frames_analyzed} frames analyzed")
        self.detection_reason = self._build_reason(records, credits_start)
        return credits_start

    @staticmethod
    def _build_reason(records: List[MatchRecord], credits_start: float) -> str:
        found = []
        for record in records:
            if credits_start <= record.timestamp <= credits_start + MATCH_WINDOW_SECONDS:
                for keyword in record.keywords:
                    if keyword not in found:
                        found.append(keyword)
        return f"OCR keywords near {credits_start:.1f}s: {', '.join(found)}"
