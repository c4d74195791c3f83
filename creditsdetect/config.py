"""Detector configuration loaded from JSON with command-line overrides."""

import json
import logging
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from creditsdetect.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_OCR_KEYWORDS = (
    "directed by,produced by,executive producer,written by,cast,credits,fin,ende,fim,fine,"
    "producer,music by,music,cinematography,editor,editing,production design,costume design,"
    "casting,based on,story by,screenplay,associate producer,co-producer,created by,"
    "developed by,series producer,composer,director of photography,visual effects,sound,"
    "the end,end credits,starring,guest starring,special thanks,production company"
)

SELECTION_STRATEGIES = ("CorrelationScoring", "Earliest", "Latest", "Average", "Median", "Priority")


@dataclass
class DetectorConfig:
    # OCR method
    enable_ocr_detection: bool = True
    ocr_detection_priority: int = 1
    ocr_endpoint: str = "http://localhost:8884"
    ocr_languages: List[str] = field(default_factory=lambda: ["eng"])
    ocr_detection_keywords: str = DEFAULT_OCR_KEYWORDS
    ocr_detection_search_start: float = 0.65
    ocr_minutes_from_end: float = 3.0
    ocr_stop_seconds_from_end: float = 20.0
    ocr_max_analysis_duration: float = 600.0
    ocr_frame_rate: float = 0.5
    ocr_max_frames_to_process: int = 0
    ocr_minimum_matches: int = 1
    ocr_image_format: str = "jpg"
    ocr_jpeg_quality: int = 92
    ocr_delay_between_frames_ms: int = 0
    ocr_parallel_requests: int = 1
    ocr_probe_timeout: float = 5.0
    ocr_request_timeout: float = 60.0
    ocr_minimum_confidence: float = 0.0
    ocr_keyword_fuzzy_threshold: float = 0.0
    ocr_max_dimension: int = 0

    # Subprocess timeouts (seconds, 0 = derived from the analysis window)
    probe_timeout: float = 30.0
    extract_timeout: float = 0.0

    # Cross-episode comparison and fusion
    use_episode_comparison: bool = False
    minimum_episodes_to_compare: int = 3
    use_correlation_scoring: bool = True
    correlation_window_seconds: float = 5.0
    detection_result_selection: str = "CorrelationScoring"
    enable_failed_episode_fallback: bool = False
    minimum_success_rate_for_fallback: float = 0.5
    use_series_averaging: bool = False
    minimum_episodes_for_averaging: int = 3

    # Scheduling
    enable_auto_detection: bool = False
    only_process_missing: bool = True
    skip_previously_processed: bool = False
    processed_files_path: str = ""
    library_ids: List[str] = field(default_factory=list)
    path_substitutions: List[Dict[str, str]] = field(default_factory=list)
    queue_capacity: int = 1000
    inter_item_delay_seconds: float = 1.0
    # Processed-episode memory used to skip repeat enqueues (0 = unbounded)
    processed_id_retention_hours: float = 24.0
    processed_id_limit: int = 10000

    # Resource usage
    cpu_usage_limit: int = 100
    delay_between_episodes_ms: int = 0
    lower_thread_priority: bool = False
    temp_folder_path: str = ""

    enable_detailed_logging: bool = False

    def __post_init__(self):
        if self.detection_result_selection not in SELECTION_STRATEGIES:
            logger.warning(
                f"Unknown detection result selection '{self.detection_result_selection}', "
                f"using CorrelationScoring"
            )
            self.detection_result_selection = "CorrelationScoring"
        if not 1 <= self.cpu_usage_limit <= 100:
            logger.warning(f"cpu_usage_limit {self.cpu_usage_limit} out of range, clamping to 1-100")
            self.cpu_usage_limit = min(100, max(1, self.cpu_usage_limit))
        self.ocr_image_format = self.ocr_image_format.lower().lstrip(".")
        if self.ocr_image_format == "jpeg":
            self.ocr_image_format = "jpg"

    @property
    def ffmpeg_jpeg_qscale(self) -> int:
        """Map a 1-100 JPEG quality to ffmpeg's q:v scale (2 best, 31 worst)."""
        quality = min(100, max(1, self.ocr_jpeg_quality))
        return 2 + round((100 - quality) * 29 / 99)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DetectorConfig":
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            if key in known:
                values[key] = value
            else:
                logger.warning(f"Ignoring unknown configuration key: {key}")
        try:
            return cls(**values)
        except TypeError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def with_overrides(self, **overrides: Any) -> "DetectorConfig":
        """Return a copy with every non-None override applied."""
        data = self.to_dict()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return DetectorConfig.from_dict(data)


def load_config(path: Optional[Union[str, Path]]) -> DetectorConfig:
    """
    Load configuration from a JSON file.

    Args:
        path: Path to a JSON object keyed by DetectorConfig field names.
            None or a missing file yields the defaults.

    Returns:
        DetectorConfig instance

    Raises:
        ConfigError: If the file is not valid JSON or not an object
    """
    if path is None:
        return DetectorConfig()
    config_path = Path(path).expanduser()
    if not config_path.exists():
        logger.info(f"Config file {config_path} not found, using defaults")
        return DetectorConfig()
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not read config file {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a JSON object")
    return DetectorConfig.from_dict(data)
