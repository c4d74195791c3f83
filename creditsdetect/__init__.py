"""creditsdetect - find where end credits start in TV episodes and mark them as chapters."""

__version__ = "1.0.0"

from creditsdetect.config import DetectorConfig, load_config
from creditsdetect.coordinator import BatchCache, DetectionCoordinator
from creditsdetect.debug_capture import DebugCapture
from creditsdetect.methods import DetectionMethod, OcrDetectionMethod
from creditsdetect.pipeline import EpisodeProcessingPipeline
from creditsdetect.queue_controller import ProcessingQueueController
from creditsdetect.service import CreditsDetectionService

__all__ = [
    'BatchCache',
    'CreditsDetectionService',
    'DebugCapture',
    'DetectionCoordinator',
    'DetectionMethod',
    'DetectorConfig',
    'EpisodeProcessingPipeline',
    'OcrDetectionMethod',
    'ProcessingQueueController',
    'load_config',
]
