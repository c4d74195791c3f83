"""Credits detection methods."""

from creditsdetect.methods.base import DetectionMethod
from creditsdetect.methods.ocr import OcrDetectionMethod, resolve_credits_start

__all__ = [
    'DetectionMethod',
    'OcrDetectionMethod',
    'resolve_credits_start',
]
