"""Exception types raised by creditsdetect."""


class CreditsDetectError(Exception):
    """Base class for all creditsdetect errors."""


class ConfigError(CreditsDetectError):
    """Raised when a configuration file cannot be read or parsed."""


class FrameExtractionError(CreditsDetectError):
    """Raised when ffmpeg cannot probe or extract frames from a video."""


class OcrServiceError(CreditsDetectError):
    """Raised when the OCR service cannot be reached or returns an error."""
