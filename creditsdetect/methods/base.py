"""Interface implemented by every credits detection method."""

import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

ProgressCallback = Callable[[float, str], None]


class DetectionMethod(ABC):
    """
    A single way of finding where end credits start in one video.

    Implementations return 0 when nothing was found and leave a
    human-readable explanation in ``last_error``.
    """

    def __init__(self):
        self.last_error = ""

    @property
    @abstractmethod
    def name(self) -> str:
        """Display name, also used to label candidates and errors."""

    @property
    @abstractmethod
    def confidence(self) -> float:
        """Base confidence (0-1) given to candidates from this method."""

    @property
    @abstractmethod
    def priority(self) -> int:
        """Lower numbers win under the Priority selection strategy."""

    @property
    @abstractmethod
    def is_enabled(self) -> bool:
        pass

    @abstractmethod
    def detect_credits(
        self,
        video_path: str,
        duration: float,
        cancel_event: Optional[threading.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> float:
        """
        Detect the credits start of one video.

        Args:
            video_path: Local path of the video file
            duration: Video duration in seconds
            cancel_event: Set to request that detection stops early
            on_progress: Called with (percent, message) while working

        Returns:
            Credits start in seconds, or 0 if none was detected
        """
