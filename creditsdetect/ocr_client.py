"""Client for the external OCR HTTP service."""

import io
import json
import logging
import re
from pathlib import Path
from typing import List, NamedTuple, Optional

import requests
from PIL import Image

from creditsdetect.errors import OcrServiceError

logger = logging.getLogger(__name__)

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_MIME_TYPES = {"jpg": "image/jpeg", "png": "image/png"}
_PIL_FORMATS = {"jpg": "JPEG", "png": "PNG"}


class OcrResult(NamedTuple):
    text: str
    confidence: Optional[float]


def sanitize_text(text: str) -> str:
    """Strip control characters other than newline, carriage return and tab."""
    return _CONTROL_CHARS.sub("", text or "")


def parse_ocr_response(body: str) -> OcrResult:
    """
    Parse an OCR service response body.

    JSON objects carry the text in "stdout" (or "text") and an optional
    "confidence" given either as 0-1 or as a percentage. Any other body
    is taken as the recognized text itself.
    """
    try:
        data = json.loads(body)
    except (TypeError, ValueError):
        return OcrResult(sanitize_text(body).strip(), None)

    if isinstance(data, str):
        return OcrResult(sanitize_text(data).strip(), None)
    if not isinstance(data, dict):
        return OcrResult("", None)

    text = data.get("stdout")
    if text is None:
        text = data.get("text", "")
    confidence = data.get("confidence")
    if confidence is not None:
        try:
            confidence = float(confidence)
            if confidence > 1.0:
                confidence /= 100.0
        except (TypeError, ValueError):
            confidence = None
    return OcrResult(sanitize_text(str(text)).strip(), confidence)


def _load_image_from_bytes(frame_bytes: bytes) -> "Image.Image":
    image = Image.open(io.BytesIO(frame_bytes))
    if image.mode != "RGB":
        image = image.convert("RGB")
    return image


def _resize_image(image: "Image.Image", target_dimension: int) -> "Image.Image":
    """Resize image to fit within target_dimension while preserving aspect ratio."""
    width, height = image.size
    longest_side = max(width, height)
    if longest_side <= target_dimension:
        return image
    scale = target_dimension / float(longest_side)
    new_size = (max(1, int(width * scale)), max(1, int(height * scale)))
    return image.resize(new_size, Image.BILINEAR)


def downscale_image(frame_bytes: bytes, max_dimension: int, image_format: str = "jpg") -> bytes:
    """Re-encode a frame so its longest side is at most max_dimension."""
    if max_dimension <= 0:
        return frame_bytes
    image = _load_image_from_bytes(frame_bytes)
    resized = _resize_image(image, max_dimension)
    if resized is image:
        return frame_bytes
    output = io.BytesIO()
    resized.save(output, format=_PIL_FORMATS.get(image_format, "PNG"))
    return output.getvalue()


class OcrClient:
    """Talks to an OCR service exposing POST {endpoint}/tesseract."""

    def __init__(
        self,
        endpoint: str,
        languages: Optional[List[str]] = None,
        request_timeout: float = 60.0,
        probe_timeout: float = 5.0,
        max_dimension: int = 0,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.languages = languages or ["eng"]
        self.request_timeout = request_timeout
        self.probe_timeout = probe_timeout
        self.max_dimension = max_dimension

        self.session = requests.Session()
        self.session.headers.update({"accept": "application/json"})

    def is_available(self) -> bool:
        """Liveness probe: any non-5xx answer counts as reachable."""
        try:
            response = self.session.get(self.endpoint, timeout=self.probe_timeout)
        except requests.RequestException as e:
            logger.debug(f"OCR endpoint {self.endpoint} probe failed: {e}")
            return False
        return response.status_code < 500

    def recognize(self, image_path: Path) -> OcrResult:
        """
        Submit one frame for recognition.

        Raises:
            OcrServiceError: On connection failures, timeouts and HTTP errors
        """
        image_format = image_path.suffix.lstrip(".").lower() or "jpg"
        image_bytes = image_path.read_bytes()
        if self.max_dimension > 0:
            image_bytes = downscale_image(image_bytes, self.max_dimension, image_format)

        files = {"file": (image_path.name, image_bytes, _MIME_TYPES.get(image_format, "application/octet-stream"))}
        data = {"options": json.dumps({"languages": self.languages})}
        try:
            response = self.session.post(
                f"{self.endpoint}/tesseract", files=files, data=data, timeout=self.request_timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise OcrServiceError(f"OCR request for {image_path.name} failed: {e}") from e
        return parse_ocr_response(response.text)

    def close(self):
        self.session.close()
