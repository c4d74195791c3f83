"""Duration probing and frame extraction from video files using ffmpeg."""

import logging
import subprocess
import threading
import time
from pathlib import Path
from typing import Generator, Optional, Tuple, Union

import ffmpeg

from creditsdetect.errors import FrameExtractionError

logger = logging.getLogger(__name__)

FRAME_NAME_PATTERN = "frame_%05d"


def probe_duration(video_path: Union[str, Path], timeout: Optional[float] = 30.0) -> float:
    """
    Probe the duration of a video with ffprobe.

    Returns:
        Duration in seconds, 0.0 if ffprobe reports none

    Raises:
        FrameExtractionError: If ffprobe fails or times out
    """
    try:
        info = ffmpeg.probe(str(video_path), timeout=timeout)
    except ffmpeg.Error as e:
        stderr = e.stderr.decode("utf8", errors="ignore") if e.stderr else ""
        raise FrameExtractionError(f"ffprobe failed for {video_path}: {stderr.strip()[-200:]}") from e
    except subprocess.TimeoutExpired as e:
        raise FrameExtractionError(f"ffprobe timed out after {timeout}s for {video_path}") from e

    duration = info.get("format", {}).get("duration")
    if duration is None:
        stream_durations = [
            float(s["duration"]) for s in info.get("streams", []) if s.get("duration") not in (None, "N/A")
        ]
        duration = max(stream_durations) if stream_durations else 0.0
    try:
        return float(duration)
    except (TypeError, ValueError):
        return 0.0


def frame_path(output_dir: Path, index: int, image_format: str) -> Path:
    """Path of the 1-based frame index written by start_frame_extraction."""
    return output_dir / f"{FRAME_NAME_PATTERN % index}.{image_format}"


def start_frame_extraction(
    video_path: Union[str, Path],
    start_time: float,
    duration: float,
    fps: float,
    output_dir: Path,
    image_format: str = "jpg",
    jpeg_qscale: int = 2,
    max_frames: int = 0,
) -> subprocess.Popen:
    """
    Start ffmpeg writing sampled frames into output_dir.

    Args:
        video_path: Path to the video file
        start_time: Start of the sampled window in seconds
        duration: Length of the sampled window in seconds
        fps: Frames per second to sample
        output_dir: Existing directory receiving frame_00001.<format>, ...
        image_format: Image file extension ("jpg" or "png")
        jpeg_qscale: ffmpeg q:v value for JPEG output
        max_frames: Stop after this many frames (0 = unlimited)

    Returns:
        The running ffmpeg process
    """
    input_stream = ffmpeg.input(str(video_path), ss=start_time, t=duration)
    output_kwargs = {}
    if image_format == "jpg":
        output_kwargs["q:v"] = jpeg_qscale
    if max_frames > 0:
        output_kwargs["frames:v"] = max_frames

    pattern = str(output_dir / f"{FRAME_NAME_PATTERN}.{image_format}")
    try:
        return (
            input_stream
            .filter("fps", fps=fps)
            .output(pattern, **output_kwargs)
            .global_args("-hide_banner", "-loglevel", "error")
            .run_async(pipe_stderr=True, overwrite_output=True)
        )
    except OSError as e:
        raise FrameExtractionError(f"Could not start ffmpeg: {e}") from e


def stop_process(process: subprocess.Popen) -> None:
    """Terminate ffmpeg if it is still running and close its pipes."""
    if process.poll() is None:
        try:
            process.terminate()
            process.wait(timeout=1.0)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
    if process.stderr:
        process.stderr.close()


def iter_extracted_frames(
    process: subprocess.Popen,
    output_dir: Path,
    image_format: str = "jpg",
    timeout: float = 0.0,
    cancel_event: Optional[threading.Event] = None,
    poll_interval: float = 0.1,
) -> Generator[Tuple[int, Path], None, None]:
    """
    Yield (index, path) for frames as ffmpeg finishes writing them.

    A frame counts as complete once the next frame exists or ffmpeg has
    exited. Closing the generator early terminates ffmpeg.

    Raises:
        FrameExtractionError: On timeout, or if ffmpeg fails before writing any frame
    """
    deadline = time.monotonic() + timeout if timeout > 0 else None
    next_index = 1
    try:
        while True:
            if cancel_event is not None and cancel_event.is_set():
                return
            finished = process.poll() is not None
            current = frame_path(output_dir, next_index, image_format)
            if current.exists() and (finished or frame_path(output_dir, next_index + 1, image_format).exists()):
                yield next_index, current
                next_index += 1
                continue
            if finished:
                break
            if deadline is not None and time.monotonic() > deadline:
                raise FrameExtractionError(f"Frame extraction timed out after {timeout:.0f}s")
            time.sleep(poll_interval)

        if process.returncode != 0:
            stderr = process.stderr.read().decode("utf8", errors="ignore") if process.stderr else ""
            if next_index == 1:
                raise FrameExtractionError(
                    f"FFmpeg frame extraction failed (exit code {process.returncode}): {stderr.strip()[-200:]}"
                )
            logger.warning(f"FFmpeg exited with code {process.returncode}: {stderr.strip()[-200:]}")
    finally:
        stop_process(process)
