import io
import subprocess

import ffmpeg
import pytest

from creditsdetect import frame_extractor
from creditsdetect.errors import FrameExtractionError
from creditsdetect.frame_extractor import frame_path, iter_extracted_frames, probe_duration


class FakeProcess:
    """Popen stand-in that finishes after a number of polls."""

    def __init__(self, polls_until_exit=0, returncode=0, stderr=b""):
        self.polls_left = polls_until_exit
        self.returncode = None
        self._final_code = returncode
        self.stderr = io.BytesIO(stderr)
        self.terminated = False

    def poll(self):
        if self.polls_left <= 0:
            self.returncode = self._final_code
            return self.returncode
        self.polls_left -= 1
        return None

    def terminate(self):
        self.terminated = True
        self.returncode = -15

    def wait(self, timeout=None):
        return self.returncode


def test_probe_duration_from_format(monkeypatch):
    monkeypatch.setattr(frame_extractor.ffmpeg, "probe", lambda path, **kw: {"format": {"duration": "1421.52"}})
    assert probe_duration("/videos/e1.mkv") == pytest.approx(1421.52)


def test_probe_duration_from_streams(monkeypatch):
    info = {"format": {}, "streams": [{"duration": "N/A"}, {"duration": "1300.0"}, {"duration": "1310.5"}]}
    monkeypatch.setattr(frame_extractor.ffmpeg, "probe", lambda path, **kw: info)
    assert probe_duration("/videos/e1.mkv") == pytest.approx(1310.5)


def test_probe_duration_errors(monkeypatch):
    def broken(path, **kw):
        raise ffmpeg.Error("ffprobe", b"", b"Invalid data found when processing input")

    monkeypatch.setattr(frame_extractor.ffmpeg, "probe", broken)
    with pytest.raises(FrameExtractionError, match="Invalid data"):
        probe_duration("/videos/e1.mkv")

    def slow(path, **kw):
        raise subprocess.TimeoutExpired("ffprobe", 5)

    monkeypatch.setattr(frame_extractor.ffmpeg, "probe", slow)
    with pytest.raises(FrameExtractionError, match="timed out"):
        probe_duration("/videos/e1.mkv", timeout=5)


def test_frames_yielded_in_order(tmp_path):
    for index in (1, 2, 3):
        frame_path(tmp_path, index, "jpg").write_bytes(b"jpeg")
    process = FakeProcess()

    frames = list(iter_extracted_frames(process, tmp_path, "jpg", poll_interval=0))

    assert [index for index, _ in frames] == [1, 2, 3]
    assert frames[0][1].name == "frame_00001.jpg"


def test_last_frame_waits_for_exit(tmp_path):
    frame_path(tmp_path, 1, "png").write_bytes(b"png")
    frame_path(tmp_path, 2, "png").write_bytes(b"png")
    process = FakeProcess(polls_until_exit=3)

    frames = iter_extracted_frames(process, tmp_path, "png", poll_interval=0)

    assert next(frames)[0] == 1
    assert process.returncode is None
    assert next(frames)[0] == 2
    assert process.returncode == 0


def test_failure_without_frames_raises(tmp_path):
    process = FakeProcess(returncode=1, stderr=b"No such file or directory")
    with pytest.raises(FrameExtractionError, match="exit code 1"):
        list(iter_extracted_frames(process, tmp_path, poll_interval=0))


def test_failure_after_frames_keeps_frames(tmp_path):
    frame_path(tmp_path, 1, "jpg").write_bytes(b"jpeg")
    process = FakeProcess(returncode=1, stderr=b"corrupt packet")
    assert len(list(iter_extracted_frames(process, tmp_path, poll_interval=0))) == 1


def test_closing_early_terminates_ffmpeg(tmp_path):
    for index in (1, 2, 3):
        frame_path(tmp_path, index, "jpg").write_bytes(b"jpeg")
    process = FakeProcess(polls_until_exit=100)

    frames = iter_extracted_frames(process, tmp_path, poll_interval=0)
    next(frames)
    frames.close()

    assert process.terminated


def test_extraction_timeout(tmp_path):
    process = FakeProcess(polls_until_exit=10_000)
    with pytest.raises(FrameExtractionError, match="timed out"):
        list(iter_extracted_frames(process, tmp_path, timeout=0.05, poll_interval=0.01))
    assert process.terminated
