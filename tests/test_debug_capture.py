import logging
import re

from conftest import wait_for
from creditsdetect.debug_capture import NO_LOG_MESSAGE, DebugCapture


def test_log_lines_are_timestamped():
    capture = DebugCapture()
    capture.start(settings={"ocr_frame_rate": 0.5})
    capture.log("info", "Processing Show S01E01")
    text = capture.retrieve()
    assert "ocr_frame_rate: 0.5" in text
    assert re.search(r"\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{3}\] \[INFO\] Processing Show S01E01", text)


def test_retrieve_clears_buffer():
    capture = DebugCapture()
    capture.start()
    capture.log("INFO", "hello")
    assert "hello" in capture.retrieve()
    assert capture.retrieve() == NO_LOG_MESSAGE
    assert not capture.is_active


def test_log_without_capture_is_ignored():
    capture = DebugCapture()
    capture.log("INFO", "dropped")
    assert capture.retrieve() == NO_LOG_MESSAGE


def test_overflow_truncates_once_with_single_marker():
    capture = DebugCapture(max_size=1000)
    capture.start()
    while capture.truncation_count < 1:
        capture.log("INFO", "x" * 50)
    text = capture.retrieve()
    assert text.count("[TRUNCATED: Removed") == 1
    assert text.startswith("[TRUNCATED: Removed")


def test_repeated_overflow_keeps_one_marker():
    capture = DebugCapture(max_size=1000)
    capture.start()
    while capture.truncation_count < 3:
        capture.log("INFO", "y" * 50)
        assert len(capture._buffer) <= 1000
    assert capture.retrieve().count("[TRUNCATED") == 1


def test_package_log_records_are_captured():
    capture = DebugCapture()
    capture.start()
    logging.getLogger("creditsdetect.pipeline").warning("Duration probe failed")
    text = capture.retrieve()
    assert "[WARNING] Duration probe failed" in text
    logging.getLogger("creditsdetect.pipeline").warning("after retrieve")
    assert capture.retrieve() == NO_LOG_MESSAGE


def test_idle_cleanup_discards_capture():
    capture = DebugCapture(idle_cleanup_seconds=0.01)
    capture.start()
    capture.log("INFO", "forgotten")
    capture.schedule_cleanup()
    assert wait_for(lambda: not capture.is_active)
    assert capture.retrieve() == NO_LOG_MESSAGE
