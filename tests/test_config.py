import json
import logging

import pytest

from creditsdetect.config import DetectorConfig, load_config
from creditsdetect.errors import ConfigError


def test_missing_file_gives_defaults(tmp_path):
    config = load_config(tmp_path / "absent.json")
    assert config == DetectorConfig()
    assert load_config(None).ocr_endpoint == "http://localhost:8884"


def test_load_from_file(tmp_path, caplog):
    path = tmp_path / "detector.json"
    path.write_text(json.dumps({
        "ocr_frame_rate": 1.0,
        "use_episode_comparison": True,
        "mystery_option": 3,
    }))

    with caplog.at_level(logging.WARNING, logger="creditsdetect.config"):
        config = load_config(path)

    assert config.ocr_frame_rate == 1.0
    assert config.use_episode_comparison is True
    assert "mystery_option" in caplog.text


@pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
def test_invalid_file_raises(tmp_path, content):
    path = tmp_path / "detector.json"
    path.write_text(content)
    with pytest.raises(ConfigError):
        load_config(path)


def test_normalization():
    config = DetectorConfig(detection_result_selection="Loudest", cpu_usage_limit=250, ocr_image_format=".JPEG")
    assert config.detection_result_selection == "CorrelationScoring"
    assert config.cpu_usage_limit == 100
    assert config.ocr_image_format == "jpg"


@pytest.mark.parametrize("quality,qscale", [(100, 2), (92, 4), (1, 31)])
def test_jpeg_qscale(quality, qscale):
    assert DetectorConfig(ocr_jpeg_quality=quality).ffmpeg_jpeg_qscale == qscale


def test_with_overrides_skips_none():
    config = DetectorConfig(ocr_minimum_matches=2).with_overrides(ocr_minimum_matches=None, ocr_frame_rate=2.0)
    assert config.ocr_minimum_matches == 2
    assert config.ocr_frame_rate == 2.0
