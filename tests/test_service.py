import json
from unittest.mock import patch

import pytest

from conftest import FakeMethod
from creditsdetect.catalog import JsonItemStore
from creditsdetect.config import DetectorConfig
from creditsdetect.service import CreditsDetectionService


@pytest.fixture
def catalog(tmp_path):
    videos = tmp_path / "videos"
    videos.mkdir()
    episodes = []
    for season, number in [(1, 1), (1, 2), (1, 3), (0, 1)]:
        video = videos / f"s{season:02d}e{number:02d}.mkv"
        video.write_bytes(b"")
        episodes.append({
            "id": f"e{season}{number}",
            "name": f"Episode {number}",
            "path": str(video),
            "series_id": "s1",
            "season_number": season,
            "episode_number": number,
            "duration": 1500.0,
        })
    path = tmp_path / "library.json"
    path.write_text(json.dumps({
        "series": [{"id": "s1", "name": "Show", "library_id": "tv", "provider_ids": {"Tvdb": "7001"}}],
        "episodes": episodes,
    }))
    return path


def _service(catalog, method=None, **settings):
    settings.setdefault("inter_item_delay_seconds", 0)
    settings.setdefault("temp_folder_path", str(catalog.parent / "tmp"))
    store = JsonItemStore(catalog)
    service = CreditsDetectionService(DetectorConfig(**settings), store, [method or FakeMethod("OCR Detection", default=1300.0)])
    service.start()
    return service


def test_series_run_writes_chapters(catalog):
    service = _service(catalog)

    request = service.enqueue_series("s1")
    assert request.success
    assert request.item_count == 3
    assert service.controller.wait_until_idle(5)
    service.stop()

    progress = service.get_progress()
    assert progress["current_item"] == "Complete"
    assert progress["successful_items"] == 3

    chapters = json.loads((catalog.parent / "library.chapters.json").read_text())
    assert sorted(chapters) == ["e11", "e12", "e13"]
    assert chapters["e11"] == [{"name": "Credits", "start_ticks": 13_000_000_000, "kind": "CreditsStart"}]

    reloaded = JsonItemStore(catalog)
    assert reloaded.get_chapters("e12")[0].start_seconds == 1300.0


def test_library_run_only_missing(catalog):
    service = _service(catalog)
    service.update_credits_marker("e11", 1250.0)

    request = service.enqueue_library("tv")

    assert request.item_count == 2
    assert service.controller.wait_until_idle(5)
    markers = {m["episode_id"]: m["credits_start_seconds"] for m in service.get_series_markers("s1")}
    assert markers["e11"] == 1250.0
    assert markers["e12"] == 1300.0
    assert markers["e01"] is None


def test_unknown_ids(catalog):
    service = _service(catalog)
    assert not service.enqueue_episode("nope").success
    assert not service.enqueue_series("nope").success
    assert not service.update_credits_marker("nope", 10).success


def test_update_and_remove_marker(catalog):
    service = _service(catalog)
    assert service.update_credits_marker("e11", 1200.0).success
    result = service.update_credits_marker("e11", 0)
    assert result.success
    assert result.item_count == 1
    assert service.update_credits_marker("e11", 0).message == "No credits marker to remove"


def test_on_item_added(catalog):
    service = _service(catalog)
    episode = service.store.get_episode("e12")
    assert service.on_item_added(episode) is False

    service = _service(catalog, enable_auto_detection=True, library_ids=["tv"])
    assert service.on_item_added(service.store.get_episode("e01")) is False
    assert service.on_item_added(service.store.get_episode("e12")) is True
    assert service.controller.wait_until_idle(5)
    assert service.marker_service.has_credits_marker(service.store.get_episode("e12"))


def test_trigger_detection_skips_existing(catalog):
    service = _service(catalog)
    service.update_credits_marker("e11", 1250.0)

    request = service.trigger_detection()

    assert request.item_count == 3
    assert service.controller.wait_until_idle(5)
    details = service.get_progress()["success_details"]
    assert details["Show S01E01"] == "already exists"


def test_debug_log_captures_run(catalog):
    service = _service(catalog)
    service.enqueue_episode("e11", dry_run=True, debug=True)
    assert service.controller.wait_until_idle(5)

    log = service.get_debug_log()

    assert "ocr_endpoint" in log
    assert "Dry run: Show S01E01" in log
    assert service.get_debug_log() == "No debug log available"


def test_failed_detection_reported(catalog):
    method = FakeMethod("OCR Detection", error="OCR service at http://localhost:8884 is not accessible")
    service = _service(catalog, method)
    service.enqueue_episode("e11")
    assert service.controller.wait_until_idle(5)
    reasons = service.get_progress()["failure_reasons"]
    assert reasons["Show S01E01"] == "OCR Detection: OCR service at http://localhost:8884 is not accessible"


def test_ocr_connection(catalog):
    service = _service(catalog)
    with patch("creditsdetect.service.OcrClient") as client_cls:
        client_cls.return_value.is_available.return_value = True
        assert service.test_ocr_connection("http://ocr:8884").success
        client_cls.return_value.is_available.return_value = False
        assert not service.test_ocr_connection().success
        client_cls.return_value.close.assert_called()


def test_backup_round_trip(catalog):
    service = _service(catalog)
    service.update_credits_marker("e11", 1250.0)
    document = service.export_backup(["tv"])

    service.update_credits_marker("e11", 0)
    result = service.import_backup(document)

    assert result.imported == 1
    assert service.marker_service.get_credits_marker(service.store.get_episode("e11")).start_seconds == 1250.0


def test_series_batch_tags_fallback(catalog):
    paths = {e["id"]: e["path"] for e in json.loads(catalog.read_text())["episodes"]}
    method = FakeMethod("OCR Detection", {paths["e12"]: 1300.0, paths["e13"]: 1310.0})
    service = _service(catalog, method, use_episode_comparison=True, enable_failed_episode_fallback=True)

    service.enqueue_series("s1")
    assert service.controller.wait_until_idle(5)

    details = service.get_progress()["success_details"]
    assert details["Show S01E01"] == "21:45 (OCR Detection (Fallback))"
    assert details["Show S01E02"] == "21:40"
