import os
import shutil
import time

import pytest

from creditsdetect import paths
from creditsdetect.paths import (
    FRAME_DIR_PREFIX,
    cleanup_orphaned_frame_dirs,
    create_frame_dir,
    normalize_path,
    remove_dir_with_retries,
)

posix_only = pytest.mark.skipif(os.name == "nt", reason="POSIX path rewriting")


@posix_only
def test_unc_and_smb_paths():
    assert normalize_path(r"\\nas\media\TV\Show\s01e01.mkv") == "//nas/media/TV/Show/s01e01.mkv"
    assert normalize_path("smb://nas/media/TV/s01e01.mkv") == "//nas/media/TV/s01e01.mkv"


@posix_only
def test_substitution_first_match_wins():
    substitutions = [
        {"from": "/data/tv", "to": "/mnt/tv"},
        {"from": "/data", "to": "/other"},
    ]
    assert normalize_path("/data/tv/show/e1.mkv", substitutions) == "/mnt/tv/show/e1.mkv"
    assert normalize_path("/DATA/movies/m.mkv", substitutions) == "/other/movies/m.mkv"
    assert normalize_path("/elsewhere//x.mkv", substitutions) == "/elsewhere/x.mkv"


def test_empty_path():
    assert normalize_path("") == ""


def test_frame_dir_is_unique(tmp_path):
    first = create_frame_dir(str(tmp_path))
    second = create_frame_dir(str(tmp_path))
    assert first != second
    assert first.name.startswith(FRAME_DIR_PREFIX)
    assert first.parent == tmp_path


def test_remove_retries_until_success(tmp_path, monkeypatch):
    target = tmp_path / "frames"
    target.mkdir()
    real_rmtree = shutil.rmtree
    attempts = []

    def flaky_rmtree(path):
        attempts.append(path)
        if len(attempts) < 3:
            raise PermissionError("file in use")
        real_rmtree(path)

    monkeypatch.setattr(paths.shutil, "rmtree", flaky_rmtree)
    monkeypatch.setattr(paths.time, "sleep", lambda seconds: None)

    assert remove_dir_with_retries(target)
    assert len(attempts) == 3
    assert not target.exists()


def test_remove_gives_up(tmp_path, monkeypatch, caplog):
    target = tmp_path / "frames"
    target.mkdir()

    def locked(path):
        raise PermissionError("file in use")

    monkeypatch.setattr(paths.shutil, "rmtree", locked)
    monkeypatch.setattr(paths.time, "sleep", lambda seconds: None)

    assert remove_dir_with_retries(target, attempts=3) is False
    assert "after 3 attempts" in caplog.text


def test_orphan_cleanup_removes_only_old_dirs(tmp_path):
    old = tmp_path / f"{FRAME_DIR_PREFIX}old"
    fresh = tmp_path / f"{FRAME_DIR_PREFIX}fresh"
    unrelated = tmp_path / "keep_me"
    for directory in (old, fresh, unrelated):
        directory.mkdir()
    two_hours_ago = time.time() - 7200
    os.utime(old, (two_hours_ago, two_hours_ago))
    os.utime(unrelated, (two_hours_ago, two_hours_ago))

    assert cleanup_orphaned_frame_dirs(str(tmp_path)) == 1
    assert not old.exists()
    assert fresh.exists()
    assert unrelated.exists()
