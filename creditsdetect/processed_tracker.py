"""Persistent record of files that already went through detection."""

import json
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_FILENAME = "processed_files.json"


class ProcessedFilesTracker:
    """
    Tracks processed files by path, size and modification time.

    A file counts as processed only while its size and mtime are unchanged,
    so replaced files are detected again.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()
        self._entries: Dict[str, Dict] = {}
        self._load()

    def _load(self):
        if not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if isinstance(data, dict):
                self._entries = data
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read processed files list {self.path}: {e}")

    def _save(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._entries, f, indent=2)
        os.replace(tmp_path, self.path)

    @staticmethod
    def _fingerprint(file_path: str) -> Optional[Dict]:
        try:
            stat = os.stat(file_path)
        except OSError:
            return None
        return {"size": stat.st_size, "mtime": int(stat.st_mtime)}

    def is_processed(self, file_path: str) -> bool:
        fingerprint = self._fingerprint(file_path)
        if fingerprint is None:
            return False
        with self._lock:
            entry = self._entries.get(file_path)
        return bool(entry) and entry.get("size") == fingerprint["size"] and entry.get("mtime") == fingerprint["mtime"]

    def mark_processed(self, file_path: str, credits_start: float):
        fingerprint = self._fingerprint(file_path)
        if fingerprint is None:
            return
        fingerprint["credits_start"] = credits_start
        fingerprint["processed_at"] = datetime.now().isoformat(timespec="seconds")
        with self._lock:
            self._entries[file_path] = fingerprint
            try:
                self._save()
            except OSError as e:
                logger.warning(f"Could not write processed files list {self.path}: {e}")

    def clear(self):
        with self._lock:
            self._entries = {}
            if self.path.exists():
                self.path.unlink()
