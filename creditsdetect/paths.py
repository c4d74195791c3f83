"""Path normalization and temporary frame directory handling."""

import logging
import os
import re
import shutil
import tempfile
import time
import uuid
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

FRAME_DIR_PREFIX = "ocr_frames_"
_UNC_PATTERN = re.compile(r"^\\\\([^\\]+)\\([^\\]+)(.*)$")
_SMB_PATTERN = re.compile(r"^smb://([^/]+)/([^/]+)(.*)$", re.IGNORECASE)


def normalize_path(path: str, substitutions: Optional[List[Dict[str, str]]] = None) -> str:
    """
    Translate a catalog path into a locally accessible path.

    Configured prefix substitutions are applied first (first match wins).
    Remaining network-share paths (\\\\server\\share\\... or smb://server/share/...)
    are rewritten to //server/share/... on POSIX systems.

    Args:
        path: Path as reported by the catalog
        substitutions: List of {"from": prefix, "to": replacement} mappings

    Returns:
        Normalized path string
    """
    if not path:
        return path

    for mapping in substitutions or []:
        source = mapping.get("from", "")
        target = mapping.get("to", "")
        if source and path.lower().startswith(source.lower()):
            path = target + path[len(source):]
            break

    if os.name != "nt":
        unc = _UNC_PATTERN.match(path)
        if unc:
            server, share, rest = unc.groups()
            path = f"//{server}/{share}{rest.replace(chr(92), '/')}"
        else:
            smb = _SMB_PATTERN.match(path)
            if smb:
                server, share, rest = smb.groups()
                path = f"//{server}/{share}{rest}"
    else:
        smb = _SMB_PATTERN.match(path)
        if smb:
            server, share, rest = smb.groups()
            path = f"\\\\{server}\\{share}{rest.replace('/', chr(92))}"

    return os.path.normpath(path)


def temp_root(temp_folder_path: str = "") -> Path:
    """Directory that frame directories are created under."""
    if temp_folder_path:
        root = Path(temp_folder_path).expanduser()
        try:
            root.mkdir(parents=True, exist_ok=True)
            return root
        except OSError as e:
            logger.warning(f"Temp folder {root} unusable ({e}), falling back to system temp")
    return Path(tempfile.gettempdir())


def create_frame_dir(temp_folder_path: str = "") -> Path:
    """Create a unique directory for one extraction run."""
    frame_dir = temp_root(temp_folder_path) / f"{FRAME_DIR_PREFIX}{uuid.uuid4().hex}"
    frame_dir.mkdir(parents=True)
    return frame_dir


def remove_dir_with_retries(directory: Path, attempts: int = 5, initial_delay: float = 0.2) -> bool:
    """
    Remove a directory tree, retrying while files are still locked.

    Returns:
        True if the directory is gone, False if every attempt failed
    """
    delay = initial_delay
    for attempt in range(1, attempts + 1):
        if not directory.exists():
            return True
        try:
            shutil.rmtree(directory)
            return True
        except OSError as e:
            if attempt == attempts:
                logger.error(f"Failed to remove temp directory {directory} after {attempts} attempts: {e}")
                return False
            logger.debug(f"Temp directory removal attempt {attempt} failed: {e}")
            time.sleep(delay)
            delay *= 2
    return False


def cleanup_orphaned_frame_dirs(temp_folder_path: str = "", max_age_seconds: float = 3600.0) -> int:
    """Remove frame directories left behind by earlier runs. Returns the count removed."""
    root = temp_root(temp_folder_path)
    cutoff = time.time() - max_age_seconds
    removed = 0
    for entry in root.glob(f"{FRAME_DIR_PREFIX}*"):
        try:
            if entry.is_dir() and entry.stat().st_mtime < cutoff:
                if remove_dir_with_retries(entry, attempts=1):
                    removed += 1
        except OSError as e:
            logger.warning(f"Could not inspect {entry}: {e}")
    if removed:
        logger.info(f"Removed {removed} orphaned frame directories from {root}")
    return removed
