"""
Cleanup: remove stale temporary downloads left behind by interrupted
yt-dlp runs (killed on timeout, cancelled, or crashed mid-download).
"""

import logging
import shutil
import time
from pathlib import Path

from vidfriends.core.constants import (
    PARTIAL_DOWNLOAD_SUFFIXES, SCRATCH_DIR_PREFIX, STALE_DOWNLOAD_MAX_AGE_SEC,
)

logger = logging.getLogger(__name__)


def cleanup_stale_downloads(download_dir: Path,
                            max_age_sec: float = STALE_DOWNLOAD_MAX_AGE_SEC,
                            now: float | None = None) -> list[Path]:
    """
    Delete entries in download_dir not modified for max_age_sec: loose
    files (partial downloads and orphaned media alike) and per-fetch scratch
    directories.  A successful fetch removes its own files, so anything old
    is leftover.  Returns the list of deleted paths.
    """
    if not download_dir.exists():
        return []

    now = time.time() if now is None else now
    removed = []

    for path in download_dir.iterdir():
        is_scratch = path.is_dir() and path.name.startswith(SCRATCH_DIR_PREFIX)
        if not (path.is_file() or is_scratch):
            continue
        try:
            age = now - path.stat().st_mtime
        except FileNotFoundError:
            continue
        if age < max_age_sec:
            continue
        try:
            if is_scratch:
                shutil.rmtree(path)
            else:
                path.unlink()
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning("Failed to delete %s: %s", path, e)
            continue
        removed.append(path)
        if is_scratch:
            kind = "scratch dir"
        elif path.suffix in PARTIAL_DOWNLOAD_SUFFIXES:
            kind = "partial download"
        else:
            kind = "stale download"
        logger.debug("Deleted %s: %s", kind, path)

    if removed:
        logger.info("Removed %d stale download(s) from %s", len(removed), download_dir)
    return removed
