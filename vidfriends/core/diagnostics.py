"""
Diagnostics: tool version detection and storage checks.
"""

import os
import logging
from pathlib import Path

from vidfriends.core.security_utils import run_subprocess_capture

logger = logging.getLogger(__name__)


def get_ytdlp_version(binary: str = "yt-dlp") -> str:
    """Return yt-dlp version string, or error message."""
    try:
        result = run_subprocess_capture([binary, "--version"], timeout=10)
        if result.returncode == 0:
            return result.stdout.strip()
        return f"Error (rc={result.returncode})"
    except FileNotFoundError:
        return "Not installed"
    except Exception as e:
        return f"Error: {e}"


def check_directory(path: Path) -> dict:
    """Report whether a directory exists and is writable."""
    info = {"path": str(path), "exists": path.is_dir(), "writable": False}
    if info["exists"]:
        info["writable"] = os.access(path, os.W_OK)
    return info


def get_diagnostics(config) -> dict:
    """Gather all diagnostic information for the given AppConfig."""
    storage = ({"url": config.storage_url} if config.storage_url
               else check_directory(config.storage_dir))
    return {
        "ytdlp_path": config.ytdlp_path,
        "ytdlp_version": get_ytdlp_version(config.ytdlp_path),
        "storage": storage,
        "download_dir": check_directory(config.download_dir),
        "db_path": str(config.db_path),
    }
