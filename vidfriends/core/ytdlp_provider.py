"""
Video metadata lookup and asset download via the yt-dlp CLI.

Lookup runs yt-dlp in metadata-only mode.  Fetch can also download the
primary media file, stream it into asset storage and remove the local
temporary copy.
"""

import errno
import json
import logging
import os
import shutil
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Optional

from vidfriends.core.constants import (
    ErrorCode, AssetType, ERROR_EXCERPT_LEN,
    YTDLP_BINARY, YTDLP_TIMEOUT_SEC, YTDLP_BASE_ARGS,
    YTDLP_METADATA_ONLY_ARGS, YTDLP_DOWNLOAD_ARGS, YTDLP_OUTPUT_TEMPLATE,
    DEFAULT_DOWNLOAD_DIR, SCRATCH_DIR_PREFIX,
)
from vidfriends.core.error_codes import MediaError, storage_unavailable
from vidfriends.core.interfaces import AssetStorage, CommandRunner
from vidfriends.core.models import Metadata, DownloadedAsset
from vidfriends.core.security_utils import (
    run_subprocess_cancellable, SubprocessCancelled, sanitize_object_name,
)

logger = logging.getLogger(__name__)


class YTDLPProvider:
    """Fetches metadata (and optionally the media file) using yt-dlp."""

    def __init__(self, binary: str = YTDLP_BINARY, timeout_sec: float = YTDLP_TIMEOUT_SEC,
                 runner: Optional[CommandRunner] = None,
                 download_dir: Path | None = None):
        if not binary or not binary.strip():
            binary = YTDLP_BINARY
        if timeout_sec <= 0:
            timeout_sec = YTDLP_TIMEOUT_SEC
        self.binary = binary
        self.args = list(YTDLP_BASE_ARGS)
        self.timeout_sec = timeout_sec
        self.runner: CommandRunner = runner or run_subprocess_cancellable
        self.download_dir = Path(download_dir) if download_dir else DEFAULT_DOWNLOAD_DIR

    # ── Public API ────────────────────────────────────────────────────

    def lookup(self, url: str, cancel_event: Optional[threading.Event] = None) -> Metadata:
        """Run yt-dlp without downloading and parse the returned metadata."""
        args = self.args + list(YTDLP_METADATA_ONLY_ARGS) + [url]
        payload = self._run(args, self.timeout_sec, cancel_event)
        return self._parse_metadata(payload)

    def fetch(self, url: str, download: bool = False,
              storage: Optional[AssetStorage] = None,
              timeout_sec: float | None = None,
              cancel_event: Optional[threading.Event] = None) -> tuple[Metadata, list[DownloadedAsset]]:
        """
        Resolve metadata for url and, when download is set, download the
        primary video and persist it through storage.
        Returns (metadata, assets); assets is empty in metadata-only mode.

        Each download runs in its own scratch directory under download_dir,
        removed when the call returns.
        """
        if download and storage is None:
            raise storage_unavailable("yt-dlp fetch")

        if not download:
            args = self.args + list(YTDLP_METADATA_ONLY_ARGS) + [url]
            payload = self._run(args, timeout_sec or self.timeout_sec, cancel_event)
            return self._parse_metadata(payload), []

        self.download_dir.mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix=SCRATCH_DIR_PREFIX, dir=self.download_dir))
        try:
            args = self.args + list(YTDLP_DOWNLOAD_ARGS)
            args += ["-o", str(workdir / YTDLP_OUTPUT_TEMPLATE), url]

            payload = self._run(args, timeout_sec or self.timeout_sec, cancel_event)
            metadata = self._parse_metadata(payload)

            downloads = payload.get('requested_downloads') or []
            if not isinstance(downloads, list) or not downloads:
                raise MediaError(ErrorCode.EXTERNAL_TOOL_FAILURE,
                                 "yt-dlp did not return download metadata")

            assets = []
            for item in downloads:
                if not isinstance(item, dict):
                    raise MediaError(ErrorCode.EXTERNAL_TOOL_FAILURE,
                                     f"Unexpected download entry: {item!r}"[:ERROR_EXCERPT_LEN])
                assets.append(self._persist_download(item, storage))
            return metadata, assets
        finally:
            try:
                shutil.rmtree(workdir)
            except OSError as e:
                logger.warning("Failed to remove scratch dir %s: %s", workdir, e)

    # ── Internals ─────────────────────────────────────────────────────

    def _run(self, args: list[str], timeout_sec: float,
             cancel_event: Optional[threading.Event]) -> dict:
        """Invoke yt-dlp and decode its single JSON object from stdout."""
        cmd = [self.binary] + args
        try:
            result = self.runner(cmd, timeout_sec, cancel_event)
        except SubprocessCancelled:
            raise MediaError(ErrorCode.CANCELLED, "yt-dlp invocation cancelled")
        except subprocess.TimeoutExpired:
            raise MediaError(ErrorCode.EXTERNAL_TOOL_FAILURE,
                             f"yt-dlp timed out after {timeout_sec:.0f}s")
        except MediaError:
            raise
        except Exception as e:
            raise MediaError(ErrorCode.EXTERNAL_TOOL_FAILURE, f"yt-dlp fetch: {e}")

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise MediaError(ErrorCode.EXTERNAL_TOOL_FAILURE,
                             f"yt-dlp failed (rc={result.returncode}): {stderr[:ERROR_EXCERPT_LEN]}")

        stdout = result.stdout
        if isinstance(stdout, bytes):
            stdout = stdout.decode('utf-8', errors='replace')

        try:
            payload = json.loads(stdout or "")
        except json.JSONDecodeError as e:
            raise MediaError(ErrorCode.EXTERNAL_TOOL_FAILURE, f"Failed to parse yt-dlp JSON: {e}")

        if not isinstance(payload, dict):
            raise MediaError(ErrorCode.EXTERNAL_TOOL_FAILURE, "yt-dlp JSON is not an object")
        return payload

    @staticmethod
    def _parse_metadata(payload: dict) -> Metadata:
        metadata = Metadata(
            title=payload.get('title') or "",
            description=payload.get('description') or "",
            thumbnail=payload.get('thumbnail') or "",
        )
        if metadata.is_empty():
            raise MediaError(ErrorCode.EMPTY_METADATA, "yt-dlp returned empty metadata")
        return metadata

    def _persist_download(self, item: dict, storage: AssetStorage) -> DownloadedAsset:
        """
        Stream one downloaded file into storage, then close and remove it.
        Removal of the local file is attempted on every path once it is known.
        """
        local_path = item.get('filepath') or item.get('filename') or ""
        if not local_path.strip():
            raise MediaError(ErrorCode.EXTERNAL_TOOL_FAILURE, "yt-dlp provided empty download path")

        path = Path(local_path)
        if not path.is_absolute():
            path = Path.cwd() / path

        name = sanitize_object_name(path.name)
        if not name:
            self._remove_local(path)
            raise MediaError(ErrorCode.EXTERNAL_TOOL_FAILURE,
                             f"Cannot derive asset name from {local_path!r}")

        try:
            f = open(path, 'rb')
        except OSError as e:
            self._remove_local(path)
            raise MediaError(ErrorCode.EXTERNAL_TOOL_FAILURE, f"open downloaded asset: {e}")

        size = item.get('filesize')
        if not isinstance(size, int) or size <= 0:
            try:
                size = os.fstat(f.fileno()).st_size
            except OSError:
                size = 0

        location = None
        persist_err = close_err = None
        try:
            location = storage.save(name, f)
        except Exception as e:
            persist_err = e
        try:
            f.close()
        except OSError as e:
            close_err = e
        remove_err = self._remove_local(path)

        if persist_err is not None:
            if isinstance(persist_err, MediaError):
                raise MediaError(persist_err.code, f"persist asset {name}: {persist_err.message}")
            raise MediaError(ErrorCode.PERSISTENCE_FAILURE, f"persist asset {name}: {persist_err}")
        if close_err is not None:
            raise MediaError(ErrorCode.EXTERNAL_TOOL_FAILURE, f"close asset {name}: {close_err}")
        if remove_err is not None:
            raise MediaError(ErrorCode.EXTERNAL_TOOL_FAILURE, f"cleanup asset {name}: {remove_err}")

        logger.info("Persisted asset %s (%d bytes) to %s", name, size, location)
        return DownloadedAsset(location=location, name=name, size=size, type=AssetType.VIDEO)

    @staticmethod
    def _remove_local(path: Path) -> OSError | None:
        """Delete a downloaded file; one that is already gone is not an error."""
        try:
            path.unlink()
        except OSError as e:
            if e.errno != errno.ENOENT:
                logger.warning("Failed to remove downloaded file %s: %s", path, e)
                return e
        return None
