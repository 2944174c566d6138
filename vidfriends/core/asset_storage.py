"""
Asset storage backends.

Every backend implements save(name, stream) -> location.
- LocalFileStorage: files beneath a root directory
- HTTPObjectStorage: streaming PUT to an object store endpoint
- PrefixedStorage: namespaces keys under a fixed prefix (one per share)
"""

import logging
import shutil
from pathlib import Path
from typing import BinaryIO, Optional

import requests

from vidfriends.core.constants import (
    ErrorCode, COPY_CHUNK_SIZE, STORAGE_UPLOAD_TIMEOUT_SEC, ERROR_EXCERPT_LEN,
)
from vidfriends.core.error_codes import MediaError, storage_unavailable
from vidfriends.core.interfaces import AssetStorage
from vidfriends.core.security_utils import safe_storage_path, join_object_key

logger = logging.getLogger(__name__)


def _public_location(base_url: str, key: str, fallback: str) -> str:
    if not base_url:
        return fallback
    return f"{base_url.rstrip('/')}/{key}"


class LocalFileStorage:
    """Stores assets as files beneath root."""

    def __init__(self, root: Path, public_base_url: str = ""):
        self.root = Path(root)
        self.public_base_url = public_base_url

    def save(self, name: str, stream: BinaryIO) -> str:
        key = name.strip().lstrip('/')
        try:
            target = safe_storage_path(self.root, key)
        except ValueError as e:
            raise MediaError(ErrorCode.PERSISTENCE_FAILURE, f"local storage: {e}")

        tmp_target = target.with_name(target.name + ".uploading")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_target, 'wb') as out:
                shutil.copyfileobj(stream, out, COPY_CHUNK_SIZE)
            tmp_target.replace(target)
        except OSError as e:
            tmp_target.unlink(missing_ok=True)
            raise MediaError(ErrorCode.PERSISTENCE_FAILURE, f"local storage write {key}: {e}")

        logger.debug("Stored %s at %s", key, target)
        return _public_location(self.public_base_url, key, str(target))


class HTTPObjectStorage:
    """
    Uploads assets with a streaming HTTP PUT to <endpoint>/<key>.
    Works with S3-compatible buckets that accept unsigned or pre-authorised
    PUTs (headers can carry an auth token).
    """

    def __init__(self, endpoint: str, public_base_url: str = "",
                 headers: dict | None = None,
                 timeout_sec: float = STORAGE_UPLOAD_TIMEOUT_SEC,
                 session: Optional[requests.Session] = None):
        if not endpoint or not endpoint.strip():
            raise ValueError("HTTP object storage endpoint is required")
        self.endpoint = endpoint.rstrip('/')
        self.public_base_url = public_base_url
        self.headers = dict(headers or {})
        self.timeout_sec = timeout_sec
        self.session = session or requests.Session()

    def save(self, name: str, stream: BinaryIO) -> str:
        key = name.strip().lstrip('/')
        if not key:
            raise MediaError(ErrorCode.PERSISTENCE_FAILURE, "object storage: empty key")

        url = f"{self.endpoint}/{key}"
        headers = {"Content-Type": "application/octet-stream", **self.headers}
        try:
            resp = self.session.put(url, data=stream, headers=headers, timeout=self.timeout_sec)
        except requests.exceptions.Timeout:
            raise MediaError(ErrorCode.PERSISTENCE_FAILURE,
                             f"object storage upload {key}: request timed out")
        except requests.exceptions.RequestException as e:
            raise MediaError(ErrorCode.PERSISTENCE_FAILURE, f"object storage upload {key}: {e}")

        if not 200 <= resp.status_code < 300:
            body = resp.text[:ERROR_EXCERPT_LEN] if resp.text else "No response body"
            raise MediaError(ErrorCode.PERSISTENCE_FAILURE,
                             f"object storage upload {key} returned {resp.status_code}: {body}")

        logger.debug("Uploaded %s to %s", key, url)
        return _public_location(self.public_base_url, key, key)


class PrefixedStorage:
    """Prefixes every object name before delegating to base."""

    def __init__(self, prefix: str, base: Optional[AssetStorage]):
        self.prefix = prefix
        self.base = base

    def save(self, name: str, stream: BinaryIO) -> str:
        if self.base is None:
            raise storage_unavailable("prefix storage")
        key = join_object_key(self.prefix, name)
        if not key.strip():
            raise MediaError(ErrorCode.PERSISTENCE_FAILURE, "prefix storage: empty key")
        return self.base.save(key, stream)
