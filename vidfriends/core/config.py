"""
Application configuration manager.
Stores settings in a JSON file under the application support dir;
VIDFRIENDS_* environment variables override saved values.
"""

import json
import logging
import os
import re
from pathlib import Path

from vidfriends.core.constants import (
    CONFIG_PATH, DB_PATH, DEFAULT_STORAGE_DIR, DEFAULT_DOWNLOAD_DIR,
    YTDLP_BINARY, YTDLP_TIMEOUT_SEC, METADATA_CACHE_TTL_SEC,
    SERVICE_QUEUE_SIZE, SERVICE_WORKERS, STALE_DOWNLOAD_MAX_AGE_SEC,
)

# Validation bounds
_TIMEOUT_MIN = 1
_TIMEOUT_MAX = 3600
_TTL_MIN = 1
_TTL_MAX = 24 * 3600
_QUEUE_MIN = 1
_QUEUE_MAX = 1024
_WORKERS_MIN = 1
_WORKERS_MAX = 16

_LOG_LEVELS = ('debug', 'info', 'warning', 'error')

logger = logging.getLogger(__name__)

_DEFAULTS = {
    'ytdlp_path': YTDLP_BINARY,
    'ytdlp_timeout_sec': YTDLP_TIMEOUT_SEC,
    'metadata_cache_ttl_sec': METADATA_CACHE_TTL_SEC,
    'ingest_queue_size': SERVICE_QUEUE_SIZE,
    'ingest_workers': SERVICE_WORKERS,
    'storage_dir': str(DEFAULT_STORAGE_DIR),
    'storage_url': '',
    'public_base_url': '',
    'db_path': str(DB_PATH),
    'download_dir': str(DEFAULT_DOWNLOAD_DIR),
    'stale_download_max_age_sec': STALE_DOWNLOAD_MAX_AGE_SEC,
    'log_level': 'info',
}

# env var -> config key
_ENV_OVERRIDES = {
    'VIDFRIENDS_YTDLP_PATH': 'ytdlp_path',
    'VIDFRIENDS_YTDLP_TIMEOUT': 'ytdlp_timeout_sec',
    'VIDFRIENDS_METADATA_CACHE_TTL': 'metadata_cache_ttl_sec',
    'VIDFRIENDS_INGEST_QUEUE_SIZE': 'ingest_queue_size',
    'VIDFRIENDS_INGEST_WORKERS': 'ingest_workers',
    'VIDFRIENDS_STORAGE_DIR': 'storage_dir',
    'VIDFRIENDS_STORAGE_URL': 'storage_url',
    'VIDFRIENDS_PUBLIC_BASE_URL': 'public_base_url',
    'VIDFRIENDS_DB_PATH': 'db_path',
    'VIDFRIENDS_DOWNLOAD_DIR': 'download_dir',
    'VIDFRIENDS_LOG_LEVEL': 'log_level',
}

_DURATION_UNITS = {'ms': 0.001, 's': 1, 'm': 60, 'h': 3600}


def parse_duration(value) -> float:
    """Parse seconds given as a number or a '500ms', '30s', '15m', '1h' string."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    m = re.fullmatch(r'\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*', str(value))
    if not m:
        raise ValueError(f"Invalid duration: {value!r}")
    return float(m.group(1)) * _DURATION_UNITS[m.group(2) or 's']


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None, environ: dict | None = None):
        self.path = config_path or CONFIG_PATH
        self._environ = os.environ if environ is None else environ
        self._data: dict = {}
        self.load()

    def load(self):
        """Load config from disk and the environment, merging with defaults."""
        self._data = dict(_DEFAULTS)
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
                for key, value in saved.items():
                    self._data[key] = self._validate(key, value)
            except Exception as e:
                logger.warning("Failed to load config: %s", e)

        for env_key, key in _ENV_OVERRIDES.items():
            value = self._environ.get(env_key)
            if value:
                self._data[key] = self._validate(key, value)

    def save(self):
        """Persist config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._data, f, indent=2)

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def set(self, key: str, value):
        value = self._validate(key, value)
        self._data[key] = value
        self.save()

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key == 'ytdlp_timeout_sec':
            return self._clamp_duration(key, value, YTDLP_TIMEOUT_SEC, _TIMEOUT_MIN, _TIMEOUT_MAX)

        if key == 'metadata_cache_ttl_sec':
            return self._clamp_duration(key, value, METADATA_CACHE_TTL_SEC, _TTL_MIN, _TTL_MAX)

        if key == 'stale_download_max_age_sec':
            return self._clamp_duration(key, value, STALE_DOWNLOAD_MAX_AGE_SEC, 60, 7 * 24 * 3600)

        if key == 'ingest_queue_size':
            return self._clamp_int(key, value, SERVICE_QUEUE_SIZE, _QUEUE_MIN, _QUEUE_MAX)

        if key == 'ingest_workers':
            return self._clamp_int(key, value, SERVICE_WORKERS, _WORKERS_MIN, _WORKERS_MAX)

        if key == 'ytdlp_path':
            value = str(value).strip()
            return value or YTDLP_BINARY

        if key == 'log_level':
            value = str(value).strip().lower()
            if value not in _LOG_LEVELS:
                logger.warning("Invalid log_level %r, using info", value)
                return 'info'

        return value

    @staticmethod
    def _clamp_duration(key: str, value, default: float, lo: float, hi: float) -> float:
        try:
            value = parse_duration(value)
        except ValueError:
            logger.warning("Invalid %s %r, using default", key, value)
            return default
        return max(lo, min(hi, value))

    @staticmethod
    def _clamp_int(key: str, value, default: int, lo: int, hi: int) -> int:
        try:
            value = int(value)
        except (TypeError, ValueError):
            logger.warning("Invalid %s %r, using default", key, value)
            return default
        return max(lo, min(hi, value))

    def as_dict(self) -> dict:
        return dict(self._data)

    @property
    def ytdlp_path(self) -> str:
        return self._data['ytdlp_path']

    @property
    def ytdlp_timeout_sec(self) -> float:
        return self._data['ytdlp_timeout_sec']

    @property
    def metadata_cache_ttl_sec(self) -> float:
        return self._data['metadata_cache_ttl_sec']

    @property
    def ingest_queue_size(self) -> int:
        return self._data['ingest_queue_size']

    @property
    def ingest_workers(self) -> int:
        return self._data['ingest_workers']

    @property
    def storage_dir(self) -> Path:
        return Path(self._data['storage_dir'])

    @property
    def storage_url(self) -> str:
        return self._data['storage_url']

    @property
    def public_base_url(self) -> str:
        return self._data['public_base_url']

    @property
    def db_path(self) -> Path:
        return Path(self._data['db_path'])

    @property
    def download_dir(self) -> Path:
        return Path(self._data['download_dir'])

    @property
    def stale_download_max_age_sec(self) -> float:
        return self._data['stale_download_max_age_sec']

    @property
    def log_level(self) -> str:
        return self._data['log_level']
