"""
Shared constants for VidFriends media ingestion.
Single source of truth, imported by every other module.
"""

import pathlib
import tempfile

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "VidFriends"
APP_SLUG = "vidfriends"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

APP_SUPPORT_DIR = HOME / ".local" / "share" / APP_SLUG
LOG_DIR = HOME / ".local" / "state" / APP_SLUG / "logs"
DB_PATH = APP_SUPPORT_DIR / "shares.db"
CONFIG_PATH = APP_SUPPORT_DIR / "config.json"
DEFAULT_STORAGE_DIR = APP_SUPPORT_DIR / "assets"
DEFAULT_DOWNLOAD_DIR = pathlib.Path(tempfile.gettempdir()) / f"{APP_SLUG}-downloads"

# ── Share asset status values ─────────────────────────────────────────
class AssetStatus:
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"

TERMINAL_ASSET_STATUSES = {AssetStatus.READY, AssetStatus.FAILED}

# ── Downloaded asset types ────────────────────────────────────────────
class AssetType:
    VIDEO = "video"

# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    INVALID_URL = "ERR_INVALID_URL"
    PROVIDER_UNAVAILABLE = "ERR_PROVIDER_UNAVAILABLE"
    EMPTY_METADATA = "ERR_EMPTY_METADATA"
    ASSET_STORAGE_UNAVAILABLE = "ERR_ASSET_STORAGE_UNAVAILABLE"
    EXTERNAL_TOOL_FAILURE = "ERR_EXTERNAL_TOOL_FAILURE"
    PERSISTENCE_FAILURE = "ERR_PERSISTENCE_FAILURE"

    # Cancellation class
    QUEUE_CLOSED = "ERR_QUEUE_CLOSED"
    CANCELLED = "ERR_CANCELLED"

CANCELLATION_ERRORS = {
    ErrorCode.QUEUE_CLOSED,
    ErrorCode.CANCELLED,
}

# ── yt-dlp invocation ─────────────────────────────────────────────────
YTDLP_BINARY = "yt-dlp"
YTDLP_TIMEOUT_SEC = 30
YTDLP_BASE_ARGS = ("--dump-single-json", "--no-warnings", "--no-playlist")
YTDLP_METADATA_ONLY_ARGS = ("--skip-download",)
YTDLP_DOWNLOAD_ARGS = ("--no-simulate",)
YTDLP_OUTPUT_TEMPLATE = "%(id)s.%(ext)s"

# ── Metadata cache ────────────────────────────────────────────────────
DEFAULT_CACHE_TTL_SEC = 60            # used when a non-positive TTL is given
METADATA_CACHE_TTL_SEC = 15 * 60      # configured default

# ── Ingestion worker pool ─────────────────────────────────────────────
DEFAULT_QUEUE_SIZE = 16
DEFAULT_WORKERS = 1
SERVICE_QUEUE_SIZE = 32
SERVICE_WORKERS = 2
MIN_FETCH_TIMEOUT_SEC = 120           # downloads get at least 2 minutes
STATUS_UPDATE_TIMEOUT_SEC = 5
SHUTDOWN_TIMEOUT_SEC = 30
QUEUE_POLL_INTERVAL_SEC = 0.05

# ── Object storage ────────────────────────────────────────────────────
STORAGE_UPLOAD_TIMEOUT_SEC = 300
COPY_CHUNK_SIZE = 1024 * 1024

# ── Cleanup ───────────────────────────────────────────────────────────
STALE_DOWNLOAD_MAX_AGE_SEC = 6 * 3600
PARTIAL_DOWNLOAD_SUFFIXES = (".part", ".ytdl", ".temp")
SCRATCH_DIR_PREFIX = "fetch-"

# ── Misc ──────────────────────────────────────────────────────────────
ALLOWED_URL_SCHEMES = ("http", "https")
MAX_URL_LEN = 2048
# Control characters scrubbed from storage object names
CONTROL_CHARS = r'[\x00-\x1f\x7f]'
ERROR_EXCERPT_LEN = 300
