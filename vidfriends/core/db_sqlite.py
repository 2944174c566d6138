"""
SQLite share store for VidFriends.
Implements the share status updater used by the asset ingestor.
Thread-safe via check_same_thread=False + explicit locking.
"""

import sqlite3
import threading
import uuid
import logging
from datetime import datetime, timezone
from pathlib import Path

from vidfriends.core.constants import DB_PATH, AssetStatus, ErrorCode, STATUS_UPDATE_TIMEOUT_SEC
from vidfriends.core.error_codes import MediaError
from vidfriends.core.models import Metadata, VideoShare

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS video_shares (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL DEFAULT '',
    url TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    description TEXT NOT NULL DEFAULT '',
    thumbnail TEXT NOT NULL DEFAULT '',
    created_at TEXT,
    asset_url TEXT NOT NULL DEFAULT '',
    asset_status TEXT NOT NULL DEFAULT 'pending',
    asset_size INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_video_shares_owner ON video_shares(owner_id, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_video_shares_status ON video_shares(asset_status);
"""


class Database:
    """SQLite database wrapper for video shares."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or DB_PATH
        self._lock = threading.Lock()
        self._ensure_dirs()
        self.conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
            timeout=STATUS_UPDATE_TIMEOUT_SEC,
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._migrate()

    def _ensure_dirs(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _migrate(self):
        cur = self.conn.cursor()
        cur.executescript(_CREATE_TABLES)
        cur.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
            (_SCHEMA_VERSION,),
        )
        self.conn.commit()

    def close(self):
        if self.conn:
            self.conn.close()

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _row_to_share(row: sqlite3.Row) -> VideoShare:
        return VideoShare(**dict(row))

    def _execute_update(self, sql: str, params: tuple, share_id: str, action: str):
        try:
            with self._lock:
                cur = self.conn.execute(sql, params)
                self.conn.commit()
        except sqlite3.Error as e:
            raise MediaError(ErrorCode.PERSISTENCE_FAILURE, f"{action}: {e}")
        if cur.rowcount == 0:
            raise MediaError(ErrorCode.PERSISTENCE_FAILURE, f"{action}: share {share_id} not found")

    # ── Share CRUD ────────────────────────────────────────────────────

    def create_share(self, url: str, owner_id: str = "",
                     metadata: Metadata | None = None) -> VideoShare:
        metadata = metadata or Metadata()
        share = VideoShare(
            id=str(uuid.uuid4()),
            url=url,
            owner_id=owner_id,
            title=metadata.title,
            description=metadata.description,
            thumbnail=metadata.thumbnail,
            created_at=self._now(),
        )
        try:
            with self._lock:
                self.conn.execute(
                    """INSERT INTO video_shares
                       (id, owner_id, url, title, description, thumbnail,
                        created_at, asset_url, asset_status, asset_size)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (share.id, share.owner_id, share.url, share.title,
                     share.description, share.thumbnail, share.created_at,
                     share.asset_url, share.asset_status, share.asset_size),
                )
                self.conn.commit()
        except sqlite3.Error as e:
            raise MediaError(ErrorCode.PERSISTENCE_FAILURE, f"create video share: {e}")
        return share

    def get_share(self, share_id: str) -> VideoShare | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM video_shares WHERE id = ?", (share_id,)
            ).fetchone()
        return self._row_to_share(row) if row else None

    def list_shares(self, owner_id: str | None = None, limit: int = 50) -> list[VideoShare]:
        with self._lock:
            if owner_id:
                rows = self.conn.execute(
                    "SELECT * FROM video_shares WHERE owner_id = ? ORDER BY created_at DESC LIMIT ?",
                    (owner_id, limit),
                ).fetchall()
            else:
                rows = self.conn.execute(
                    "SELECT * FROM video_shares ORDER BY created_at DESC LIMIT ?",
                    (limit,),
                ).fetchall()
        return [self._row_to_share(r) for r in rows]

    def get_pending_shares(self) -> list[VideoShare]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM video_shares WHERE asset_status = ? ORDER BY created_at ASC",
                (AssetStatus.PENDING,),
            ).fetchall()
        return [self._row_to_share(r) for r in rows]

    # ── Asset status (ShareStatusUpdater) ─────────────────────────────

    def mark_asset_ready(self, share_id: str, location: str, size: int):
        """Record a successful ingestion for share_id."""
        self._execute_update(
            """UPDATE video_shares
               SET asset_status = ?, asset_url = ?, asset_size = ?
               WHERE id = ?""",
            (AssetStatus.READY, location, size, share_id),
            share_id, "update video asset status ready",
        )

    def mark_asset_failed(self, share_id: str):
        """Record a failed ingestion attempt for share_id."""
        self._execute_update(
            """UPDATE video_shares
               SET asset_status = ?, asset_url = '', asset_size = 0
               WHERE id = ?""",
            (AssetStatus.FAILED, share_id),
            share_id, "update video asset status failed",
        )
