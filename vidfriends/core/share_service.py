"""
Share service: wires the concrete collaborators together and implements the
share-creation flow used by the (external) HTTP layer.

    lookup metadata (cached) -> persist pending share -> enqueue ingestion
"""

import logging
import threading

from vidfriends.core.asset_storage import LocalFileStorage, HTTPObjectStorage
from vidfriends.core.cleanup import cleanup_stale_downloads
from vidfriends.core.config import AppConfig
from vidfriends.core.constants import SHUTDOWN_TIMEOUT_SEC
from vidfriends.core.db_sqlite import Database
from vidfriends.core.error_codes import MediaError
from vidfriends.core.ingestor import AssetIngestor
from vidfriends.core.interfaces import AssetStorage, MetadataProvider
from vidfriends.core.metadata_cache import CachingProvider
from vidfriends.core.models import VideoShare
from vidfriends.core.url_parse import validate_video_url, parse_input_file
from vidfriends.core.ytdlp_provider import YTDLPProvider

logger = logging.getLogger(__name__)


def build_storage(config: AppConfig) -> AssetStorage:
    """HTTP object storage when a storage URL is configured, local files otherwise."""
    if config.storage_url:
        return HTTPObjectStorage(config.storage_url, public_base_url=config.public_base_url)
    return LocalFileStorage(config.storage_dir, public_base_url=config.public_base_url)


class ShareService:
    """Owns the metadata cache, share store and ingestor for one process."""

    def __init__(self, metadata: MetadataProvider, db: Database, ingestor: AssetIngestor):
        self.metadata = metadata
        self.db = db
        self.ingestor = ingestor
        self._closed = False

    def lookup(self, url: str, cancel_event: threading.Event | None = None):
        return self.metadata.lookup(validate_video_url(url), cancel_event=cancel_event)

    def share_video(self, owner_id: str, url: str,
                    enqueue_timeout_sec: float | None = None,
                    cancel_event: threading.Event | None = None) -> VideoShare:
        """
        Resolve metadata synchronously, persist the share as pending and hand
        it to the ingestor.  Lookup errors propagate; the share is not created.
        """
        url = validate_video_url(url)
        metadata = self.metadata.lookup(url, cancel_event=cancel_event)
        share = self.db.create_share(url, owner_id=owner_id, metadata=metadata)

        try:
            self.ingestor.enqueue(share, timeout_sec=enqueue_timeout_sec, cancel_event=cancel_event)
        except MediaError as e:
            logger.error("Could not enqueue share %s (%s): %s", share.id, url, e)
            try:
                self.db.mark_asset_failed(share.id)
            except MediaError as mark_err:
                logger.error("Failed to record asset failure for share %s: %s", share.id, mark_err)
            raise

        logger.info("Shared %s as %s (owner=%s)", url, share.id, owner_id or "-")
        return share

    def get_share(self, share_id: str) -> VideoShare | None:
        return self.db.get_share(share_id)

    def list_shares(self, owner_id: str | None = None, limit: int = 50) -> list[VideoShare]:
        return self.db.list_shares(owner_id=owner_id, limit=limit)

    def share_file(self, owner_id: str, filepath: str,
                   enqueue_timeout_sec: float | None = None) -> list[tuple[str, VideoShare | MediaError]]:
        """
        Share every video URL listed in a text file (one per line, '#'
        comments allowed).  Returns (url, share or error) pairs in file order;
        one failing URL does not stop the rest.
        """
        results = []
        for url in parse_input_file(filepath):
            try:
                results.append((url, self.share_video(owner_id, url,
                                                      enqueue_timeout_sec=enqueue_timeout_sec)))
            except MediaError as e:
                logger.warning("Skipping %s: %s", url, e)
                results.append((url, e))
        return results

    def pending_shares(self) -> list[VideoShare]:
        """Shares whose asset has not reached a terminal status yet."""
        return self.db.get_pending_shares()

    def close(self, timeout_sec: float = SHUTDOWN_TIMEOUT_SEC):
        """
        Drain the ingestor, then close the database.  If workers are still
        busy when timeout_sec elapses the database stays open so their
        outcomes can still be recorded; call close again to finish.
        """
        if self._closed:
            return
        try:
            self.ingestor.shutdown(timeout_sec=timeout_sec)
        except MediaError:
            logger.error("Ingestion still running for shares %s; leaving database open",
                         ", ".join(self.ingestor.in_flight()) or "-")
            raise
        self.db.close()
        self._closed = True


def build_services(config: AppConfig, storage: AssetStorage | None = None,
                   provider: YTDLPProvider | None = None) -> ShareService:
    """Construct the full ingestion stack from configuration."""
    ytdlp = provider or YTDLPProvider(config.ytdlp_path, config.ytdlp_timeout_sec,
                                      download_dir=config.download_dir)
    metadata = CachingProvider(ytdlp, config.metadata_cache_ttl_sec)
    db = Database(config.db_path)

    cleanup_stale_downloads(ytdlp.download_dir, config.stale_download_max_age_sec)

    ingestor = AssetIngestor(
        ytdlp,
        storage or build_storage(config),
        db,
        queue_size=config.ingest_queue_size,
        workers=config.ingest_workers,
    )
    return ShareService(metadata, db, ingestor)
