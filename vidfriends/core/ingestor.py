"""
Asset Ingestor: a fixed pool of worker threads that download shared videos
out of band and record a terminal asset status on each share.

Every admitted job ends in exactly one recorded outcome: mark_asset_ready on
success, mark_asset_failed otherwise.  If mark_asset_ready itself fails, a
best-effort mark_asset_failed follows; if that fails too the share stays
pending and only the log records it.
"""

import logging
import threading
import time

from vidfriends.core.constants import (
    AssetType, ErrorCode,
    DEFAULT_QUEUE_SIZE, DEFAULT_WORKERS, MIN_FETCH_TIMEOUT_SEC, YTDLP_TIMEOUT_SEC,
)
from vidfriends.core.asset_storage import PrefixedStorage
from vidfriends.core.error_codes import MediaError
from vidfriends.core.interfaces import AssetStorage, ShareStatusUpdater
from vidfriends.core.job_queue import BoundedJobQueue
from vidfriends.core.models import IngestJob, VideoShare
from vidfriends.core.ytdlp_provider import YTDLPProvider


def fetch_timeout_for(provider) -> float:
    """Downloads get twice the provider timeout, and never less than two minutes."""
    base = getattr(provider, 'timeout_sec', YTDLP_TIMEOUT_SEC)
    return max(2 * base, MIN_FETCH_TIMEOUT_SEC)


class AssetIngestor:
    """
    Consumes enqueued shares, drives yt-dlp in download mode, persists the
    file through asset storage and reports the outcome to the updater.
    """

    def __init__(self, provider: YTDLPProvider, storage: AssetStorage,
                 updater: ShareStatusUpdater,
                 queue_size: int = DEFAULT_QUEUE_SIZE,
                 workers: int = DEFAULT_WORKERS,
                 logger: logging.Logger | None = None):
        missing = [name for name, dep in (("provider", provider),
                                          ("storage", storage),
                                          ("updater", updater)) if dep is None]
        if missing:
            raise ValueError(f"asset ingestor missing dependencies: {', '.join(missing)}")
        if queue_size <= 0:
            queue_size = DEFAULT_QUEUE_SIZE
        if workers <= 0:
            workers = DEFAULT_WORKERS

        self.provider = provider
        self.storage = storage
        self.updater = updater
        self.logger = logger or logging.getLogger(__name__)

        self._queue: BoundedJobQueue[IngestJob] = BoundedJobQueue(queue_size)
        self._shutdown_lock = threading.Lock()
        self._shutdown_started = False
        self._stats_lock = threading.Lock()
        self._stats = {'processed': 0, 'ready': 0, 'failed': 0}
        self._in_flight: set[str] = set()

        self._workers = [
            threading.Thread(target=self._worker_loop, name=f"asset-ingestor-{i}", daemon=True)
            for i in range(workers)
        ]
        for t in self._workers:
            t.start()

    # ── Queue management ──────────────────────────────────────────────

    @property
    def closed(self) -> bool:
        return self._queue.closed

    @property
    def worker_count(self) -> int:
        return len(self._workers)

    @property
    def queue_size(self) -> int:
        return self._queue.capacity

    def pending(self) -> int:
        """Number of jobs admitted but not yet picked up by a worker."""
        return len(self._queue)

    def in_flight(self) -> list[str]:
        """Ids of the shares workers are processing right now."""
        with self._stats_lock:
            return sorted(self._in_flight)

    def stats(self) -> dict:
        with self._stats_lock:
            stats = dict(self._stats)
        stats['queued'] = self.pending()
        return stats

    def enqueue(self, share: VideoShare, timeout_sec: float | None = None,
                cancel_event: threading.Event | None = None):
        """
        Schedule asset persistence for share.  Blocks while the queue is full.
        Raises MediaError(QUEUE_CLOSED) once shutdown has begun and
        MediaError(CANCELLED) if cancel_event fires or timeout_sec elapses.
        """
        self._queue.put(IngestJob(share=share), timeout_sec=timeout_sec,
                        cancel_event=cancel_event)
        self.logger.debug("Enqueued asset ingestion for share %s", share.id)

    def shutdown(self, timeout_sec: float | None = None):
        """
        Stop admitting jobs and wait for the workers to drain the queue.
        Safe to call more than once.  Raises MediaError(CANCELLED) if the
        workers are still busy when timeout_sec elapses.
        """
        with self._shutdown_lock:
            if not self._shutdown_started:
                self._shutdown_started = True
                self._queue.close()
                self.logger.info("Asset ingestor shutting down (%d queued)", self.pending())

        deadline = None if timeout_sec is None else time.monotonic() + timeout_sec
        for t in self._workers:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            t.join(remaining)

        busy = sum(1 for t in self._workers if t.is_alive())
        if busy:
            raise MediaError(ErrorCode.CANCELLED,
                             f"shutdown deadline elapsed with {busy} worker(s) still running "
                             f"(shares: {', '.join(self.in_flight()) or '-'})")

    # ── Worker loop ───────────────────────────────────────────────────

    def _worker_loop(self):
        """Pull jobs until the queue is closed and drained."""
        while True:
            job = self._queue.get()
            if job is None:
                return
            with self._stats_lock:
                self._in_flight.add(job.share.id)
            try:
                self._process_job(job)
            except Exception as e:
                # Outcome recording itself blew up; keep the worker alive.
                self.logger.error("Worker error for share %s: %s", job.share.id, e, exc_info=True)
            finally:
                with self._stats_lock:
                    self._in_flight.discard(job.share.id)
                    self._stats['processed'] += 1

    # ── Job processing ────────────────────────────────────────────────

    def _process_job(self, job: IngestJob):
        share = job.share
        started = time.monotonic()
        prefixed = PrefixedStorage(share.id, self.storage)

        try:
            _, assets = self.provider.fetch(share.url, download=True, storage=prefixed,
                                            timeout_sec=fetch_timeout_for(self.provider))
        except MediaError as e:
            self.logger.error("Asset ingestion failed for share %s (%s): %s", share.id, share.url, e)
            self._record_failure(share.id)
            return
        except Exception as e:
            self.logger.error("Unexpected error ingesting share %s (%s): %s",
                              share.id, share.url, e, exc_info=True)
            self._record_failure(share.id)
            return

        video = next((a for a in assets if a.type == AssetType.VIDEO), None)
        if video is None:
            self.logger.error("yt-dlp did not produce a video asset for share %s (%s)",
                              share.id, share.url)
            self._record_failure(share.id)
            return

        try:
            self.updater.mark_asset_ready(share.id, video.location, video.size)
        except Exception as e:
            self.logger.error("Failed to mark asset ready for share %s: %s", share.id, e)
            self._record_failure(share.id)
            return

        with self._stats_lock:
            self._stats['ready'] += 1
        self.logger.info("Share %s asset ready at %s (%d bytes, %.1fs)",
                         share.id, video.location, video.size, time.monotonic() - started)

    def _record_failure(self, share_id: str):
        with self._stats_lock:
            self._stats['failed'] += 1
        try:
            self.updater.mark_asset_failed(share_id)
        except Exception as e:
            self.logger.error("Failed to record asset failure for share %s: %s", share_id, e)
