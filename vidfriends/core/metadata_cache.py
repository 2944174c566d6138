"""
Time-bound in-memory cache in front of any metadata provider.

Concurrent misses on the same URL are not deduplicated: each caller queries
the wrapped provider and the last write wins.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

from vidfriends.core.constants import DEFAULT_CACHE_TTL_SEC
from vidfriends.core.error_codes import provider_unavailable
from vidfriends.core.interfaces import MetadataProvider
from vidfriends.core.models import Metadata

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many concurrent readers or one exclusive writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False

    def acquire_read(self):
        with self._cond:
            while self._writing:
                self._cond.wait()
            self._readers += 1

    def release_read(self):
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self):
        with self._cond:
            while self._writing or self._readers:
                self._cond.wait()
            self._writing = True

    def release_write(self):
        with self._cond:
            self._writing = False
            self._cond.notify_all()


@dataclass(frozen=True)
class CacheEntry:
    metadata: Metadata
    expires_at: float


class CachingProvider:
    """Wraps another provider with a TTL-based in-memory cache."""

    def __init__(self, base: Optional[MetadataProvider], ttl_sec: float,
                 clock=time.monotonic):
        if ttl_sec <= 0:
            ttl_sec = DEFAULT_CACHE_TTL_SEC
        self.base = base
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._lock = ReadWriteLock()
        self._items: dict[str, CacheEntry] = {}

    def lookup(self, url: str, cancel_event: Optional[threading.Event] = None) -> Metadata:
        """
        Return cached metadata when still fresh, otherwise delegate to the
        wrapped provider and store the result.
        """
        if self.base is None:
            raise provider_unavailable()

        now = self._clock()

        self._lock.acquire_read()
        try:
            entry = self._items.get(url)
        finally:
            self._lock.release_read()

        if entry is not None and now < entry.expires_at:
            return entry.metadata

        metadata = self.base.lookup(url, cancel_event=cancel_event)

        self._lock.acquire_write()
        try:
            self._items[url] = CacheEntry(metadata=metadata, expires_at=now + self.ttl_sec)
        finally:
            self._lock.release_write()

        logger.debug("Cached metadata for %s (ttl=%.0fs)", url, self.ttl_sec)
        return metadata

    def invalidate(self, url: str):
        self._lock.acquire_write()
        try:
            self._items.pop(url, None)
        finally:
            self._lock.release_write()

    def clear(self):
        self._lock.acquire_write()
        try:
            self._items.clear()
        finally:
            self._lock.release_write()

    def __len__(self) -> int:
        self._lock.acquire_read()
        try:
            return len(self._items)
        finally:
            self._lock.release_read()
