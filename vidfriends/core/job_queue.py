"""
Bounded FIFO job queue shared by the ingestion workers.

Producers block while the queue is full until room frees up, their own
cancel event or timeout fires, or the queue is closed.  Consumers block until
a job arrives; once closed, consumers drain what is left and then stop.
"""

import logging
import threading
import time
from collections import deque
from typing import Generic, Optional, TypeVar

from vidfriends.core.constants import ErrorCode, DEFAULT_QUEUE_SIZE, QUEUE_POLL_INTERVAL_SEC
from vidfriends.core.error_codes import MediaError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BoundedJobQueue(Generic[T]):

    def __init__(self, capacity: int = DEFAULT_QUEUE_SIZE):
        if capacity <= 0:
            capacity = DEFAULT_QUEUE_SIZE
        self.capacity = capacity
        self._items: deque[T] = deque()
        self._cond = threading.Condition()
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def put(self, item: T, timeout_sec: float | None = None,
            cancel_event: Optional[threading.Event] = None):
        """
        Append item, waiting for capacity.
        Raises MediaError(QUEUE_CLOSED) if the queue is (or becomes) closed,
        MediaError(CANCELLED) if cancel_event fires or timeout_sec elapses.
        """
        deadline = None if timeout_sec is None else time.monotonic() + timeout_sec

        with self._cond:
            while True:
                if self._closed:
                    raise MediaError(ErrorCode.QUEUE_CLOSED, "asset ingestor closed")
                if cancel_event is not None and cancel_event.is_set():
                    raise MediaError(ErrorCode.CANCELLED, "enqueue cancelled by caller")
                if len(self._items) < self.capacity:
                    self._items.append(item)
                    self._cond.notify_all()
                    return

                wait = QUEUE_POLL_INTERVAL_SEC if cancel_event is not None else None
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise MediaError(ErrorCode.CANCELLED,
                                         "timed out waiting for ingestion queue capacity")
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def get(self) -> Optional[T]:
        """Return the next item, or None once the queue is closed and drained."""
        with self._cond:
            while not self._items:
                if self._closed:
                    return None
                self._cond.wait()
            item = self._items.popleft()
            self._cond.notify_all()
            return item

    def close(self) -> bool:
        """Stop admitting items. Returns False if already closed."""
        with self._cond:
            if self._closed:
                return False
            self._closed = True
            self._cond.notify_all()
            return True
