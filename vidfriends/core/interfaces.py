"""
Collaborator contracts for the ingestion subsystem.
Concrete implementations are injected through constructors.
"""

import subprocess
import threading
from typing import BinaryIO, Callable, Optional, Protocol, Sequence

from vidfriends.core.models import Metadata


class MetadataProvider(Protocol):
    def lookup(self, url: str, cancel_event: Optional[threading.Event] = None) -> Metadata:
        ...


class AssetStorage(Protocol):
    def save(self, name: str, stream: BinaryIO) -> str:
        """Persist the stream under name and return its location."""
        ...


class ShareStatusUpdater(Protocol):
    def mark_asset_ready(self, share_id: str, location: str, size: int) -> None:
        ...

    def mark_asset_failed(self, share_id: str) -> None:
        ...


# runner(args, timeout_sec, cancel_event) -> CompletedProcess
CommandRunner = Callable[
    [Sequence[str], float, Optional[threading.Event]],
    subprocess.CompletedProcess,
]


class ProviderFunc:
    """Adapts a plain function to the MetadataProvider contract."""

    def __init__(self, func: Callable[[str], Metadata]):
        self._func = func

    def lookup(self, url: str, cancel_event: Optional[threading.Event] = None) -> Metadata:
        return self._func(url)
