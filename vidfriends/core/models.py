"""
Data models (plain dataclasses) for VidFriends media ingestion.
"""

import time
from dataclasses import dataclass, field
from typing import Optional

from vidfriends.core.constants import AssetStatus, AssetType


@dataclass(frozen=True)
class Metadata:
    title: str = ""
    description: str = ""
    thumbnail: str = ""

    def is_empty(self) -> bool:
        return not (self.title or self.description or self.thumbnail)


@dataclass(frozen=True)
class DownloadedAsset:
    location: str
    name: str
    size: int
    type: str = AssetType.VIDEO


@dataclass
class VideoShare:
    id: str                          # UUID
    url: str
    owner_id: str = ""
    title: str = ""
    description: str = ""
    thumbnail: str = ""
    created_at: Optional[str] = None
    asset_url: str = ""
    asset_status: str = AssetStatus.PENDING
    asset_size: int = 0


@dataclass(frozen=True)
class IngestJob:
    share: VideoShare
    enqueued_at: float = field(default_factory=time.monotonic)
