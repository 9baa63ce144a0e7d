from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional


class AssetType(str, Enum):
    PHOTO = "photo"
    LIVE = "live"     # still image + short video sharing a file stem
    VIDEO = "video"


class ChunkKind(str, Enum):
    THUMBNAILS = "thumbnails"
    ORIGINALS = "originals"
    VIDEOS = "videos"


@dataclass
class ScannedAsset:
    """One logical asset found in the source tree, before conversion."""
    type: AssetType
    date: datetime
    image_path: Optional[Path] = None
    video_path: Optional[Path] = None

    # Stable identity of the source files, filled in by the scanner
    fingerprint: str = ""

    @property
    def label(self) -> str:
        path = self.image_path or self.video_path
        return str(path) if path else "?"


@dataclass
class ChunkEntry:
    """
    A converted asset referencing files on disk (not in-memory buffers),
    so large collections can be chunked without holding everything in RAM.
    """
    id: int
    type: AssetType
    date: str                           # ISO-8601
    thumbnail_path: Path
    asset_path: Optional[Path] = None   # None for videos
    video_path: Optional[Path] = None   # None for plain photos

    def payload_size(self) -> int:
        """Bytes counted toward the chunk budget: originals + videos."""
        size = 0
        if self.asset_path:
            size += self.asset_path.stat().st_size
        if self.video_path:
            size += self.video_path.stat().st_size
        return size


@dataclass
class Asset:
    """Viewer-side asset; date and type are refined once its thumbnail chunk is read."""
    id: int
    date: str
    type: AssetType = AssetType.PHOTO


@dataclass
class AssetGroup:
    key: str                            # "YYYY-MM"
    label: str                          # "March 2024"
    assets: List[Asset] = field(default_factory=list)
