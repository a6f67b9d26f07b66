#!/usr/bin/env python3
"""
Type definitions for gFrame
Provides the photo reference model plus TypedDicts for Drive payloads and settings
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import TypedDict, List, Optional, Dict, Any, Mapping


# ============= Drive Payload Types =============
class DriveFile(TypedDict, total=False):
    """One entry of a Drive files.list response"""
    id: str
    name: str
    mimeType: str
    createdTime: str
    modifiedTime: str
    imageMediaMetadata: Dict[str, Any]


class DriveFileList(TypedDict, total=False):
    """Drive files.list response page"""
    nextPageToken: str
    files: List[DriveFile]


# ============= Settings Types =============
class Settings(TypedDict, total=False):
    """Raw settings.json structure"""
    folderId: str
    updateInterval: int
    refreshInterval: int
    transitionSpeed: int
    shuffle: bool
    recursiveSearch: bool
    mode: str
    opacity: float
    showPhotoInfo: bool
    maxWidth: str
    maxHeight: str
    retryBackoff: int
    startupDelay: int
    tokenPath: str
    credentialsPath: str
    backgroundColor: List[int]
    fullscreen: bool
    logLevel: str
    logFile: str


def parse_drive_time(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp as returned by Drive, None when absent or malformed"""
    if not value:
        return None
    try:
        if value.endswith('Z'):
            value = value[:-1] + '+00:00'
        return datetime.fromisoformat(value)
    except ValueError:
        return None


# ============= Photo Model =============
@dataclass(frozen=True)
class ImageRef:
    """A photo known to the slideshow. Identity is the provider id."""
    id: str
    display_name: str = field(default="", compare=False)
    created_at: Optional[datetime] = field(default=None, compare=False)
    modified_at: Optional[datetime] = field(default=None, compare=False)
    native_metadata: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_drive_file(cls, item: DriveFile) -> "ImageRef":
        metadata = {}
        if 'mimeType' in item:
            metadata['mimeType'] = item['mimeType']
        if 'imageMediaMetadata' in item:
            metadata['imageMediaMetadata'] = item['imageMediaMetadata']
        return cls(
            id=item['id'],
            display_name=item.get('name', ''),
            created_at=parse_drive_time(item.get('createdTime')),
            modified_at=parse_drive_time(item.get('modifiedTime')),
            native_metadata=metadata,
        )


@dataclass(frozen=True)
class DisplayRequest:
    """One advance: which photo to show and at what size"""
    image_ref: ImageRef
    target_width: int
    target_height: int
    request_id: int = 0

    def __post_init__(self):
        if self.target_width <= 0 or self.target_height <= 0:
            raise ValueError(f"Invalid target size {self.target_width}x{self.target_height}")


# ============= Crossfade Types =============
@dataclass
class SlotEntry:
    current_url: Optional[str] = None
    pending_url: Optional[str] = None


@dataclass
class SlotState:
    """Which slot is visible and what each slot holds or is loading"""
    active_slot: int = 0
    slots: List[SlotEntry] = field(default_factory=lambda: [SlotEntry(), SlotEntry()])
