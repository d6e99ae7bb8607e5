"""
Data model for mix exports.

Requests, catalog snapshots and entitlements are immutable; the only
mutable state of an export lives in the CueTimeline accumulator
(see mixexport.assemble.cuesheet).
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import ValidationError


_UNSAFE_CHARS = re.compile(r"[^\w\s.-]", re.ASCII)
_WHITESPACE = re.compile(r"\s+")


def sanitize_name(value: str) -> str:
    """
    Turn a free-text name into a filesystem-safe slug.

    Drops everything except ASCII word characters, whitespace, dots and
    hyphens, then collapses whitespace runs into underscores.
    """
    cleaned = _UNSAFE_CHARS.sub("", value or "")
    return _WHITESPACE.sub("_", cleaned.strip())


class VideoFormat(Enum):
    """Which media a package carries."""

    VIDEO_ONLY = "mp4"
    ARTWORK_ONLY = "jpg"
    BOTH = "both"

    @classmethod
    def parse(cls, value: Any) -> "VideoFormat":
        """Accept an enum member, its wire value or its name (VIDEO_ONLY, VideoOnly)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            folded = value.replace("_", "").upper()
            for member in cls:
                if value == member.value or folded == member.name.replace("_", ""):
                    return member
        raise ValidationError(f"Unknown video format: {value!r}")


@dataclass(frozen=True)
class ExportOptions:
    """Closed set of package options."""

    include_cuesheet: bool = True
    include_metadata: bool = True
    include_artwork: bool = True
    video_format: VideoFormat = VideoFormat.VIDEO_ONLY

    @property
    def wants_video(self) -> bool:
        return self.video_format in (VideoFormat.VIDEO_ONLY, VideoFormat.BOTH)

    @property
    def wants_artwork(self) -> bool:
        return self.include_artwork or self.video_format in (
            VideoFormat.ARTWORK_ONLY,
            VideoFormat.BOTH,
        )


@dataclass(frozen=True)
class ExportRequest:
    """One user-initiated mix export."""

    name: str
    video_ids: Tuple[int, ...]
    options: ExportOptions = field(default_factory=ExportOptions)
    bpm: Optional[float] = None
    key: Optional[str] = None
    genre: Optional[str] = None
    notes: Optional[str] = None

    @property
    def slug(self) -> str:
        return sanitize_name(self.name)

    @property
    def descriptors(self) -> Dict[str, Any]:
        return {"bpm": self.bpm, "key": self.key, "genre": self.genre}

    def validate(self) -> None:
        """
        Reject requests that cannot produce a package.

        Raises:
            ValidationError: Missing name, empty selection or non-integer ids.
        """
        if not self.name or not self.name.strip():
            raise ValidationError("Mix name is required")
        if not self.slug:
            raise ValidationError(f"Mix name has no usable characters: {self.name!r}")
        if not self.video_ids:
            raise ValidationError("No videos specified for mix export")
        for video_id in self.video_ids:
            if not isinstance(video_id, int) or isinstance(video_id, bool):
                raise ValidationError(f"Video ids must be integers, got {video_id!r}")

    @classmethod
    def from_dict(cls, body: Dict[str, Any]) -> "ExportRequest":
        """
        Build a request from a decoded request body.

        Boolean flags default to True and the format to "mp4" when absent.
        """
        videos = body.get("videos")
        if videos is None:
            videos = body.get("video_ids")
        if not isinstance(videos, (list, tuple)):
            raise ValidationError("Video IDs array is required")

        options = ExportOptions(
            include_cuesheet=body.get("includeCuesheet") is not False,
            include_metadata=body.get("includeMetadata") is not False,
            include_artwork=body.get("includeArtwork") is not False,
            video_format=VideoFormat.parse(body.get("format") or "mp4"),
        )
        return cls(
            name=body.get("name") or "",
            video_ids=tuple(videos),
            options=options,
            bpm=body.get("bpm"),
            key=body.get("key"),
            genre=body.get("genre"),
            notes=body.get("notes"),
        )


@dataclass(frozen=True)
class VideoAsset:
    """Immutable snapshot of a catalog video."""

    id: int
    title: str
    description: str
    duration_seconds: float
    content_key: str
    thumbnail_key: str
    is_premium: bool = True


@dataclass(frozen=True)
class Entitlement:
    """A user's membership and download-credit budget."""

    user_id: int
    membership_id: Optional[int]
    membership_end_date: Optional[datetime]
    download_limit: int
    downloads_used: int
    downloads_reserved: int = 0

    @property
    def downloads_remaining(self) -> int:
        return self.download_limit - self.downloads_used

    @property
    def downloads_available(self) -> int:
        """Credits not yet used nor held by an in-flight export."""
        return self.downloads_remaining - self.downloads_reserved

    def has_active_membership(self, now: datetime) -> bool:
        if self.membership_id is None or self.membership_end_date is None:
            return False
        return self.membership_end_date >= now


@dataclass(frozen=True)
class ResolvedTrack:
    """An accessible asset at its position in the export."""

    asset: VideoAsset
    sequence_index: int


ResolvedTrackList = Tuple[ResolvedTrack, ...]


@dataclass(frozen=True)
class CueSheetEntry:
    """One track's slot in the combined playback sequence."""

    index: int
    title: str
    start_time_seconds: float
    end_time_seconds: float
    file_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "title": self.title,
            "startTime": self.start_time_seconds,
            "endTime": self.end_time_seconds,
            "fileName": self.file_name,
        }


@dataclass
class AssemblyResult:
    """Outcome of streaming the resolved tracks into the archive."""

    included: List[CueSheetEntry] = field(default_factory=list)
    excluded: List[int] = field(default_factory=list)
    included_assets: List[VideoAsset] = field(default_factory=list)

    @property
    def included_ids(self) -> List[int]:
        return [asset.id for asset in self.included_assets]


@dataclass(frozen=True)
class ExportArtifact:
    """Finished package descriptor."""

    file_name: str
    download_path: str
    temp_file_path: str
    track_count: int = 0
    excluded_ids: Tuple[int, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fileName": self.file_name,
            "downloadUrl": self.download_path,
            "trackCount": self.track_count,
            "excludedVideoIds": list(self.excluded_ids),
        }
