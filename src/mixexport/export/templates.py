"""
Static mix export templates.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from ..errors import ValidationError
from ..models import ExportOptions, VideoFormat


@dataclass(frozen=True)
class MixTemplate:
    id: str
    name: str
    description: str
    include_cuesheet: bool
    include_metadata: bool
    include_artwork: bool
    format: VideoFormat

    @property
    def options(self) -> ExportOptions:
        return ExportOptions(
            include_cuesheet=self.include_cuesheet,
            include_metadata=self.include_metadata,
            include_artwork=self.include_artwork,
            video_format=self.format,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["format"] = self.format.value
        data["includeCuesheet"] = data.pop("include_cuesheet")
        data["includeMetadata"] = data.pop("include_metadata")
        data["includeArtwork"] = data.pop("include_artwork")
        return data


TEMPLATES = (
    MixTemplate(
        id="club-set",
        name="Club DJ Set",
        description="Standard club set with video files, cue sheet, and artwork thumbnails",
        include_cuesheet=True,
        include_metadata=True,
        include_artwork=True,
        format=VideoFormat.VIDEO_ONLY,
    ),
    MixTemplate(
        id="wedding-package",
        name="Wedding DJ Package",
        description="Complete package for wedding DJs with organized playlists for different parts of the event",
        include_cuesheet=True,
        include_metadata=True,
        include_artwork=True,
        format=VideoFormat.BOTH,
    ),
    MixTemplate(
        id="thumbnail-only",
        name="Thumbnails Preview Set",
        description="Lightweight package with just thumbnail images for quick review",
        include_cuesheet=False,
        include_metadata=True,
        include_artwork=True,
        format=VideoFormat.ARTWORK_ONLY,
    ),
    MixTemplate(
        id="portable",
        name="Portable DJ Set",
        description="Optimized for portable media players with smaller file sizes",
        include_cuesheet=True,
        include_metadata=True,
        include_artwork=True,
        format=VideoFormat.VIDEO_ONLY,
    ),
    MixTemplate(
        id="streaming",
        name="Live Streaming Kit",
        description="Organized for live streaming with intros, transitions, and outros",
        include_cuesheet=True,
        include_metadata=True,
        include_artwork=True,
        format=VideoFormat.VIDEO_ONLY,
    ),
)


def list_templates() -> List[Dict[str, Any]]:
    return [template.to_dict() for template in TEMPLATES]


def get_template(template_id: str) -> Optional[MixTemplate]:
    for template in TEMPLATES:
        if template.id == template_id:
            return template
    return None


def require_template(template_id: str) -> MixTemplate:
    template = get_template(template_id)
    if template is None:
        raise ValidationError(f"Unknown mix template: {template_id}")
    return template
