"""
Manifest & Documentation Generation.

Everything here is derived from the included cue entries and the request;
no independent state.
- metadata.json: aggregate fields plus one record per packaged track
- mix-details.html: human-readable view of the same data
- README.txt: package contents, conditional on the export options
"""

import html
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from ..models import CueSheetEntry, ExportOptions, VideoAsset

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
HTML_FILE = "mix-details.html"
README_FILE = "README.txt"

SUPPORT_EMAIL = "info@thevideopool.com"
SITE_NAME = "TheVideoPool.com"


@dataclass(frozen=True)
class PackageDocuments:
    """Rendered sidecar files."""

    metadata_json: str
    html: str
    readme: str


def format_duration(seconds: float) -> str:
    """m:ss for display."""
    seconds = seconds or 0
    return f"{int(seconds // 60)}:{int(seconds % 60):02d}"


def _as_number(value: float):
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def build_metadata(
    name: str,
    entries: Sequence[CueSheetEntry],
    assets: Sequence[VideoAsset],
    descriptors: Dict[str, Any],
    notes: Optional[str],
    excluded: Sequence[int],
    created_at: datetime,
) -> Dict[str, Any]:
    """
    Build the metadata.json document.

    Args:
        name: Mix name
        entries: Included cue entries, in package order
        assets: Catalog snapshots aligned with entries
        descriptors: bpm / key / genre
        notes: Free-text notes
        excluded: Ids of tracks skipped during assembly
        created_at: Generation timestamp

    Returns:
        JSON-serializable dict
    """
    total_duration = sum(asset.duration_seconds or 0 for asset in assets)
    return {
        "name": name,
        "createdAt": created_at.isoformat(),
        "totalDuration": _as_number(total_duration),
        "trackCount": len(entries),
        "bpm": descriptors.get("bpm"),
        "key": descriptors.get("key"),
        "genre": descriptors.get("genre"),
        "notes": notes,
        "excludedVideoIds": list(excluded),
        "tracks": [
            {
                "index": entry.index,
                "title": asset.title,
                "description": asset.description,
                "duration": _as_number(asset.duration_seconds),
                "fileName": entry.file_name,
                "startTime": _as_number(entry.start_time_seconds),
                "endTime": _as_number(entry.end_time_seconds),
            }
            for entry, asset in zip(entries, assets)
        ],
    }


def render_html(metadata: Dict[str, Any]) -> str:
    """Render mix-details.html from a metadata document."""
    esc = html.escape
    name = esc(metadata["name"])

    lines = [
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        '  <meta charset="utf-8">',
        f"  <title>{name} - Mix Details</title>",
        "  <style>",
        "    body { font-family: Arial, sans-serif; max-width: 800px; margin: 0 auto; padding: 20px; color: #333; }",
        "    h1 { color: #6200ea; }",
        "    .track { margin-bottom: 20px; padding: 10px; border-bottom: 1px solid #eee; }",
        "    .track-number { font-weight: bold; color: #6200ea; }",
        "    .track-title { font-size: 18px; margin: 5px 0; }",
        "    .track-details { font-size: 14px; color: #666; }",
        "    .mix-info { background: #f7f7f7; padding: 15px; border-radius: 5px; margin-bottom: 20px; }",
        "  </style>",
        "</head>",
        "<body>",
        f"  <h1>{name}</h1>",
        '  <div class="mix-info">',
        f"    <p><strong>Duration:</strong> {format_duration(metadata['totalDuration'])}</p>",
        f"    <p><strong>Tracks:</strong> {metadata['trackCount']}</p>",
    ]
    for label, field_name in (("BPM", "bpm"), ("Key", "key"), ("Genre", "genre"), ("Notes", "notes")):
        value = metadata.get(field_name)
        if value:
            lines.append(f"    <p><strong>{label}:</strong> {esc(str(value))}</p>")
    lines.append("  </div>")
    lines.append("")
    lines.append("  <h2>Tracks</h2>")

    for track in metadata["tracks"]:
        lines.extend([
            '  <div class="track">',
            f'    <span class="track-number">{track["index"]}</span>',
            f'    <h3 class="track-title">{esc(track["title"])}</h3>',
            '    <p class="track-details">',
            f'      Duration: {format_duration(track["duration"])} | '
            f'Starts at: {format_duration(track["startTime"])} | {esc(track["fileName"])}',
            "    </p>",
            f'    <p>{esc(track["description"] or "")}</p>',
            "  </div>",
        ])

    lines.extend(["</body>", "</html>"])
    return "\n".join(lines) + "\n"


def render_readme(
    name: str,
    slug: str,
    options: ExportOptions,
    year: int,
) -> str:
    """
    Render README.txt.

    Args:
        name: Mix name
        slug: Sanitized name (cue file stem)
        options: Export options deciding which sections are listed
        year: Copyright year

    Returns:
        README text
    """
    contents: List[str] = []
    if options.wants_video:
        contents.append("- Video files in /videos folder")
    if options.wants_artwork:
        contents.append("- Artwork images in /artwork folder")
    if options.include_cuesheet:
        contents.append(f"- Cue sheet file: {slug}.cue")
    if options.include_metadata:
        contents.append(f"- Metadata in JSON format: {METADATA_FILE}")
        contents.append(f"- HTML mix details: {HTML_FILE}")

    tips = ["- The videos are numbered in sequence for easy loading into your DJ software"]
    if options.include_cuesheet:
        tips.append("- The .cue file can be imported into most DJ software to automatically set cue points")
    tips.append("- Files are optimized for DJ performance with high quality video and audio")
    if options.include_metadata:
        tips.append(f"- Add your custom notes in the {METADATA_FILE} file if needed")

    lines = [
        f"# {name} - DJ Mix Package",
        "",
        f"This package was created for DJs using {SITE_NAME}.",
        "",
        "## Contents",
        "",
        *contents,
        "",
        "## Usage Tips",
        "",
        *tips,
        "",
        f"For support, contact {SUPPORT_EMAIL}",
        "",
        f"(c) {year} {SITE_NAME} - All rights reserved",
    ]
    return "\n".join(lines) + "\n"


def render_documents(
    name: str,
    slug: str,
    entries: Sequence[CueSheetEntry],
    assets: Sequence[VideoAsset],
    options: ExportOptions,
    descriptors: Dict[str, Any],
    excluded: Sequence[int] = (),
    notes: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> PackageDocuments:
    """Render metadata.json, mix-details.html and README.txt together."""
    if created_at is None:
        created_at = datetime.now(timezone.utc)
    metadata = build_metadata(name, entries, assets, descriptors, notes, excluded, created_at)
    return PackageDocuments(
        metadata_json=json.dumps(metadata, indent=2),
        html=render_html(metadata),
        readme=render_readme(name, slug, options, created_at.year),
    )
