"""
Cue Sheet Generation: frame-accurate DJ cue files.

Timing:
- Track i starts at the sum of the durations of tracks 0..i-1
- INDEX positions are mm:ss:ff at 75 frames per second
"""

import logging
import math
from typing import Iterable, List, Optional

from ..models import CueSheetEntry, VideoAsset

logger = logging.getLogger(__name__)

FRAMES_PER_SECOND = 75


class CueTimeline:
    """Running playback clock shared by the assembler and the cue sheet."""

    def __init__(self):
        self.current_time = 0.0
        self.entries: List[CueSheetEntry] = []

    @property
    def next_index(self) -> int:
        """1-based index the next included track will get."""
        return len(self.entries) + 1

    @property
    def total_duration(self) -> float:
        return self.current_time

    def add(self, title: str, duration_seconds: float, file_name: str) -> CueSheetEntry:
        """
        Place a track at the current time and advance the clock.

        Args:
            title: Track title
            duration_seconds: Track duration (negative or missing counts as 0)
            file_name: Entry name inside the package

        Returns:
            The new CueSheetEntry
        """
        duration = max(duration_seconds or 0.0, 0.0)
        entry = CueSheetEntry(
            index=self.next_index,
            title=title,
            start_time_seconds=self.current_time,
            end_time_seconds=self.current_time + duration,
            file_name=file_name,
        )
        self.entries.append(entry)
        self.current_time += duration
        return entry


def format_cue_time(seconds: float) -> str:
    """
    Convert seconds to cue-sheet mm:ss:ff.

    >>> format_cue_time(75.5)
    '01:15:37'
    """
    minutes = math.floor(seconds / 60)
    whole_seconds = math.floor(seconds % 60)
    frames = math.floor((seconds % 1) * FRAMES_PER_SECOND)
    return f"{minutes:02d}:{whole_seconds:02d}:{frames:02d}"


def _format_number(value) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _quote(text: str) -> str:
    return (text or "").replace('"', "'").replace("\n", " ")


def render_cuesheet(
    name: str,
    entries: Iterable[CueSheetEntry],
    bpm: Optional[float] = None,
    key: Optional[str] = None,
    genre: Optional[str] = None,
) -> str:
    """
    Render a cue sheet for the given entries.

    Output depends only on the arguments, so the same track list always
    yields the same bytes.

    Args:
        name: Mix name (TITLE and FILE)
        entries: Ordered cue entries
        bpm: Optional BPM comment
        key: Optional key comment
        genre: Optional GENRE line

    Returns:
        Cue sheet text
    """
    lines = [f'TITLE "{_quote(name)}"']
    if genre:
        lines.append(f'GENRE "{_quote(genre)}"')
    if bpm:
        lines.append(f'COMMENT "BPM: {_format_number(bpm)}"')
    if key:
        lines.append(f'COMMENT "Key: {_quote(key)}"')
    lines.append(f'FILE "{_quote(name)}.mp4" MP4')

    for entry in entries:
        lines.append(f"  TRACK {entry.index:02d} AUDIO")
        lines.append(f'    TITLE "{_quote(entry.title)}"')
        lines.append(f"    INDEX 01 {format_cue_time(entry.start_time_seconds)}")

    return "\n".join(lines) + "\n"


def cuesheet_for_assets(
    name: str,
    assets: Iterable[VideoAsset],
    bpm: Optional[float] = None,
    key: Optional[str] = None,
    genre: Optional[str] = None,
) -> str:
    """
    Build a cue sheet straight from an ordered asset list.

    File names are left empty; the cue text does not use them.
    """
    timeline = CueTimeline()
    for asset in assets:
        timeline.add(asset.title, asset.duration_seconds, "")
    return render_cuesheet(name, timeline.entries, bpm=bpm, key=key, genre=genre)
