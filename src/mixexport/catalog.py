"""
Catalog import: register media files from a directory as catalog videos.

Used to seed local development catalogs for LocalDiskStore. Durations are
read from the container headers with mutagen; nothing is decoded.
"""

import logging
from pathlib import Path
from typing import List, Optional

import mutagen

logger = logging.getLogger(__name__)

# Supported video containers
VIDEO_FORMATS = {".mp4", ".m4v", ".mov"}
IMAGE_FORMATS = {".jpg", ".jpeg", ".png", ".webp"}


def probe_duration(file_path: str) -> float:
    """
    Get media duration in seconds.

    Args:
        file_path: Path to media file.

    Returns:
        Duration in seconds, or 0 if unable to determine.
    """
    try:
        media = mutagen.File(file_path)
    except Exception as e:
        logger.warning(f"Could not read {file_path}: {e}")
        return 0.0
    if media is None or getattr(media, "info", None) is None:
        logger.warning(f"Unrecognized media format: {file_path}")
        return 0.0
    return float(getattr(media.info, "length", 0.0) or 0.0)


def _title_from_stem(stem: str) -> str:
    return stem.replace("_", " ").replace("-", " - ").strip()


def _find_thumbnail(thumbnails_dir: Optional[Path], stem: str) -> str:
    if thumbnails_dir is None or not thumbnails_dir.is_dir():
        return ""
    for ext in sorted(IMAGE_FORMATS):
        candidate = thumbnails_dir / f"{stem}{ext}"
        if candidate.exists():
            return candidate.name
    return ""


def import_directory(
    database,
    videos_dir: str,
    thumbnails_dir: Optional[str] = None,
    premium: bool = True,
) -> List[int]:
    """
    Register every video file in videos_dir that is not yet in the catalog.

    Content keys are file names relative to videos_dir, which is what
    LocalDiskStore expects when videos_dir is <root>/videos.

    Args:
        database: Connected Database
        videos_dir: Directory of video files
        thumbnails_dir: Directory of thumbnails matched by file stem
        premium: Flag new videos as premium

    Returns:
        Ids of newly added videos.
    """
    videos_path = Path(videos_dir)
    thumbs_path = Path(thumbnails_dir) if thumbnails_dir else None
    added = []

    for path in sorted(videos_path.iterdir()):
        if not path.is_file() or path.suffix.lower() not in VIDEO_FORMATS:
            continue
        if database.get_video_by_key(path.name) is not None:
            logger.debug(f"Already in catalog: {path.name}")
            continue

        video_id = database.add_video(
            title=_title_from_stem(path.stem),
            content_key=path.name,
            duration_seconds=probe_duration(str(path)),
            thumbnail_key=_find_thumbnail(thumbs_path, path.stem),
            is_premium=premium,
        )
        added.append(video_id)

    logger.info(f"✅ Imported {len(added)} videos from {videos_path}")
    return added
