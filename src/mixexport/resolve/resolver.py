"""
Track List Resolver: requested video ids -> ordered, accessible track list.

- Unknown ids are dropped silently
- Premium videos are dropped when the caller has no active membership
- Survivors keep request order and get a dense 0-based sequence index
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from ..errors import NoAccessibleVideos
from ..models import Entitlement, ResolvedTrack, ResolvedTrackList, VideoAsset

logger = logging.getLogger(__name__)


def resolve(
    requested_ids: Iterable[int],
    entitlement: Entitlement,
    catalog: Dict[int, VideoAsset],
    now: Optional[datetime] = None,
) -> ResolvedTrackList:
    """
    Resolve requested ids against a catalog snapshot.

    Duplicate ids stay in the list: each occurrence is its own track.

    Args:
        requested_ids: Ordered ids as the user picked them
        entitlement: Caller's membership state
        catalog: Snapshot of the catalog rows for (at least) the requested ids
        now: Reference time for membership expiry (defaults to UTC now)

    Returns:
        Tuple of ResolvedTrack in request order

    Raises:
        NoAccessibleVideos: If nothing survives filtering.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    premium_allowed = entitlement.has_active_membership(now)
    tracks = []
    unknown = 0
    locked = 0

    for video_id in requested_ids:
        asset = catalog.get(video_id)
        if asset is None:
            unknown += 1
            continue
        if asset.is_premium and not premium_allowed:
            locked += 1
            continue
        tracks.append(ResolvedTrack(asset=asset, sequence_index=len(tracks)))

    if unknown or locked:
        logger.info(
            f"Resolver dropped {unknown} unknown and {locked} premium ids "
            f"for user {entitlement.user_id}"
        )

    if not tracks:
        raise NoAccessibleVideos()

    logger.debug(f"Resolved {len(tracks)} tracks for user {entitlement.user_id}")
    return tuple(tracks)


class TrackListResolver:
    """Resolver bound to a database catalog."""

    def __init__(self, database):
        """
        Args:
            database: Database with get_videos(ids)
        """
        self.db = database

    def resolve(
        self,
        requested_ids: Iterable[int],
        entitlement: Entitlement,
        now: Optional[datetime] = None,
    ) -> ResolvedTrackList:
        requested_ids = list(requested_ids)
        catalog = self.db.get_videos(requested_ids)
        return resolve(requested_ids, entitlement, catalog, now=now)
