"""
Entitlement & credit accounting.

The only writer of a user's credit counters. A job reserves credits for
its resolved track count before any stream I/O, then either commits the
number of tracks actually packaged or rolls the reservation back.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from ..errors import InsufficientCredits, MembershipRequired, ReservationReleased, UserNotFound
from ..models import Entitlement

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reservation:
    """Credits held for one in-flight export."""

    reservation_id: int
    user_id: int
    credits: int


class CreditLedger:
    """Reserve/commit/rollback over the database credit counters."""

    def __init__(self, database):
        """
        Args:
            database: Database instance
        """
        self.db = database

    def get_entitlement(self, user_id: int) -> Entitlement:
        entitlement = self.db.get_entitlement(user_id)
        if entitlement is None:
            raise UserNotFound(user_id)
        return entitlement

    def reserve(self, entitlement: Entitlement, track_count: int) -> Reservation:
        """
        Hold track_count credits for the caller.

        Args:
            entitlement: Caller's entitlement (only user_id and membership are trusted;
                         the counters are re-checked atomically in the database)
            track_count: Resolved (post-filter) track count

        Returns:
            Reservation

        Raises:
            MembershipRequired: The caller has no membership plan.
            InsufficientCredits: Not enough credits left.
        """
        if track_count <= 0:
            raise ValueError(f"track_count must be positive, got {track_count}")
        if entitlement.membership_id is None:
            raise MembershipRequired(entitlement.user_id)

        reservation_id = self.db.reserve_credits(entitlement.user_id, track_count)
        if reservation_id is None:
            current = self.get_entitlement(entitlement.user_id)
            remaining = max(current.downloads_remaining, 0)
            available = max(current.downloads_available, 0)
            logger.warning(
                f"User {entitlement.user_id} needs {track_count} credits, "
                f"{available} available ({remaining} remaining)"
            )
            raise InsufficientCredits(required=track_count, remaining=remaining, available=available)

        logger.info(
            f"Reserved {track_count} credits for user {entitlement.user_id} "
            f"(reservation {reservation_id})"
        )
        return Reservation(reservation_id, entitlement.user_id, track_count)

    def commit(self, reservation: Reservation, included_video_ids: Sequence[int]) -> None:
        """
        Charge one credit per packaged track and record download history.

        Raises:
            ValueError: More tracks than credits reserved.
            InsufficientCredits: The plan limit shrank below the charge meanwhile.
            ReservationReleased: The reservation was released or swept before commit.
        """
        outcome = self.db.commit_reservation(reservation.reservation_id, list(included_video_ids))
        if outcome == self.db.NOT_PENDING:
            logger.warning(f"Reservation {reservation.reservation_id} already committed; commit ignored")
            return
        if outcome == self.db.RELEASED:
            logger.error(
                f"Reservation {reservation.reservation_id} for user {reservation.user_id} "
                f"was released before commit"
            )
            raise ReservationReleased(reservation.reservation_id)
        if outcome == self.db.OVER_LIMIT:
            current = self.get_entitlement(reservation.user_id)
            raise InsufficientCredits(
                required=len(included_video_ids), remaining=max(current.downloads_remaining, 0)
            )
        logger.info(
            f"Charged {len(included_video_ids)}/{reservation.credits} credits "
            f"for user {reservation.user_id}"
        )

    def rollback(self, reservation: Reservation) -> None:
        """Release a reservation without charging. Safe to call twice."""
        if self.db.release_reservation(reservation.reservation_id):
            logger.info(
                f"Released {reservation.credits} reserved credits for user {reservation.user_id}"
            )
        else:
            logger.debug(f"Reservation {reservation.reservation_id} already settled")

    def release_stale(self, older_than: datetime) -> int:
        """Release reservations abandoned by jobs that never settled."""
        return self.db.release_stale_reservations(older_than)
