"""
Exception hierarchy for the mix export engine.

Validation and entitlement errors are raised before any stream I/O.
SourceUnavailable is recovered per track by the assembler; everything
else aborts the job.
"""

from typing import Optional


class MixExportError(Exception):
    """Base class for all export failures."""
    pass


class ValidationError(MixExportError):
    """Request rejected before any I/O (empty selection, missing name)."""
    pass


class UserNotFound(ValidationError):
    """Requesting user does not exist."""

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class EntitlementError(MixExportError):
    """Caller is not entitled to the export."""
    pass


class MembershipRequired(EntitlementError):
    """Caller has no membership plan and therefore no download credits."""

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__("Active membership required for mix exports")


class InsufficientCredits(EntitlementError):
    """
    Not enough download credits left for the resolved track count.

    `remaining` is download_limit - downloads_used. `available` further
    subtracts credits held by other exports still in progress, and is the
    number admission is checked against.
    """

    def __init__(self, required: int, remaining: int, available: Optional[int] = None):
        self.required = required
        self.remaining = remaining
        self.available = remaining if available is None else available
        message = (
            f"Not enough download credits. You need {required} credits "
            f"but have {remaining} remaining."
        )
        if self.available < remaining:
            message += f" {remaining - self.available} are held by exports in progress."
        super().__init__(message)


class ReservationReleased(EntitlementError):
    """The job's credit reservation was released before it could be charged."""

    def __init__(self, reservation_id: int):
        self.reservation_id = reservation_id
        super().__init__(
            f"Credit reservation {reservation_id} expired before the export finished"
        )


class NoAccessibleVideos(MixExportError):
    """Every requested id was unknown or not accessible to the caller."""

    def __init__(self, message: str = "No accessible videos found for mix export"):
        super().__init__(message)


class NoTracksIncluded(MixExportError):
    """Every resolved track failed to stream; nothing to package."""

    def __init__(self, excluded_ids):
        self.excluded_ids = list(excluded_ids)
        super().__init__(
            f"None of the {len(self.excluded_ids)} resolved tracks could be streamed"
        )


class SourceUnavailable(MixExportError):
    """A single blob could not be retrieved. Recovered per track."""

    def __init__(self, key: str, reason: Optional[str] = None):
        self.key = key
        self.reason = reason
        message = f"Source unavailable: {key}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class BlobNotFound(SourceUnavailable):
    """Blob key is absent from the store."""

    def __init__(self, key: str):
        super().__init__(key, "not found")


class SinkWriteError(MixExportError):
    """Writing the archive failed (disk full, closed file). Fatal."""
    pass


class ExportCancelled(MixExportError):
    """Caller aborted the export mid-assembly."""
    pass


class ArtifactNotFound(MixExportError):
    """Download or dispose of an artifact that does not exist."""

    def __init__(self, file_name: str):
        self.file_name = file_name
        super().__init__(f"Mix export file not found: {file_name}")
