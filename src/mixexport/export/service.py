"""
Mix export service: the entry points the request-handling layer calls.

create_export order:
1. Validate the request (no I/O)
2. Load the caller's entitlement
3. Resolve accessible tracks (NoAccessibleVideos)
4. Reserve credits for the resolved count (MembershipRequired / InsufficientCredits)
5. Build and publish the package
6. Commit credits for the tracks actually packaged

A failure after step 4 rolls the reservation back and leaves no artifact.
"""

import dataclasses
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from ..assemble.archive import ArchiveAssembler
from ..config import Config
from ..db import Database
from ..models import ExportArtifact, ExportRequest
from ..resolve.ledger import CreditLedger
from ..resolve.resolver import TrackListResolver
from ..storage.blob import BlobStore, build_blob_store
from . import templates
from .lifecycle import DownloadStream, ExportLifecycle
from .pipeline import ExportPipeline, build_package

logger = logging.getLogger(__name__)


class MixExportService:
    """Orchestrates resolve -> reserve -> assemble -> document -> finalize -> commit."""

    def __init__(
        self,
        database: Database,
        blob_store: BlobStore,
        lifecycle: ExportLifecycle,
        config: Optional[Config] = None,
    ):
        """
        Args:
            database: Connected Database
            blob_store: Blob Stream Store backend
            lifecycle: Artifact manager
            config: Config (defaults if None)
        """
        self.config = config if config is not None else Config.defaults()
        self.db = database
        self.blob_store = blob_store
        self.lifecycle = lifecycle
        self.resolver = TrackListResolver(database)
        self.ledger = CreditLedger(database)
        self.assembler = ArchiveAssembler.from_config(
            blob_store, self.config, spool_dir=str(lifecycle.ensure_temp_dir())
        )
        self.compression_level = self.config.get("archive", "compression_level", 5)
        logger.info("MixExportService initialized")

    @classmethod
    def from_config(cls, config: Config) -> "MixExportService":
        """Wire database, storage backend and lifecycle from config."""
        database = Database(config.get("database", "path", "data/db/mixexport.sqlite"))
        database.connect()
        return cls(
            database,
            build_blob_store(config),
            ExportLifecycle.from_config(config),
            config=config,
        )

    def create_export(
        self,
        request: ExportRequest,
        user_id: int,
        cancel_event: Optional[threading.Event] = None,
        now: Optional[datetime] = None,
    ) -> ExportArtifact:
        """
        Build a mix package for a user.

        Args:
            request: Export request
            user_id: Requesting user
            cancel_event: Set by the caller to abort mid-assembly
            now: Reference time for membership checks (defaults to UTC now)

        Returns:
            ExportArtifact describing the published package

        Raises:
            ValidationError, UserNotFound: Bad request or unknown user.
            NoAccessibleVideos: Nothing requested is accessible.
            MembershipRequired, InsufficientCredits: Not entitled.
            NoTracksIncluded: Every track failed to stream.
            SinkWriteError: Archive could not be written.
            ExportCancelled: cancel_event was set.
            ReservationReleased: The credit hold was swept before commit; the
                                 artifact is disposed and nothing is charged.
        """
        request.validate()
        entitlement = self.ledger.get_entitlement(user_id)
        tracks = self.resolver.resolve(request.video_ids, entitlement, now=now)
        reservation = self.ledger.reserve(entitlement, len(tracks))

        pipeline = ExportPipeline(request=request, user_id=user_id, tracks=tracks)
        logger.info(
            f"Starting mix export '{request.name}' for user {user_id}: "
            f"{len(tracks)}/{len(request.video_ids)} tracks resolved"
        )

        try:
            artifact = self.lifecycle.finalize(
                pipeline.slug,
                lambda path: build_package(
                    pipeline,
                    self.assembler,
                    path,
                    compression_level=self.compression_level,
                    cancel_event=cancel_event,
                ),
            )
        except BaseException as e:
            logger.error(f"Mix export '{request.name}' failed for user {user_id}: {e}")
            self.ledger.rollback(reservation)
            raise

        result = pipeline.result
        try:
            self.ledger.commit(reservation, result.included_ids)
        except BaseException:
            self.ledger.rollback(reservation)
            self.lifecycle.dispose(artifact.file_name)
            raise

        logger.info(
            f"✅ Mix export ready: {artifact.file_name} "
            f"({len(result.included)} tracks, {len(result.excluded)} skipped)"
        )
        return dataclasses.replace(
            artifact,
            track_count=len(result.included),
            excluded_ids=tuple(result.excluded),
        )

    @staticmethod
    def request_from_template(
        template_id: str,
        name: str,
        video_ids: Sequence[int],
        **descriptors: Any,
    ) -> ExportRequest:
        """
        Build a request preset from a template.

        Raises:
            ValidationError: Unknown template id.
        """
        template = templates.require_template(template_id)
        return ExportRequest(
            name=name,
            video_ids=tuple(video_ids),
            options=template.options,
            bpm=descriptors.get("bpm"),
            key=descriptors.get("key"),
            genre=descriptors.get("genre"),
            notes=descriptors.get("notes"),
        )

    def create_from_template(
        self,
        template_id: str,
        name: str,
        video_ids: Sequence[int],
        user_id: int,
        **descriptors: Any,
    ) -> ExportArtifact:
        """Create an export using a template's options."""
        request = self.request_from_template(template_id, name, video_ids, **descriptors)
        return self.create_export(request, user_id)

    def list_templates(self) -> List[Dict[str, Any]]:
        return templates.list_templates()

    def open_download(self, file_name: str) -> DownloadStream:
        return self.lifecycle.open_for_download(file_name)

    def dispose(self, file_name: str) -> None:
        self.lifecycle.dispose(file_name)

    def sweep(self) -> Dict[str, int]:
        """
        Apply the retention policy.

        Returns:
            Counts of swept artifacts and released reservations.
        """
        artifact_ttl = timedelta(minutes=self.config.get("retention", "artifact_ttl_minutes", 60))
        reservation_ttl = timedelta(
            minutes=self.config.get("retention", "reservation_ttl_minutes", 120)
        )
        swept = self.lifecycle.sweep(artifact_ttl)
        released = self.ledger.release_stale(datetime.now(timezone.utc) - reservation_ttl)
        return {"artifacts_removed": len(swept), "reservations_released": released}

    def close(self) -> None:
        self.db.disconnect()
