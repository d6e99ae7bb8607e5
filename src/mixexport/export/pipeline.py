"""
Export pipeline: resolve -> assemble -> document -> finalize.

ExportPipeline carries one export's immutable inputs (request, resolved
tracks) and its single mutable accumulator (the cue timeline). Each stage
below is a plain function over it.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..assemble.archive import ArchiveAssembler, ArchiveWriter
from ..assemble.cuesheet import CueTimeline, render_cuesheet
from ..assemble.manifest import HTML_FILE, METADATA_FILE, README_FILE, render_documents
from ..errors import ExportCancelled, NoTracksIncluded
from ..models import AssemblyResult, ExportRequest, ResolvedTrackList

logger = logging.getLogger(__name__)


@dataclass
class ExportPipeline:
    """State of one export job."""

    request: ExportRequest
    user_id: int
    tracks: ResolvedTrackList
    timeline: CueTimeline = field(default_factory=CueTimeline)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    result: Optional[AssemblyResult] = None

    @property
    def slug(self) -> str:
        return self.request.slug


def assemble_stage(
    pipeline: ExportPipeline,
    assembler: ArchiveAssembler,
    sink: ArchiveWriter,
    cancel_event: Optional[threading.Event] = None,
) -> AssemblyResult:
    """
    Stream the tracks into the sink and record the outcome on the pipeline.

    Raises:
        NoTracksIncluded: Every track failed to stream.
    """
    result = assembler.assemble(
        pipeline.tracks,
        pipeline.request.options,
        sink,
        timeline=pipeline.timeline,
        cancel_event=cancel_event,
    )
    pipeline.result = result
    if not result.included:
        raise NoTracksIncluded(result.excluded)
    return result


def document_stage(pipeline: ExportPipeline, sink: ArchiveWriter) -> None:
    """Append cue sheet, metadata, HTML viewer and README for the included tracks."""
    request = pipeline.request
    options = request.options
    result = pipeline.result
    assert result is not None, "document_stage runs after assemble_stage"

    if options.include_cuesheet:
        cue_text = render_cuesheet(
            request.name,
            pipeline.timeline.entries,
            bpm=request.bpm,
            key=request.key,
            genre=request.genre,
        )
        sink.add_text(f"{pipeline.slug}.cue", cue_text)

    documents = render_documents(
        request.name,
        pipeline.slug,
        result.included,
        result.included_assets,
        options,
        request.descriptors,
        excluded=result.excluded,
        notes=request.notes,
        created_at=pipeline.created_at,
    )
    if options.include_metadata:
        sink.add_text(METADATA_FILE, documents.metadata_json)
        sink.add_text(HTML_FILE, documents.html)
    sink.add_text(README_FILE, documents.readme)


def build_package(
    pipeline: ExportPipeline,
    assembler: ArchiveAssembler,
    path: Path,
    compression_level: int = 5,
    cancel_event: Optional[threading.Event] = None,
) -> AssemblyResult:
    """
    Write the complete package for a pipeline to path.

    Args:
        pipeline: Export state with resolved tracks
        assembler: Track streamer
        path: Output file (normally the lifecycle's .part path)
        compression_level: Deflate level for sidecar files
        cancel_event: Set by the caller to abort

    Returns:
        AssemblyResult
    """
    with ArchiveWriter(str(path), compression_level=compression_level, chunk_size=assembler.chunk_size) as sink:
        result = assemble_stage(pipeline, assembler, sink, cancel_event=cancel_event)
        if cancel_event is not None and cancel_event.is_set():
            raise ExportCancelled("Export cancelled before documents were written")
        document_stage(pipeline, sink)
    logger.debug(f"Package written: {path} ({len(result.included)} tracks)")
    return result
