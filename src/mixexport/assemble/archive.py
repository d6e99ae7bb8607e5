"""
Archive Assembler: stream resolved tracks into a zip package.

- Each source is read in fixed-size chunks into a SpooledTemporaryFile
  (in memory up to spool_max_bytes, on disk beyond), then copied in chunks
  into its archive entry. No video is ever held whole in memory.
- Up to prefetch_workers tracks are fetched ahead on worker threads;
  entries are always appended in track order.
- A track whose primary stream fails is skipped and reported in
  `excluded`; a failed thumbnail only drops the artwork entry.
- Archive write failures raise SinkWriteError and abort the job.
"""

import logging
import tempfile
import threading
import time
import zipfile
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import PurePosixPath
from typing import BinaryIO, Callable, Iterable, Optional, Set

from ..errors import ExportCancelled, SinkWriteError, SourceUnavailable
from ..models import AssemblyResult, ExportOptions, ResolvedTrack, sanitize_name
from ..storage.blob import BlobKind, BlobStore
from .cuesheet import CueTimeline

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1024 * 1024
DEFAULT_SPOOL_MAX_BYTES = 8 * 1024 * 1024

# Errors zipfile and the OS raise while writing an entry
_SINK_ERRORS = (OSError, zipfile.BadZipFile, zipfile.LargeZipFile, RuntimeError, ValueError)


class ArchiveWriter:
    """Zip archive sink; every I/O failure surfaces as SinkWriteError."""

    def __init__(
        self,
        path: str,
        compression_level: int = 5,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        """
        Args:
            path: Output file path (created or truncated)
            compression_level: Deflate level 1-9 for compressed entries
            chunk_size: Copy buffer size
        """
        self.path = path
        self.chunk_size = chunk_size
        self.compression_level = compression_level
        self.names: Set[str] = set()
        try:
            self._zip = zipfile.ZipFile(
                path,
                "w",
                compression=zipfile.ZIP_DEFLATED,
                compresslevel=compression_level,
                allowZip64=True,
            )
        except _SINK_ERRORS as e:
            raise SinkWriteError(f"Cannot open archive {path}: {e}") from e

    def add_stream(
        self,
        name: str,
        source: BinaryIO,
        size: Optional[int] = None,
        compress: bool = True,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> None:
        """
        Copy a readable stream into a new entry chunk by chunk.

        Args:
            name: Entry path inside the archive
            source: Binary stream positioned at its start
            size: Byte count if known (selects zip64 headers up front)
            compress: Deflate the entry, or store it as-is
            should_stop: Polled between chunks; True raises ExportCancelled
        """
        info = zipfile.ZipInfo(name, date_time=time.localtime(time.time())[:6])
        info.compress_type = zipfile.ZIP_DEFLATED if compress else zipfile.ZIP_STORED
        if compress and hasattr(info, "compress_level"):
            info.compress_level = self.compression_level
        info.external_attr = 0o644 << 16
        if size is not None:
            info.file_size = size

        try:
            with self._zip.open(info, "w", force_zip64=size is None) as entry:
                while True:
                    if should_stop is not None and should_stop():
                        raise ExportCancelled(f"Export cancelled while writing {name}")
                    chunk = source.read(self.chunk_size)
                    if not chunk:
                        break
                    entry.write(chunk)
        except _SINK_ERRORS as e:
            raise SinkWriteError(f"Failed to write {name}: {e}") from e
        self.names.add(name)

    def add_text(self, name: str, text: str) -> None:
        try:
            self._zip.writestr(name, text.encode("utf-8"))
        except _SINK_ERRORS as e:
            raise SinkWriteError(f"Failed to write {name}: {e}") from e
        self.names.add(name)

    def close(self) -> None:
        try:
            self._zip.close()
        except _SINK_ERRORS as e:
            raise SinkWriteError(f"Failed to finalize archive {self.path}: {e}") from e

    def __enter__(self) -> "ArchiveWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
            return
        # The job already failed; the partial file is discarded by the caller.
        try:
            self._zip.close()
        except _SINK_ERRORS as e:
            logger.warning(f"Error closing failed archive {self.path}: {e}")


class StagedMedia:
    """A fully fetched blob waiting in a spool file."""

    def __init__(self, spool: BinaryIO, size: int, mime_type: str, file_name: str):
        self.spool = spool
        self.size = size
        self.mime_type = mime_type
        self.file_name = file_name

    def close(self) -> None:
        self.spool.close()


class FetchedTrack:
    """Prefetch outcome for one track."""

    def __init__(
        self,
        track: ResolvedTrack,
        primary: Optional[StagedMedia] = None,
        artwork: Optional[StagedMedia] = None,
        error: Optional[SourceUnavailable] = None,
    ):
        self.track = track
        self.primary = primary
        self.artwork = artwork
        self.error = error

    def close(self) -> None:
        for media in (self.primary, self.artwork):
            if media is not None:
                media.close()


def _extension(key: str, fallback_name: str, default: str) -> str:
    for candidate in (key, fallback_name):
        suffix = PurePosixPath(candidate or "").suffix.lstrip(".").lower()
        if suffix:
            return suffix
    return default


class ArchiveAssembler:
    """Ordered, memory-bounded streaming of tracks into an ArchiveWriter."""

    def __init__(
        self,
        blob_store: BlobStore,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        spool_max_bytes: int = DEFAULT_SPOOL_MAX_BYTES,
        prefetch_workers: int = 2,
        store_media_uncompressed: bool = True,
        spool_dir: Optional[str] = None,
    ):
        """
        Args:
            blob_store: Source of video and thumbnail streams
            chunk_size: Read/write buffer size
            spool_max_bytes: In-memory limit per staged blob before it rolls to disk
            prefetch_workers: Tracks fetched ahead of the one being written
            store_media_uncompressed: Store media entries without deflate
            spool_dir: Directory for spool files that exceed spool_max_bytes
        """
        self.blob_store = blob_store
        self.chunk_size = chunk_size
        self.spool_max_bytes = spool_max_bytes
        self.prefetch_workers = max(1, prefetch_workers)
        self.store_media_uncompressed = store_media_uncompressed
        self.spool_dir = spool_dir
        logger.info(
            f"ArchiveAssembler initialized (chunk={chunk_size}, prefetch={self.prefetch_workers})"
        )

    @classmethod
    def from_config(cls, blob_store: BlobStore, config, spool_dir: Optional[str] = None) -> "ArchiveAssembler":
        archive = config["archive"]
        return cls(
            blob_store,
            chunk_size=archive.get("chunk_size_bytes", DEFAULT_CHUNK_SIZE),
            spool_max_bytes=archive.get("spool_max_bytes", DEFAULT_SPOOL_MAX_BYTES),
            prefetch_workers=archive.get("prefetch_workers", 2),
            store_media_uncompressed=archive.get("store_media_uncompressed", True),
            spool_dir=spool_dir,
        )

    # ------------------------------------------------------------------
    # Fetching (worker threads)
    # ------------------------------------------------------------------

    def _stage(self, key: str, kind: BlobKind, stop: Callable[[], bool]) -> StagedMedia:
        """
        Read one blob into a spool file.

        Raises:
            SourceUnavailable: The blob could not be opened or read to the end.
            ExportCancelled: stop() became true mid-read.
            SinkWriteError: The local spool could not be written.
        """
        blob = self.blob_store.get_stream(key, kind)
        spool = tempfile.SpooledTemporaryFile(max_size=self.spool_max_bytes, dir=self.spool_dir)
        try:
            with blob:
                size = 0
                while True:
                    if stop():
                        raise ExportCancelled(f"Export cancelled while reading {key}")
                    try:
                        chunk = blob.read(self.chunk_size)
                    except Exception as e:
                        raise SourceUnavailable(key, f"read failed: {e}") from e
                    if not chunk:
                        break
                    try:
                        spool.write(chunk)
                    except OSError as e:
                        raise SinkWriteError(f"Cannot spool {key}: {e}") from e
                    size += len(chunk)

            if blob.size_bytes is not None and size != blob.size_bytes:
                raise SourceUnavailable(key, f"truncated at {size}/{blob.size_bytes} bytes")
            spool.seek(0)
            return StagedMedia(spool, size, blob.mime_type, blob.file_name)
        except BaseException:
            spool.close()
            raise

    def _fetch_track(self, track: ResolvedTrack, options: ExportOptions, stop: Callable[[], bool]) -> FetchedTrack:
        asset = track.asset
        if options.wants_video:
            primary_key, primary_kind = asset.content_key, BlobKind.VIDEO
        else:
            primary_key, primary_kind = asset.thumbnail_key, BlobKind.THUMBNAIL

        try:
            primary = self._stage(primary_key, primary_kind, stop)
        except SourceUnavailable as e:
            return FetchedTrack(track, error=e)

        fetched = FetchedTrack(track, primary=primary)
        if options.wants_video and options.wants_artwork:
            try:
                fetched.artwork = self._stage(asset.thumbnail_key, BlobKind.THUMBNAIL, stop)
            except SourceUnavailable as e:
                logger.warning(f"Thumbnail unavailable for video {asset.id}, skipping artwork: {e}")
            except BaseException:
                fetched.close()
                raise
        return fetched

    # ------------------------------------------------------------------
    # Assembly (calling thread)
    # ------------------------------------------------------------------

    def assemble(
        self,
        tracks: Iterable[ResolvedTrack],
        options: ExportOptions,
        sink: ArchiveWriter,
        timeline: Optional[CueTimeline] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> AssemblyResult:
        """
        Stream every track into the sink in order.

        Args:
            tracks: Resolved tracks in package order
            options: Export options (format, artwork)
            sink: Open ArchiveWriter
            timeline: Cue accumulator (a fresh one if None)
            cancel_event: Set by the caller to abort

        Returns:
            AssemblyResult with included cue entries and excluded video ids

        Raises:
            SinkWriteError: Archive write failed.
            ExportCancelled: cancel_event was set.
        """
        if timeline is None:
            timeline = CueTimeline()
        result = AssemblyResult()
        abort = threading.Event()

        def stop() -> bool:
            return abort.is_set() or (cancel_event is not None and cancel_event.is_set())

        remaining = iter(tracks)
        pending = deque()
        pool = ThreadPoolExecutor(max_workers=self.prefetch_workers, thread_name_prefix="mix-prefetch")

        def submit_next() -> None:
            track = next(remaining, None)
            if track is not None:
                pending.append(pool.submit(self._fetch_track, track, options, stop))

        artwork_names: Set[str] = set()
        try:
            for _ in range(self.prefetch_workers):
                submit_next()

            while pending:
                fetched = pending.popleft().result()
                submit_next()
                try:
                    if stop():
                        raise ExportCancelled("Export cancelled")
                    self._append(fetched, options, sink, timeline, result, artwork_names, stop)
                finally:
                    fetched.close()
        except BaseException:
            abort.set()
            raise
        finally:
            for future in pending:
                future.cancel()
            pool.shutdown(wait=True)
            for future in pending:
                self._discard(future)

        logger.info(
            f"✅ Assembled {len(result.included)} tracks "
            f"({len(result.excluded)} skipped, {timeline.total_duration:.1f}s total)"
        )
        return result

    @staticmethod
    def _discard(future: Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        future.result().close()

    def _append(
        self,
        fetched: FetchedTrack,
        options: ExportOptions,
        sink: ArchiveWriter,
        timeline: CueTimeline,
        result: AssemblyResult,
        artwork_names: Set[str],
        stop: Callable[[], bool],
    ) -> None:
        asset = fetched.track.asset
        if fetched.primary is None:
            logger.warning(f"Skipping video {asset.id} ({asset.title}): {fetched.error}")
            result.excluded.append(asset.id)
            return

        title_slug = sanitize_name(asset.title) or f"video_{asset.id}"
        index = timeline.next_index
        compress = not self.store_media_uncompressed

        file_name = None
        artwork = fetched.artwork
        if options.wants_video:
            ext = _extension(asset.content_key, fetched.primary.file_name, "mp4")
            file_name = f"{index:02d}_{title_slug}.{ext}"
            sink.add_stream(
                f"videos/{file_name}",
                fetched.primary.spool,
                size=fetched.primary.size,
                compress=compress,
                should_stop=stop,
            )
        else:
            artwork = fetched.primary

        if artwork is not None:
            ext = _extension(asset.thumbnail_key, artwork.file_name, "jpg")
            art_name = f"{title_slug}.{ext}"
            if art_name in artwork_names:
                art_name = f"{title_slug}_{index:02d}.{ext}"
            artwork_names.add(art_name)
            sink.add_stream(
                f"artwork/{art_name}",
                artwork.spool,
                size=artwork.size,
                compress=compress,
                should_stop=stop,
            )
            if file_name is None:
                file_name = art_name

        entry = timeline.add(asset.title, asset.duration_seconds, file_name)
        result.included.append(entry)
        result.included_assets.append(asset)
        logger.debug(f"Added track {entry.index:02d}: {asset.title} @ {entry.start_time_seconds:.2f}s")
