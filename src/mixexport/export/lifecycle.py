"""
Export Lifecycle Manager: naming, finalizing, serving and deleting artifacts.

- Artifacts are built under a ".part" name and renamed only on success,
  so a failed job never leaves a file callers can download
- Retention: optional delete-after-download plus a TTL sweep for
  artifacts nobody fetched
"""

import logging
import os
import time
import uuid
from datetime import timedelta
from pathlib import Path
from typing import BinaryIO, Callable, List, Optional

from ..errors import ArtifactNotFound
from ..models import ExportArtifact

logger = logging.getLogger(__name__)

PART_SUFFIX = ".part"
ZIP_MIME_TYPE = "application/zip"


class DownloadStream:
    """Readable artifact with download metadata."""

    def __init__(
        self,
        stream: BinaryIO,
        file_name: str,
        size_bytes: int,
        on_close: Optional[Callable[[], None]] = None,
    ):
        self.stream = stream
        self.file_name = file_name
        self.size_bytes = size_bytes
        self.mime_type = ZIP_MIME_TYPE
        self._on_close = on_close
        self._closed = False

    @property
    def headers(self) -> dict:
        """HTTP headers for serving this artifact."""
        return {
            "Content-Type": self.mime_type,
            "Content-Disposition": f'attachment; filename="{self.file_name}"',
            "Content-Length": str(self.size_bytes),
        }

    def read(self, size: int = -1) -> bytes:
        return self.stream.read(size)

    def iter_chunks(self, chunk_size: int = 1024 * 1024):
        while True:
            chunk = self.stream.read(chunk_size)
            if not chunk:
                break
            yield chunk

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.stream.close()
        if self._on_close is not None:
            self._on_close()

    def __enter__(self) -> "DownloadStream":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class ExportLifecycle:
    """Owns the scoped temp directory holding finished packages."""

    def __init__(
        self,
        temp_dir: str,
        download_path_prefix: str = "/api/mix-exports",
        delete_after_download: bool = True,
    ):
        """
        Args:
            temp_dir: Directory for artifacts (created on demand)
            download_path_prefix: URL prefix exposed in ExportArtifact.download_path
            delete_after_download: Dispose an artifact once its download stream closes
        """
        self.temp_dir = Path(temp_dir)
        self.download_path_prefix = download_path_prefix.rstrip("/")
        self.delete_after_download = delete_after_download

    @classmethod
    def from_config(cls, config) -> "ExportLifecycle":
        return cls(
            config.get("export", "temp_dir", "temp/mixes"),
            download_path_prefix=config.get("export", "download_path_prefix", "/api/mix-exports"),
            delete_after_download=config.get("retention", "delete_after_download", True),
        )

    def ensure_temp_dir(self) -> Path:
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        return self.temp_dir

    @staticmethod
    def new_file_name(slug: str) -> str:
        """Collision-free artifact name: mix-<slug>-<uuid4>.zip"""
        return f"mix-{slug}-{uuid.uuid4()}.zip"

    def _path_for(self, file_name: str) -> Path:
        """Map a caller-supplied name to a path, refusing anything outside temp_dir."""
        if (
            not file_name
            or file_name != os.path.basename(file_name)
            or file_name in (".", "..")
            or file_name.endswith(PART_SUFFIX)
        ):
            raise ArtifactNotFound(file_name)
        return self.temp_dir / file_name

    def finalize(self, slug: str, build_fn: Callable[[Path], object]) -> ExportArtifact:
        """
        Build an artifact and publish it atomically.

        Args:
            slug: Sanitized mix name
            build_fn: Writes the package to the given path; its return value
                      is ignored

        Returns:
            ExportArtifact for the published file

        Raises:
            Whatever build_fn raises; the partial file is removed first.
        """
        self.ensure_temp_dir()
        file_name = self.new_file_name(slug)
        final_path = self.temp_dir / file_name
        part_path = self.temp_dir / (file_name + PART_SUFFIX)

        try:
            build_fn(part_path)
            os.replace(part_path, final_path)
        except BaseException:
            self._remove(part_path)
            raise

        logger.info(f"✅ Export finalized: {final_path}")
        return ExportArtifact(
            file_name=file_name,
            download_path=f"{self.download_path_prefix}/{file_name}",
            temp_file_path=str(final_path),
        )

    def open_for_download(self, file_name: str) -> DownloadStream:
        """
        Open a finished artifact for streaming to the client.

        Raises:
            ArtifactNotFound: Unknown, disposed or unsafe file name.
        """
        path = self._path_for(file_name)
        try:
            size = path.stat().st_size
            stream = open(path, "rb")
        except FileNotFoundError:
            raise ArtifactNotFound(file_name)

        on_close = None
        if self.delete_after_download:
            on_close = lambda: self.dispose(file_name)  # noqa: E731
        return DownloadStream(stream, file_name, size, on_close=on_close)

    def dispose(self, file_name: str) -> bool:
        """
        Delete an artifact. Missing files are not an error.

        Returns:
            True if a file was removed.
        """
        try:
            path = self._path_for(file_name)
        except ArtifactNotFound:
            logger.debug(f"Refusing to dispose unsafe name: {file_name!r}")
            return False
        removed = self._remove(path)
        if removed:
            logger.info(f"Disposed export: {file_name}")
        return removed

    def exists(self, file_name: str) -> bool:
        try:
            return self._path_for(file_name).exists()
        except ArtifactNotFound:
            return False

    def sweep(self, max_age: timedelta) -> List[str]:
        """
        Delete artifacts and stale partial files older than max_age.

        Returns:
            Names of the removed files.
        """
        if not self.temp_dir.exists():
            return []
        cutoff = time.time() - max_age.total_seconds()
        removed = []
        for path in self.temp_dir.iterdir():
            if not path.is_file():
                continue
            if not (path.name.endswith(".zip") or path.name.endswith(PART_SUFFIX)):
                continue
            try:
                if path.stat().st_mtime >= cutoff:
                    continue
            except FileNotFoundError:
                continue
            if self._remove(path):
                removed.append(path.name)
        if removed:
            logger.info(f"Swept {len(removed)} expired exports from {self.temp_dir}")
        return removed

    @staticmethod
    def _remove(path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to remove {path}: {e}")
            return False
