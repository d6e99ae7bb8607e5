"""
Blob Stream Store: byte streams for video, preview and thumbnail content.

Two interchangeable backends behind one interface, chosen once when the
service is wired:
- LocalDiskStore: <root>/videos|previews|thumbnails/<key>
- ObjectStore: S3-compatible bucket (AWS or DigitalOcean Spaces) via boto3
"""

import logging
import mimetypes
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import BlobNotFound, SourceUnavailable

logger = logging.getLogger(__name__)


class BlobKind(Enum):
    VIDEO = "video"
    PREVIEW = "preview"
    THUMBNAIL = "thumbnail"

    @property
    def folder(self) -> str:
        return {"video": "videos", "preview": "previews", "thumbnail": "thumbnails"}[self.value]

    @property
    def default_mime_type(self) -> str:
        return "image/jpeg" if self is BlobKind.THUMBNAIL else "video/mp4"


class BlobStream:
    """Readable byte stream plus the metadata the store knows about it."""

    def __init__(
        self,
        stream: BinaryIO,
        size_bytes: Optional[int],
        mime_type: str,
        file_name: str,
    ):
        """
        Args:
            stream: Binary file-like object supporting read(n)
            size_bytes: Content length if known
            mime_type: Content type
            file_name: Base name of the blob key
        """
        self.stream = stream
        self.size_bytes = size_bytes
        self.mime_type = mime_type
        self.file_name = file_name

    def read(self, size: int = -1) -> bytes:
        return self.stream.read(size)

    def close(self) -> None:
        try:
            self.stream.close()
        except Exception as e:
            logger.debug(f"Error closing blob stream {self.file_name}: {e}")

    def __enter__(self) -> "BlobStream":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"BlobStream({self.file_name}, {self.size_bytes} bytes, {self.mime_type})"


class BlobStore(ABC):
    """Source of blob byte streams."""

    @abstractmethod
    def get_stream(self, key: str, kind: BlobKind = BlobKind.VIDEO) -> BlobStream:
        """
        Open a blob for reading.

        Raises:
            BlobNotFound: The key is absent.
            SourceUnavailable: The backend failed for another reason.
        """


class LocalDiskStore(BlobStore):
    """Blobs kept on local disk under one root directory."""

    def __init__(self, root: str):
        self.root = Path(root).resolve()
        for kind in BlobKind:
            (self.root / kind.folder).mkdir(parents=True, exist_ok=True)
        logger.info(f"LocalDiskStore initialized at {self.root}")

    def path_for(self, key: str, kind: BlobKind = BlobKind.VIDEO) -> Path:
        """Resolve a key to a path inside the kind's folder."""
        folder = (self.root / kind.folder).resolve()
        path = (folder / key).resolve()
        if folder not in path.parents:
            raise BlobNotFound(key)
        return path

    def get_stream(self, key: str, kind: BlobKind = BlobKind.VIDEO) -> BlobStream:
        if not key:
            raise BlobNotFound(key)
        path = self.path_for(key, kind)
        try:
            size = path.stat().st_size
            stream = open(path, "rb")
        except FileNotFoundError:
            raise BlobNotFound(key)
        except OSError as e:
            raise SourceUnavailable(key, str(e))

        mime_type = mimetypes.guess_type(path.name)[0] or kind.default_mime_type
        return BlobStream(stream, size, mime_type, path.name)


class ObjectStore(BlobStore):
    """Blobs kept in an S3-compatible bucket."""

    def __init__(self, bucket: str, client=None):
        """
        Args:
            bucket: Bucket name
            client: boto3 S3 client (built from the environment if None)
        """
        self.bucket = bucket
        self.client = client if client is not None else boto3.client("s3")
        logger.info(f"ObjectStore initialized for bucket {bucket}")

    @classmethod
    def from_settings(
        cls,
        bucket: str,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
    ) -> "ObjectStore":
        """Build a store for AWS S3 or a custom endpoint such as Spaces."""
        client = boto3.client(
            "s3",
            endpoint_url=endpoint_url or None,
            region_name=region or None,
        )
        return cls(bucket, client)

    @staticmethod
    def object_key(key: str, kind: BlobKind) -> str:
        """Prefix the key with the kind's folder unless it already has it."""
        if PurePosixPath(key).parts[:1] == (kind.folder,):
            return key
        return f"{kind.folder}/{key}"

    def get_stream(self, key: str, kind: BlobKind = BlobKind.VIDEO) -> BlobStream:
        if not key:
            raise BlobNotFound(key)
        s3_key = self.object_key(key, kind)
        try:
            head = self.client.head_object(Bucket=self.bucket, Key=s3_key)
            response = self.client.get_object(Bucket=self.bucket, Key=s3_key)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in ("404", "NoSuchKey", "NotFound"):
                raise BlobNotFound(key)
            logger.error(f"Error getting object from S3: {e}")
            raise SourceUnavailable(key, code or str(e))
        except BotoCoreError as e:
            logger.error(f"Error getting object from S3: {e}")
            raise SourceUnavailable(key, str(e))

        return BlobStream(
            response["Body"],
            head.get("ContentLength"),
            head.get("ContentType") or kind.default_mime_type,
            PurePosixPath(key).name,
        )


def build_blob_store(config) -> BlobStore:
    """
    Select the storage backend from config["storage"].

    Args:
        config: Config instance (or dict with a "storage" section)

    Returns:
        LocalDiskStore or ObjectStore
    """
    storage = config["storage"]
    backend = storage.get("backend", "local")
    if backend == "s3":
        return ObjectStore.from_settings(
            storage.get("bucket", "thevideopool"),
            endpoint_url=storage.get("endpoint_url"),
            region=storage.get("region"),
        )
    return LocalDiskStore(storage.get("local_root", "uploads"))
