"""
Shared fixtures: an in-memory blob store and catalog asset factory.
"""

import io
import threading
import time

import pytest

from mixexport.errors import BlobNotFound
from mixexport.models import VideoAsset
from mixexport.storage.blob import BlobKind, BlobStore, BlobStream


class _FailingStream(io.BytesIO):
    """Yields the first `good_bytes` bytes, then raises on read."""

    def __init__(self, data: bytes, good_bytes: int):
        super().__init__(data[:good_bytes])
        self.good_bytes = good_bytes
        self.served = 0

    def read(self, size=-1):
        if self.served >= self.good_bytes:
            raise ConnectionResetError("connection reset by peer")
        chunk = super().read(size)
        self.served += len(chunk)
        return chunk


class MemoryBlobStore(BlobStore):
    """
    Blob store backed by a dict, with failure injection.

    - missing: keys that raise BlobNotFound
    - broken_midstream: keys that fail after a few bytes
    - truncated: keys whose stream ends early without an error
    - delays: seconds to sleep before opening a key
    """

    def __init__(self):
        self.blobs = {}
        self.missing = set()
        self.broken_midstream = set()
        self.truncated = set()
        self.delays = {}
        self.calls = []
        self._lock = threading.Lock()

    def put(self, key, data):
        self.blobs[key] = data

    def get_stream(self, key, kind=BlobKind.VIDEO):
        with self._lock:
            self.calls.append((key, kind))
        if key in self.delays:
            time.sleep(self.delays[key])
        if key in self.missing or key not in self.blobs:
            raise BlobNotFound(key)

        data = self.blobs[key]
        mime_type = kind.default_mime_type
        if key in self.broken_midstream:
            return BlobStream(_FailingStream(data, 4), len(data), mime_type, key)
        if key in self.truncated:
            return BlobStream(io.BytesIO(data[: len(data) // 2]), len(data), mime_type, key)
        return BlobStream(io.BytesIO(data), len(data), mime_type, key)


@pytest.fixture
def memory_store():
    return MemoryBlobStore()


@pytest.fixture
def make_asset():
    """Factory for catalog assets whose blobs live in the memory store."""
    def factory(video_id, title=None, duration=60.0, premium=False, thumbnail=True):
        return VideoAsset(
            id=video_id,
            title=title or f"Track {video_id}",
            description=f"Description {video_id}",
            duration_seconds=duration,
            content_key=f"video-{video_id}.mp4",
            thumbnail_key=f"thumb-{video_id}.jpg" if thumbnail else "",
            is_premium=premium,
        )
    return factory


@pytest.fixture
def stocked_store(memory_store):
    """Store holding video and thumbnail blobs for ids 1-9."""
    for video_id in range(1, 10):
        memory_store.put(f"video-{video_id}.mp4", bytes([video_id]) * (1000 + video_id))
        memory_store.put(f"thumb-{video_id}.jpg", b"\xff\xd8" + bytes([video_id]) * 64)
    return memory_store
