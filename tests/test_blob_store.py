"""
Unit tests for the Blob Stream Store backends.
"""

import io
import pytest
from unittest.mock import MagicMock, Mock, patch

from botocore.exceptions import ClientError, EndpointConnectionError

from mixexport.config import Config
from mixexport.errors import BlobNotFound, SourceUnavailable
from mixexport.storage.blob import (
    BlobKind,
    LocalDiskStore,
    ObjectStore,
    build_blob_store,
)


def client_error(code, operation="HeadObject"):
    return ClientError({"Error": {"Code": code, "Message": "boom"}}, operation)


class TestLocalDiskStore:
    """Test the filesystem backend."""

    @pytest.fixture
    def store(self, tmp_path):
        store = LocalDiskStore(str(tmp_path))
        (tmp_path / "videos" / "clip.mp4").write_bytes(b"\x00" * 2048)
        (tmp_path / "thumbnails" / "clip.jpg").write_bytes(b"\xff\xd8")
        return store

    def test_creates_kind_folders(self, tmp_path):
        LocalDiskStore(str(tmp_path))

        assert (tmp_path / "videos").is_dir()
        assert (tmp_path / "previews").is_dir()
        assert (tmp_path / "thumbnails").is_dir()

    def test_video_stream(self, store):
        with store.get_stream("clip.mp4") as blob:
            assert blob.size_bytes == 2048
            assert blob.mime_type == "video/mp4"
            assert blob.file_name == "clip.mp4"
            assert len(blob.read()) == 2048

    def test_thumbnail_stream(self, store):
        with store.get_stream("clip.jpg", BlobKind.THUMBNAIL) as blob:
            assert blob.mime_type == "image/jpeg"
            assert blob.read() == b"\xff\xd8"

    def test_kind_selects_folder(self, store):
        with pytest.raises(BlobNotFound):
            store.get_stream("clip.jpg", BlobKind.VIDEO)

    def test_missing(self, store):
        with pytest.raises(BlobNotFound):
            store.get_stream("nope.mp4")

    def test_empty_key(self, store):
        with pytest.raises(BlobNotFound):
            store.get_stream("")

    def test_traversal_refused(self, store):
        with pytest.raises(BlobNotFound):
            store.get_stream("../thumbnails/clip.jpg")


class TestObjectStore:
    """Test the S3 backend against a mocked boto3 client."""

    @pytest.fixture
    def client(self):
        client = Mock()
        client.head_object.return_value = {"ContentLength": 4, "ContentType": "video/mp4"}
        client.get_object.return_value = {"Body": io.BytesIO(b"data")}
        return client

    def test_get_stream(self, client):
        store = ObjectStore("pool", client=client)

        with store.get_stream("clip.mp4") as blob:
            assert blob.read() == b"data"
            assert blob.size_bytes == 4
            assert blob.file_name == "clip.mp4"

        client.get_object.assert_called_once_with(Bucket="pool", Key="videos/clip.mp4")

    def test_object_key_prefix(self):
        assert ObjectStore.object_key("a.jpg", BlobKind.THUMBNAIL) == "thumbnails/a.jpg"
        assert ObjectStore.object_key("videos/a.mp4", BlobKind.VIDEO) == "videos/a.mp4"
        assert ObjectStore.object_key("a.mp4", BlobKind.PREVIEW) == "previews/a.mp4"

    def test_default_content_type(self, client):
        client.head_object.return_value = {"ContentLength": 2}
        store = ObjectStore("pool", client=client)

        blob = store.get_stream("a.jpg", BlobKind.THUMBNAIL)

        assert blob.mime_type == "image/jpeg"

    @pytest.mark.parametrize("code", ["404", "NoSuchKey", "NotFound"])
    def test_not_found(self, client, code):
        client.head_object.side_effect = client_error(code)
        store = ObjectStore("pool", client=client)

        with pytest.raises(BlobNotFound):
            store.get_stream("gone.mp4")

    def test_access_denied(self, client):
        client.head_object.side_effect = client_error("403")
        store = ObjectStore("pool", client=client)

        with pytest.raises(SourceUnavailable) as exc_info:
            store.get_stream("locked.mp4")
        assert not isinstance(exc_info.value, BlobNotFound)

    def test_connection_error(self, client):
        client.get_object.side_effect = EndpointConnectionError(endpoint_url="https://s3.example")
        store = ObjectStore("pool", client=client)

        with pytest.raises(SourceUnavailable):
            store.get_stream("clip.mp4")


class TestBuildBlobStore:
    """Test backend selection from config."""

    def test_local(self, tmp_path):
        config = Config({"storage": {"backend": "local", "local_root": str(tmp_path)}})

        store = build_blob_store(config)

        assert isinstance(store, LocalDiskStore)

    def test_s3(self):
        config = Config({
            "storage": {
                "backend": "s3",
                "bucket": "pool",
                "endpoint_url": "https://nyc3.digitaloceanspaces.com",
                "region": "nyc3",
            }
        })

        with patch("mixexport.storage.blob.boto3.client", return_value=MagicMock()) as make_client:
            store = build_blob_store(config)

        assert isinstance(store, ObjectStore)
        assert store.bucket == "pool"
        make_client.assert_called_once_with(
            "s3", endpoint_url="https://nyc3.digitaloceanspaces.com", region_name="nyc3"
        )
