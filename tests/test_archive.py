"""
Unit tests for the archive writer and the streaming assembler.

Tests entry naming, ordering under prefetch, per-track failure
recovery, sink failures and cancellation.
"""

import io
import threading
import zipfile
from unittest.mock import Mock

import pytest

from mixexport.assemble.archive import ArchiveAssembler, ArchiveWriter
from mixexport.assemble.cuesheet import CueTimeline
from mixexport.errors import ExportCancelled, SinkWriteError
from mixexport.models import ExportOptions, ResolvedTrack, VideoFormat


def resolved(assets):
    return [ResolvedTrack(asset=a, sequence_index=i) for i, a in enumerate(assets)]


@pytest.fixture
def archive_path(tmp_path):
    return str(tmp_path / "package.zip")


@pytest.fixture
def assembler(stocked_store):
    return ArchiveAssembler(stocked_store, chunk_size=256, spool_max_bytes=512, prefetch_workers=2)


def run(assembler, assets, archive_path, options=None, **kwargs):
    """Assemble into a fresh archive and return (result, timeline, entry names)."""
    timeline = CueTimeline()
    with ArchiveWriter(archive_path) as sink:
        result = assembler.assemble(
            resolved(assets), options or ExportOptions(), sink, timeline=timeline, **kwargs
        )
    with zipfile.ZipFile(archive_path) as zf:
        names = zf.namelist()
    return result, timeline, names


class TestArchiveWriter:
    """Test the zip sink."""

    def test_stream_entry_contents(self, archive_path):
        payload = b"x" * 5000
        with ArchiveWriter(archive_path, chunk_size=1000) as sink:
            sink.add_stream("videos/a.mp4", io.BytesIO(payload), size=len(payload), compress=False)
            sink.add_text("README.txt", "hello")

        with zipfile.ZipFile(archive_path) as zf:
            assert zf.read("videos/a.mp4") == payload
            assert zf.getinfo("videos/a.mp4").compress_type == zipfile.ZIP_STORED
            assert zf.read("README.txt") == b"hello"

    def test_compressed_entry(self, archive_path):
        payload = b"la" * 50000
        with ArchiveWriter(archive_path, compression_level=9) as sink:
            sink.add_stream("notes.txt", io.BytesIO(payload), size=len(payload), compress=True)

        with zipfile.ZipFile(archive_path) as zf:
            info = zf.getinfo("notes.txt")
            assert info.compress_type == zipfile.ZIP_DEFLATED
            assert info.compress_size < info.file_size
            assert zf.read("notes.txt") == payload

    def test_unknown_size_entry(self, archive_path):
        with ArchiveWriter(archive_path) as sink:
            sink.add_stream("blob.bin", io.BytesIO(b"abc" * 100))

        with zipfile.ZipFile(archive_path) as zf:
            assert zf.read("blob.bin") == b"abc" * 100

    def test_unwritable_path(self, tmp_path):
        with pytest.raises(SinkWriteError):
            ArchiveWriter(str(tmp_path / "missing-dir" / "x.zip"))

    def test_write_after_close(self, archive_path):
        sink = ArchiveWriter(archive_path)
        sink.close()

        with pytest.raises(SinkWriteError):
            sink.add_text("late.txt", "too late")

    def test_should_stop(self, archive_path):
        with pytest.raises(ExportCancelled):
            with ArchiveWriter(archive_path) as sink:
                sink.add_stream("a.bin", io.BytesIO(b"a" * 10), should_stop=lambda: True)


class TestAssembleHappyPath:
    """Test naming and ordering."""

    def test_video_entries_in_order(self, assembler, make_asset, archive_path):
        assets = [make_asset(3, "Peak Time"), make_asset(1, "Opener"), make_asset(2, "Closer")]

        result, _, names = run(assembler, assets, archive_path)

        videos = [n for n in names if n.startswith("videos/")]
        assert videos == ["videos/01_Peak_Time.mp4", "videos/02_Opener.mp4", "videos/03_Closer.mp4"]
        assert result.included_ids == [3, 1, 2]
        assert result.excluded == []

    def test_artwork_entries(self, assembler, make_asset, archive_path):
        assets = [make_asset(1, "Opener"), make_asset(2, "Closer")]

        _, _, names = run(assembler, assets, archive_path)

        assert "artwork/Opener.jpg" in names
        assert "artwork/Closer.jpg" in names

    def test_no_artwork_when_disabled(self, assembler, make_asset, archive_path, stocked_store):
        options = ExportOptions(include_artwork=False)

        _, _, names = run(assembler, [make_asset(1)], archive_path, options)

        assert not any(n.startswith("artwork/") for n in names)
        assert all(kind.value != "thumbnail" for _, kind in stocked_store.calls)

    def test_bytes_copied_exactly(self, assembler, make_asset, archive_path, stocked_store):
        _, _, _ = run(assembler, [make_asset(7, "Seven")], archive_path)

        with zipfile.ZipFile(archive_path) as zf:
            assert zf.read("videos/01_Seven.mp4") == stocked_store.blobs["video-7.mp4"]

    def test_cue_entries_follow_durations(self, assembler, make_asset, archive_path):
        assets = [make_asset(1, duration=30.0), make_asset(2, duration=45.0), make_asset(3, duration=60.0)]

        result, timeline, _ = run(assembler, assets, archive_path)

        assert [e.start_time_seconds for e in result.included] == [0.0, 30.0, 75.0]
        assert timeline.total_duration == 135.0
        assert result.included[1].file_name == "02_Track_2.mp4"

    def test_duplicate_titles_get_distinct_artwork(self, assembler, make_asset, archive_path):
        assets = [make_asset(1, "Same"), make_asset(2, "Same")]

        _, _, names = run(assembler, assets, archive_path)

        assert "artwork/Same.jpg" in names
        assert "artwork/Same_02.jpg" in names

    def test_order_kept_when_first_fetch_is_slow(self, assembler, make_asset, archive_path, stocked_store):
        stocked_store.delays["video-1.mp4"] = 0.2
        assets = [make_asset(1, "Slow"), make_asset(2, "Fast"), make_asset(3, "Faster")]

        result, _, names = run(assembler, assets, archive_path)

        assert [n for n in names if n.startswith("videos/")] == [
            "videos/01_Slow.mp4", "videos/02_Fast.mp4", "videos/03_Faster.mp4",
        ]
        assert result.included_ids == [1, 2, 3]

    def test_artwork_only_format(self, assembler, make_asset, archive_path, stocked_store):
        options = ExportOptions(video_format=VideoFormat.ARTWORK_ONLY)

        result, _, names = run(assembler, [make_asset(1, "Opener")], archive_path, options)

        assert names == ["artwork/Opener.jpg"]
        assert result.included[0].file_name == "Opener.jpg"
        assert all(kind.value == "thumbnail" for _, kind in stocked_store.calls)


class TestAssembleFailures:
    """Test per-track recovery and fatal errors."""

    def test_missing_source_skipped_with_dense_numbering(self, assembler, make_asset, archive_path, stocked_store):
        stocked_store.missing.add("video-2.mp4")
        assets = [make_asset(1, "A", 30.0), make_asset(2, "B", 45.0), make_asset(3, "C", 60.0)]

        result, timeline, names = run(assembler, assets, archive_path)

        assert [n for n in names if n.startswith("videos/")] == ["videos/01_A.mp4", "videos/02_C.mp4"]
        assert result.excluded == [2]
        assert [e.index for e in result.included] == [1, 2]
        assert [e.start_time_seconds for e in result.included] == [0.0, 30.0]
        assert timeline.total_duration == 90.0

    def test_midstream_failure_leaves_no_partial_entry(self, assembler, make_asset, archive_path, stocked_store):
        stocked_store.broken_midstream.add("video-1.mp4")

        result, _, names = run(assembler, [make_asset(1, "A"), make_asset(2, "B")], archive_path)

        assert result.excluded == [1]
        assert not any("A" in n for n in names)
        with zipfile.ZipFile(archive_path) as zf:
            assert zf.testzip() is None

    def test_truncated_source_skipped(self, assembler, make_asset, archive_path, stocked_store):
        stocked_store.truncated.add("video-2.mp4")

        result, _, _ = run(assembler, [make_asset(1), make_asset(2)], archive_path)

        assert result.excluded == [2]
        assert result.included_ids == [1]

    def test_thumbnail_failure_keeps_video(self, assembler, make_asset, archive_path, stocked_store):
        stocked_store.missing.add("thumb-1.jpg")

        result, _, names = run(assembler, [make_asset(1, "A")], archive_path)

        assert result.included_ids == [1]
        assert names == ["videos/01_A.mp4"]

    def test_everything_failing(self, assembler, make_asset, archive_path, stocked_store):
        stocked_store.missing.update({"video-1.mp4", "video-2.mp4"})

        result, _, names = run(assembler, [make_asset(1), make_asset(2)], archive_path)

        assert result.included == []
        assert result.excluded == [1, 2]
        assert names == []

    def test_sink_failure_is_fatal(self, assembler, make_asset):
        sink = Mock(spec=ArchiveWriter)
        sink.add_stream.side_effect = SinkWriteError("disk full")

        with pytest.raises(SinkWriteError):
            assembler.assemble(resolved([make_asset(1), make_asset(2)]), ExportOptions(), sink)

        assert sink.add_stream.call_count == 1

    def test_cancel_before_start(self, assembler, make_asset, archive_path):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(ExportCancelled):
            with ArchiveWriter(archive_path) as sink:
                assembler.assemble(
                    resolved([make_asset(1), make_asset(2)]), ExportOptions(), sink, cancel_event=cancel
                )

    def test_cancel_midway(self, assembler, make_asset, archive_path):
        cancel = threading.Event()
        sink = Mock(spec=ArchiveWriter)
        sink.add_stream.side_effect = lambda *args, **kwargs: cancel.set()

        with pytest.raises(ExportCancelled):
            assembler.assemble(
                resolved([make_asset(n) for n in range(1, 6)]),
                ExportOptions(include_artwork=False),
                sink,
                cancel_event=cancel,
            )

        assert sink.add_stream.call_count == 1
