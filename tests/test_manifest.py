"""
Unit tests for metadata.json, mix-details.html and README.txt.
"""

import json
import pytest
from datetime import datetime, timezone

from mixexport.assemble import manifest
from mixexport.assemble.cuesheet import CueTimeline
from mixexport.models import ExportOptions, VideoAsset, VideoFormat


CREATED = datetime(2026, 5, 4, 20, 0, tzinfo=timezone.utc)


@pytest.fixture
def packaged():
    """Two included tracks with their cue entries."""
    assets = [
        VideoAsset(1, "Opener", "Intro edit", 30.0, "v1.mp4", "v1.jpg"),
        VideoAsset(3, "Peak <Club Mix>", "", 45.5, "v3.mp4", ""),
    ]
    timeline = CueTimeline()
    timeline.add(assets[0].title, assets[0].duration_seconds, "videos/01_Opener.mp4")
    timeline.add(assets[1].title, assets[1].duration_seconds, "videos/02_Peak_Club_Mix.mp4")
    return timeline.entries, assets


class TestMetadata:
    """Test the metadata document."""

    def test_aggregates(self, packaged):
        entries, assets = packaged

        metadata = manifest.build_metadata(
            "Friday", entries, assets, {"bpm": 126, "key": "8A", "genre": None},
            "warmup only", [2], CREATED,
        )

        assert metadata["totalDuration"] == 75.5
        assert metadata["trackCount"] == 2
        assert metadata["excludedVideoIds"] == [2]
        assert metadata["createdAt"] == "2026-05-04T20:00:00+00:00"
        assert metadata["notes"] == "warmup only"

    def test_track_records(self, packaged):
        entries, assets = packaged

        metadata = manifest.build_metadata("Friday", entries, assets, {}, None, [], CREATED)

        assert metadata["tracks"][0] == {
            "index": 1,
            "title": "Opener",
            "description": "Intro edit",
            "duration": 30,
            "fileName": "videos/01_Opener.mp4",
            "startTime": 0,
            "endTime": 30,
        }
        assert metadata["tracks"][1]["startTime"] == 30
        assert metadata["tracks"][1]["endTime"] == 75.5

    def test_total_matches_sum_of_tracks(self, packaged):
        entries, assets = packaged

        metadata = manifest.build_metadata("Friday", entries, assets, {}, None, [], CREATED)

        assert metadata["totalDuration"] == sum(t["duration"] for t in metadata["tracks"])


class TestHtml:
    """Test the HTML details page."""

    def test_escapes_titles(self, packaged):
        entries, assets = packaged
        metadata = manifest.build_metadata("A & B", entries, assets, {}, None, [], CREATED)

        page = manifest.render_html(metadata)

        assert "<h1>A &amp; B</h1>" in page
        assert "Peak &lt;Club Mix&gt;" in page
        assert "<Club Mix>" not in page

    def test_durations(self, packaged):
        entries, assets = packaged
        metadata = manifest.build_metadata("Set", entries, assets, {"bpm": 126}, None, [], CREATED)

        page = manifest.render_html(metadata)

        assert "<strong>Duration:</strong> 1:15" in page
        assert "<strong>BPM:</strong> 126" in page
        assert "Starts at: 0:30" in page


class TestReadme:
    """Test README contents per option set."""

    def test_full_package(self):
        readme = manifest.render_readme("Friday", "Friday", ExportOptions(), 2026)

        assert "- Video files in /videos folder" in readme
        assert "- Artwork images in /artwork folder" in readme
        assert "- Cue sheet file: Friday.cue" in readme
        assert "- Metadata in JSON format: metadata.json" in readme
        assert readme.rstrip().endswith("(c) 2026 TheVideoPool.com - All rights reserved")

    def test_artwork_only_without_cuesheet(self):
        options = ExportOptions(
            include_cuesheet=False, include_artwork=True, video_format=VideoFormat.ARTWORK_ONLY
        )

        readme = manifest.render_readme("Thumbs", "Thumbs", options, 2026)

        assert "/videos" not in readme
        assert "/artwork" in readme
        assert ".cue" not in readme

    def test_no_metadata(self):
        options = ExportOptions(include_metadata=False, include_artwork=False)

        readme = manifest.render_readme("Set", "Set", options, 2026)

        assert "metadata.json" not in readme
        assert "/artwork" not in readme


class TestRenderDocuments:
    """Test rendering all sidecars together."""

    def test_json_round_trips(self, packaged):
        entries, assets = packaged

        docs = manifest.render_documents(
            "Friday", "Friday", entries, assets, ExportOptions(), {"bpm": None},
            excluded=[2], created_at=CREATED,
        )

        assert json.loads(docs.metadata_json)["excludedVideoIds"] == [2]
        assert "2026" in docs.readme
        assert docs.html.startswith("<!DOCTYPE html>")
