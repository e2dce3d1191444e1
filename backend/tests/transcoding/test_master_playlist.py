"""Tests for master playlist synthesis."""

import sys
from pathlib import Path
from unittest.mock import MagicMock

# Mock celery_app before importing transcoding modules
sys.modules["hlsvod.core.celery_app"] = MagicMock()

import pytest
from hypothesis import given, settings, strategies as st

from hlsvod.modules.transcoding.abr import (
    VariantStream,
    build_master_playlist,
    write_master_playlist,
)
from hlsvod.modules.transcoding.models import RESOLUTION_LADDER, get_resolution


def variants(*labels: str) -> list[VariantStream]:
    return [VariantStream.from_resolution(get_resolution(label)) for label in labels]


class TestBuildMasterPlaylist:
    """Exact text produced for the master playlist."""

    def test_single_variant(self) -> None:
        content = build_master_playlist(variants("240p"))
        assert content == (
            "#EXTM3U\n"
            "#EXT-X-VERSION:3\n"
            "\n"
            "#EXT-X-STREAM-INF:BANDWIDTH=564000,RESOLUTION=426x240\n"
            "240p/index.m3u8\n"
        )

    def test_three_variants_in_ascending_bandwidth(self) -> None:
        content = build_master_playlist(variants("1080p", "720p", "480p"))
        assert content == (
            "#EXTM3U\n"
            "#EXT-X-VERSION:3\n"
            "\n"
            "#EXT-X-STREAM-INF:BANDWIDTH=1128000,RESOLUTION=854x480\n"
            "480p/index.m3u8\n"
            "\n"
            "#EXT-X-STREAM-INF:BANDWIDTH=2628000,RESOLUTION=1280x720\n"
            "720p/index.m3u8\n"
            "\n"
            "#EXT-X-STREAM-INF:BANDWIDTH=5192000,RESOLUTION=1920x1080\n"
            "1080p/index.m3u8\n"
        )

    def test_empty_variant_set_rejected(self) -> None:
        with pytest.raises(ValueError):
            build_master_playlist([])

    @given(
        subset=st.lists(
            st.sampled_from([spec.label for spec in RESOLUTION_LADDER]),
            min_size=1,
            max_size=5,
            unique=True,
        )
    )
    @settings(max_examples=100)
    def test_one_stanza_per_variant_ordered_by_bandwidth(self, subset: list[str]) -> None:
        content = build_master_playlist(variants(*subset))
        lines = content.splitlines()

        assert lines[0] == "#EXTM3U"
        assert lines[1] == "#EXT-X-VERSION:3"

        stream_lines = [line for line in lines if line.startswith("#EXT-X-STREAM-INF:")]
        assert len(stream_lines) == len(subset)

        bandwidths = [int(line.split("BANDWIDTH=")[1].split(",")[0]) for line in stream_lines]
        assert bandwidths == sorted(bandwidths)

        uris = [lines[lines.index(line) + 1] for line in stream_lines]
        assert sorted(uris) == sorted(f"{label}/index.m3u8" for label in subset)


class TestWriteMasterPlaylist:
    """Writing the playlist to disk."""

    def test_writes_file_and_leaves_no_temp(self, tmp_path: Path) -> None:
        path = tmp_path / "hls" / "abc" / "index.m3u8"

        written = write_master_playlist(path, variants("720p", "360p"))

        assert written == path
        assert path.read_text(encoding="utf-8") == build_master_playlist(variants("720p", "360p"))
        assert not (path.parent / "index.m3u8.tmp").exists()

    def test_replaces_previous_playlist(self, tmp_path: Path) -> None:
        path = tmp_path / "index.m3u8"
        path.write_text("stale", encoding="utf-8")

        write_master_playlist(path, variants("240p"))

        assert "stale" not in path.read_text(encoding="utf-8")
        assert "240p/index.m3u8" in path.read_text(encoding="utf-8")
