"""Tests for the on-disk artifact layout."""

import sys
from pathlib import Path
from unittest.mock import MagicMock

# Mock celery_app before importing transcoding modules
sys.modules["hlsvod.core.celery_app"] = MagicMock()

import pytest

from hlsvod.modules.transcoding.storage import HLSStorage


class TestHLSStorage:

    def test_layout(self, tmp_path: Path) -> None:
        storage = HLSStorage(tmp_path)
        root = tmp_path.resolve()

        assert storage.master_playlist_path("abc") == root / "hls" / "abc" / "index.m3u8"
        assert storage.rendition_playlist_path("abc", "720p") == root / "hls" / "abc" / "720p" / "index.m3u8"
        assert storage.thumbnail_path("abc") == root / "thumbs" / "abc.jpg"
        assert storage.raw_path("abc", "MP4") == root / "raw" / "abc.mp4"
        assert storage.raw_path("abc", ".mkv") == root / "raw" / "abc.mkv"

    def test_relative_paths_are_posix_and_root_relative(self, tmp_path: Path) -> None:
        storage = HLSStorage(tmp_path)
        assert storage.relative(storage.rendition_playlist_path("abc", "480p")) == "hls/abc/480p/index.m3u8"
        assert storage.relative(storage.thumbnail_path("abc")) == "thumbs/abc.jpg"

    def test_ensure_directories(self, tmp_path: Path) -> None:
        storage = HLSStorage(tmp_path / "uploads")
        storage.ensure_directories()
        assert storage.raw_dir.is_dir()
        assert storage.hls_root.is_dir()
        assert storage.thumbs_dir.is_dir()

    def test_reset_rendition_dir_empties_it(self, tmp_path: Path) -> None:
        storage = HLSStorage(tmp_path)
        directory = storage.rendition_dir("abc", "360p")
        directory.mkdir(parents=True)
        (directory / "seg_000.ts").write_bytes(b"old")

        reset = storage.reset_rendition_dir(directory)

        assert reset == directory
        assert directory.is_dir()
        assert list(directory.iterdir()) == []

    def test_reset_refuses_paths_outside_hls_root(self, tmp_path: Path) -> None:
        storage = HLSStorage(tmp_path / "uploads")
        outside = tmp_path / "elsewhere"
        outside.mkdir()
        (outside / "keep.txt").write_text("x")

        with pytest.raises(ValueError):
            storage.reset_rendition_dir(outside)
        with pytest.raises(ValueError):
            storage.reset_rendition_dir(storage.hls_root)

        assert (outside / "keep.txt").exists()

    def test_remove_rendition_leaves_siblings(self, tmp_path: Path) -> None:
        storage = HLSStorage(tmp_path)
        for label in ("720p", "480p"):
            storage.rendition_dir("abc", label).mkdir(parents=True)

        storage.remove_rendition("abc", "720p")

        assert not storage.rendition_dir("abc", "720p").exists()
        assert storage.rendition_dir("abc", "480p").exists()

    def test_remove_video_outputs(self, tmp_path: Path) -> None:
        storage = HLSStorage(tmp_path)
        storage.rendition_dir("abc", "240p").mkdir(parents=True)
        storage.rendition_dir("other", "240p").mkdir(parents=True)

        storage.remove_video_outputs("abc")
        storage.remove_video_outputs("never-existed")

        assert not storage.video_dir("abc").exists()
        assert storage.video_dir("other").exists()
