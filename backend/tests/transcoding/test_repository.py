"""Tests for video record persistence and terminal-state guarding."""

import sys
from unittest.mock import AsyncMock, MagicMock

# Mock celery_app before importing transcoding modules
sys.modules["hlsvod.core.celery_app"] = MagicMock()

import pytest

from hlsvod.modules.transcoding.models import Video, VideoStatus
from hlsvod.modules.transcoding.repository import (
    ReadyUpdate,
    TerminalStateError,
    VideoNotFoundError,
    VideoRecordWriter,
    VideoRepository,
)


def make_session(video=None) -> MagicMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = video
    session = MagicMock()
    session.execute = AsyncMock(return_value=result)
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    return session


def make_video(status: VideoStatus = VideoStatus.PROCESSING) -> Video:
    return Video(id="abc", original_name="clip.mp4", status=status.value)


def ready_update() -> ReadyUpdate:
    return ReadyUpdate(
        master_playlist_path="hls/abc/index.m3u8",
        rendition_paths={
            "1080p": "hls/abc/1080p/index.m3u8",
            "720p": "hls/abc/720p/index.m3u8",
            "480p": "hls/abc/480p/index.m3u8",
            "360p": None,
            "240p": None,
        },
        duration=12.5,
        width=1920,
        height=1080,
        thumbnail_path="thumbs/abc.jpg",
    )


class TestVideoRepository:

    @pytest.mark.asyncio
    async def test_create_starts_processing(self) -> None:
        session = make_session()
        video = await VideoRepository(session).create("abc", "clip.mp4")

        assert video.status == VideoStatus.PROCESSING.value
        assert video.hls_path is None
        assert all(path is None for path in video.rendition_paths.values())
        session.add.assert_called_once_with(video)
        session.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_mark_ready_sets_every_derived_field(self) -> None:
        video = make_video()
        await VideoRepository(make_session(video)).mark_ready("abc", ready_update())

        assert video.status == "ready"
        assert video.hls_path == "hls/abc/index.m3u8"
        assert video.hls_path_1080p == "hls/abc/1080p/index.m3u8"
        assert video.hls_path_480p == "hls/abc/480p/index.m3u8"
        assert video.hls_path_360p is None
        assert video.hls_path_240p is None
        assert video.thumb_path == "thumbs/abc.jpg"
        assert (video.duration, video.width, video.height) == (12.5, 1920, 1080)
        assert video.completed_at is not None

    @pytest.mark.asyncio
    async def test_mark_error_only_changes_status(self) -> None:
        video = make_video()
        await VideoRepository(make_session(video)).mark_error("abc")

        assert video.status == "error"
        assert video.hls_path is None
        assert video.thumb_path is None
        assert video.duration is None
        assert all(path is None for path in video.rendition_paths.values())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [VideoStatus.READY, VideoStatus.ERROR])
    async def test_terminal_record_is_immutable(self, status: VideoStatus) -> None:
        repo = VideoRepository(make_session(make_video(status)))

        with pytest.raises(TerminalStateError):
            await repo.mark_ready("abc", ready_update())
        with pytest.raises(TerminalStateError):
            await repo.mark_error("abc")

    @pytest.mark.asyncio
    async def test_missing_record(self) -> None:
        with pytest.raises(VideoNotFoundError):
            await VideoRepository(make_session(None)).mark_error("missing")


class TestVideoRecordWriter:

    @pytest.mark.asyncio
    async def test_commit_error_commits_session(self) -> None:
        video = make_video()
        session = make_session(video)
        session_cm = MagicMock()
        session_cm.__aenter__ = AsyncMock(return_value=session)
        session_cm.__aexit__ = AsyncMock(return_value=False)

        await VideoRecordWriter(lambda: session_cm).commit_error("abc")

        assert video.status == "error"
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rejected_write_does_not_commit(self) -> None:
        session = make_session(make_video(VideoStatus.READY))
        session_cm = MagicMock()
        session_cm.__aenter__ = AsyncMock(return_value=session)
        session_cm.__aexit__ = AsyncMock(return_value=False)

        with pytest.raises(TerminalStateError):
            await VideoRecordWriter(lambda: session_cm).commit_ready("abc", ready_update())
        session.commit.assert_not_awaited()
