"""Persistence for video records.

The record is written twice in its life: once when the upload is accepted
(status=processing) and once by the orchestrator (ready or error).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hlsvod.modules.transcoding.models import Video, VideoStatus, rendition_column

logger = logging.getLogger(__name__)


class VideoNotFoundError(Exception):
    """No video record with the given ID."""
    pass


class TerminalStateError(Exception):
    """A terminal video record may not be modified again."""
    pass


@dataclass
class ReadyUpdate:
    """Everything committed with the transition to ready."""

    master_playlist_path: str
    rendition_paths: dict[str, Optional[str]]
    duration: float
    width: int
    height: int
    thumbnail_path: Optional[str] = None


class VideoRepository:
    """Repository for Video operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, video_id: str, original_name: str) -> Video:
        """Create a new record in the processing state."""
        video = Video(
            id=video_id,
            original_name=original_name,
            status=VideoStatus.PROCESSING.value,
        )
        self.session.add(video)
        await self.session.flush()
        return video

    async def get_by_id(self, video_id: str) -> Optional[Video]:
        """Get a video by ID."""
        result = await self.session.execute(select(Video).where(Video.id == video_id))
        return result.scalar_one_or_none()

    async def _get_mutable(self, video_id: str) -> Video:
        video = await self.get_by_id(video_id)
        if video is None:
            raise VideoNotFoundError(f"Video {video_id} not found")
        if video.is_terminal:
            raise TerminalStateError(f"Video {video_id} is already {video.status}")
        return video

    async def mark_ready(self, video_id: str, update: ReadyUpdate) -> Video:
        """Commit the successful terminal state.

        Raises:
            VideoNotFoundError: If the record does not exist
            TerminalStateError: If the record already reached a terminal state
        """
        video = await self._get_mutable(video_id)

        video.status = VideoStatus.READY.value
        video.hls_path = update.master_playlist_path
        for label, path in update.rendition_paths.items():
            setattr(video, rendition_column(label), path)
        video.thumb_path = update.thumbnail_path
        video.duration = update.duration
        video.width = update.width
        video.height = update.height
        video.completed_at = datetime.now(timezone.utc)
        return video

    async def mark_error(self, video_id: str) -> Video:
        """Commit the failed terminal state. Only the status changes.

        Raises:
            VideoNotFoundError: If the record does not exist
            TerminalStateError: If the record already reached a terminal state
        """
        video = await self._get_mutable(video_id)
        video.status = VideoStatus.ERROR.value
        video.completed_at = datetime.now(timezone.utc)
        return video


class VideoRecordWriter:
    """Commits terminal transitions, one short-lived session per write."""

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self.session_factory = session_factory

    async def commit_ready(self, video_id: str, update: ReadyUpdate) -> None:
        async with self.session_factory() as session:
            await VideoRepository(session).mark_ready(video_id, update)
            await session.commit()

    async def commit_error(self, video_id: str) -> None:
        async with self.session_factory() as session:
            await VideoRepository(session).mark_error(video_id)
            await session.commit()
