"""Service layer for video uploads and their transcode status."""

import logging
import uuid
from pathlib import Path
from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from hlsvod.modules.transcoding.repository import VideoRepository
from hlsvod.modules.transcoding.schemas import VideoAccepted, VideoCreate, VideoStatusResponse
from hlsvod.modules.transcoding.tasks import start_transcode

logger = logging.getLogger(__name__)


class VideoService:
    """Service for accepting uploads and reporting on them."""

    def __init__(self, session: AsyncSession):
        """Initialize service with database session."""
        self.session = session
        self.video_repo = VideoRepository(session)

    async def register_upload(
        self,
        original_name: str,
        source_path: Union[str, Path],
        video_id: Optional[str] = None,
    ) -> VideoAccepted:
        """Record an accepted upload and queue its transcode.

        The processing record is committed before the task is queued so the
        worker always finds it.

        Args:
            original_name: User-supplied filename
            source_path: Path of the validated raw upload
            video_id: Pre-assigned ID, generated if omitted

        Returns:
            VideoAccepted: ID and initial status
        """
        video_id = video_id or uuid.uuid4().hex
        video = await self.video_repo.create(video_id=video_id, original_name=original_name)
        await self.session.commit()

        start_transcode(source_path, video.id)
        logger.info(f"Accepted upload {original_name!r} as {video.id}")
        return VideoAccepted(video_id=video.id)

    async def register(self, data: VideoCreate) -> VideoAccepted:
        return await self.register_upload(data.original_name, data.source_path, data.video_id)

    async def get_status(self, video_id: str) -> Optional[VideoStatusResponse]:
        """Get the status view of a video, or None if it does not exist."""
        video = await self.video_repo.get_by_id(video_id)
        if video is None:
            return None
        return VideoStatusResponse.from_video(video)
