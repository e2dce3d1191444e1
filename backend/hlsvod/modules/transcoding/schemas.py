"""Pydantic schemas exposed to the API collaborator."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from hlsvod.core.config import settings
from hlsvod.modules.transcoding.models import Video, VideoStatus


class VideoCreate(BaseModel):
    """Schema for registering an accepted upload."""
    original_name: str = Field(..., min_length=1, max_length=512, description="User-supplied filename")
    source_path: str = Field(..., description="Path of the validated raw upload")
    video_id: Optional[str] = Field(None, max_length=64, description="Pre-assigned ID, generated if omitted")


class VideoAccepted(BaseModel):
    """Immediate acknowledgement of an upload."""
    model_config = ConfigDict(populate_by_name=True)

    video_id: str = Field(..., alias="videoId")
    status: VideoStatus = VideoStatus.PROCESSING


class VideoStatusResponse(BaseModel):
    """What the status endpoint reports about a video."""
    model_config = ConfigDict(populate_by_name=True)

    video_id: str = Field(..., alias="videoId")
    status: VideoStatus
    hls_url: Optional[str] = Field(None, alias="hlsUrl")
    rendition_urls: dict[str, str] = Field(default_factory=dict, alias="renditionUrls")
    thumb_url: Optional[str] = Field(None, alias="thumbUrl")
    download_url: str = Field(..., alias="downloadUrl")
    duration: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None

    @classmethod
    def from_video(
        cls,
        video: Video,
        stream_prefix: Optional[str] = None,
        video_prefix: Optional[str] = None,
    ) -> "VideoStatusResponse":
        """Build the status view from a record.

        The master and per-resolution URLs only appear once the video is
        ready; the download URL serves the raw upload and is always present.
        """
        stream_prefix = (stream_prefix or settings.STREAM_URL_PREFIX).rstrip("/")
        video_prefix = (video_prefix or settings.VIDEO_URL_PREFIX).rstrip("/")
        status = VideoStatus(video.status)
        ready = status is VideoStatus.READY

        hls_url = None
        rendition_urls: dict[str, str] = {}
        if ready and video.hls_path:
            hls_url = f"{stream_prefix}/{video.id}/index.m3u8"
            rendition_urls = {
                label: f"{stream_prefix}/{video.id}/{label}/index.m3u8"
                for label, path in video.rendition_paths.items()
                if path
            }

        return cls(
            video_id=video.id,
            status=status,
            hls_url=hls_url,
            rendition_urls=rendition_urls,
            thumb_url=f"{stream_prefix}/{video.id}/thumb.jpg" if ready and video.thumb_path else None,
            download_url=f"{video_prefix}/{video.id}/download",
            duration=video.duration if ready else None,
            width=video.width if ready else None,
            height=video.height if ready else None,
        )
