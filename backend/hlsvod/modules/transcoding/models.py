"""Database models and static presets for the transcoding pipeline."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from hlsvod.core.database import Base


class VideoStatus(str, Enum):
    """Status of an uploaded video. READY and ERROR are terminal."""

    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self is not VideoStatus.PROCESSING


class AudioMode(str, Enum):
    """How the audio stream is treated during one encode attempt."""

    NORMAL = "normal"
    COPY = "copy"
    FILTERED = "filtered"
    AGGRESSIVE = "aggressive"
    NONE = "none"


@dataclass(frozen=True)
class ResolutionSpec:
    """One rung of the resolution ladder.

    Bitrates are in bits per second.
    """

    label: str
    width: int
    height: int
    video_bitrate: int
    audio_bitrate: int

    @property
    def bandwidth(self) -> int:
        """Advertised variant bandwidth: video plus audio bitrate."""
        return self.video_bitrate + self.audio_bitrate


# Highest to lowest quality
RESOLUTION_LADDER: tuple[ResolutionSpec, ...] = (
    ResolutionSpec("1080p", 1920, 1080, 5_000_000, 192_000),
    ResolutionSpec("720p", 1280, 720, 2_500_000, 128_000),
    ResolutionSpec("480p", 854, 480, 1_000_000, 128_000),
    ResolutionSpec("360p", 640, 360, 800_000, 96_000),
    ResolutionSpec("240p", 426, 240, 500_000, 64_000),
)

RESOLUTION_LABELS: tuple[str, ...] = tuple(spec.label for spec in RESOLUTION_LADDER)


def get_resolution(label: str) -> ResolutionSpec:
    """Look up a ladder preset by its label."""
    for spec in RESOLUTION_LADDER:
        if spec.label == label:
            return spec
    raise KeyError(f"Unknown resolution label: {label}")


def rendition_column(label: str) -> str:
    """Name of the Video column that stores a rendition's playlist path."""
    if label not in RESOLUTION_LABELS:
        raise KeyError(f"Unknown resolution label: {label}")
    return f"hls_path_{label}"


class Video(Base):
    """An uploaded source video and the artifacts derived from it.

    Created with status=processing when the upload is accepted. The
    transcode orchestrator performs exactly one terminal update; until then
    every derived field stays NULL.
    """

    __tablename__ = "videos"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    original_name: Mapped[str] = mapped_column(String(512), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=VideoStatus.PROCESSING.value, index=True
    )

    # Master playlist (hls/{id}/index.m3u8)
    hls_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    # Per-resolution playlists (hls/{id}/{label}/index.m3u8)
    hls_path_1080p: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    hls_path_720p: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    hls_path_480p: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    hls_path_360p: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    hls_path_240p: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    thumb_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    width: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    height: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    @property
    def video_status(self) -> VideoStatus:
        return VideoStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.video_status.is_terminal

    @property
    def rendition_paths(self) -> dict[str, Optional[str]]:
        """Resolution label -> playlist path, None where the rendition is absent."""
        return {label: getattr(self, rendition_column(label)) for label in RESOLUTION_LABELS}

    def __repr__(self) -> str:
        return f"<Video {self.id} - {self.status}>"
