"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
Paths are resolved relative to the process working directory unless absolute.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "HLS Transcoder"
    VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./uploads/db.sqlite"

    # Celery / Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = ""
    CELERY_RESULT_BACKEND: str = ""
    TRANSCODE_TASK_TIME_LIMIT_SECONDS: int = 6 * 3600
    # Must stay below the hard limit so the run can still commit status=error
    TRANSCODE_TASK_SOFT_TIME_LIMIT_SECONDS: int = 6 * 3600 - 300

    # Artifact storage root (raw/, hls/, thumbs/ live below it)
    UPLOADS_DIR: str = "./uploads"

    # External tools. Empty means "look up on PATH".
    FFMPEG_PATH: Optional[str] = None
    FFPROBE_PATH: Optional[str] = None

    # Video codec: "auto" or one of libx264, h264_videotoolbox, h264_vaapi
    VIDEO_CODEC: str = "auto"
    VAAPI_DEVICE: str = "/dev/dri/renderD128"
    SOFTWARE_PRESET: str = "superfast"
    ENCODE_THREADS: int = 4

    # HLS output
    HLS_SEGMENT_SECONDS: int = 10
    MAX_PARALLEL_RENDITIONS: int = 1
    CLEANUP_FAILED_RENDITIONS: bool = True

    # Timeouts for external invocations (0 disables the bound)
    ENCODE_TIMEOUT_SECONDS: float = 2 * 3600
    PROBE_TIMEOUT_SECONDS: float = 30.0
    THUMBNAIL_TIMEOUT_SECONDS: float = 60.0

    # Thumbnail
    THUMBNAIL_OFFSET_SECONDS: float = 1.0
    THUMBNAIL_WIDTH: int = 640

    # URLs handed out by the status view
    STREAM_URL_PREFIX: str = "/api/stream"
    VIDEO_URL_PREFIX: str = "/api/video"

    # Tracing
    OTLP_ENDPOINT: Optional[str] = None
    TRACING_CONSOLE_EXPORT: bool = False

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
