"""External tool discovery and video codec capability detection.

Both are resolved once per worker process and injected into the pipeline,
so a missing ffmpeg/ffprobe surfaces before any transcode run starts.
"""

import logging
import os
import shutil
import subprocess
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from hlsvod.core.config import settings

logger = logging.getLogger(__name__)


class ToolNotFoundError(Exception):
    """An external binary (ffmpeg or ffprobe) cannot be located or launched."""

    def __init__(self, tool: str, detail: str = ""):
        self.tool = tool
        message = f"{tool} not found"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class VideoCodec(str, Enum):
    """Closed set of H.264 encoders the pipeline knows how to drive."""

    LIBX264 = "libx264"
    VIDEOTOOLBOX = "h264_videotoolbox"
    VAAPI = "h264_vaapi"

    @property
    def is_hardware(self) -> bool:
        return self is not VideoCodec.LIBX264


@dataclass(frozen=True)
class ToolPaths:
    """Absolute paths of the external binaries."""

    ffmpeg: str
    ffprobe: str


@dataclass(frozen=True)
class Toolchain:
    """Everything about the encoding environment the invoker needs."""

    paths: ToolPaths
    video_codec: VideoCodec
    vaapi_device: Optional[str] = None


def _resolve_binary(name: str, configured: Optional[str]) -> str:
    if configured:
        if os.path.isfile(configured) and os.access(configured, os.X_OK):
            return configured
        found = shutil.which(configured)
        if found:
            return found
        raise ToolNotFoundError(name, f"configured path {configured!r} is not executable")

    found = shutil.which(name)
    if not found:
        raise ToolNotFoundError(name, "not on PATH; install it or set the path explicitly")
    return found


def resolve_tool_paths(
    ffmpeg_path: Optional[str] = None,
    ffprobe_path: Optional[str] = None,
) -> ToolPaths:
    """Locate ffmpeg and ffprobe.

    Args:
        ffmpeg_path: Explicit ffmpeg binary, otherwise looked up on PATH
        ffprobe_path: Explicit ffprobe binary, otherwise looked up on PATH

    Returns:
        Resolved tool paths

    Raises:
        ToolNotFoundError: If either binary cannot be found
    """
    return ToolPaths(
        ffmpeg=_resolve_binary("ffmpeg", ffmpeg_path),
        ffprobe=_resolve_binary("ffprobe", ffprobe_path),
    )


def list_encoders(ffmpeg_path: str, timeout: float = 15.0) -> set[str]:
    """Return the encoder names compiled into the given ffmpeg build."""
    try:
        result = subprocess.run(
            [ffmpeg_path, "-hide_banner", "-encoders"],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise ToolNotFoundError("ffmpeg", str(e)) from e
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.warning(f"Could not list ffmpeg encoders: {e}")
        return set()

    encoders = set()
    in_table = False
    for line in result.stdout.splitlines():
        # Legend above the dashes, then " V....D libx264  libx264 H.264 ..."
        if line.strip().startswith("---"):
            in_table = True
            continue
        parts = line.split()
        if in_table and len(parts) >= 2 and len(parts[0]) == 6 and parts[0][0] in "VAS":
            encoders.add(parts[1])
    return encoders


def detect_video_codec(
    ffmpeg_path: str,
    platform: Optional[str] = None,
    vaapi_device: Optional[str] = None,
    encoders: Optional[set[str]] = None,
) -> VideoCodec:
    """Pick the H.264 encoder for this host.

    macOS uses VideoToolbox and Linux uses VAAPI when the encoder is
    compiled in (and, for VAAPI, the render device exists). Everything else
    falls back to libx264.

    Args:
        ffmpeg_path: ffmpeg binary to query
        platform: sys.platform value, defaults to the running platform
        vaapi_device: DRM render node VAAPI would use
        encoders: Pre-fetched encoder list (skips querying ffmpeg)

    Returns:
        The selected codec
    """
    platform = platform or sys.platform
    if encoders is None:
        encoders = list_encoders(ffmpeg_path)

    if platform == "darwin" and VideoCodec.VIDEOTOOLBOX.value in encoders:
        return VideoCodec.VIDEOTOOLBOX

    if (
        platform.startswith("linux")
        and VideoCodec.VAAPI.value in encoders
        and vaapi_device
        and os.path.exists(vaapi_device)
    ):
        return VideoCodec.VAAPI

    return VideoCodec.LIBX264


def build_toolchain() -> Toolchain:
    """Resolve binaries and codec from settings.

    Raises:
        ToolNotFoundError: If ffmpeg or ffprobe is missing
    """
    paths = resolve_tool_paths(settings.FFMPEG_PATH, settings.FFPROBE_PATH)

    if settings.VIDEO_CODEC == "auto":
        codec = detect_video_codec(paths.ffmpeg, vaapi_device=settings.VAAPI_DEVICE)
    else:
        codec = VideoCodec(settings.VIDEO_CODEC)

    toolchain = Toolchain(
        paths=paths,
        video_codec=codec,
        vaapi_device=settings.VAAPI_DEVICE if codec is VideoCodec.VAAPI else None,
    )
    logger.info(
        f"Toolchain ready: ffmpeg={paths.ffmpeg} ffprobe={paths.ffprobe} codec={codec.value}"
    )
    return toolchain
