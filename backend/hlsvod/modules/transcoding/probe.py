"""Source media inspection with ffprobe."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from hlsvod.modules.transcoding.ffmpeg import run_process, truncate_diagnostic

logger = logging.getLogger(__name__)


class ProbeError(Exception):
    """ffprobe could not be run or its output could not be understood."""
    pass


@dataclass(frozen=True)
class MediaMetadata:
    """What the pipeline needs to know about a source file."""

    duration: float
    width: int
    height: int

    @property
    def has_video(self) -> bool:
        return self.width > 0 and self.height > 0


def _as_float(value: Any) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    # ffprobe reports "N/A" for unknown and can yield nan/inf for broken headers
    if result != result or result in (float("inf"), float("-inf")) or result < 0:
        return 0.0
    return result


def _as_int(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def parse_probe_output(raw: str) -> MediaMetadata:
    """Parse ffprobe JSON (-show_format -show_streams).

    Missing video stream or duration yields zeros rather than an error:
    an audio-only upload is a data-quality signal, not a probe failure.

    Raises:
        ProbeError: If the text is not an ffprobe JSON document
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise ProbeError(f"Unparseable ffprobe output: {e}") from e

    if not isinstance(data, dict):
        raise ProbeError("Unparseable ffprobe output: expected a JSON object")

    streams = data.get("streams") or []
    fmt = data.get("format") or {}
    if not isinstance(streams, list) or not isinstance(fmt, dict):
        raise ProbeError("Unparseable ffprobe output: unexpected streams/format shape")

    video_stream: Optional[dict] = None
    for stream in streams:
        if isinstance(stream, dict) and stream.get("codec_type") == "video":
            video_stream = stream
            break

    width = height = 0
    if video_stream is not None:
        width = _as_int(video_stream.get("width"))
        height = _as_int(video_stream.get("height"))

    return MediaMetadata(
        duration=_as_float(fmt.get("duration")),
        width=width,
        height=height,
    )


class MediaProber:
    """Extracts duration and dimensions from a media file."""

    def __init__(self, ffprobe_path: str, timeout: Optional[float] = 30.0):
        """Initialize prober.

        Args:
            ffprobe_path: Path to ffprobe binary
            timeout: Bound on one ffprobe invocation (None disables)
        """
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout

    def build_command(self, source_path: Path) -> list[str]:
        return [
            self.ffprobe_path,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(source_path),
        ]

    async def probe(self, source_path: Path) -> MediaMetadata:
        """Probe a source file.

        Raises:
            ProbeError: If ffprobe fails, times out, or emits unparseable output
            ToolNotFoundError: If ffprobe cannot be launched
        """
        result = await run_process(self.build_command(source_path), timeout=self.timeout, context="ffprobe")

        if result.timed_out:
            raise ProbeError(f"ffprobe timed out after {self.timeout}s")
        if result.returncode != 0:
            detail = truncate_diagnostic(result.stderr) or "no diagnostic output"
            raise ProbeError(f"ffprobe exited with code {result.returncode}: {detail}")

        metadata = parse_probe_output(result.stdout)
        if not metadata.has_video:
            logger.warning(f"No video stream dimensions found in {source_path}")
        return metadata
