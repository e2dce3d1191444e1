"""FFmpeg invocation for HLS renditions and thumbnails.

One encode attempt = one resolution rendered with one audio strategy. The
audio strategies are plain data records; the fallback order lives in
AUDIO_STRATEGIES and is walked by the cascade.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from hlsvod.core.metrics import ENCODE_ATTEMPT_DURATION_SECONDS
from hlsvod.modules.transcoding.models import AudioMode, ResolutionSpec
from hlsvod.modules.transcoding.toolchain import Toolchain, ToolNotFoundError, VideoCodec

logger = logging.getLogger(__name__)

# Keep the tail of ffmpeg's stderr; the cause is almost always at the end.
DIAGNOSTIC_MAX_LENGTH = 2000

PLAYLIST_NAME = "index.m3u8"
SEGMENT_PATTERN = "seg_%03d.ts"


class EncodeError(Exception):
    """A single external encoder invocation failed."""

    def __init__(
        self,
        message: str,
        mode: Optional[AudioMode] = None,
        returncode: Optional[int] = None,
        diagnostic: str = "",
        timed_out: bool = False,
    ):
        self.mode = mode
        self.returncode = returncode
        self.diagnostic = diagnostic
        self.timed_out = timed_out
        super().__init__(message)


@dataclass(frozen=True)
class AudioStrategy:
    """Audio handling for one encode attempt.

    audio_codec is None to drop audio, "copy" to pass it through untouched,
    otherwise the codec to re-encode with. audio_graph, when set, is a
    filter_complex graph that must produce the [aout] label.
    """

    mode: AudioMode
    description: str
    input_options: tuple[str, ...]
    audio_codec: Optional[str] = "aac"
    audio_filter: Optional[str] = None
    audio_graph: Optional[str] = None


BASELINE_INPUT_FLAGS = ("-fflags", "+discardcorrupt+genpts")

AUDIO_STRATEGIES: tuple[AudioStrategy, ...] = (
    AudioStrategy(
        mode=AudioMode.NORMAL,
        description="re-encode audio to stereo AAC",
        input_options=BASELINE_INPUT_FLAGS,
    ),
    AudioStrategy(
        mode=AudioMode.COPY,
        description="pass the source audio stream through",
        input_options=("-fflags", "+discardcorrupt"),
        audio_codec="copy",
    ),
    AudioStrategy(
        mode=AudioMode.FILTERED,
        description="re-encode with channel layout normalization",
        input_options=BASELINE_INPUT_FLAGS + ("-err_detect", "ignore_err"),
        audio_filter=(
            "aformat=channel_layouts=stereo,pan=stereo|c0=c0|c1=c1,"
            "aresample=async=1000:min_hard_comp=0.100000:first_pts=0"
        ),
    ),
    AudioStrategy(
        mode=AudioMode.AGGRESSIVE,
        description="force stereo through a filter graph, ignore timestamp errors",
        input_options=(
            "-fflags", "+discardcorrupt+genpts+igndts+nofillin",
            "-err_detect", "ignore_err",
            "-copyts",
            "-start_at_zero",
        ),
        audio_graph="[0:a:0]pan=stereo|c0=c0|c1=c1,aresample=async=1000[aout]",
    ),
    AudioStrategy(
        mode=AudioMode.NONE,
        description="drop audio",
        input_options=BASELINE_INPUT_FLAGS,
        audio_codec=None,
    ),
)


def get_audio_strategy(mode: AudioMode) -> AudioStrategy:
    for strategy in AUDIO_STRATEGIES:
        if strategy.mode == mode:
            return strategy
    raise KeyError(f"No audio strategy for mode {mode}")


@dataclass(frozen=True)
class EncodeRequest:
    """Inputs for rendering one resolution into its own directory."""

    source_path: Path
    resolution: ResolutionSpec
    output_dir: Path

    @property
    def playlist_path(self) -> Path:
        return self.output_dir / PLAYLIST_NAME

    @property
    def segment_pattern(self) -> Path:
        return self.output_dir / SEGMENT_PATTERN


@dataclass
class EncodeResult:
    """Successful encode attempt."""

    mode: AudioMode
    playlist_path: Path
    elapsed_seconds: float


@dataclass
class ProcessResult:
    """Outcome of running an external process."""

    returncode: Optional[int]
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    args: list[str] = field(default_factory=list)


def truncate_diagnostic(text: str, max_length: int = DIAGNOSTIC_MAX_LENGTH) -> str:
    """Keep the last max_length characters of a diagnostic."""
    text = text.strip()
    if len(text) <= max_length:
        return text
    return "..." + text[-max_length:]


def format_kbps(bits_per_second: int) -> str:
    """5_000_000 -> '5000k'."""
    return f"{bits_per_second // 1000}k"


async def cleanup_process(process: asyncio.subprocess.Process, context: str = "FFmpeg") -> None:
    """Kill a subprocess that is still running and reap it.

    The process may exit between the returncode check and kill().
    """
    if process.returncode is None:
        try:
            process.kill()
        except (ProcessLookupError, OSError):
            pass
        try:
            await asyncio.wait_for(process.wait(), timeout=5)
        except asyncio.TimeoutError:
            logger.warning(f"{context} process {process.pid} did not terminate after kill")


async def run_process(
    cmd: Sequence[str],
    timeout: Optional[float] = None,
    context: str = "FFmpeg",
) -> ProcessResult:
    """Run an external command to completion.

    A timeout kills the process and returns a result with timed_out=True.
    Cancellation kills the process and re-raises.

    Raises:
        ToolNotFoundError: If the binary cannot be launched at all
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise ToolNotFoundError(Path(cmd[0]).name, str(e)) from e
    except PermissionError as e:
        raise ToolNotFoundError(Path(cmd[0]).name, str(e)) from e

    try:
        if timeout:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        else:
            stdout, stderr = await process.communicate()
    except asyncio.TimeoutError:
        logger.warning(f"{context} exceeded {timeout:.0f}s limit, killing pid {process.pid}")
        await cleanup_process(process, context)
        return ProcessResult(returncode=process.returncode, timed_out=True, args=list(cmd))
    except asyncio.CancelledError:
        await cleanup_process(process, context)
        raise

    return ProcessResult(
        returncode=process.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
        args=list(cmd),
    )


class FFmpegInvoker:
    """Builds and runs ffmpeg commands for HLS renditions and thumbnails."""

    def __init__(
        self,
        toolchain: Toolchain,
        segment_seconds: int = 10,
        threads: int = 4,
        software_preset: str = "superfast",
        encode_timeout: Optional[float] = None,
        thumbnail_timeout: Optional[float] = 60.0,
    ):
        """Initialize invoker.

        Args:
            toolchain: Resolved binaries and video codec
            segment_seconds: Target HLS segment duration
            threads: Encoder thread count
            software_preset: x264 preset used when encoding in software
            encode_timeout: Bound on one encode invocation (None disables)
            thumbnail_timeout: Bound on thumbnail extraction (None disables)
        """
        self.toolchain = toolchain
        self.segment_seconds = segment_seconds
        self.threads = threads
        self.software_preset = software_preset
        self.encode_timeout = encode_timeout
        self.thumbnail_timeout = thumbnail_timeout

    @property
    def ffmpeg_path(self) -> str:
        return self.toolchain.paths.ffmpeg

    def _video_filter(self, resolution: ResolutionSpec) -> str:
        w, h = resolution.width, resolution.height
        vf = (
            f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
            f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2,setsar=1"
        )
        if self.toolchain.video_codec is VideoCodec.VAAPI:
            vf += ",format=nv12,hwupload"
        return vf

    def _video_args(self, resolution: ResolutionSpec) -> list[str]:
        codec = self.toolchain.video_codec
        bitrate = resolution.video_bitrate
        args = [
            "-c:v", codec.value,
            "-b:v", format_kbps(bitrate),
            "-maxrate", format_kbps(int(bitrate * 1.5)),
            "-bufsize", format_kbps(bitrate * 2),
        ]
        if codec is VideoCodec.LIBX264:
            args.extend(["-preset", self.software_preset, "-pix_fmt", "yuv420p"])
        elif codec is VideoCodec.VIDEOTOOLBOX:
            args.extend(["-pix_fmt", "yuv420p"])
        return args

    def _audio_args(self, strategy: AudioStrategy, resolution: ResolutionSpec) -> list[str]:
        if strategy.audio_codec is None:
            return ["-an"]
        if strategy.audio_codec == "copy":
            return ["-c:a", "copy"]

        args = [
            "-c:a", strategy.audio_codec,
            "-b:a", format_kbps(resolution.audio_bitrate),
            "-ac", "2",
            "-ar", "48000",
        ]
        if strategy.audio_filter:
            args.extend(["-af", strategy.audio_filter])
        return args

    def build_hls_command(self, request: EncodeRequest, strategy: AudioStrategy) -> list[str]:
        """Build the ffmpeg command for one resolution and audio strategy."""
        cmd = [
            self.ffmpeg_path,
            "-hide_banner",
            "-nostdin",
            "-loglevel", "error",
            "-y",
        ]
        if self.toolchain.video_codec is VideoCodec.VAAPI and self.toolchain.vaapi_device:
            cmd.extend(["-vaapi_device", self.toolchain.vaapi_device])

        cmd.extend(strategy.input_options)
        cmd.extend(["-i", str(request.source_path)])

        if strategy.audio_graph:
            cmd.extend([
                "-filter_complex", strategy.audio_graph,
                "-map", "0:v:0",
                "-map", "[aout]",
            ])

        cmd.extend(["-vf", self._video_filter(request.resolution)])
        cmd.extend(self._video_args(request.resolution))
        cmd.extend(self._audio_args(strategy, request.resolution))
        cmd.extend([
            "-hls_time", str(self.segment_seconds),
            "-hls_list_size", "0",
            "-hls_segment_filename", str(request.segment_pattern),
            "-max_muxing_queue_size", "1024",
            "-threads", str(self.threads),
            "-f", "hls",
            str(request.playlist_path),
        ])
        return cmd

    async def encode(self, request: EncodeRequest, strategy: AudioStrategy) -> EncodeResult:
        """Run one encode attempt to completion.

        Partial output left behind by a failed attempt is not removed here.

        Raises:
            EncodeError: If ffmpeg exits non-zero, times out, or writes no playlist
            ToolNotFoundError: If ffmpeg cannot be launched
        """
        request.output_dir.mkdir(parents=True, exist_ok=True)
        cmd = self.build_hls_command(request, strategy)
        logger.debug(f"Running: {' '.join(cmd)}")

        started = time.monotonic()
        result = await run_process(
            cmd,
            timeout=self.encode_timeout,
            context=f"FFmpeg {request.resolution.label}/{strategy.mode.value}",
        )
        elapsed = time.monotonic() - started

        error: Optional[EncodeError] = None
        if result.timed_out:
            error = EncodeError(
                f"ffmpeg timed out after {elapsed:.0f}s",
                mode=strategy.mode,
                timed_out=True,
            )
        elif result.returncode != 0:
            error = EncodeError(
                f"ffmpeg exited with code {result.returncode}",
                mode=strategy.mode,
                returncode=result.returncode,
                diagnostic=truncate_diagnostic(result.stderr),
            )
        elif not request.playlist_path.exists():
            error = EncodeError(
                "ffmpeg reported success but wrote no playlist",
                mode=strategy.mode,
                returncode=result.returncode,
                diagnostic=truncate_diagnostic(result.stderr),
            )

        outcome = "failure" if error else "success"
        ENCODE_ATTEMPT_DURATION_SECONDS.labels(mode=strategy.mode.value, outcome=outcome).observe(elapsed)

        if error:
            raise error

        return EncodeResult(
            mode=strategy.mode,
            playlist_path=request.playlist_path,
            elapsed_seconds=elapsed,
        )

    def build_thumbnail_command(
        self,
        source_path: Path,
        output_path: Path,
        offset_seconds: float = 1.0,
        width: int = 640,
    ) -> list[str]:
        """Build the ffmpeg command that grabs one scaled frame."""
        # Input seeking (-ss before -i) jumps to the nearest keyframe
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-nostdin",
            "-loglevel", "error",
            "-y",
            "-ss", str(offset_seconds),
            "-i", str(source_path),
            "-vframes", "1",
            "-vf", f"scale={width}:-2",
            str(output_path),
        ]

    async def generate_thumbnail(
        self,
        source_path: Path,
        output_path: Path,
        offset_seconds: float = 1.0,
        width: int = 640,
    ) -> Path:
        """Capture a single frame as a JPEG.

        Raises:
            EncodeError: If ffmpeg fails, times out, or writes nothing
            ToolNotFoundError: If ffmpeg cannot be launched
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_thumbnail_command(source_path, output_path, offset_seconds, width)

        result = await run_process(cmd, timeout=self.thumbnail_timeout, context="FFmpeg thumbnail")

        if result.timed_out:
            raise EncodeError("Thumbnail generation timed out", timed_out=True)
        if result.returncode != 0:
            raise EncodeError(
                f"Thumbnail generation failed with code {result.returncode}",
                returncode=result.returncode,
                diagnostic=truncate_diagnostic(result.stderr),
            )
        if not output_path.exists():
            raise EncodeError("Thumbnail generation wrote no file")

        return output_path
