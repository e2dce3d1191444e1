"""Tests for tool discovery and codec detection."""

import sys
from unittest.mock import MagicMock, patch

# Mock celery_app before importing transcoding modules
sys.modules["hlsvod.core.celery_app"] = MagicMock()

import pytest

from hlsvod.modules.transcoding.toolchain import (
    ToolNotFoundError,
    VideoCodec,
    detect_video_codec,
    list_encoders,
    resolve_tool_paths,
)

ENCODERS_OUTPUT = """Encoders:
 V..... = Video
 A..... = Audio
 ------
 V....D libx264              libx264 H.264 / AVC / MPEG-4 AVC / MPEG-4 part 10 (codec h264)
 V....D h264_vaapi           H.264/AVC (VAAPI) (codec h264)
 A....D aac                  AAC (Advanced Audio Coding)
"""


class TestResolveToolPaths:

    def test_found_on_path(self) -> None:
        with patch("shutil.which", side_effect=lambda name: f"/usr/bin/{name}"):
            paths = resolve_tool_paths()
        assert paths.ffmpeg == "/usr/bin/ffmpeg"
        assert paths.ffprobe == "/usr/bin/ffprobe"

    def test_missing_ffprobe_named(self) -> None:
        def which(name):
            return "/usr/bin/ffmpeg" if name == "ffmpeg" else None

        with patch("shutil.which", side_effect=which):
            with pytest.raises(ToolNotFoundError) as exc_info:
                resolve_tool_paths()
        assert exc_info.value.tool == "ffprobe"

    def test_explicit_executable_path(self, tmp_path) -> None:
        ffmpeg = tmp_path / "ffmpeg"
        ffprobe = tmp_path / "ffprobe"
        for binary in (ffmpeg, ffprobe):
            binary.write_text("#!/bin/sh\n")
            binary.chmod(0o755)

        paths = resolve_tool_paths(str(ffmpeg), str(ffprobe))
        assert paths.ffmpeg == str(ffmpeg)
        assert paths.ffprobe == str(ffprobe)

    def test_explicit_path_that_does_not_exist(self, tmp_path) -> None:
        with patch("shutil.which", return_value=None):
            with pytest.raises(ToolNotFoundError) as exc_info:
                resolve_tool_paths(str(tmp_path / "nope"), None)
        assert exc_info.value.tool == "ffmpeg"


class TestDetectVideoCodec:

    def test_macos_with_videotoolbox(self) -> None:
        codec = detect_video_codec("ffmpeg", platform="darwin", encoders={"libx264", "h264_videotoolbox"})
        assert codec is VideoCodec.VIDEOTOOLBOX

    def test_macos_without_videotoolbox(self) -> None:
        assert detect_video_codec("ffmpeg", platform="darwin", encoders={"libx264"}) is VideoCodec.LIBX264

    def test_linux_with_vaapi_device(self, tmp_path) -> None:
        device = tmp_path / "renderD128"
        device.touch()
        codec = detect_video_codec(
            "ffmpeg", platform="linux", vaapi_device=str(device), encoders={"libx264", "h264_vaapi"}
        )
        assert codec is VideoCodec.VAAPI
        assert codec.is_hardware

    def test_linux_without_render_device(self, tmp_path) -> None:
        codec = detect_video_codec(
            "ffmpeg", platform="linux", vaapi_device=str(tmp_path / "missing"), encoders={"h264_vaapi"}
        )
        assert codec is VideoCodec.LIBX264

    def test_other_platforms_use_software(self) -> None:
        codec = detect_video_codec("ffmpeg", platform="win32", encoders={"h264_videotoolbox", "h264_vaapi"})
        assert codec is VideoCodec.LIBX264
        assert not codec.is_hardware


class TestListEncoders:

    def test_parses_encoder_names(self) -> None:
        completed = MagicMock(stdout=ENCODERS_OUTPUT)
        with patch("subprocess.run", return_value=completed):
            encoders = list_encoders("ffmpeg")
        assert {"libx264", "h264_vaapi", "aac"} <= encoders
        assert "=" not in encoders

    def test_missing_binary(self) -> None:
        with patch("subprocess.run", side_effect=FileNotFoundError("ffmpeg")):
            with pytest.raises(ToolNotFoundError):
                list_encoders("ffmpeg")
