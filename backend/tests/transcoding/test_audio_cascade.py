"""Tests for the per-resolution audio fallback cascade."""

import sys
from pathlib import Path
from typing import Iterable
from unittest.mock import MagicMock

# Mock celery_app before importing transcoding modules
sys.modules["hlsvod.core.celery_app"] = MagicMock()

import pytest

from hlsvod.modules.transcoding.cascade import AudioFallbackCascade
from hlsvod.modules.transcoding.ffmpeg import (
    AUDIO_STRATEGIES,
    AudioStrategy,
    EncodeError,
    EncodeRequest,
    EncodeResult,
)
from hlsvod.modules.transcoding.models import AudioMode, get_resolution
from hlsvod.modules.transcoding.storage import HLSStorage
from hlsvod.modules.transcoding.toolchain import ToolNotFoundError


class FakeInvoker:
    """Fails for the given modes, succeeds otherwise, and records every call."""

    def __init__(self, failing_modes: Iterable[AudioMode] = (), error: Exception = None):
        self.failing_modes = set(failing_modes)
        self.error = error
        self.calls: list[AudioMode] = []
        self.dir_contents_at_call: list[list[str]] = []

    async def encode(self, request: EncodeRequest, strategy: AudioStrategy) -> EncodeResult:
        self.calls.append(strategy.mode)
        self.dir_contents_at_call.append(sorted(p.name for p in request.output_dir.iterdir()))
        if self.error is not None:
            raise self.error

        # Leave partial output behind, like a real failed encode would
        (request.output_dir / "seg_000.ts").write_bytes(b"partial")
        if strategy.mode in self.failing_modes:
            raise EncodeError(
                f"ffmpeg exited with code 1 ({strategy.mode.value})",
                mode=strategy.mode,
                returncode=1,
                diagnostic="Invalid data found when processing input",
            )
        request.playlist_path.write_text("#EXTM3U\n", encoding="utf-8")
        return EncodeResult(mode=strategy.mode, playlist_path=request.playlist_path, elapsed_seconds=0.1)


class TestAudioStrategies:
    """The fixed strategy table."""

    def test_fallback_order(self) -> None:
        assert [s.mode for s in AUDIO_STRATEGIES] == [
            AudioMode.NORMAL,
            AudioMode.COPY,
            AudioMode.FILTERED,
            AudioMode.AGGRESSIVE,
            AudioMode.NONE,
        ]

    def test_every_strategy_tolerates_corrupt_input(self) -> None:
        for strategy in AUDIO_STRATEGIES:
            fflags = strategy.input_options[strategy.input_options.index("-fflags") + 1]
            assert "+discardcorrupt" in fflags

    def test_none_mode_drops_audio(self) -> None:
        assert AUDIO_STRATEGIES[-1].audio_codec is None


class TestAudioFallbackCascade:
    """Ordering and stopping behaviour of the cascade."""

    @pytest.mark.asyncio
    async def test_first_mode_success_stops_cascade(self, tmp_path: Path) -> None:
        invoker = FakeInvoker()
        cascade = AudioFallbackCascade(invoker)

        outcome = await cascade.run(tmp_path / "in.mp4", get_resolution("720p"), tmp_path / "720p")

        assert outcome.succeeded
        assert outcome.audio_mode is AudioMode.NORMAL
        assert invoker.calls == [AudioMode.NORMAL]
        assert outcome.failures == []

    @pytest.mark.asyncio
    async def test_falls_back_until_filtered_succeeds(self, tmp_path: Path) -> None:
        invoker = FakeInvoker(failing_modes=[AudioMode.NORMAL, AudioMode.COPY])
        cascade = AudioFallbackCascade(invoker)

        outcome = await cascade.run(tmp_path / "in.mp4", get_resolution("480p"), tmp_path / "480p")

        assert outcome.succeeded
        assert outcome.audio_mode is AudioMode.FILTERED
        assert invoker.calls == [AudioMode.NORMAL, AudioMode.COPY, AudioMode.FILTERED]
        assert [f.mode for f in outcome.failures] == [AudioMode.NORMAL, AudioMode.COPY]
        assert outcome.failures[0].diagnostic == "Invalid data found when processing input"
        assert outcome.playlist_path == tmp_path / "480p" / "index.m3u8"

    @pytest.mark.asyncio
    async def test_all_modes_failing_exhausts_resolution(self, tmp_path: Path) -> None:
        invoker = FakeInvoker(failing_modes=list(AudioMode))
        cascade = AudioFallbackCascade(invoker)

        outcome = await cascade.run(tmp_path / "in.mp4", get_resolution("360p"), tmp_path / "360p")

        assert not outcome.succeeded
        assert outcome.audio_mode is None
        assert outcome.playlist_path is None
        assert invoker.calls == [s.mode for s in AUDIO_STRATEGIES]
        assert len(outcome.failures) == len(AUDIO_STRATEGIES)

    @pytest.mark.asyncio
    async def test_output_dir_emptied_before_each_attempt(self, tmp_path: Path) -> None:
        storage = HLSStorage(tmp_path)
        output_dir = storage.rendition_dir("abc", "240p")
        output_dir.mkdir(parents=True)
        (output_dir / "seg_099.ts").write_bytes(b"stale")
        invoker = FakeInvoker(failing_modes=[AudioMode.NORMAL])
        cascade = AudioFallbackCascade(invoker, reset_output_dir=storage.reset_rendition_dir)

        outcome = await cascade.run(tmp_path / "in.mp4", get_resolution("240p"), output_dir)

        assert outcome.succeeded
        assert invoker.dir_contents_at_call == [[], []]
        assert sorted(p.name for p in output_dir.iterdir()) == ["index.m3u8", "seg_000.ts"]

    @pytest.mark.asyncio
    async def test_without_reset_output_dir_is_only_created(self, tmp_path: Path) -> None:
        output_dir = tmp_path / "720p"
        invoker = FakeInvoker()
        cascade = AudioFallbackCascade(invoker)

        await cascade.run(tmp_path / "in.mp4", get_resolution("720p"), output_dir)

        assert invoker.dir_contents_at_call == [[]]
        assert output_dir.is_dir()

    @pytest.mark.asyncio
    async def test_missing_tool_propagates(self, tmp_path: Path) -> None:
        invoker = FakeInvoker(error=ToolNotFoundError("ffmpeg"))
        cascade = AudioFallbackCascade(invoker)

        with pytest.raises(ToolNotFoundError):
            await cascade.run(tmp_path / "in.mp4", get_resolution("720p"), tmp_path / "720p")
        assert invoker.calls == [AudioMode.NORMAL]

    @pytest.mark.asyncio
    async def test_custom_strategy_order(self, tmp_path: Path) -> None:
        strategies = [s for s in AUDIO_STRATEGIES if s.mode in (AudioMode.NONE, AudioMode.COPY)]
        invoker = FakeInvoker(failing_modes=[AudioMode.COPY])
        cascade = AudioFallbackCascade(invoker, strategies=strategies)

        outcome = await cascade.run(tmp_path / "in.mp4", get_resolution("720p"), tmp_path / "720p")

        assert outcome.audio_mode is AudioMode.NONE
        assert invoker.calls == [AudioMode.COPY, AudioMode.NONE]

    def test_empty_strategy_list_rejected(self) -> None:
        with pytest.raises(ValueError):
            AudioFallbackCascade(FakeInvoker(), strategies=[])
