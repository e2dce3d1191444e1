"""Top-level transcode driver.

Started -> Probing -> Selecting -> Encoding -> Finalizing -> Ready | Error

A run always ends with exactly one terminal write to the video record.
Failures inside a stage are translated into the next coarser outcome: an
audio mode failure is retried by the cascade, an exhausted resolution is
recorded as absent, and a run with no surviving resolution (or any
unexpected fault) commits status=error with no derived fields.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol, Sequence, Union

from hlsvod.core.logging import correlation_scope, log_error, log_info, log_warning
from hlsvod.core.metrics import (
    THUMBNAIL_FAILURES_TOTAL,
    TRANSCODE_RUN_DURATION_SECONDS,
    TRANSCODE_RUNS_TOTAL,
    TRANSCODES_IN_PROGRESS,
)
from hlsvod.core.tracing import create_span, record_exception
from hlsvod.modules.transcoding.abr import VariantStream, select_resolutions, write_master_playlist
from hlsvod.modules.transcoding.cascade import AudioFallbackCascade, RenditionOutcome
from hlsvod.modules.transcoding.ffmpeg import EncodeError
from hlsvod.modules.transcoding.models import RESOLUTION_LADDER, ResolutionSpec, VideoStatus
from hlsvod.modules.transcoding.probe import MediaMetadata, MediaProber
from hlsvod.modules.transcoding.repository import ReadyUpdate, TerminalStateError
from hlsvod.modules.transcoding.storage import HLSStorage
from hlsvod.modules.transcoding.toolchain import ToolNotFoundError

logger = logging.getLogger(__name__)


class TranscodeStage(str, Enum):
    STARTED = "started"
    PROBING = "probing"
    SELECTING = "selecting"
    ENCODING = "encoding"
    FINALIZING = "finalizing"
    READY = "ready"
    ERROR = "error"
    SUPERSEDED = "superseded"


class RecordWriter(Protocol):
    async def commit_ready(self, video_id: str, update: ReadyUpdate) -> None:
        ...

    async def commit_error(self, video_id: str) -> None:
        ...


class ThumbnailGenerator(Protocol):
    async def generate_thumbnail(
        self,
        source_path: Path,
        output_path: Path,
        offset_seconds: float = 1.0,
        width: int = 640,
    ) -> Path:
        ...


@dataclass
class TranscodeReport:
    """What happened during one run. Diagnostic only, never persisted."""

    video_id: str
    status: VideoStatus = VideoStatus.PROCESSING
    stage: TranscodeStage = TranscodeStage.STARTED
    metadata: Optional[MediaMetadata] = None
    selected: list[ResolutionSpec] = field(default_factory=list)
    outcomes: list[RenditionOutcome] = field(default_factory=list)
    master_playlist_path: Optional[Path] = None
    thumbnail_path: Optional[Path] = None
    error: Optional[str] = None

    @property
    def succeeded_labels(self) -> list[str]:
        return [o.label for o in self.outcomes if o.succeeded]

    def to_dict(self) -> dict:
        return {
            "video_id": self.video_id,
            "status": self.status.value,
            "stage": self.stage.value,
            "renditions": {
                o.label: (o.audio_mode.value if o.audio_mode else None) for o in self.outcomes
            },
            "error": self.error,
        }


class TranscodeOrchestrator:
    """Runs the whole pipeline for one uploaded video."""

    def __init__(
        self,
        prober: MediaProber,
        cascade: AudioFallbackCascade,
        thumbnailer: ThumbnailGenerator,
        storage: HLSStorage,
        writer: RecordWriter,
        ladder: Sequence[ResolutionSpec] = RESOLUTION_LADDER,
        max_parallel_renditions: int = 1,
        cleanup_failed_renditions: bool = True,
        thumbnail_offset: float = 1.0,
        thumbnail_width: int = 640,
    ):
        """Initialize orchestrator.

        Args:
            prober: Reads duration and dimensions of the source
            cascade: Produces one rendition through the audio fallbacks
            thumbnailer: Captures the poster frame
            storage: Artifact layout below the deployment root
            writer: Commits the terminal record state
            ladder: Resolution presets, highest quality first
            max_parallel_renditions: Cascades allowed to run at once (1 = sequential)
            cleanup_failed_renditions: Delete output of renditions/runs that failed
            thumbnail_offset: Seconds into the source for the poster frame
            thumbnail_width: Poster frame width, height keeps aspect ratio
        """
        self.prober = prober
        self.cascade = cascade
        self.thumbnailer = thumbnailer
        self.storage = storage
        self.writer = writer
        self.ladder = tuple(ladder)
        self.max_parallel_renditions = max(1, max_parallel_renditions)
        self.cleanup_failed_renditions = cleanup_failed_renditions
        self.thumbnail_offset = thumbnail_offset
        self.thumbnail_width = thumbnail_width

    async def run(self, video_id: str, source_path: Union[str, Path]) -> TranscodeReport:
        """Transcode a source into an HLS rendition set.

        Never raises except for cancellation, which still commits
        status=error before propagating.
        """
        report = TranscodeReport(video_id=video_id)
        started = time.monotonic()

        with correlation_scope(video_id), create_span(
            "transcode.run", {"video.id": video_id, "source.path": str(source_path)}
        ):
            TRANSCODES_IN_PROGRESS.inc()
            try:
                await self._execute(report, Path(source_path))
            except asyncio.CancelledError as e:
                record_exception(e)
                log_warning(logger, f"Transcode of {video_id} cancelled during {report.stage.value}")
                await self._fail(report, "cancelled")
                raise
            except TerminalStateError as e:
                log_warning(logger, f"Video {video_id} was finalized elsewhere: {e}")
                report.stage = TranscodeStage.SUPERSEDED
                report.error = str(e)
                TRANSCODE_RUNS_TOTAL.labels(status=TranscodeStage.SUPERSEDED.value).inc()
            except Exception as e:
                record_exception(e)
                log_error(
                    logger,
                    f"Transcode of {video_id} failed during {report.stage.value}: {e}",
                    exception=e,
                    stage=report.stage.value,
                )
                await self._fail(report, str(e))
            finally:
                TRANSCODES_IN_PROGRESS.dec()
                TRANSCODE_RUN_DURATION_SECONDS.observe(time.monotonic() - started)

        return report

    async def _execute(self, report: TranscodeReport, source_path: Path) -> None:
        video_id = report.video_id
        log_info(logger, f"Transcode started for {video_id}", source=str(source_path))

        if not source_path.is_file():
            raise FileNotFoundError(f"Source file not found: {source_path}")

        report.stage = TranscodeStage.PROBING
        with create_span("transcode.probe"):
            metadata = await self.prober.probe(source_path)
        report.metadata = metadata
        logger.info(
            f"Probed {video_id}: {metadata.width}x{metadata.height}, {metadata.duration:.2f}s"
        )

        report.stage = TranscodeStage.SELECTING
        report.selected = select_resolutions(metadata.width, metadata.height, self.ladder)
        logger.info(f"Selected resolutions: {', '.join(s.label for s in report.selected)}")

        report.stage = TranscodeStage.ENCODING
        with create_span("transcode.encode", {"renditions": len(report.selected)}):
            report.outcomes = await self._encode_all(video_id, source_path, report.selected)

        successes = [o for o in report.outcomes if o.succeeded]
        if not successes:
            await self._fail(report, "no resolution survived the audio fallback cascade")
            return

        report.stage = TranscodeStage.FINALIZING
        with create_span("transcode.finalize"):
            report.thumbnail_path = await self._generate_thumbnail(video_id, source_path)
            report.master_playlist_path = write_master_playlist(
                self.storage.master_playlist_path(video_id),
                [VariantStream.from_resolution(o.resolution) for o in successes],
            )

            rendition_paths: dict[str, Optional[str]] = {spec.label: None for spec in self.ladder}
            for outcome in successes:
                rendition_paths[outcome.label] = self.storage.relative(outcome.playlist_path)

            update = ReadyUpdate(
                master_playlist_path=self.storage.relative(report.master_playlist_path),
                rendition_paths=rendition_paths,
                duration=metadata.duration,
                width=metadata.width,
                height=metadata.height,
                thumbnail_path=(
                    self.storage.relative(report.thumbnail_path) if report.thumbnail_path else None
                ),
            )
            await self.writer.commit_ready(video_id, update)

        report.status = VideoStatus.READY
        report.stage = TranscodeStage.READY
        TRANSCODE_RUNS_TOTAL.labels(status=VideoStatus.READY.value).inc()
        log_info(
            logger,
            f"Transcode of {video_id} ready with {len(successes)}/{len(report.outcomes)} renditions",
            renditions=report.succeeded_labels,
        )

    async def _encode_all(
        self,
        video_id: str,
        source_path: Path,
        resolutions: Sequence[ResolutionSpec],
    ) -> list[RenditionOutcome]:
        """Run the cascade for every selected resolution; results keep ladder order."""
        if self.max_parallel_renditions == 1:
            return [await self._encode_one(video_id, source_path, spec) for spec in resolutions]

        semaphore = asyncio.Semaphore(self.max_parallel_renditions)

        async def bounded(spec: ResolutionSpec) -> RenditionOutcome:
            async with semaphore:
                return await self._encode_one(video_id, source_path, spec)

        tasks = [asyncio.create_task(bounded(spec)) for spec in resolutions]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _encode_one(
        self,
        video_id: str,
        source_path: Path,
        spec: ResolutionSpec,
    ) -> RenditionOutcome:
        output_dir = self.storage.rendition_dir(video_id, spec.label)
        with create_span("transcode.rendition", {"resolution": spec.label}):
            outcome = await self.cascade.run(source_path, spec, output_dir)
        if not outcome.succeeded and self.cleanup_failed_renditions:
            self.storage.remove_rendition(video_id, spec.label)
        return outcome

    async def _generate_thumbnail(self, video_id: str, source_path: Path) -> Optional[Path]:
        """Poster frame; failure is logged and otherwise ignored."""
        try:
            return await self.thumbnailer.generate_thumbnail(
                source_path,
                self.storage.thumbnail_path(video_id),
                offset_seconds=self.thumbnail_offset,
                width=self.thumbnail_width,
            )
        except (EncodeError, ToolNotFoundError, OSError) as e:
            THUMBNAIL_FAILURES_TOTAL.inc()
            log_warning(logger, f"Thumbnail generation failed for {video_id}: {e}")
            return None

    async def _fail(self, report: TranscodeReport, reason: str) -> None:
        """Commit status=error and drop the run's HLS output."""
        report.status = VideoStatus.ERROR
        report.stage = TranscodeStage.ERROR
        report.error = reason
        TRANSCODE_RUNS_TOTAL.labels(status=VideoStatus.ERROR.value).inc()

        if self.cleanup_failed_renditions:
            self.storage.remove_video_outputs(report.video_id)

        try:
            await self.writer.commit_error(report.video_id)
        except TerminalStateError as e:
            log_warning(logger, f"Video {report.video_id} already terminal, error not recorded: {e}")
        except Exception as e:
            log_error(logger, f"Could not record error state for {report.video_id}", exception=e)
            return

        log_info(logger, f"Transcode of {report.video_id} ended in error: {reason}")
