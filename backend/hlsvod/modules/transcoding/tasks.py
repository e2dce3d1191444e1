"""Celery tasks for the transcoding pipeline.

Each upload gets one task; the request that accepted the upload only
enqueues it and returns.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Optional, Union

from celery import Task
from celery.exceptions import SoftTimeLimitExceeded
from celery.signals import worker_process_init

from hlsvod.core.celery_app import celery_app
from hlsvod.core.config import settings
from hlsvod.core.database import async_session_maker, engine
from hlsvod.core.logging import correlation_scope, log_error
from hlsvod.modules.transcoding.cascade import AudioFallbackCascade
from hlsvod.modules.transcoding.ffmpeg import FFmpegInvoker
from hlsvod.modules.transcoding.models import VideoStatus
from hlsvod.modules.transcoding.orchestrator import TranscodeOrchestrator, TranscodeReport
from hlsvod.modules.transcoding.probe import MediaProber
from hlsvod.modules.transcoding.repository import (
    TerminalStateError,
    VideoNotFoundError,
    VideoRecordWriter,
    VideoRepository,
)
from hlsvod.modules.transcoding.storage import HLSStorage
from hlsvod.modules.transcoding.toolchain import Toolchain, ToolNotFoundError, build_toolchain

logger = logging.getLogger(__name__)

_toolchain: Optional[Toolchain] = None


def get_toolchain() -> Toolchain:
    """Resolve the toolchain once per process.

    Raises:
        ToolNotFoundError: If ffmpeg or ffprobe is missing
    """
    global _toolchain
    if _toolchain is None:
        _toolchain = build_toolchain()
    return _toolchain


@worker_process_init.connect
def _resolve_toolchain_on_startup(**_: Any) -> None:
    try:
        get_toolchain()
    except ToolNotFoundError as e:
        logger.error(f"Transcoding toolchain unavailable, every run will fail: {e}")


def _timeout(value: float) -> Optional[float]:
    return value if value and value > 0 else None


def build_orchestrator(
    toolchain: Toolchain,
    session_factory: Callable,
    storage: Optional[HLSStorage] = None,
) -> TranscodeOrchestrator:
    """Wire the pipeline from settings."""
    storage = storage or HLSStorage(settings.UPLOADS_DIR)
    invoker = FFmpegInvoker(
        toolchain,
        segment_seconds=settings.HLS_SEGMENT_SECONDS,
        threads=settings.ENCODE_THREADS,
        software_preset=settings.SOFTWARE_PRESET,
        encode_timeout=_timeout(settings.ENCODE_TIMEOUT_SECONDS),
        thumbnail_timeout=_timeout(settings.THUMBNAIL_TIMEOUT_SECONDS),
    )
    return TranscodeOrchestrator(
        prober=MediaProber(toolchain.paths.ffprobe, timeout=_timeout(settings.PROBE_TIMEOUT_SECONDS)),
        cascade=AudioFallbackCascade(invoker, reset_output_dir=storage.reset_rendition_dir),
        thumbnailer=invoker,
        storage=storage,
        writer=VideoRecordWriter(session_factory),
        max_parallel_renditions=settings.MAX_PARALLEL_RENDITIONS,
        cleanup_failed_renditions=settings.CLEANUP_FAILED_RENDITIONS,
        thumbnail_offset=settings.THUMBNAIL_OFFSET_SECONDS,
        thumbnail_width=settings.THUMBNAIL_WIDTH,
    )


async def run_transcode(
    video_id: str,
    source_path: Union[str, Path],
    session_factory: Optional[Callable] = None,
    toolchain: Optional[Toolchain] = None,
) -> dict:
    """Run one transcode in the current event loop.

    A record that is missing or already terminal is left alone. A missing
    toolchain is fatal to the run and recorded as status=error.
    """
    session_factory = session_factory or async_session_maker

    async with session_factory() as session:
        video = await VideoRepository(session).get_by_id(video_id)
    if video is None:
        return {"success": False, "video_id": video_id, "error": "Video not found"}
    if video.is_terminal:
        return {"success": False, "video_id": video_id, "error": f"Video already {video.status}"}

    try:
        toolchain = toolchain or get_toolchain()
    except ToolNotFoundError as e:
        with correlation_scope(video_id):
            log_error(logger, f"Cannot transcode {video_id}: {e}", exception=e)
        try:
            await VideoRecordWriter(session_factory).commit_error(video_id)
        except (TerminalStateError, VideoNotFoundError) as commit_error:
            logger.warning(f"Could not record error for {video_id}: {commit_error}")
        return {"success": False, "video_id": video_id, "error": str(e)}

    orchestrator = build_orchestrator(toolchain, session_factory)
    report: TranscodeReport = await orchestrator.run(video_id, source_path)
    result = report.to_dict()
    result["success"] = report.status is VideoStatus.READY
    return result


async def _transcode_video_async(video_id: str, source_path: str) -> dict:
    try:
        return await run_transcode(video_id, source_path, session_factory=async_session_maker)
    finally:
        # Pooled connections are bound to this event loop
        await engine.dispose()


class TranscodeTask(Task):
    """Base task for transcode runs."""

    abstract = True
    max_retries = 0

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Last-resort error commit if the task itself blew up.

        Also reached when the soft time limit interrupts a run; the hard limit
        kills the worker process without calling this.
        """
        video_id = args[0] if args else kwargs.get("video_id")
        if isinstance(exc, SoftTimeLimitExceeded):
            logger.error(f"Transcode of {video_id} exceeded its time limit")
        if video_id:
            asyncio.run(self._mark_video_failed(video_id))

    async def _mark_video_failed(self, video_id: str) -> None:
        try:
            await VideoRecordWriter(async_session_maker).commit_error(video_id)
        except (TerminalStateError, VideoNotFoundError) as e:
            logger.warning(f"Not marking {video_id} failed: {e}")
        finally:
            await engine.dispose()


@celery_app.task(bind=True, base=TranscodeTask, name="transcoding.transcode_video")
def transcode_video_task(self: TranscodeTask, video_id: str, source_path: str) -> dict:
    """Transcode an uploaded video into an HLS rendition set.

    Args:
        video_id: ID of the video record (status=processing)
        source_path: Path of the validated raw upload

    Returns:
        dict: Run summary
    """
    return asyncio.run(_transcode_video_async(video_id, source_path))


def start_transcode(source_path: Union[str, Path], video_id: str) -> None:
    """Enqueue a transcode run. Completion is observed through the video record."""
    transcode_video_task.delay(video_id, str(source_path))
    logger.info(f"Queued transcode for {video_id}")
