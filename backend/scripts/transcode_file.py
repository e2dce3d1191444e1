"""Transcode a local video file into HLS without a Celery worker.

Usage:
    python scripts/transcode_file.py path/to/video.mp4 [--video-id ID]
"""

import argparse
import asyncio
import json
import shutil
import sys
import uuid
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from hlsvod.core.config import settings
from hlsvod.core.database import async_session_maker, create_all, engine
from hlsvod.core.logging import setup_logging
from hlsvod.core.metrics import get_metrics
from hlsvod.modules.transcoding.repository import VideoRepository
from hlsvod.modules.transcoding.schemas import VideoStatusResponse
from hlsvod.modules.transcoding.storage import HLSStorage
from hlsvod.modules.transcoding.tasks import run_transcode


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Transcode a local video file into HLS")
    parser.add_argument("source", type=Path, help="Video file to transcode")
    parser.add_argument("--video-id", help="ID for the video record (random if omitted)")
    parser.add_argument(
        "--keep-source",
        action="store_true",
        help="Transcode the file in place instead of copying it into the raw upload dir",
    )
    parser.add_argument("--metrics", action="store_true", help="Print Prometheus metrics after the run")
    return parser.parse_args()


async def transcode_file(source: Path, video_id: str, keep_source: bool, show_metrics: bool = False) -> int:
    storage = HLSStorage(settings.UPLOADS_DIR)
    storage.ensure_directories()
    await create_all()

    if keep_source:
        source_path = source.resolve()
    else:
        source_path = storage.raw_path(video_id, source.suffix)
        shutil.copyfile(source, source_path)

    async with async_session_maker() as session:
        await VideoRepository(session).create(video_id=video_id, original_name=source.name)
        await session.commit()

    print(f"Transcoding {source.name} as {video_id}...")
    summary = await run_transcode(video_id, source_path)

    async with async_session_maker() as session:
        video = await VideoRepository(session).get_by_id(video_id)

    view = VideoStatusResponse.from_video(video)
    print(json.dumps(view.model_dump(mode="json", by_alias=True), indent=2))
    print()
    print(f"Renditions: {json.dumps(summary.get('renditions', {}))}")

    if show_metrics:
        print()
        print(get_metrics().decode("utf-8"))

    await engine.dispose()
    return 0 if summary.get("success") else 1


def main() -> int:
    args = parse_args()
    setup_logging(level=settings.LOG_LEVEL, json_format=False)

    if not args.source.is_file():
        print(f"✗ Source file not found: {args.source}")
        return 2

    video_id = args.video_id or uuid.uuid4().hex
    return asyncio.run(transcode_file(args.source, video_id, args.keep_source, args.metrics))


if __name__ == "__main__":
    sys.exit(main())
