"""On-disk artifact layout.

    {root}/raw/{video_id}{ext}              original upload
    {root}/hls/{video_id}/index.m3u8        master playlist
    {root}/hls/{video_id}/{label}/...       rendition playlist + seg_NNN.ts
    {root}/thumbs/{video_id}.jpg            thumbnail

Paths stored on the video record are relative to the root.
"""

import logging
import shutil
from pathlib import Path
from typing import Union

from hlsvod.modules.transcoding.ffmpeg import PLAYLIST_NAME

logger = logging.getLogger(__name__)

RAW_DIR = "raw"
HLS_DIR = "hls"
THUMBS_DIR = "thumbs"


class HLSStorage:
    """Resolves and manages artifact paths below a deployment root."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()

    @property
    def raw_dir(self) -> Path:
        return self.root / RAW_DIR

    @property
    def hls_root(self) -> Path:
        return self.root / HLS_DIR

    @property
    def thumbs_dir(self) -> Path:
        return self.root / THUMBS_DIR

    def ensure_directories(self) -> None:
        for directory in (self.raw_dir, self.hls_root, self.thumbs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def video_dir(self, video_id: str) -> Path:
        return self.hls_root / video_id

    def master_playlist_path(self, video_id: str) -> Path:
        return self.video_dir(video_id) / PLAYLIST_NAME

    def rendition_dir(self, video_id: str, label: str) -> Path:
        return self.video_dir(video_id) / label

    def rendition_playlist_path(self, video_id: str, label: str) -> Path:
        return self.rendition_dir(video_id, label) / PLAYLIST_NAME

    def thumbnail_path(self, video_id: str) -> Path:
        return self.thumbs_dir / f"{video_id}.jpg"

    def raw_path(self, video_id: str, extension: str) -> Path:
        if extension and not extension.startswith("."):
            extension = f".{extension}"
        return self.raw_dir / f"{video_id}{extension.lower()}"

    def relative(self, path: Path) -> str:
        """Path relative to the root, in POSIX form, as stored on the record."""
        return Path(path).resolve().relative_to(self.root).as_posix()

    def reset_rendition_dir(self, directory: Path) -> Path:
        """Empty a rendition directory so stale segments cannot leak into a new attempt.

        Raises:
            ValueError: If the directory is not below the HLS root
        """
        directory = Path(directory).resolve()
        if self.hls_root not in directory.parents:
            raise ValueError(f"{directory} is not below {self.hls_root}")
        if directory.exists():
            shutil.rmtree(directory)
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def remove_rendition(self, video_id: str, label: str) -> None:
        """Delete the partial output of a rendition that did not survive."""
        self._remove_tree(self.rendition_dir(video_id, label))

    def remove_video_outputs(self, video_id: str) -> None:
        """Delete every HLS artifact of a video (thumbnails are left alone)."""
        self._remove_tree(self.video_dir(video_id))

    def _remove_tree(self, directory: Path) -> None:
        if not directory.exists():
            return
        try:
            shutil.rmtree(directory)
        except OSError as e:
            logger.warning(f"Could not remove {directory}: {e}")
