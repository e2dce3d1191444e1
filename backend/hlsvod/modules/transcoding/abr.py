"""Adaptive bitrate ladder selection and master playlist synthesis."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from hlsvod.modules.transcoding.ffmpeg import PLAYLIST_NAME
from hlsvod.modules.transcoding.models import RESOLUTION_LADDER, ResolutionSpec

MASTER_PLAYLIST_HEADER = "#EXTM3U\n#EXT-X-VERSION:3\n"


def select_resolutions(
    source_width: int,
    source_height: int,
    ladder: Sequence[ResolutionSpec] = RESOLUTION_LADDER,
) -> list[ResolutionSpec]:
    """Pick the ladder rungs worth producing for a source.

    A rung is kept when the source reaches its width OR its height, so a
    portrait or cropped source still gets the rungs one of its sides can
    feed. When nothing qualifies the lowest rung is used so at least one
    rendition is always attempted.

    Args:
        source_width: Probed source width (0 when unknown)
        source_height: Probed source height (0 when unknown)
        ladder: Presets ordered highest to lowest quality

    Returns:
        Selected presets in ladder order
    """
    if not ladder:
        raise ValueError("Resolution ladder is empty")

    selected = [
        spec for spec in ladder
        if source_width >= spec.width or source_height >= spec.height
    ]
    if not selected:
        selected = [ladder[-1]]
    return selected


@dataclass(frozen=True)
class VariantStream:
    """One EXT-X-STREAM-INF entry of the master playlist."""

    label: str
    bandwidth: int
    width: int
    height: int

    @classmethod
    def from_resolution(cls, spec: ResolutionSpec) -> "VariantStream":
        return cls(
            label=spec.label,
            bandwidth=spec.bandwidth,
            width=spec.width,
            height=spec.height,
        )

    @property
    def uri(self) -> str:
        """Playlist path relative to the master playlist."""
        return f"{self.label}/{PLAYLIST_NAME}"


def build_master_playlist(variants: Iterable[VariantStream]) -> str:
    """Render the master playlist, variants ordered by ascending bandwidth.

    Raises:
        ValueError: If there are no variants
    """
    ordered = sorted(variants, key=lambda v: v.bandwidth)
    if not ordered:
        raise ValueError("A master playlist needs at least one variant")

    stanzas = [
        f"#EXT-X-STREAM-INF:BANDWIDTH={v.bandwidth},RESOLUTION={v.width}x{v.height}\n{v.uri}\n"
        for v in ordered
    ]
    return MASTER_PLAYLIST_HEADER + "\n" + "\n".join(stanzas)


def write_master_playlist(path: Path, variants: Iterable[VariantStream]) -> Path:
    """Write the master playlist, replacing any previous one in one step."""
    content = build_master_playlist(variants)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(content, encoding="utf-8")
    os.replace(tmp_path, path)
    return path
