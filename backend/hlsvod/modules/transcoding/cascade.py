"""Audio fallback cascade for a single resolution.

Malformed audio is the most common reason an encode fails, so the same
video transform is retried with progressively more permissive (and finally
destructive) audio handling until one attempt produces a playlist.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence

from hlsvod.core.logging import log_error, log_warning
from hlsvod.core.metrics import AUDIO_MODE_SUCCESS_TOTAL, RENDITION_OUTCOMES_TOTAL
from hlsvod.modules.transcoding.ffmpeg import (
    AUDIO_STRATEGIES,
    AudioStrategy,
    EncodeError,
    EncodeRequest,
    EncodeResult,
)
from hlsvod.modules.transcoding.models import AudioMode, ResolutionSpec

logger = logging.getLogger(__name__)


class EncodeInvoker(Protocol):
    async def encode(self, request: EncodeRequest, strategy: AudioStrategy) -> EncodeResult:
        ...


@dataclass
class AttemptFailure:
    """A superseded attempt, kept for diagnostics only."""

    mode: AudioMode
    message: str
    diagnostic: str = ""


@dataclass
class RenditionOutcome:
    """Result of running the cascade for one resolution."""

    resolution: ResolutionSpec
    succeeded: bool
    audio_mode: Optional[AudioMode] = None
    playlist_path: Optional[Path] = None
    failures: list[AttemptFailure] = field(default_factory=list)

    @property
    def label(self) -> str:
        return self.resolution.label

    @property
    def bandwidth(self) -> int:
        return self.resolution.bandwidth


class AudioFallbackCascade:
    """Walks the audio strategies in order, stopping at the first success."""

    def __init__(
        self,
        invoker: EncodeInvoker,
        strategies: Sequence[AudioStrategy] = AUDIO_STRATEGIES,
        reset_output_dir: Optional[Callable[[Path], Path]] = None,
    ):
        """Initialize cascade.

        Args:
            invoker: Runs a single encode attempt
            strategies: Audio strategies in fallback order
            reset_output_dir: Empties the output dir before each attempt;
                without it the dir is only created
        """
        if not strategies:
            raise ValueError("Cascade needs at least one audio strategy")
        self.invoker = invoker
        self.strategies = tuple(strategies)
        self.reset_output_dir = reset_output_dir

    def _prepare_output_dir(self, output_dir: Path) -> None:
        if self.reset_output_dir is not None:
            self.reset_output_dir(output_dir)
        else:
            output_dir.mkdir(parents=True, exist_ok=True)

    async def run(
        self,
        source_path: Path,
        resolution: ResolutionSpec,
        output_dir: Path,
    ) -> RenditionOutcome:
        """Produce one rendition, falling back through the audio strategies.

        Individual attempt failures never escape; only exhaustion of every
        strategy yields an unsuccessful outcome. ToolNotFoundError and
        cancellation propagate.
        """
        request = EncodeRequest(
            source_path=source_path,
            resolution=resolution,
            output_dir=output_dir,
        )
        outcome = RenditionOutcome(resolution=resolution, succeeded=False)

        for strategy in self.strategies:
            self._prepare_output_dir(output_dir)
            logger.info(f"[{resolution.label}] encoding, audio: {strategy.description}")
            try:
                result = await self.invoker.encode(request, strategy)
            except EncodeError as e:
                outcome.failures.append(
                    AttemptFailure(mode=strategy.mode, message=str(e), diagnostic=e.diagnostic)
                )
                log_warning(
                    logger,
                    f"[{resolution.label}] audio mode '{strategy.mode.value}' failed: {e}",
                    resolution=resolution.label,
                    audio_mode=strategy.mode.value,
                    diagnostic=e.diagnostic,
                )
                continue

            outcome.succeeded = True
            outcome.audio_mode = result.mode
            outcome.playlist_path = result.playlist_path
            RENDITION_OUTCOMES_TOTAL.labels(resolution=resolution.label, outcome="success").inc()
            AUDIO_MODE_SUCCESS_TOTAL.labels(mode=result.mode.value).inc()
            logger.info(
                f"[{resolution.label}] rendition ready with audio mode '{result.mode.value}' "
                f"in {result.elapsed_seconds:.1f}s"
            )
            return outcome

        RENDITION_OUTCOMES_TOTAL.labels(resolution=resolution.label, outcome="exhausted").inc()
        log_error(
            logger,
            f"[{resolution.label}] all {len(self.strategies)} audio modes failed",
            resolution=resolution.label,
            attempted_modes=[f.mode.value for f in outcome.failures],
        )
        return outcome
