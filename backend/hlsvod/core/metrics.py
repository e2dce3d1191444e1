"""Prometheus metrics for the transcoding pipeline.

Tracks run outcomes, per-rendition outcomes, which audio mode rescued a
rendition, and how long encoder invocations take.
"""

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    CollectorRegistry,
    generate_latest,
    multiprocess,
)
import os

# Create a custom registry for our metrics
REGISTRY = CollectorRegistry()

# Check if running in multiprocess mode (e.g., celery prefork workers)
if "PROMETHEUS_MULTIPROC_DIR" in os.environ or "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "hls_transcoder_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# Transcode Run Metrics
# ============================================
TRANSCODE_RUNS_TOTAL = Counter(
    "transcode_runs_total",
    "Transcode runs by terminal status",
    ["status"],
    registry=REGISTRY,
)

TRANSCODE_RUN_DURATION_SECONDS = Histogram(
    "transcode_run_duration_seconds",
    "Wall time of a whole transcode run",
    buckets=[10, 30, 60, 120, 300, 600, 1200, 1800, 3600, 7200],
    registry=REGISTRY,
)

TRANSCODES_IN_PROGRESS = Gauge(
    "transcodes_in_progress",
    "Number of transcode runs currently executing",
    registry=REGISTRY,
)


# ============================================
# Rendition / Cascade Metrics
# ============================================
RENDITION_OUTCOMES_TOTAL = Counter(
    "transcode_rendition_outcomes_total",
    "Rendition outcomes by resolution",
    ["resolution", "outcome"],
    registry=REGISTRY,
)

AUDIO_MODE_SUCCESS_TOTAL = Counter(
    "transcode_audio_mode_success_total",
    "Audio handling mode that produced a playable rendition",
    ["mode"],
    registry=REGISTRY,
)

ENCODE_ATTEMPT_DURATION_SECONDS = Histogram(
    "transcode_encode_attempt_duration_seconds",
    "Duration of a single encoder invocation",
    ["mode", "outcome"],
    buckets=[1, 5, 15, 30, 60, 120, 300, 600, 1800, 3600],
    registry=REGISTRY,
)

THUMBNAIL_FAILURES_TOTAL = Counter(
    "transcode_thumbnail_failures_total",
    "Thumbnail generation failures",
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def set_app_info(version: str, environment: str) -> None:
    """Set application info metric."""
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })
