"""Celery application configuration."""

from typing import Any

from celery import Celery
from celery.signals import setup_logging as celery_setup_logging
from celery.signals import worker_process_init, worker_process_shutdown

from hlsvod.core.config import settings
from hlsvod.core.logging import setup_logging
from hlsvod.core.metrics import set_app_info
from hlsvod.core.tracing import setup_tracing, shutdown_tracing

celery_app = Celery(
    "hls_transcoder",
    broker=settings.CELERY_BROKER_URL or settings.REDIS_URL,
    backend=settings.CELERY_RESULT_BACKEND or settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=settings.TRANSCODE_TASK_TIME_LIMIT_SECONDS,
    task_soft_time_limit=min(
        settings.TRANSCODE_TASK_SOFT_TIME_LIMIT_SECONDS,
        settings.TRANSCODE_TASK_TIME_LIMIT_SECONDS - 60,
    ),
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

celery_app.autodiscover_tasks(["hlsvod.modules.transcoding"])


@celery_setup_logging.connect
def _configure_logging(**_: Any) -> None:
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)


@worker_process_init.connect
def _configure_observability(**_: Any) -> None:
    # Span exporter threads do not survive the prefork fork
    setup_tracing(
        service_name=settings.PROJECT_NAME,
        service_version=settings.VERSION,
        environment=settings.ENVIRONMENT,
        otlp_endpoint=settings.OTLP_ENDPOINT,
        enable_console_export=settings.TRACING_CONSOLE_EXPORT,
    )
    set_app_info(version=settings.VERSION, environment=settings.ENVIRONMENT)


@worker_process_shutdown.connect
def _flush_spans(**_: Any) -> None:
    shutdown_tracing()
