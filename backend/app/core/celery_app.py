"""Celery application configuration."""

from celery import Celery
from celery.signals import setup_logging as setup_logging_signal, worker_init, worker_process_init

from app.core.config import settings
from app.core.logging import setup_logging
from app.core.metrics import set_app_info, start_metrics_server

celery_app = Celery(
    "video_delivery",
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
    task_time_limit=3600,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

celery_app.autodiscover_tasks(["app.modules.transcoding"])


@setup_logging_signal.connect
def configure_logging(**kwargs) -> None:
    """Replace Celery's logging setup with the structured one."""
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON_FORMAT)


@worker_init.connect
def start_worker_metrics(**kwargs) -> None:
    start_metrics_server(settings.METRICS_PORT)


@worker_process_init.connect
def init_worker_process(**kwargs) -> None:
    set_app_info(settings.VERSION, settings.ENVIRONMENT)
