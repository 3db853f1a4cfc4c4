"""Celery tasks for the transcoding pipeline.

Workers run the async orchestrator on one event loop per process so that
pooled database and Redis connections stay bound to a single loop.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Optional

from celery import Task

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.database import async_session_maker
from app.modules.transcoding.exceptions import ExternalServiceError, TranscodingError
from app.modules.transcoding.models import VideoStatus
from app.modules.transcoding.schemas import ProcessingStatus
from app.modules.transcoding.service import build_delivery_service

logger = logging.getLogger(__name__)

_loop: Optional[asyncio.AbstractEventLoop] = None


def run_async(coro):
    """Run a coroutine on the worker's event loop."""
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
    return _loop.run_until_complete(coro)


def next_poll_action(
    status: Optional[ProcessingStatus],
    started_at: float,
    now: float,
    timeout_seconds: int,
) -> str:
    """Decide what a poll task does after one observation.

    Returns:
        ``"done"`` once the video left Processing, ``"timeout"`` when the
        polling budget is spent, otherwise ``"reschedule"``
    """
    if status is not None and status.status != VideoStatus.PROCESSING:
        return "done"
    if now - started_at >= timeout_seconds:
        return "timeout"
    return "reschedule"


class TranscodeTask(Task):
    """Base task for pipeline operations."""

    abstract = True

    def on_failure(self, exc: Exception, task_id: str, args: tuple, kwargs: dict, einfo: Any) -> None:
        video_id = args[0] if args else kwargs.get("video_id")
        logger.error("Task %s failed for video %s: %s", self.name, video_id, exc)
        super().on_failure(exc, task_id, args, kwargs, einfo)


@celery_app.task(bind=True, base=TranscodeTask)
def process_video_task(self: TranscodeTask, video_id: str, source_path: str) -> dict:
    """Run one pipeline for an uploaded video.

    Cloud runs hand over to ``poll_transcode_job_task`` once submitted.
    """
    try:
        status = run_async(_process_video(uuid.UUID(video_id), source_path))
    except TranscodingError as e:
        return {"success": False, "video_id": video_id, "error": e.message}

    if status.status == VideoStatus.PROCESSING and status.job_id:
        poll_transcode_job_task.apply_async(
            args=[video_id, time.time()],
            countdown=settings.TRANSCODE_POLL_INTERVAL_SECONDS,
        )

    return {"success": True, **status.model_dump(mode="json")}


async def _process_video(video_id: uuid.UUID, source_path: str) -> ProcessingStatus:
    async with async_session_maker() as session:
        service = build_delivery_service(session)
        return await service.start_pipeline(video_id, source_path)


@celery_app.task(bind=True, base=TranscodeTask)
def poll_transcode_job_task(self: TranscodeTask, video_id: str, started_at: float) -> dict:
    """Poll a cloud job once and re-schedule until terminal or timed out."""
    status = None
    try:
        status = run_async(_poll_job(uuid.UUID(video_id)))
    except ExternalServiceError as e:
        logger.warning("Polling video %s failed, retrying: %s", video_id, e.message)

    action = next_poll_action(
        status, started_at, time.time(), settings.TRANSCODE_POLL_TIMEOUT_SECONDS
    )
    if action == "reschedule":
        self.apply_async(
            args=[video_id, started_at],
            countdown=settings.TRANSCODE_POLL_INTERVAL_SECONDS,
        )
    elif action == "timeout":
        waited = int(time.time() - started_at)
        status = run_async(_mark_timed_out(uuid.UUID(video_id), waited))

    return {
        "action": action,
        "video_id": video_id,
        "status": status.status.value if status else None,
        "progress": status.progress if status else None,
    }


async def _poll_job(video_id: uuid.UUID) -> ProcessingStatus:
    async with async_session_maker() as session:
        service = build_delivery_service(session)
        return await service.poll_job(video_id)


async def _mark_timed_out(video_id: uuid.UUID, waited: int) -> ProcessingStatus:
    async with async_session_maker() as session:
        service = build_delivery_service(session)
        return await service.orchestrator.mark_timed_out(video_id, waited)


@celery_app.task(bind=True, base=TranscodeTask)
def publish_renditions_task(self: TranscodeTask, video_id: str) -> dict:
    """Republish a Ready video's local renditions to remote storage."""
    try:
        moved = run_async(_publish_renditions(uuid.UUID(video_id)))
    except TranscodingError as e:
        return {"success": False, "video_id": video_id, "error": e.message}
    return {"success": True, "video_id": video_id, "published": moved}


async def _publish_renditions(video_id: uuid.UUID) -> int:
    async with async_session_maker() as session:
        service = build_delivery_service(session)
        return await service.publish_local_renditions(video_id)
