"""Service layer for transcoding orchestration and video delivery.

``TranscodingOrchestrator`` drives one pipeline run per video and is the
only writer of ``Video.status`` and ``Video.processing_job_id``.
``VideoDeliveryService`` is the facade used by the rest of the application.
"""

import asyncio
import logging
import os
import uuid
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, settings
from app.core.logging import bind_correlation_id, log_error, log_info, log_warning
from app.core.metrics import CLOUD_JOB_POLLS_TOTAL, PIPELINE_RUNS_TOTAL
from app.core.storage import Storage, StorageConfig, get_storage
from app.modules.transcoding.abr import (
    build_ladder,
    exceeds_failure_threshold,
    lowest_rung,
    select_optimal_quality,
    validate_quality_ladder,
)
from app.modules.transcoding.backends import (
    BackendResult,
    CloudEncodingBackend,
    EncodingBackend,
    LocalEncodingBackend,
)
from app.modules.transcoding.cache import (
    METADATA_TTL,
    PROCESSING_TTL,
    RENDITIONS_TTL,
    RedisCacheBackend,
    VideoCache,
)
from app.modules.transcoding.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    PipelineExhaustedError,
    TranscodeJobNotFoundError,
    TranscodingError,
    VideoNotFoundError,
)
from app.modules.transcoding.ffmpeg import FFmpegTranscoder
from app.modules.transcoding.manifest import ManifestGenerator, is_external_url
from app.modules.transcoding.mediaconvert import MediaConvertAdapter, MediaConvertConfig
from app.modules.transcoding.models import Video, VideoStatus
from app.modules.transcoding.repository import RenditionRepository, VideoRepository
from app.modules.transcoding.schemas import (
    JobState,
    PlaylistResult,
    ProcessingStatus,
    QualityRung,
    RenditionCreate,
    RenditionResponse,
    VideoMetadataSnapshot,
)
from app.modules.transcoding.state_machine import ensure_transition
from app.modules.transcoding.storage import RenditionPublisher

logger = logging.getLogger(__name__)

THUMBNAIL_FILENAME = "thumbnail.jpg"
THUMBNAIL_POSITION = 0.1  # share of the duration

STATUS_MESSAGES = {
    VideoStatus.UPLOADING: "Waiting for upload to complete",
    VideoStatus.PROCESSING: "Video is still processing",
    VideoStatus.READY: "Video is ready for playback",
    VideoStatus.FAILED: "Processing failed, no renditions available",
    VideoStatus.DELETED: "Video has been deleted",
}


@dataclass(frozen=True)
class TranscodingConfig:
    """Explicit pipeline configuration, fixed per orchestrator instance."""
    ladder: tuple[QualityRung, ...]
    cloud_enabled: bool = False
    max_rung_failure_ratio: float = 1.0
    generate_thumbnails: bool = True
    publish_local_renditions: bool = False
    processed_output_dir: str = "./uploads/processed"
    processed_url_prefix: str = "/uploads/processed"
    poll_interval_seconds: int = 15
    poll_timeout_seconds: int = 3600

    @classmethod
    def from_settings(cls, app_settings: Settings = settings) -> "TranscodingConfig":
        """Build configuration from settings.

        Raises:
            ConfigurationError: If the quality ladder is invalid
        """
        ladder = build_ladder(app_settings.QUALITY_LADDER)
        is_valid, errors = validate_quality_ladder(ladder)
        if not is_valid:
            raise ConfigurationError("Invalid quality ladder: " + "; ".join(errors))

        return cls(
            ladder=ladder,
            cloud_enabled=app_settings.cloud_credentials_configured,
            max_rung_failure_ratio=app_settings.MAX_RUNG_FAILURE_RATIO,
            generate_thumbnails=app_settings.GENERATE_THUMBNAILS,
            publish_local_renditions=app_settings.PUBLISH_LOCAL_RENDITIONS,
            processed_output_dir=app_settings.PROCESSED_OUTPUT_DIR,
            processed_url_prefix=app_settings.PROCESSED_URL_PREFIX.rstrip("/"),
            poll_interval_seconds=app_settings.TRANSCODE_POLL_INTERVAL_SECONDS,
            poll_timeout_seconds=app_settings.TRANSCODE_POLL_TIMEOUT_SECONDS,
        )

    @property
    def strategy(self) -> str:
        return "cloud" if self.cloud_enabled else "local"


@dataclass
class SourceMetadata:
    duration: Optional[int] = None
    thumbnail_url: Optional[str] = None


def cloud_progress(job_progress: int) -> int:
    """Map job progress onto the 30-95 band left after submission."""
    return 30 + job_progress * 65 // 100


def status_snapshot(video: Video) -> dict:
    """Processing status as derived from the persisted row."""
    status = VideoStatus(video.status)
    if status == VideoStatus.READY:
        progress = 100
    elif status == VideoStatus.PROCESSING:
        progress = 30 if video.processing_job_id else 10
    else:
        progress = 0

    return {
        "video_id": str(video.id),
        "status": status.value,
        "progress": progress,
        "message": STATUS_MESSAGES[status],
        "error": video.last_error if status == VideoStatus.FAILED else None,
        "job_id": video.processing_job_id,
    }


class TranscodingOrchestrator:
    """Drives pipeline runs and keeps persisted status authoritative.

    The strategy is chosen from ``config.cloud_enabled`` only. Every
    mutation re-reads the video first and is dropped when the video was
    deleted in the meantime.
    """

    def __init__(
        self,
        session: AsyncSession,
        config: TranscodingConfig,
        cache: VideoCache,
        local_backend: Optional[LocalEncodingBackend] = None,
        cloud_backend: Optional[CloudEncodingBackend] = None,
        media_tool: Optional[FFmpegTranscoder] = None,
        publisher: Optional[RenditionPublisher] = None,
    ):
        self.session = session
        self.config = config
        self.cache = cache
        self.local_backend = local_backend
        self.cloud_backend = cloud_backend
        self.media_tool = media_tool
        self.publisher = publisher
        self.video_repo = VideoRepository(session)
        self.rendition_repo = RenditionRepository(session)

    def select_backend(self) -> EncodingBackend:
        """Backend for the configured strategy.

        Raises:
            ConfigurationError: The strategy has no backend wired in
        """
        backend = self.cloud_backend if self.config.cloud_enabled else self.local_backend
        if backend is None:
            raise ConfigurationError(f"No {self.config.strategy} encoding backend configured")
        return backend

    # Pipeline

    async def start(self, video_id: uuid.UUID, source_path: str) -> ProcessingStatus:
        """Start a pipeline run for an Uploading video.

        The local strategy finishes before returning (Ready or Failed). The
        cloud strategy returns once the job is submitted; completion is
        observed through ``poll_job``.

        Raises:
            VideoNotFoundError: Unknown video
            InvalidStatusTransitionError: Video is not Uploading
            ConfigurationError: Cloud strategy misconfigured (video is Failed)
            ExternalServiceError: Staging, submission or a cache write failed (video is Failed)
        """
        with bind_correlation_id(str(video_id)):
            video = await self.video_repo.get_fresh(video_id)
            if video is None:
                raise VideoNotFoundError(video_id)
            ensure_transition(video.status, VideoStatus.PROCESSING)

            await self.video_repo.set_status(video, VideoStatus.PROCESSING)
            await self.session.commit()

            strategy = self.config.strategy
            log_info(logger, "Pipeline started", video_id=str(video_id), strategy=strategy)

            try:
                await self.cache.cache_processing_status(
                    video_id, VideoStatus.PROCESSING.value, 10, "Processing started"
                )
                backend = self.select_backend()
                metadata = await self._collect_source_metadata(video_id, source_path)
                result = await backend.run(video_id, source_path, self.config.ladder)
                if result.completed:
                    await self._finish_local(video_id, result, metadata)
                else:
                    await self._record_job(video_id, result.job_id, metadata)
            except Exception as e:
                PIPELINE_RUNS_TOTAL.labels(strategy=strategy, outcome="error").inc()
                log_error(logger, "Pipeline run failed", exception=e, video_id=str(video_id))
                await self._fail(video_id, getattr(e, "message", None) or str(e))
                raise

            return await self._current_status(video_id)

    async def _collect_source_metadata(self, video_id, source_path: str) -> SourceMetadata:
        """Probe duration and extract a thumbnail. Never fails the run."""
        metadata = SourceMetadata()
        if self.media_tool is None:
            return metadata

        try:
            probed = await asyncio.to_thread(self.media_tool.probe_metadata, source_path)
            metadata.duration = probed.duration
        except TranscodingError as e:
            log_warning(logger, f"Could not probe source: {e.message}", video_id=str(video_id))
            return metadata

        if self.config.generate_thumbnails and metadata.duration:
            output_path = os.path.join(
                self.config.processed_output_dir, str(video_id), THUMBNAIL_FILENAME
            )
            try:
                await asyncio.to_thread(
                    self.media_tool.generate_thumbnail,
                    source_path,
                    output_path,
                    metadata.duration * THUMBNAIL_POSITION,
                )
                metadata.thumbnail_url = (
                    f"{self.config.processed_url_prefix}/{video_id}/{THUMBNAIL_FILENAME}"
                )
            except TranscodingError as e:
                log_warning(logger, f"Thumbnail skipped: {e.message}", video_id=str(video_id))

        return metadata

    async def _get_mutable_video(self, video_id) -> Optional[Video]:
        """Fresh row, or None when the video vanished or was deleted."""
        video = await self.video_repo.get_fresh(video_id)
        if video is None or video.status == VideoStatus.DELETED.value:
            log_warning(logger, "Video deleted during processing, dropping update", video_id=str(video_id))
            return None
        return video

    async def _finish_local(
        self,
        video_id,
        result: BackendResult,
        metadata: SourceMetadata,
    ) -> None:
        total = len(result.renditions) + len(result.failures)
        failed = len(result.failures)

        if exceeds_failure_threshold(total, failed, self.config.max_rung_failure_ratio):
            error = PipelineExhaustedError(result.failures, total=total)
            log_error(logger, error.message, video_id=str(video_id), failures=result.failures)
            PIPELINE_RUNS_TOTAL.labels(strategy=result.strategy, outcome="failed").inc()
            await self._fail(video_id, error.message)
            return

        video = await self._get_mutable_video(video_id)
        if video is None:
            PIPELINE_RUNS_TOTAL.labels(strategy=result.strategy, outcome="discarded").inc()
            return

        await self._persist_ready(video, result.renditions, metadata)
        PIPELINE_RUNS_TOTAL.labels(strategy=result.strategy, outcome="ready").inc()
        log_info(
            logger,
            "Pipeline finished",
            video_id=str(video_id),
            renditions=len(result.renditions),
            failed_rungs=sorted(result.failures),
        )

        if self.config.publish_local_renditions and self.publisher and self.publisher.is_remote:
            try:
                await self.publish_local_renditions(video_id)
            except ExternalServiceError as e:
                log_warning(logger, f"Publishing skipped: {e.message}", video_id=str(video_id))

    async def _persist_ready(
        self,
        video: Video,
        renditions: Sequence[RenditionCreate],
        metadata: Optional[SourceMetadata] = None,
    ) -> None:
        for data in renditions:
            await self.rendition_repo.get_or_create(video.id, data)
        if metadata:
            await self.video_repo.update_metadata(
                video, duration=metadata.duration, thumbnail_url=metadata.thumbnail_url
            )
        ensure_transition(video.status, VideoStatus.READY)
        await self.video_repo.set_status(video, VideoStatus.READY)
        await self.session.commit()
        await self._invalidate(video.id)

    async def _record_job(self, video_id, job_id: Optional[str], metadata: SourceMetadata) -> None:
        video = await self._get_mutable_video(video_id)
        if video is None:
            log_warning(logger, f"Cloud job {job_id} orphaned by deletion", video_id=str(video_id))
            return

        await self.video_repo.update_metadata(
            video, duration=metadata.duration, thumbnail_url=metadata.thumbnail_url
        )
        await self.video_repo.set_job_id(video, job_id)
        await self.session.commit()
        await self.cache.cache_processing_status(
            video_id,
            VideoStatus.PROCESSING.value,
            30,
            "Transcoding job submitted",
            job_id=job_id,
        )
        PIPELINE_RUNS_TOTAL.labels(strategy="cloud", outcome="submitted").inc()
        log_info(logger, "Cloud job submitted", video_id=str(video_id), job_id=job_id)

    async def _fail(self, video_id, message: str) -> None:
        """Mark a Processing video Failed and cache the error."""
        await self.session.rollback()
        video = await self._get_mutable_video(video_id)
        if video is None or video.status != VideoStatus.PROCESSING.value:
            return

        await self.video_repo.set_status(video, VideoStatus.FAILED, error=message)
        await self.session.commit()
        try:
            await self._invalidate(video_id)
            await self.cache.set_json(
                self.cache.processing_key(video_id), status_snapshot(video), PROCESSING_TTL
            )
        except ExternalServiceError as e:
            # Failed is already committed
            log_warning(logger, f"Failed status not cached: {e.message}", video_id=str(video_id))

    async def _invalidate(self, video_id) -> None:
        qualities = {rung.name for rung in self.config.ladder}
        qualities.update(r.quality for r in await self.rendition_repo.list_for_video(video_id))
        await self.cache.invalidate_video(video_id, qualities)

    # Cloud job tracking

    async def poll_job(self, video_id: uuid.UUID) -> ProcessingStatus:
        """Observe the cloud job of a Processing video once.

        Calls on a video that already left Processing return its persisted
        status and change nothing.

        Raises:
            VideoNotFoundError: Unknown video
            TranscodeJobNotFoundError: Processing video without a job id
            ExternalServiceError: Status call failed; retry on the next poll
        """
        with bind_correlation_id(str(video_id)):
            video = await self.video_repo.get_fresh(video_id)
            if video is None:
                raise VideoNotFoundError(video_id)
            if video.status != VideoStatus.PROCESSING.value:
                return ProcessingStatus(**status_snapshot(video))
            if not video.processing_job_id:
                raise TranscodeJobNotFoundError(video_id)
            if self.cloud_backend is None:
                raise ConfigurationError("No cloud encoding backend configured")

            job_id = video.processing_job_id
            try:
                polled = await self.cloud_backend.poll(job_id, self.config.ladder)
                job = polled.status
                CLOUD_JOB_POLLS_TOTAL.labels(state=job.state.value).inc()

                if not job.state.is_terminal:
                    entry = await self.cache.cache_processing_status(
                        video_id,
                        VideoStatus.PROCESSING.value,
                        cloud_progress(job.progress),
                        f"Video is still processing ({job.state.value.lower()})",
                        job_id=job_id,
                    )
                    return ProcessingStatus(**entry)

                if job.state == JobState.ERROR:
                    PIPELINE_RUNS_TOTAL.labels(strategy="cloud", outcome="failed").inc()
                    await self._fail(video_id, job.error_message or f"Transcoding job {job_id} failed")
                elif not polled.renditions:
                    PIPELINE_RUNS_TOTAL.labels(strategy="cloud", outcome="failed").inc()
                    await self._fail(video_id, f"Transcoding job {job_id} produced no usable outputs")
                else:
                    video = await self._get_mutable_video(video_id)
                    if video is not None and video.status == VideoStatus.PROCESSING.value:
                        await self._persist_ready(video, polled.renditions)
                        PIPELINE_RUNS_TOTAL.labels(strategy="cloud", outcome="ready").inc()
                        log_info(
                            logger,
                            "Cloud job complete",
                            video_id=str(video_id),
                            job_id=job_id,
                            renditions=len(polled.renditions),
                        )
            except ExternalServiceError:
                raise
            except Exception as e:
                log_error(logger, "Polling failed", exception=e, video_id=str(video_id))
                await self._fail(video_id, getattr(e, "message", None) or str(e))
                raise

            return await self._current_status(video_id)

    async def mark_timed_out(self, video_id: uuid.UUID, waited_seconds: int) -> ProcessingStatus:
        """Fail a video whose job did not finish within the polling budget."""
        with bind_correlation_id(str(video_id)):
            video = await self.video_repo.get_fresh(video_id)
            if video is None:
                raise VideoNotFoundError(video_id)
            if video.status == VideoStatus.PROCESSING.value:
                log_warning(logger, "Transcoding timed out", video_id=str(video_id), waited=waited_seconds)
                PIPELINE_RUNS_TOTAL.labels(strategy="cloud", outcome="timeout").inc()
                await self._fail(video_id, f"Transcoding timed out after {waited_seconds}s")
            return await self._current_status(video_id)

    # Republishing

    async def publish_local_renditions(self, video_id: uuid.UUID) -> int:
        """Move local renditions of a Ready video to remote storage.

        Status never changes. Returns the number of renditions moved.

        Raises:
            ConfigurationError: No remote publisher configured
            ExternalServiceError: An upload failed; locations are unchanged
        """
        if self.publisher is None or not self.publisher.is_remote:
            raise ConfigurationError("Publishing requires a remote storage backend")
        if self.local_backend is None:
            raise ConfigurationError("No local encoding backend configured")

        video = await self._get_mutable_video(video_id)
        if video is None:
            return 0
        if video.status != VideoStatus.READY.value:
            log_warning(logger, "Only ready videos are published", video_id=str(video_id))
            return 0

        local = [
            r for r in await self.rendition_repo.list_for_video(video_id)
            if not is_external_url(r.playlist_url or r.file_path)
        ]
        if not local:
            return 0

        published = await asyncio.to_thread(
            self.publisher.publish_directory,
            video_id,
            self.local_backend.output_dir_for(video_id),
        )

        moved = 0
        for rendition in local:
            upload = published.get(os.path.basename(rendition.file_path))
            if upload is None:
                log_warning(logger, f"{rendition.quality} playlist was not published", video_id=str(video_id))
                continue
            await self.rendition_repo.update_location(rendition, upload.reference, upload.url)
            moved += 1

        await self.session.commit()
        await self._invalidate(video_id)
        log_info(logger, "Renditions published", video_id=str(video_id), count=moved)
        return moved

    # Status

    async def get_processing_status(self, video_id: uuid.UUID) -> ProcessingStatus:
        """Processing status, cache first.

        Raises:
            VideoNotFoundError: Unknown video
        """
        async def load() -> dict:
            video = await self.video_repo.get_by_id(video_id)
            if video is None:
                raise VideoNotFoundError(video_id)
            return status_snapshot(video)

        data = await self.cache.read_through(
            self.cache.processing_key(video_id), load, PROCESSING_TTL
        )
        return ProcessingStatus(**data)

    async def _current_status(self, video_id) -> ProcessingStatus:
        video = await self.video_repo.get_fresh(video_id)
        if video is None:
            raise VideoNotFoundError(video_id)
        cached = await self.cache.get_processing_status(video_id)
        if cached and cached.get("status") == video.status:
            return ProcessingStatus(**cached)
        return ProcessingStatus(**status_snapshot(video))


class VideoDeliveryService:
    """Facade over the orchestrator, manifests and quality selection."""

    def __init__(
        self,
        session: AsyncSession,
        orchestrator: TranscodingOrchestrator,
    ):
        self.session = session
        self.orchestrator = orchestrator
        self.config = orchestrator.config
        self.cache = orchestrator.cache
        self.manifests = ManifestGenerator(session, self.cache)
        self.video_repo = VideoRepository(session)
        self.rendition_repo = RenditionRepository(session)

    async def start_pipeline(self, video_id: uuid.UUID, source_path: str) -> ProcessingStatus:
        return await self.orchestrator.start(video_id, source_path)

    async def poll_job(self, video_id: uuid.UUID) -> ProcessingStatus:
        return await self.orchestrator.poll_job(video_id)

    async def get_processing_status(self, video_id: uuid.UUID) -> ProcessingStatus:
        return await self.orchestrator.get_processing_status(video_id)

    async def get_master_manifest(self, video_id: uuid.UUID) -> str:
        return await self.manifests.build_master_manifest(video_id)

    async def get_quality_playlist(self, video_id: uuid.UUID, quality: str) -> PlaylistResult:
        return await self.manifests.build_quality_playlist(video_id, quality)

    async def _get_live_video(self, video_id: uuid.UUID) -> Video:
        video = await self.video_repo.get_by_id(video_id)
        if video is None or video.status == VideoStatus.DELETED.value:
            raise VideoNotFoundError(video_id)
        return video

    async def get_video_metadata(self, video_id: uuid.UUID) -> VideoMetadataSnapshot:
        """Cached subset of the video row."""
        async def load() -> dict:
            video = await self._get_live_video(video_id)
            return VideoMetadataSnapshot.model_validate(video).model_dump(mode="json")

        data = await self.cache.read_through(
            self.cache.metadata_key(video_id), load, METADATA_TTL
        )
        return VideoMetadataSnapshot(**data)

    async def list_renditions(self, video_id: uuid.UUID) -> list[RenditionResponse]:
        """Renditions of a video, highest bitrate first, cache first."""
        async def load() -> list[dict]:
            await self._get_live_video(video_id)
            renditions = await self.rendition_repo.list_for_video(video_id)
            return [
                RenditionResponse.model_validate(r).model_dump(mode="json")
                for r in renditions
            ]

        data = await self.cache.read_through(
            self.cache.renditions_key(video_id), load, RENDITIONS_TTL
        )
        return [RenditionResponse(**item) for item in data]

    async def select_optimal_quality(self, video_id: uuid.UUID, bandwidth_kbps: float) -> str:
        """Quality label a client with this bandwidth should start with.

        Falls back to the lowest configured rung when no renditions exist.

        Raises:
            VideoNotFoundError: Unknown or deleted video
        """
        renditions = await self.list_renditions(video_id)
        default = lowest_rung(self.config.ladder).name
        return select_optimal_quality(renditions, bandwidth_kbps, default)

    async def replace_source(self, video_id: uuid.UUID, source_file_path: str) -> Video:
        """Accept a fresh upload for a Ready or Failed video.

        Existing renditions are removed and the video goes back to
        Uploading, ready for a new pipeline run.

        Raises:
            VideoNotFoundError: Unknown video
            InvalidStatusTransitionError: Video is Processing, Uploading or Deleted
        """
        video = await self.video_repo.get_fresh(video_id)
        if video is None:
            raise VideoNotFoundError(video_id)
        ensure_transition(video.status, VideoStatus.UPLOADING)

        qualities = {r.quality for r in await self.rendition_repo.list_for_video(video_id)}
        await self.rendition_repo.delete_for_video(video_id)
        await self.video_repo.replace_source(video, source_file_path)
        await self.session.commit()

        qualities.update(rung.name for rung in self.config.ladder)
        await self.cache.invalidate_video(video_id, qualities)
        logger.info("Source replaced for video %s", video_id)
        return video

    async def delete_video(self, video_id: uuid.UUID) -> Video:
        """Soft-delete a video. A running pipeline drops its late writes.

        Raises:
            VideoNotFoundError: Unknown video
            InvalidStatusTransitionError: Video is already deleted
        """
        video = await self.video_repo.get_fresh(video_id)
        if video is None:
            raise VideoNotFoundError(video_id)
        ensure_transition(video.status, VideoStatus.DELETED)

        await self.video_repo.soft_delete(video)
        await self.session.commit()

        qualities = {r.quality for r in await self.rendition_repo.list_for_video(video_id)}
        qualities.update(rung.name for rung in self.config.ladder)
        await self.cache.invalidate_video(video_id, qualities)
        logger.info("Video %s deleted", video_id)
        return video

    async def publish_local_renditions(self, video_id: uuid.UUID) -> int:
        return await self.orchestrator.publish_local_renditions(video_id)


def build_orchestrator(
    session: AsyncSession,
    app_settings: Settings = settings,
    cache: Optional[VideoCache] = None,
) -> TranscodingOrchestrator:
    """Wire an orchestrator from application settings."""
    config = TranscodingConfig.from_settings(app_settings)
    transcoder = FFmpegTranscoder(
        ffmpeg_path=app_settings.FFMPEG_PATH,
        ffprobe_path=app_settings.FFPROBE_PATH,
    )
    local_backend = LocalEncodingBackend(
        encoder=transcoder,
        output_root=config.processed_output_dir,
        url_prefix=config.processed_url_prefix,
        max_workers=app_settings.MAX_PARALLEL_ENCODES,
    )

    cloud_backend = None
    if config.cloud_enabled:
        mediaconvert_config = MediaConvertConfig.from_settings(app_settings)
        staging = Storage(
            StorageConfig(
                backend="s3",
                bucket=app_settings.AWS_S3_BUCKET,
                region=app_settings.AWS_REGION,
                access_key=app_settings.AWS_ACCESS_KEY_ID,
                secret_key=app_settings.AWS_SECRET_ACCESS_KEY,
                cdn_domain=app_settings.AWS_CLOUDFRONT_DOMAIN,
                cdn_enabled=bool(app_settings.AWS_CLOUDFRONT_DOMAIN),
            )
        )
        cloud_backend = CloudEncodingBackend(MediaConvertAdapter(mediaconvert_config), staging)

    publisher = RenditionPublisher(get_storage()) if config.publish_local_renditions else None

    return TranscodingOrchestrator(
        session=session,
        config=config,
        cache=cache or VideoCache(RedisCacheBackend()),
        local_backend=local_backend,
        cloud_backend=cloud_backend,
        media_tool=transcoder,
        publisher=publisher,
    )


def build_delivery_service(
    session: AsyncSession,
    app_settings: Settings = settings,
    cache: Optional[VideoCache] = None,
) -> VideoDeliveryService:
    return VideoDeliveryService(session, build_orchestrator(session, app_settings, cache))
