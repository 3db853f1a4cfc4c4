"""Encoding backends.

Both strategies share one interface: ``run`` starts encoding a ladder and
returns a ``BackendResult``. The local backend finishes synchronously
(``completed=True``); the cloud backend only submits a job and is
completed later through ``poll``.
"""

import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Sequence

from app.core.logging import log_error, log_warning
from app.core.metrics import RUNG_ENCODE_DURATION_SECONDS, RUNG_ENCODES_TOTAL
from app.core.storage import Storage, guess_content_type
from app.modules.transcoding.exceptions import ExternalServiceError, RenditionEncodingError
from app.modules.transcoding.ffmpeg import EncodedRendition, FFmpegTranscoder
from app.modules.transcoding.mediaconvert import (
    MediaConvertAdapter,
    quality_for_output_path,
    s3_key_from_uri,
)
from app.modules.transcoding.schemas import (
    CloudJobStatus,
    JobState,
    QualityRung,
    RenditionCreate,
)

logger = logging.getLogger(__name__)


@dataclass
class BackendResult:
    """Outcome of starting an encode with one strategy."""
    strategy: str
    completed: bool
    renditions: list[RenditionCreate] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)
    job_id: Optional[str] = None


@dataclass
class CloudPollResult:
    status: CloudJobStatus
    renditions: list[RenditionCreate] = field(default_factory=list)


class EncodingBackend(ABC):
    """Interface shared by the local and cloud strategies."""

    name: str = ""

    @abstractmethod
    async def run(
        self,
        video_id,
        source_path: str,
        ladder: Sequence[QualityRung],
    ) -> BackendResult:
        pass


class LocalEncodingBackend(EncodingBackend):
    """Encodes rungs with ffmpeg on a bounded pool of worker threads.

    A failing rung never cancels its siblings; it is reported in
    ``BackendResult.failures`` instead.
    """

    name = "local"

    def __init__(
        self,
        encoder: FFmpegTranscoder,
        output_root: str,
        url_prefix: str,
        max_workers: int = 2,
    ):
        self.encoder = encoder
        self.output_root = output_root
        self.url_prefix = url_prefix.rstrip("/")
        self.max_workers = max(1, max_workers)

    def output_dir_for(self, video_id) -> str:
        return os.path.join(self.output_root, str(video_id))

    def playlist_url_for(self, video_id, encoded: EncodedRendition) -> str:
        filename = os.path.basename(encoded.playlist_path)
        return f"{self.url_prefix}/{video_id}/{filename}"

    async def _encode_rung(
        self,
        semaphore: asyncio.Semaphore,
        source_path: str,
        rung: QualityRung,
        output_dir: str,
    ) -> EncodedRendition:
        async with semaphore:
            started = time.monotonic()
            try:
                encoded = await asyncio.to_thread(
                    self.encoder.encode_rendition, source_path, rung, output_dir
                )
            except Exception:
                RUNG_ENCODES_TOTAL.labels(quality=rung.name, outcome="failure").inc()
                raise
            finally:
                RUNG_ENCODE_DURATION_SECONDS.labels(quality=rung.name).observe(
                    time.monotonic() - started
                )
            RUNG_ENCODES_TOTAL.labels(quality=rung.name, outcome="success").inc()
            return encoded

    async def run(
        self,
        video_id,
        source_path: str,
        ladder: Sequence[QualityRung],
    ) -> BackendResult:
        output_dir = self.output_dir_for(video_id)
        semaphore = asyncio.Semaphore(self.max_workers)

        outcomes = await asyncio.gather(
            *(self._encode_rung(semaphore, source_path, rung, output_dir) for rung in ladder),
            return_exceptions=True,
        )

        result = BackendResult(strategy=self.name, completed=True)
        for rung, outcome in zip(ladder, outcomes):
            if isinstance(outcome, RenditionEncodingError):
                log_warning(logger, outcome.message, video_id=str(video_id), quality=rung.name)
                result.failures[rung.name] = outcome.message
            elif isinstance(outcome, Exception):
                log_error(
                    logger,
                    f"Unexpected error encoding {rung.name}",
                    exception=outcome,
                    video_id=str(video_id),
                )
                result.failures[rung.name] = str(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                result.renditions.append(
                    RenditionCreate(
                        quality=rung.name,
                        bitrate=rung.bitrate,
                        width=rung.width,
                        height=rung.height,
                        file_path=outcome.playlist_path,
                        file_size=outcome.file_size,
                        playlist_url=self.playlist_url_for(video_id, outcome),
                    )
                )

        return result


class CloudEncodingBackend(EncodingBackend):
    """Stages the source in object storage and submits a MediaConvert job."""

    name = "cloud"

    def __init__(
        self,
        adapter: MediaConvertAdapter,
        storage: Storage,
        source_prefix: str = "sources",
        output_prefix: str = "processed",
    ):
        self.adapter = adapter
        self.storage = storage
        self.source_prefix = source_prefix
        self.output_prefix = output_prefix

    def output_uri_for(self, video_id) -> str:
        return f"s3://{self.adapter.config.bucket}/{self.output_prefix}/{video_id}"

    async def run(
        self,
        video_id,
        source_path: str,
        ladder: Sequence[QualityRung],
    ) -> BackendResult:
        """Upload the source and submit one job for the whole ladder.

        Raises:
            ConfigurationError: Credentials or role missing
            ExternalServiceError: Upload or submission failed
        """
        # Fail on missing configuration before anything is uploaded
        self.adapter.ensure_configured()

        key = f"{self.source_prefix}/{video_id}/{os.path.basename(source_path)}"
        upload = await asyncio.to_thread(
            self.storage.upload, source_path, key, guess_content_type(source_path)
        )
        if not upload.success:
            raise ExternalServiceError(
                f"Failed to stage source for video {video_id}: {upload.error_message}"
            )

        job_id = await asyncio.to_thread(
            self.adapter.submit,
            str(video_id),
            upload.reference,
            self.output_uri_for(video_id),
            list(ladder),
        )
        return BackendResult(strategy=self.name, completed=False, job_id=job_id)

    async def poll(self, job_id: str, ladder: Sequence[QualityRung]) -> CloudPollResult:
        """Fetch job status; on completion, describe one rendition per output.

        Raises:
            ExternalServiceError: Status call failed
        """
        status = await asyncio.to_thread(self.adapter.get_status, job_id)
        result = CloudPollResult(status=status)
        if status.state != JobState.COMPLETE:
            return result

        for path in status.output_paths:
            rung = quality_for_output_path(path, ladder)
            if rung is None:
                logger.warning("Job %s output %s matches no quality rung", job_id, path)
                continue
            result.renditions.append(
                RenditionCreate(
                    quality=rung.name,
                    bitrate=rung.bitrate,
                    width=rung.width,
                    height=rung.height,
                    file_path=path,
                    playlist_url=self.adapter.public_url(s3_key_from_uri(path)),
                )
            )
        return result
