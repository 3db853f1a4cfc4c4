"""Test doubles and wiring helpers for transcoding tests."""

import os
import threading
import time
from typing import Iterable, Optional, Sequence
from unittest.mock import MagicMock

from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.core.storage import StorageResult
from app.modules.transcoding.abr import DEFAULT_QUALITY_LADDER
from app.modules.transcoding.backends import CloudEncodingBackend, LocalEncodingBackend
from app.modules.transcoding.cache import InMemoryCacheBackend, RedisCacheBackend, VideoCache
from app.modules.transcoding.exceptions import RenditionEncodingError, TranscodingError
from app.modules.transcoding.ffmpeg import EncodedRendition, VideoMetadata, playlist_filename
from app.modules.transcoding.mediaconvert import MediaConvertAdapter, MediaConvertConfig
from app.modules.transcoding.models import Video, VideoStatus
from app.modules.transcoding.repository import VideoRepository
from app.modules.transcoding.schemas import QualityRung
from app.modules.transcoding.service import TranscodingConfig, TranscodingOrchestrator


async def create_test_session_maker() -> async_sessionmaker:
    """In-memory SQLite database with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_video(
    session: AsyncSession,
    status: VideoStatus = VideoStatus.UPLOADING,
    source_file_path: str = "/uploads/source.mp4",
) -> Video:
    video = await VideoRepository(session).create(
        title="Test video", source_file_path=source_file_path
    )
    video.status = status.value
    await session.commit()
    return video


class FakeEncoder:
    """Writes a tiny playlist and one segment per rung instead of running ffmpeg."""

    def __init__(
        self,
        failing: Iterable[str] = (),
        delay: float = 0.0,
        duration: int = 120,
        thumbnail_fails: bool = False,
        probe_fails: bool = False,
    ):
        self.failing = set(failing)
        self.delay = delay
        self.duration = duration
        self.thumbnail_fails = thumbnail_fails
        self.probe_fails = probe_fails
        self.encoded: list[str] = []
        self.thumbnails: list[tuple[str, float]] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def encode_rendition(self, input_path: str, rung: QualityRung, output_dir: str) -> EncodedRendition:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if rung.name in self.failing:
                raise RenditionEncodingError(rung.name, "encoder exited with status 1", exit_code=1)

            os.makedirs(output_dir, exist_ok=True)
            playlist_path = os.path.join(output_dir, playlist_filename(rung.name))
            segment_path = os.path.join(output_dir, f"{rung.name}_000.ts")
            with open(segment_path, "wb") as f:
                f.write(b"\x47" * 188)
            with open(playlist_path, "w") as f:
                f.write(
                    "#EXTM3U\n#EXT-X-VERSION:3\n#EXT-X-TARGETDURATION:10\n"
                    f"#EXTINF:10.0,\n{rung.name}_000.ts\n#EXT-X-ENDLIST\n"
                )
            with self._lock:
                self.encoded.append(rung.name)
            return EncodedRendition(
                quality=rung.name,
                playlist_path=playlist_path,
                segment_paths=[segment_path],
                file_size=os.path.getsize(playlist_path) + os.path.getsize(segment_path),
            )
        finally:
            with self._lock:
                self.active -= 1

    def probe_metadata(self, input_path: str) -> VideoMetadata:
        if self.probe_fails:
            raise TranscodingError(f"Could not probe {input_path}")
        return VideoMetadata(duration=self.duration, width=1920, height=1080)

    def generate_thumbnail(
        self,
        input_path: str,
        output_path: str,
        at_seconds: float = 0.0,
        size: str = "320x180",
    ) -> str:
        if self.thumbnail_fails:
            raise TranscodingError("Thumbnail extraction failed")
        os.makedirs(os.path.dirname(output_path), exist_ok=True)
        with open(output_path, "wb") as f:
            f.write(b"\xff\xd8\xff")
        self.thumbnails.append((output_path, at_seconds))
        return output_path


class FakeStorage:
    """Object storage that records uploads."""

    def __init__(self, is_remote: bool = True, fail: bool = False, bucket: str = "media"):
        self.is_remote = is_remote
        self.fail = fail
        self.bucket = bucket
        self.uploads: list[tuple[str, str]] = []

    def upload(self, file_path: str, key: str, content_type: str = "application/octet-stream") -> StorageResult:
        if self.fail:
            return StorageResult(success=False, key=key, url="", error_message="access denied")
        self.uploads.append((file_path, key))
        return StorageResult(
            success=True,
            key=key,
            url=f"https://cdn.example.com/{key}",
            reference=f"s3://{self.bucket}/{key}",
        )

    def upload_directory(self, directory: str, prefix: str) -> list[StorageResult]:
        results = []
        for name in sorted(os.listdir(directory)):
            path = os.path.join(directory, name)
            if os.path.isfile(path):
                result = self.upload(path, f"{prefix}/{name}")
                results.append(result)
                if not result.success:
                    break
        return results


def mediaconvert_job(
    job_id: str,
    status: str,
    completed: Sequence[str] = (),
    pending: int = 0,
    error_message: Optional[str] = None,
    prefix: str = "s3://media/processed/vid",
) -> dict:
    """A ``get_job`` response with completed outputs named ``source_<quality>.m3u8``."""
    outputs = [{"OutputFilePaths": [f"{prefix}/source_{quality}.m3u8"]} for quality in completed]
    outputs.extend({"DurationInMs": 0} for _ in range(pending))
    job = {
        "Id": job_id,
        "Status": status,
        "OutputGroupDetails": [{"OutputDetails": outputs}],
    }
    if error_message:
        job["ErrorMessage"] = error_message
    return {"Job": job}


def make_mediaconvert_client(job_id: str = "job-123") -> MagicMock:
    client = MagicMock()
    client.create_job.return_value = {"Job": {"Id": job_id}}
    client.get_job.return_value = mediaconvert_job(job_id, "SUBMITTED", pending=3)
    return client


def make_cloud_backend(
    client: Optional[MagicMock] = None,
    storage: Optional[FakeStorage] = None,
    role_arn: str = "arn:aws:iam::123456789012:role/MediaConvertRole",
) -> CloudEncodingBackend:
    config = MediaConvertConfig(
        access_key="AKIATEST",
        secret_key="secret",
        role_arn=role_arn,
        bucket="media",
        cloudfront_domain="cdn.example.com",
    )
    adapter = MediaConvertAdapter(config, client=client or make_mediaconvert_client())
    return CloudEncodingBackend(adapter, storage or FakeStorage())


def make_orchestrator(
    session: AsyncSession,
    output_dir: str,
    cache: Optional[VideoCache] = None,
    encoder: Optional[FakeEncoder] = None,
    ladder: Sequence[QualityRung] = DEFAULT_QUALITY_LADDER,
    max_rung_failure_ratio: float = 1.0,
    cloud_backend: Optional[CloudEncodingBackend] = None,
    max_workers: int = 2,
    publisher=None,
    publish_local_renditions: bool = False,
) -> TranscodingOrchestrator:
    encoder = encoder or FakeEncoder()
    config = TranscodingConfig(
        ladder=tuple(ladder),
        cloud_enabled=cloud_backend is not None,
        max_rung_failure_ratio=max_rung_failure_ratio,
        processed_output_dir=output_dir,
        processed_url_prefix="/uploads/processed",
        publish_local_renditions=publish_local_renditions,
    )
    local_backend = LocalEncodingBackend(
        encoder=encoder,
        output_root=output_dir,
        url_prefix="/uploads/processed",
        max_workers=max_workers,
    )
    return TranscodingOrchestrator(
        session=session,
        config=config,
        cache=cache or VideoCache(InMemoryCacheBackend()),
        local_backend=local_backend,
        cloud_backend=cloud_backend,
        media_tool=encoder,
        publisher=publisher,
    )


class FlakyRedis:
    """Dictionary-backed stand-in for the async Redis client.

    Commands named in ``failing`` raise a connection error.
    """

    def __init__(self):
        self.data: dict[str, str] = {}
        self.failing: set[str] = set()

    def _check(self, command: str) -> None:
        if command in self.failing:
            raise RedisConnectionError("redis down")

    async def get(self, key: str) -> Optional[str]:
        self._check("get")
        return self.data.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self._check("setex")
        self.data[key] = value

    async def delete(self, *keys: str) -> None:
        self._check("delete")
        for key in keys:
            self.data.pop(key, None)


def make_flaky_cache() -> tuple[VideoCache, FlakyRedis]:
    client = FlakyRedis()
    return VideoCache(RedisCacheBackend(client)), client
