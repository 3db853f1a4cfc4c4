"""Repositories for video and rendition database operations."""

import uuid
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.transcoding.models import Rendition, Video, VideoStatus
from app.modules.transcoding.schemas import RenditionCreate


class VideoRepository:
    """Repository for Video operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        title: str = "",
        source_file_path: Optional[str] = None,
    ) -> Video:
        """Register an uploaded video in Uploading status."""
        video = Video(
            title=title,
            source_file_path=source_file_path,
            status=VideoStatus.UPLOADING.value,
        )
        self.session.add(video)
        await self.session.flush()
        return video

    async def get_by_id(self, video_id: uuid.UUID) -> Optional[Video]:
        """Get a video by ID."""
        result = await self.session.execute(
            select(Video).where(Video.id == video_id)
        )
        return result.scalar_one_or_none()

    async def get_fresh(self, video_id: uuid.UUID) -> Optional[Video]:
        """Get a video, overwriting any stale state held by the session.

        Used before every pipeline mutation so a soft delete committed by
        another session is observed.
        """
        result = await self.session.execute(
            select(Video)
            .where(Video.id == video_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def set_status(
        self,
        video: Video,
        status: VideoStatus,
        error: Optional[str] = None,
    ) -> Video:
        """Set status and the last error (cleared when ``error`` is None)."""
        video.status = status.value
        video.last_error = error
        await self.session.flush()
        return video

    async def set_job_id(self, video: Video, job_id: Optional[str]) -> Video:
        video.processing_job_id = job_id
        await self.session.flush()
        return video

    async def update_metadata(
        self,
        video: Video,
        duration: Optional[int] = None,
        thumbnail_url: Optional[str] = None,
    ) -> Video:
        """Update probed metadata. ``None`` leaves a field unchanged."""
        if duration is not None:
            video.duration = duration
        if thumbnail_url is not None:
            video.thumbnail_url = thumbnail_url
        await self.session.flush()
        return video

    async def replace_source(self, video: Video, source_file_path: str) -> Video:
        """Point the video at a new source and reset pipeline fields."""
        video.source_file_path = source_file_path
        video.status = VideoStatus.UPLOADING.value
        video.processing_job_id = None
        video.last_error = None
        await self.session.flush()
        return video

    async def soft_delete(self, video: Video) -> Video:
        video.status = VideoStatus.DELETED.value
        await self.session.flush()
        return video


class RenditionRepository:
    """Repository for Rendition operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_quality(
        self,
        video_id: uuid.UUID,
        quality: str,
    ) -> Optional[Rendition]:
        """Get the rendition of a video with an exact quality label."""
        result = await self.session.execute(
            select(Rendition).where(
                Rendition.video_id == video_id,
                Rendition.quality == quality,
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create(
        self,
        video_id: uuid.UUID,
        data: RenditionCreate,
    ) -> tuple[Rendition, bool]:
        """Insert a rendition unless one already exists for the quality.

        Returns:
            Tuple of (rendition, created)
        """
        existing = await self.get_by_quality(video_id, data.quality)
        if existing:
            return existing, False

        rendition = Rendition(video_id=video_id, **data.model_dump())
        self.session.add(rendition)
        await self.session.flush()
        return rendition, True

    async def list_for_video(self, video_id: uuid.UUID) -> list[Rendition]:
        """All renditions of a video, highest bitrate first."""
        result = await self.session.execute(
            select(Rendition)
            .where(Rendition.video_id == video_id)
            .order_by(Rendition.bitrate.desc(), Rendition.quality)
        )
        return list(result.scalars().all())

    async def update_location(
        self,
        rendition: Rendition,
        file_path: str,
        playlist_url: str,
    ) -> Rendition:
        """Move a rendition to another storage location."""
        rendition.file_path = file_path
        rendition.playlist_url = playlist_url
        await self.session.flush()
        return rendition

    async def delete_for_video(self, video_id: uuid.UUID) -> int:
        """Remove all renditions of a video.

        Returns:
            Number of rows deleted
        """
        result = await self.session.execute(
            delete(Rendition).where(Rendition.video_id == video_id)
        )
        await self.session.flush()
        return result.rowcount or 0
