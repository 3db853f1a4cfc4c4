"""HLS manifest generation from persisted renditions."""

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Iterable, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.transcoding.abr import HasBitrate
from app.modules.transcoding.cache import MANIFEST_TTL, PLAYLIST_TTL, VideoCache
from app.modules.transcoding.exceptions import (
    NotReadyError,
    RenditionNotFoundError,
    VideoNotFoundError,
)
from app.modules.transcoding.models import VideoStatus
from app.modules.transcoding.repository import RenditionRepository, VideoRepository
from app.modules.transcoding.schemas import PlaylistResult

logger = logging.getLogger(__name__)

MANIFEST_HEADER = "#EXTM3U\n#EXT-X-VERSION:3\n\n"


class ManifestRendition(HasBitrate, Protocol):
    width: int
    height: int


def quality_playlist_reference(quality: str) -> str:
    """Relative reference from the master manifest to a quality playlist."""
    return f"{quality}/playlist.m3u8"


def render_master_manifest(renditions: Iterable[ManifestRendition]) -> str:
    """Render a master playlist, highest bandwidth first.

    Output does not depend on the order of ``renditions``.
    """
    ordered = sorted(renditions, key=lambda r: (-r.bitrate, r.quality))
    manifest = MANIFEST_HEADER
    for rendition in ordered:
        manifest += (
            f"#EXT-X-STREAM-INF:BANDWIDTH={rendition.bitrate * 1000},"
            f"RESOLUTION={rendition.width}x{rendition.height}\n"
            f"{quality_playlist_reference(rendition.quality)}\n\n"
        )
    return manifest


def is_external_url(location: str) -> bool:
    return location.startswith(("http://", "https://"))


class ManifestGenerator:
    """Builds master and per-quality playlists, cache first."""

    def __init__(self, session: AsyncSession, cache: VideoCache):
        self.session = session
        self.cache = cache
        self.video_repo = VideoRepository(session)
        self.rendition_repo = RenditionRepository(session)

    async def _get_live_video(self, video_id: uuid.UUID):
        video = await self.video_repo.get_by_id(video_id)
        if video is None or video.status == VideoStatus.DELETED.value:
            raise VideoNotFoundError(video_id)
        return video

    async def build_master_manifest(self, video_id: uuid.UUID) -> str:
        """Master playlist text.

        Raises:
            VideoNotFoundError: Unknown or deleted video
            NotReadyError: Video is still being uploaded or processed
            RenditionNotFoundError: No renditions exist
        """
        async def load() -> str:
            video = await self._get_live_video(video_id)
            renditions = await self.rendition_repo.list_for_video(video_id)
            if not renditions:
                if video.status in (VideoStatus.UPLOADING.value, VideoStatus.PROCESSING.value):
                    raise NotReadyError(video_id, video.status)
                raise RenditionNotFoundError(video_id)
            return render_master_manifest(renditions)

        return await self.cache.read_through(
            self.cache.manifest_key(video_id), load, MANIFEST_TTL
        )

    async def build_quality_playlist(self, video_id: uuid.UUID, quality: str) -> PlaylistResult:
        """Playlist for one quality.

        Remote renditions come back as ``external_url`` for the caller to
        redirect to; local ones carry the playlist text.

        Raises:
            VideoNotFoundError: Unknown or deleted video
            RenditionNotFoundError: No rendition with this exact quality label
        """
        async def load() -> dict:
            await self._get_live_video(video_id)
            rendition = await self.rendition_repo.get_by_quality(video_id, quality)
            if rendition is None:
                raise RenditionNotFoundError(video_id, quality)

            location = rendition.playlist_url or rendition.file_path
            if is_external_url(location):
                return {"content": None, "external_url": location}

            try:
                content = await asyncio.to_thread(Path(rendition.file_path).read_text)
            except OSError as e:
                logger.error("Playlist for %s/%s is unreadable: %s", video_id, quality, e)
                raise RenditionNotFoundError(video_id, quality) from e
            return {"content": content, "external_url": None}

        cached = await self.cache.read_through(
            self.cache.playlist_key(video_id, quality), load, PLAYLIST_TTL
        )
        return PlaylistResult(video_id=video_id, quality=quality, **cached)
