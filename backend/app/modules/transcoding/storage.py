"""Publishing of locally encoded renditions to object storage."""

import logging
import posixpath

from app.core.storage import Storage, StorageResult
from app.modules.transcoding.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class RenditionPublisher:
    """Uploads a video's local HLS output tree under one key prefix."""

    def __init__(self, storage: Storage, prefix: str = "processed"):
        """Initialize publisher.

        Args:
            storage: Target storage, expected to be remote
            prefix: Key prefix for all published videos
        """
        self.storage = storage
        self.prefix = prefix.strip("/")

    @property
    def is_remote(self) -> bool:
        return self.storage.is_remote

    def video_prefix(self, video_id) -> str:
        return f"{self.prefix}/{video_id}"

    def publish_directory(self, video_id, directory: str) -> dict[str, StorageResult]:
        """Upload every playlist and segment of a video.

        Returns:
            Upload results keyed by file name

        Raises:
            ExternalServiceError: If any upload fails
        """
        results = self.storage.upload_directory(directory, self.video_prefix(video_id))
        failed = next((r for r in results if not r.success), None)
        if failed is not None:
            raise ExternalServiceError(
                f"Failed to publish {failed.key}: {failed.error_message}"
            )

        logger.info("Published %d files for video %s", len(results), video_id)
        return {posixpath.basename(r.key): r for r in results}
