"""Error taxonomy for the transcoding pipeline and delivery cache."""

from typing import Optional


class TranscodingError(Exception):
    """Base error for transcoding and delivery operations."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(TranscodingError):
    """Cloud credentials or role are missing. Fatal, never retried."""


class RenditionEncodingError(TranscodingError):
    """One quality rung failed to encode. The run skips the rung."""

    def __init__(self, quality: str, message: str, exit_code: Optional[int] = None):
        super().__init__(f"Encoding {quality} failed: {message}")
        self.quality = quality
        self.exit_code = exit_code


class PipelineExhaustedError(TranscodingError):
    """No rung produced a rendition (or too many rungs failed)."""

    def __init__(self, failures: dict[str, str], total: Optional[int] = None):
        qualities = ", ".join(sorted(failures)) or "none"
        if total and len(failures) < total:
            message = f"Too many renditions failed ({len(failures)} of {total}: {qualities})"
        else:
            message = f"No renditions were produced (failed rungs: {qualities})"
        super().__init__(message)
        self.failures = failures


class NotFoundError(TranscodingError):
    """A requested video, rendition or job does not exist."""


class VideoNotFoundError(NotFoundError):
    def __init__(self, video_id):
        super().__init__(f"Video {video_id} not found")
        self.video_id = video_id


class RenditionNotFoundError(NotFoundError):
    def __init__(self, video_id, quality: Optional[str] = None):
        if quality:
            message = f"Quality {quality} not found for video {video_id}"
        else:
            message = f"No renditions found for video {video_id}"
        super().__init__(message)
        self.video_id = video_id
        self.quality = quality


class TranscodeJobNotFoundError(NotFoundError):
    def __init__(self, video_id):
        super().__init__(f"No processing job found for video {video_id}")
        self.video_id = video_id


class NotReadyError(NotFoundError):
    """The video exists but has no playable renditions yet."""

    def __init__(self, video_id, status: str):
        super().__init__(f"Video {video_id} is not ready (status: {status})")
        self.video_id = video_id
        self.status = status


class ExternalServiceError(TranscodingError):
    """A cloud transcoding or object storage call failed.

    Not retried internally; the polling caller retries on its own interval.
    """


class InvalidStatusTransitionError(TranscodingError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move video from {current} to {target}")
        self.current = current
        self.target = target
