"""Allowed video status transitions.

uploading -> processing -> {ready, failed}; any live state -> deleted.
Ready and failed only re-enter a pipeline through a fresh upload that
replaces the source (-> uploading).
"""

from app.modules.transcoding.exceptions import InvalidStatusTransitionError
from app.modules.transcoding.models import VideoStatus

ALLOWED_TRANSITIONS: dict[VideoStatus, frozenset[VideoStatus]] = {
    VideoStatus.UPLOADING: frozenset({VideoStatus.PROCESSING, VideoStatus.DELETED}),
    VideoStatus.PROCESSING: frozenset({
        VideoStatus.READY,
        VideoStatus.FAILED,
        VideoStatus.DELETED,
    }),
    VideoStatus.READY: frozenset({VideoStatus.UPLOADING, VideoStatus.DELETED}),
    VideoStatus.FAILED: frozenset({VideoStatus.UPLOADING, VideoStatus.DELETED}),
    VideoStatus.DELETED: frozenset(),
}

TERMINAL_STATUSES = frozenset({VideoStatus.READY, VideoStatus.FAILED, VideoStatus.DELETED})


def can_transition(current: VideoStatus | str, target: VideoStatus | str) -> bool:
    """Check whether a status change is allowed."""
    return VideoStatus(target) in ALLOWED_TRANSITIONS[VideoStatus(current)]


def ensure_transition(current: VideoStatus | str, target: VideoStatus | str) -> VideoStatus:
    """Validate a status change.

    Returns:
        The target status

    Raises:
        InvalidStatusTransitionError: If the change is not allowed
    """
    if not can_transition(current, target):
        raise InvalidStatusTransitionError(VideoStatus(current).value, VideoStatus(target).value)
    return VideoStatus(target)


def is_terminal(status: VideoStatus | str) -> bool:
    """Terminal from the pipeline's perspective: no further job updates apply."""
    return VideoStatus(status) in TERMINAL_STATUSES
