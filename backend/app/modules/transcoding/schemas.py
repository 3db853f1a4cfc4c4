"""Pydantic schemas for the transcoding pipeline and delivery layer."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.modules.transcoding.models import VideoStatus


class QualityRung(BaseModel):
    """One entry of the quality ladder.

    Bitrates are expressed in kbps, as stored on renditions.
    """
    name: str = Field(..., description="Quality label, e.g. 720p")
    bitrate: int = Field(..., gt=0, description="Target video bitrate in kbps")
    crf: int = Field(..., ge=0, le=51, description="Constant rate factor / QVBR level")
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)

    class Config:
        frozen = True

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


class JobState(str, Enum):
    """Status of a remote transcoding job."""
    SUBMITTED = "SUBMITTED"
    PROGRESSING = "PROGRESSING"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETE, JobState.ERROR)


class CloudJobStatus(BaseModel):
    """Snapshot of a remote transcoding job."""
    job_id: str
    state: JobState
    progress: int = Field(default=0, ge=0, le=100)
    output_paths: list[str] = Field(default_factory=list)
    error_message: Optional[str] = None


class RenditionCreate(BaseModel):
    """Rendition produced by an encoding backend, ready to persist."""
    quality: str
    bitrate: int
    width: int
    height: int
    file_path: str
    file_size: Optional[int] = None
    playlist_url: Optional[str] = None


class RenditionResponse(BaseModel):
    """Persisted rendition as exposed to callers and cached."""
    id: UUID
    video_id: UUID
    quality: str
    bitrate: int
    width: int
    height: int
    file_path: str
    file_size: Optional[int] = None
    playlist_url: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProcessingStatus(BaseModel):
    """Processing status returned to clients.

    ``message`` is human readable so a client can tell "still processing"
    from "failed, no renditions".
    """
    video_id: UUID
    status: VideoStatus
    progress: int = Field(default=0, ge=0, le=100)
    message: str = ""
    error: Optional[str] = None
    job_id: Optional[str] = None


class PlaylistResult(BaseModel):
    """A quality playlist, either served inline or by redirect."""
    video_id: UUID
    quality: str
    content: Optional[str] = None
    external_url: Optional[str] = None

    @property
    def is_external(self) -> bool:
        return self.external_url is not None


class VideoMetadataSnapshot(BaseModel):
    """Cached subset of a video row."""
    id: UUID
    title: str
    status: VideoStatus
    duration: Optional[int] = None
    thumbnail_url: Optional[str] = None
    processing_job_id: Optional[str] = None

    class Config:
        from_attributes = True
