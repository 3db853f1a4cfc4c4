"""Database models for videos and their quality renditions."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.core.database import Base


class VideoStatus(str, Enum):
    """Lifecycle status of an uploaded video."""

    UPLOADING = "uploading"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"
    DELETED = "deleted"


class Video(Base):
    """Uploaded source video.

    ``status`` and ``processing_job_id`` are only mutated by the transcoding
    orchestrator. Rows are never removed, only soft-marked deleted.
    """

    __tablename__ = "videos"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    source_file_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    status: Mapped[str] = mapped_column(
        String(50), default=VideoStatus.UPLOADING.value, index=True
    )
    # Set only when the cloud strategy is used
    processing_job_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # seconds
    thumbnail_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    renditions: Mapped[list["Rendition"]] = relationship(
        "Rendition",
        back_populates="video",
        cascade="all, delete-orphan",
        order_by="Rendition.bitrate.desc()",
    )

    def __repr__(self) -> str:
        return f"<Video {self.id} - {self.status}>"


class Rendition(Base):
    """One quality-specific encoded output of a video.

    Immutable after creation except for location updates when the content
    is republished to another storage backend.
    """

    __tablename__ = "video_renditions"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        UniqueConstraint("video_id", "quality", name="uq_video_renditions_video_quality"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    video_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("videos.id", ondelete="CASCADE"), nullable=False, index=True
    )

    quality: Mapped[str] = mapped_column(String(20), nullable=False)
    bitrate: Mapped[int] = mapped_column(Integer, nullable=False)  # kbps
    width: Mapped[int] = mapped_column(Integer, nullable=False)
    height: Mapped[int] = mapped_column(Integer, nullable=False)

    # Playlist on local disk or object storage URI
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    # Relative path under the delivery prefix, or an absolute URL
    playlist_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    video: Mapped["Video"] = relationship("Video", back_populates="renditions")

    def __repr__(self) -> str:
        return f"<Rendition {self.video_id} - {self.quality} @ {self.bitrate}kbps>"
