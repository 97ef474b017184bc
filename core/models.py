"""
Core data models for the Video Feed API

Table models (SQLModel) for the catalog: videos, watch sessions, likes and
storage accounts. Response models (pydantic) are what leaves the service; none
of them carries a source URL, remote file id or storage credential.

All timestamps are naive UTC.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Current time as naive UTC"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC"""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def new_wrapper_token() -> str:
    return uuid.uuid4().hex


class StorageAccount(SQLModel, table=True):
    """
    One credential/quota unit at the remote storage provider.

    `storage_used_gb` is a local estimate. It is bumped after each successful
    upload and may drift from the provider's own figure.
    """

    __tablename__ = "storage_accounts"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    account_name: str = Field(max_length=100)
    api_token: str = Field(max_length=1024)
    storage_used_gb: float = Field(default=0.0)
    storage_limit_gb: float
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def available_gb(self) -> float:
        return self.storage_limit_gb - self.storage_used_gb


class Video(SQLModel, table=True):
    """
    Catalog entry for one video.

    `source_url`, `source_url_expires_at`, `remote_file_id` and
    `storage_account_id` locate the backing file and are never exposed;
    clients address a video through its opaque `wrapper_token`.
    """

    __tablename__ = "videos"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    wrapper_token: str = Field(
        default_factory=new_wrapper_token, max_length=64, unique=True, index=True
    )
    slug: Optional[str] = Field(default=None, max_length=500)
    title: str = Field(max_length=500)
    description: str = Field(default="")
    thumbnail_url: str = Field(default="")
    genre: str = Field(default="", max_length=100)
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    duration_seconds: int = Field(default=0)
    file_size_mb: float = Field(default=0.0)

    source_url: str = Field(default="")
    source_url_expires_at: Optional[datetime] = Field(default=None, index=True)
    remote_file_id: str = Field(default="", max_length=255)
    storage_account_id: Optional[uuid.UUID] = Field(
        default=None, foreign_key="storage_accounts.id"
    )

    view_count: int = Field(default=0)
    like_count: int = Field(default=0)
    is_published: bool = Field(default=True, index=True)
    published_at: Optional[datetime] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class WatchSession(SQLModel, table=True):
    """Last known progress of one playback session on one video"""

    __tablename__ = "watch_sessions"
    __table_args__ = (
        UniqueConstraint("session_id", "video_id", name="uq_watch_session_video"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    session_id: str = Field(max_length=255, index=True)
    video_id: uuid.UUID = Field(foreign_key="videos.id", index=True)
    user_id: Optional[str] = Field(default=None, max_length=255)
    viewer_ip: str = Field(default="", max_length=45)
    user_agent: str = Field(default="")
    watch_duration_seconds: int = Field(default=0)
    watched_percentage: float = Field(default=0.0)
    viewed_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class VideoLike(SQLModel, table=True):
    __tablename__ = "video_likes"
    __table_args__ = (
        UniqueConstraint("video_id", "user_id", name="uq_video_like_user"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    video_id: uuid.UUID = Field(foreign_key="videos.id", index=True)
    user_id: str = Field(max_length=255, index=True)
    created_at: datetime = Field(default_factory=utcnow)


# Response / request models


class VideoSnapshot(BaseModel):
    """Public view of a video, as cached in feed pages"""

    id: uuid.UUID
    wrapper_token: str
    title: str
    description: str = ""
    thumbnail_url: str = ""
    genre: str = ""
    tags: List[str] = []
    duration_seconds: int = 0
    view_count: int = 0
    like_count: int = 0
    published_at: Optional[datetime] = None
    score: Optional[float] = None

    @classmethod
    def from_video(cls, video: Video, score: Optional[float] = None) -> "VideoSnapshot":
        return cls(
            id=video.id,
            wrapper_token=video.wrapper_token,
            title=video.title,
            description=video.description,
            thumbnail_url=video.thumbnail_url,
            genre=video.genre,
            tags=list(video.tags or []),
            duration_seconds=video.duration_seconds,
            view_count=video.view_count,
            like_count=video.like_count,
            published_at=video.published_at,
            score=score,
        )


class FeedPage(BaseModel):
    videos: List[VideoSnapshot]
    total: int
    page: int
    page_size: int


class TrackViewResult(BaseModel):
    incremented: bool
    watched_percentage: float


class VideoMetadata(BaseModel):
    """Admin-supplied metadata for an uploaded video"""

    title: str
    description: str = ""
    thumbnail_url: str = ""
    genre: str = ""
    tags: List[str] = []
    duration_seconds: int = 0


class VideoUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    thumbnail_url: Optional[str] = None
    genre: Optional[str] = None
    tags: Optional[List[str]] = None
    is_published: Optional[bool] = None


class UploadResult(BaseModel):
    """Outcome of placing one file at the remote storage provider"""

    account_id: uuid.UUID
    account_name: str
    remote_file_id: str
    content_hash: str
    file_size_gb: float
    storage_used_gb: float
    storage_limit_gb: float


class LinkResolution(BaseModel):
    url: str
    expires_at: datetime


class StorageAccountSummary(BaseModel):
    id: uuid.UUID
    account_name: str
    storage_used_gb: float
    storage_limit_gb: float
    available_gb: float
    is_active: bool

    @classmethod
    def from_account(cls, account: StorageAccount) -> "StorageAccountSummary":
        return cls(
            id=account.id,
            account_name=account.account_name,
            storage_used_gb=account.storage_used_gb,
            storage_limit_gb=account.storage_limit_gb,
            available_gb=account.available_gb,
            is_active=account.is_active,
        )


class RefreshReport(BaseModel):
    """Outcome of one link-refresh sweep"""

    skipped: bool = False
    checked: int = 0
    refreshed: int = 0
    failed: int = 0
    failed_video_ids: List[uuid.UUID] = []
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class UploadedVideo(BaseModel):
    video: VideoSnapshot
    storage: UploadResult
