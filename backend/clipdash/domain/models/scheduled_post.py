import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from clipdash.infrastructure.db.base import Base, JSONDocument


class ScheduledPostStatus(StrEnum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    POSTING = "posting"
    IG_PROCESSING = "ig_processing"
    POSTED = "posted"
    FAILED = "failed"


class Provider(StrEnum):
    YOUTUBE = "youtube"
    TIKTOK = "tiktok"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    LINKEDIN = "linkedin"


TERMINAL_STATUSES = frozenset({ScheduledPostStatus.POSTED.value, ScheduledPostStatus.FAILED.value})
IN_FLIGHT_STATUSES = frozenset(
    {
        ScheduledPostStatus.SCHEDULED.value,
        ScheduledPostStatus.POSTING.value,
        ScheduledPostStatus.IG_PROCESSING.value,
    }
)


class ScheduledPost(Base):
    __tablename__ = "scheduled_posts"
    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'scheduled', 'posting', 'ig_processing', 'posted', 'failed')",
            name="ck_scheduled_posts_status_values",
        ),
        CheckConstraint(
            "provider IN ('youtube', 'tiktok', 'facebook', 'instagram', 'linkedin')",
            name="ck_scheduled_posts_provider_values",
        ),
        Index("ix_scheduled_posts_status_scheduled_for", "status", "scheduled_for"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    team_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    group_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)

    upload_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    thumbnail_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    settings_json: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)

    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=ScheduledPostStatus.DRAFT.value)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    platform_post_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    platform_media_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error_kind: Mapped[str | None] = mapped_column(String(64), nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    container_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    container_created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    container_polled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
