import os
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

from clipdash.core.security import encrypt_secret
from clipdash.domain.models.platform_account import PlatformAccount
from clipdash.domain.models.scheduled_post import ScheduledPost, ScheduledPostStatus
from clipdash.domain.models.upload import Upload
from clipdash.domain.models.user import User
from clipdash.infrastructure.db.base import Base
from clipdash.infrastructure.email import notifications
from clipdash.integrations.platform_adapters.base_adapter import ContainerState, ContainerStatus, PostRef

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "")

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


@pytest.fixture
def db_engine(tmp_path):
    url = TEST_DATABASE_URL or f"sqlite:///{tmp_path / 'scheduler.db'}"
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    engine = create_engine(url, pool_pre_ping=True, connect_args=connect_args)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as exc:
        pytest.skip(f"Database unavailable: {exc}")
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sent_emails(monkeypatch):
    outbox: list[dict] = []

    async def _record(to_email, subject, plain_text, html=None):
        outbox.append({"to": to_email, "subject": subject, "text": plain_text})

    monkeypatch.setattr(notifications, "send_email", _record)
    return outbox


class FakeAdapter:
    """Scripted stand-in for a platform adapter; records every call."""

    def __init__(self, *, outcome=None, error=None, container_statuses=None, container_error=None):
        self.outcome = outcome
        self.error = error
        self.container_statuses = list(container_statuses or [])
        self.container_error = container_error
        self.publish_calls: list[dict] = []
        self.check_calls: list[str] = []

    async def publish(self, credentials, asset, settings):
        self.publish_calls.append({"credentials": credentials, "asset": asset, "settings": settings})
        if self.error is not None:
            raise self.error
        return self.outcome

    async def check_container(self, credentials, container_id):
        self.check_calls.append(container_id)
        if self.container_error is not None:
            raise self.container_error
        if self.container_statuses:
            return self.container_statuses.pop(0)
        return ContainerStatus(state=ContainerState.PROCESSING)


def posted_ref(post_id: str = "platform-post-1") -> PostRef:
    return PostRef(platform_post_id=post_id, platform_media_id=post_id)


def create_user(db, *, email: str | None = None) -> User:
    user = User(id=uuid4(), email=email or f"creator-{uuid4().hex[:8]}@example.com")
    db.add(user)
    db.commit()
    return user


def connect_account(db, user: User, provider: str, *, refresh_token: str | None = "refresh-token", expires_in_hours: int = 24):
    account = PlatformAccount(
        user_id=user.id,
        provider=provider,
        external_account_id=f"{provider}-account-1",
        access_token=encrypt_secret(f"{provider}-access-token"),
        refresh_token=encrypt_secret(refresh_token) if refresh_token else None,
        expires_at=datetime.now(UTC) + timedelta(hours=expires_in_hours),
        metadata_json={},
    )
    db.add(account)
    db.commit()
    return account


def create_post(
    db,
    user: User,
    *,
    provider: str = "youtube",
    status: str = ScheduledPostStatus.SCHEDULED.value,
    scheduled_for: datetime | None = None,
    group_id=None,
    with_upload: bool = True,
    title: str = "Launch clip",
    **fields,
) -> ScheduledPost:
    upload_id = uuid4()
    if with_upload:
        db.add(Upload(id=upload_id, user_id=user.id, bucket="uploads", storage_path=f"{user.id}/clip.mp4"))
    post = ScheduledPost(
        id=uuid4(),
        user_id=user.id,
        group_id=group_id,
        upload_id=upload_id,
        title=title,
        provider=provider,
        settings_json={},
        scheduled_for=scheduled_for or NOW - timedelta(minutes=1),
        status=status,
        **fields,
    )
    db.add(post)
    db.commit()
    return post
