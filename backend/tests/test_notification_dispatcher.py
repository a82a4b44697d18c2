import asyncio
from uuid import uuid4

import aiosmtplib

from clipdash.application.services.notification_service import notify_post_outcome
from clipdash.domain.models.notification_preference import NotificationPreference
from clipdash.domain.models.scheduled_post import ScheduledPost, ScheduledPostStatus
from clipdash.domain.publish_errors import PublishErrorKind, is_reconnect_error
from clipdash.infrastructure.email import notifications

from conftest import create_post, create_user

POSTED = ScheduledPostStatus.POSTED.value
FAILED = ScheduledPostStatus.FAILED.value


def _notify(db, post_id):
    return asyncio.run(notify_post_outcome(db, post_id))


def test_grouped_batch_waits_for_every_sibling(db, sent_emails):
    user = create_user(db)
    group_id = uuid4()
    youtube = create_post(db, user, provider="youtube", group_id=group_id, status=POSTED)
    tiktok = create_post(db, user, provider="tiktok", group_id=group_id, status=ScheduledPostStatus.POSTING.value)

    assert _notify(db, youtube.id) == []
    assert sent_emails == []

    db.get(ScheduledPost, tiktok.id).status = POSTED
    db.commit()

    assert _notify(db, tiktok.id) == ["group_summary"]
    assert [email["subject"] for email in sent_emails] == ["Post summary: all platforms succeeded"]


def test_group_summary_is_sent_once(db, sent_emails):
    user = create_user(db)
    group_id = uuid4()
    first = create_post(db, user, provider="youtube", group_id=group_id, status=POSTED)
    second = create_post(db, user, provider="facebook", group_id=group_id, status=POSTED)

    assert _notify(db, first.id) == ["group_summary"]
    assert _notify(db, second.id) == []
    assert len(sent_emails) == 1


def test_group_with_failures_sends_summary_and_one_reconnect_per_provider(db, sent_emails):
    user = create_user(db)
    group_id = uuid4()
    create_post(db, user, provider="youtube", group_id=group_id, status=POSTED)
    create_post(
        db,
        user,
        provider="tiktok",
        group_id=group_id,
        status=FAILED,
        last_error="TikTok not connected for user",
        last_error_kind=PublishErrorKind.ACCOUNT_NOT_CONNECTED.value,
    )
    linkedin = create_post(
        db,
        user,
        provider="linkedin",
        group_id=group_id,
        status=FAILED,
        last_error="LinkedIn post creation failed: 422",
        last_error_kind=PublishErrorKind.ADAPTER_FAILURE.value,
    )

    sent = _notify(db, linkedin.id)

    assert sent == ["group_summary", "reconnect"]
    subjects = [email["subject"] for email in sent_emails]
    assert subjects == ["Post failed on some platforms", "Platform reconnection needed"]
    summary = sent_emails[0]["text"]
    assert "YouTube: ok" in summary
    assert "LinkedIn: failed (LinkedIn post creation failed: 422)" in summary
    assert "TikTok" in sent_emails[1]["text"]


def test_single_failure_respects_preferences(db, sent_emails):
    user = create_user(db)
    db.add(NotificationPreference(user_id=user.id, notify_post_failed=False))
    db.commit()
    post = create_post(db, user, status=FAILED, last_error="YouTube upload failed: 400")

    assert _notify(db, post.id) == []
    assert sent_emails == []
    assert db.get(ScheduledPost, post.id).notified_at is not None


def test_non_terminal_job_is_not_notified(db, sent_emails):
    user = create_user(db)
    post = create_post(db, user, status=ScheduledPostStatus.IG_PROCESSING.value)

    assert _notify(db, post.id) == []
    assert sent_emails == []


def test_email_failure_is_logged_and_leaves_job_untouched(db, monkeypatch):
    async def _failing_send(*args, **kwargs):
        raise aiosmtplib.SMTPException("smtp down")

    monkeypatch.setattr(notifications, "send_email", _failing_send)
    user = create_user(db)
    post = create_post(db, user, status=POSTED, platform_post_id="yt-1")

    assert _notify(db, post.id) == []

    db.expire_all()
    stored = db.get(ScheduledPost, post.id)
    assert stored.status == POSTED
    assert stored.platform_post_id == "yt-1"


def test_reconnect_classification_prefers_error_kind():
    assert is_reconnect_error("anything", PublishErrorKind.ACCOUNT_NOT_CONNECTED.value) is True
    assert is_reconnect_error("token expired, reconnect", PublishErrorKind.ASYNC_PROCESSING_TIMEOUT.value) is False
    assert is_reconnect_error("Instagram token expired, reconnect the account") is True
    assert is_reconnect_error("YouTube not connected for user 1", PublishErrorKind.ADAPTER_FAILURE.value) is True
    assert is_reconnect_error("quota exceeded") is False
    assert is_reconnect_error(None) is False


def test_draft_sibling_neither_blocks_nor_joins_the_group_summary(db, sent_emails):
    user = create_user(db)
    group_id = uuid4()
    youtube = create_post(db, user, provider="youtube", group_id=group_id, status=POSTED)
    draft = create_post(db, user, provider="linkedin", group_id=group_id, status=ScheduledPostStatus.DRAFT.value)

    assert _notify(db, youtube.id) == ["group_summary"]

    summary = sent_emails[0]["text"]
    assert "YouTube: ok" in summary
    assert "LinkedIn" not in summary
    db.expire_all()
    assert db.get(ScheduledPost, draft.id).notified_at is None
