from datetime import timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy import select

from clipdash.application.services.scheduled_post_service import (
    acquire_poll_lease,
    claim_scheduled_post,
    compare_and_set_status,
    mark_failed,
    mark_posted,
    release_poll_lease,
    select_due_posts,
)
from clipdash.core.config import Settings, settings
from clipdash.domain.models.publish_event import PublishEvent
from clipdash.domain.models.scheduled_post import ScheduledPost, ScheduledPostStatus
from clipdash.domain.publish_errors import InvalidStatusTransition, PublishErrorKind

from conftest import NOW, create_post, create_user, posted_ref


def _reload(db, post_id) -> ScheduledPost:
    db.expire_all()
    return db.get(ScheduledPost, post_id)


def test_claim_moves_scheduled_to_posting_and_records_attempt(db):
    user = create_user(db)
    post = create_post(db, user, last_error="old failure", last_error_kind="adapter_failure")

    assert claim_scheduled_post(db, post, retry_failed=False, now=NOW) is True

    claimed = _reload(db, post.id)
    assert claimed.status == ScheduledPostStatus.POSTING.value
    assert claimed.attempt_count == 1
    assert claimed.claimed_at is not None
    assert claimed.last_error is None
    assert claimed.last_error_kind is None

    events = db.execute(select(PublishEvent).where(PublishEvent.scheduled_post_id == post.id)).scalars().all()
    assert [event.event_type for event in events] == ["publish_claimed"]


def test_second_session_loses_claim_race(db, session_factory):
    user = create_user(db)
    post = create_post(db, user)

    first = session_factory()
    second = session_factory()
    try:
        first_post = select_due_posts(first, now=NOW)[0]
        second_post = select_due_posts(second, now=NOW)[0]

        assert claim_scheduled_post(first, first_post, retry_failed=False, now=NOW) is True
        assert claim_scheduled_post(second, second_post, retry_failed=False, now=NOW) is False
    finally:
        first.close()
        second.close()

    assert _reload(db, post.id).attempt_count == 1


def test_terminal_posts_are_not_reclaimed_without_retry_mode(db):
    user = create_user(db)
    posted = create_post(db, user, status=ScheduledPostStatus.POSTED.value)
    failed = create_post(db, user, status=ScheduledPostStatus.FAILED.value)

    assert select_due_posts(db, now=NOW) == []
    assert claim_scheduled_post(db, posted, retry_failed=False, now=NOW) is False
    assert claim_scheduled_post(db, failed, retry_failed=False, now=NOW) is False


def test_retry_mode_reclaims_failed_until_attempts_exhausted(db):
    user = create_user(db)
    retryable = create_post(db, user, status=ScheduledPostStatus.FAILED.value, attempt_count=1)
    exhausted = create_post(
        db,
        user,
        status=ScheduledPostStatus.FAILED.value,
        attempt_count=settings.max_publish_attempts,
    )

    due_ids = {post.id for post in select_due_posts(db, now=NOW, retry_failed=True)}
    assert due_ids == {retryable.id}

    assert claim_scheduled_post(db, exhausted, retry_failed=True, now=NOW) is False
    assert claim_scheduled_post(db, retryable, retry_failed=True, now=NOW) is True
    assert _reload(db, retryable.id).attempt_count == 2


def test_draft_and_future_posts_are_never_due(db):
    user = create_user(db)
    create_post(db, user, status=ScheduledPostStatus.DRAFT.value)
    create_post(db, user, scheduled_for=NOW + timedelta(minutes=5))

    assert select_due_posts(db, now=NOW, retry_failed=True) == []


def test_selection_is_bounded_and_ordered_by_schedule(db):
    user = create_user(db)
    created = [
        create_post(db, user, scheduled_for=NOW - timedelta(minutes=minutes))
        for minutes in (3, 9, 1, 7, 5, 8, 2)
    ]

    due = select_due_posts(db, now=NOW)

    assert len(due) == settings.worker_batch_size
    expected = sorted(created, key=lambda post: post.scheduled_for)[: settings.worker_batch_size]
    assert [post.id for post in due] == [post.id for post in expected]


def test_illegal_transition_raises(db):
    user = create_user(db)
    post = create_post(db, user, status=ScheduledPostStatus.POSTED.value)

    with pytest.raises(InvalidStatusTransition):
        compare_and_set_status(
            db,
            post_id=post.id,
            expected=(ScheduledPostStatus.POSTED.value,),
            new_status=ScheduledPostStatus.POSTING.value,
        )
    with pytest.raises(InvalidStatusTransition):
        compare_and_set_status(
            db,
            post_id=post.id,
            expected=(ScheduledPostStatus.SCHEDULED.value,),
            new_status=ScheduledPostStatus.POSTED.value,
        )


def test_mark_posted_requires_owned_status(db):
    user = create_user(db)
    post = create_post(db, user, status=ScheduledPostStatus.POSTING.value)

    assert mark_posted(db, post, post_ref=posted_ref("yt-123"), now=NOW) is True
    assert mark_posted(db, post, post_ref=posted_ref("yt-456"), now=NOW) is False

    stored = _reload(db, post.id)
    assert stored.status == ScheduledPostStatus.POSTED.value
    assert stored.platform_post_id == "yt-123"
    assert stored.posted_at is not None


def test_mark_failed_persists_message_and_kind(db):
    user = create_user(db)
    post = create_post(db, user, status=ScheduledPostStatus.POSTING.value)

    assert mark_failed(
        db,
        post,
        message="YouTube not connected for user",
        error_kind=PublishErrorKind.ACCOUNT_NOT_CONNECTED.value,
    )

    stored = _reload(db, post.id)
    assert stored.status == ScheduledPostStatus.FAILED.value
    assert stored.last_error == "YouTube not connected for user"
    assert stored.last_error_kind == PublishErrorKind.ACCOUNT_NOT_CONNECTED.value


def test_poll_lease_is_exclusive_until_released_or_stale(db):
    user = create_user(db)
    post = create_post(
        db,
        user,
        provider="instagram",
        status=ScheduledPostStatus.IG_PROCESSING.value,
        container_id="container-1",
        container_created_at=NOW - timedelta(minutes=1),
    )

    assert acquire_poll_lease(db, post, now=NOW) is True
    assert acquire_poll_lease(db, post, now=NOW + timedelta(seconds=5)) is False

    release_poll_lease(db, post)
    assert acquire_poll_lease(db, post, now=NOW + timedelta(seconds=6)) is True

    stale = NOW + timedelta(seconds=6 + settings.ig_poll_lease_seconds + 1)
    assert acquire_poll_lease(db, post, now=stale) is True


def test_poll_lease_outlives_a_full_container_check(db, session_factory):
    user = create_user(db)
    post = create_post(
        db,
        user,
        provider="instagram",
        status=ScheduledPostStatus.IG_PROCESSING.value,
        container_id="container-1",
        container_created_at=NOW - timedelta(minutes=1),
    )
    assert acquire_poll_lease(db, post, now=NOW) is True

    still_checking = NOW + timedelta(seconds=settings.ig_check_budget_seconds + 1)
    other = session_factory()
    try:
        assert acquire_poll_lease(other, other.get(ScheduledPost, post.id), now=still_checking) is False
    finally:
        other.close()


def test_settings_reject_lease_shorter_than_check_budget():
    with pytest.raises(ValidationError):
        Settings(ig_check_timeout_seconds=20.0, ig_poll_lease_seconds=30)

    assert Settings(ig_check_timeout_seconds=20.0, ig_poll_lease_seconds=41).ig_poll_lease_seconds == 41
