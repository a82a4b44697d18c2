import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from clipdash.core.config import settings
from clipdash.domain.models.publish_event import PublishEvent
from clipdash.domain.models.scheduled_post import ScheduledPost, ScheduledPostStatus
from clipdash.domain.publish_errors import InvalidStatusTransition
from clipdash.infrastructure.observability.metrics import PUBLISH_FAILURES_TOTAL
from clipdash.integrations.platform_adapters.base_adapter import ContainerRef, PostRef

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    ScheduledPostStatus.SCHEDULED.value: frozenset({ScheduledPostStatus.POSTING.value}),
    ScheduledPostStatus.FAILED.value: frozenset({ScheduledPostStatus.POSTING.value}),
    ScheduledPostStatus.POSTING.value: frozenset(
        {
            ScheduledPostStatus.POSTED.value,
            ScheduledPostStatus.FAILED.value,
            ScheduledPostStatus.IG_PROCESSING.value,
        }
    ),
    ScheduledPostStatus.IG_PROCESSING.value: frozenset(
        {ScheduledPostStatus.POSTED.value, ScheduledPostStatus.FAILED.value}
    ),
}


def claimable_statuses(retry_failed: bool) -> tuple[str, ...]:
    if retry_failed:
        return (ScheduledPostStatus.SCHEDULED.value, ScheduledPostStatus.FAILED.value)
    return (ScheduledPostStatus.SCHEDULED.value,)


def _retry_budget_condition():
    return or_(
        ScheduledPost.status != ScheduledPostStatus.FAILED.value,
        ScheduledPost.attempt_count < settings.max_publish_attempts,
    )


def emit_publish_event(
    db: Session,
    *,
    post: ScheduledPost,
    event_type: str,
    status: str,
    attempt: int | None = None,
    metadata_json: dict | None = None,
) -> PublishEvent:
    event = PublishEvent(
        scheduled_post_id=post.id,
        provider=post.provider,
        event_type=event_type,
        status=status,
        attempt=attempt if attempt is not None else max(post.attempt_count or 0, 1),
        metadata_json=metadata_json or {},
    )
    db.add(event)
    return event


def compare_and_set_status(
    db: Session,
    *,
    post_id: UUID,
    expected: Iterable[str],
    new_status: str,
    values: dict | None = None,
    conditions: Iterable = (),
) -> int:
    """
    Conditional status update scoped by id and the expected-status set.

    Returns the affected-row count; zero means another invocation moved the
    row first. Nothing is committed here so callers can write the audit event
    in the same transaction.
    """
    expected = tuple(expected)
    for current in expected:
        if new_status not in ALLOWED_TRANSITIONS.get(current, frozenset()):
            raise InvalidStatusTransition(f"{current} -> {new_status} is not an allowed transition")

    statement = (
        update(ScheduledPost)
        .where(ScheduledPost.id == post_id, ScheduledPost.status.in_(expected), *conditions)
        .values(status=new_status, **(values or {}))
        .execution_options(synchronize_session=False)
    )
    result = db.execute(statement)
    return result.rowcount or 0


def select_due_posts(
    db: Session,
    *,
    now: datetime,
    retry_failed: bool = False,
    post_id: UUID | None = None,
    limit: int | None = None,
) -> list[ScheduledPost]:
    query = select(ScheduledPost).where(
        ScheduledPost.scheduled_for <= now,
        ScheduledPost.status.in_(claimable_statuses(retry_failed)),
    )
    if retry_failed:
        query = query.where(_retry_budget_condition())
    if post_id is not None:
        query = query.where(ScheduledPost.id == post_id)
    query = query.order_by(ScheduledPost.scheduled_for.asc()).limit(limit or settings.worker_batch_size)
    return list(db.execute(query).scalars().all())


def claim_scheduled_post(db: Session, post: ScheduledPost, *, retry_failed: bool, now: datetime) -> bool:
    attempt = (post.attempt_count or 0) + 1
    rowcount = compare_and_set_status(
        db,
        post_id=post.id,
        expected=claimable_statuses(retry_failed),
        new_status=ScheduledPostStatus.POSTING.value,
        values={
            "attempt_count": ScheduledPost.attempt_count + 1,
            "claimed_at": now,
            "last_error": None,
            "last_error_kind": None,
            "notified_at": None,
        },
        conditions=(_retry_budget_condition(),) if retry_failed else (),
    )
    if rowcount == 0:
        db.rollback()
        return False

    emit_publish_event(db, post=post, event_type="publish_claimed", status="ok", attempt=attempt)
    db.commit()
    logger.info("scheduled_post_claimed post_id=%s provider=%s attempt=%s", post.id, post.provider, attempt)
    return True


def mark_posted(
    db: Session,
    post: ScheduledPost,
    *,
    post_ref: PostRef,
    now: datetime,
    from_status: str = ScheduledPostStatus.POSTING.value,
) -> bool:
    rowcount = compare_and_set_status(
        db,
        post_id=post.id,
        expected=(from_status,),
        new_status=ScheduledPostStatus.POSTED.value,
        values={
            "platform_post_id": post_ref.platform_post_id,
            "platform_media_id": post_ref.platform_media_id,
            "posted_at": now,
            "last_error": None,
            "last_error_kind": None,
        },
    )
    if rowcount == 0:
        db.rollback()
        logger.warning("scheduled_post_transition_lost post_id=%s target=posted from=%s", post.id, from_status)
        return False

    emit_publish_event(
        db,
        post=post,
        event_type="publish_succeeded",
        status="ok",
        metadata_json={"platform_post_id": post_ref.platform_post_id, **post_ref.metadata},
    )
    db.commit()
    logger.info(
        "scheduled_post_posted post_id=%s provider=%s platform_post_id=%s",
        post.id,
        post.provider,
        post_ref.platform_post_id,
    )
    return True


def mark_failed(
    db: Session,
    post: ScheduledPost,
    *,
    message: str,
    error_kind: str,
    from_status: str = ScheduledPostStatus.POSTING.value,
) -> bool:
    post_id = post.id
    provider = post.provider
    rowcount = compare_and_set_status(
        db,
        post_id=post_id,
        expected=(from_status,),
        new_status=ScheduledPostStatus.FAILED.value,
        values={"last_error": message, "last_error_kind": error_kind},
    )
    if rowcount == 0:
        db.rollback()
        logger.warning("scheduled_post_transition_lost post_id=%s target=failed from=%s", post_id, from_status)
        return False

    emit_publish_event(
        db,
        post=post,
        event_type="publish_failed",
        status="error",
        metadata_json={"error": message, "error_kind": error_kind},
    )
    db.commit()
    PUBLISH_FAILURES_TOTAL.labels(provider=provider, error_kind=error_kind).inc()
    logger.warning(
        "scheduled_post_failed post_id=%s provider=%s error_kind=%s error=%s",
        post_id,
        provider,
        error_kind,
        message,
    )
    return True


def mark_ig_processing(db: Session, post: ScheduledPost, *, container: ContainerRef, now: datetime) -> bool:
    rowcount = compare_and_set_status(
        db,
        post_id=post.id,
        expected=(ScheduledPostStatus.POSTING.value,),
        new_status=ScheduledPostStatus.IG_PROCESSING.value,
        values={
            "container_id": container.container_id,
            "container_created_at": now,
            "container_polled_at": None,
        },
    )
    if rowcount == 0:
        db.rollback()
        logger.warning("scheduled_post_transition_lost post_id=%s target=ig_processing", post.id)
        return False

    emit_publish_event(
        db,
        post=post,
        event_type="container_created",
        status="ok",
        metadata_json={"container_id": container.container_id, **container.metadata},
    )
    db.commit()
    logger.info("scheduled_post_container_created post_id=%s container_id=%s", post.id, container.container_id)
    return True


def acquire_poll_lease(db: Session, post: ScheduledPost, *, now: datetime) -> bool:
    lease_cutoff = now - timedelta(seconds=settings.ig_poll_lease_seconds)
    result = db.execute(
        update(ScheduledPost)
        .where(
            ScheduledPost.id == post.id,
            ScheduledPost.status == ScheduledPostStatus.IG_PROCESSING.value,
            or_(ScheduledPost.container_polled_at.is_(None), ScheduledPost.container_polled_at < lease_cutoff),
        )
        .values(container_polled_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return (result.rowcount or 0) == 1


def release_poll_lease(db: Session, post: ScheduledPost) -> None:
    db.execute(
        update(ScheduledPost)
        .where(
            ScheduledPost.id == post.id,
            ScheduledPost.status == ScheduledPostStatus.IG_PROCESSING.value,
        )
        .values(container_polled_at=None)
        .execution_options(synchronize_session=False)
    )
    db.commit()


def list_ig_processing_posts(db: Session, *, limit: int | None = None) -> list[ScheduledPost]:
    return list(
        db.execute(
            select(ScheduledPost)
            .where(ScheduledPost.status == ScheduledPostStatus.IG_PROCESSING.value)
            .order_by(ScheduledPost.container_created_at.asc())
            .limit(limit or settings.ig_poll_batch_size)
        )
        .scalars()
        .all()
    )


def override_upload_for_testing(db: Session, *, post_id: UUID, upload_id: UUID, now: datetime) -> bool:
    """Rebinds a job to another upload and makes it due immediately."""
    result = db.execute(
        update(ScheduledPost)
        .where(ScheduledPost.id == post_id)
        .values(
            upload_id=upload_id,
            status=ScheduledPostStatus.SCHEDULED.value,
            scheduled_for=now - timedelta(seconds=60),
            last_error=None,
            last_error_kind=None,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    updated = (result.rowcount or 0) == 1
    logger.info("scheduled_post_upload_overridden post_id=%s upload_id=%s updated=%s", post_id, upload_id, updated)
    return updated
