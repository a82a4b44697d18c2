import logging
from datetime import datetime

import httpx
from sqlalchemy.orm import Session

from clipdash.application.services.notification_service import notify_post_outcome
from clipdash.application.services.scheduled_post_service import (
    acquire_poll_lease,
    list_ig_processing_posts,
    mark_failed,
    mark_posted,
    release_poll_lease,
)
from clipdash.core.clock import as_utc, utcnow
from clipdash.core.config import settings
from clipdash.domain.models.scheduled_post import ScheduledPost, ScheduledPostStatus
from clipdash.domain.publish_errors import PublishErrorKind, error_kind_for
from clipdash.infrastructure.observability.metrics import CONTAINER_POLLS_TOTAL
from clipdash.integrations.credential_service import resolve_platform_credentials
from clipdash.integrations.platform_adapters.base_adapter import (
    AdapterError,
    ContainerState,
    ContainerStatus,
)
from clipdash.integrations.platform_adapters.factory import get_publish_adapter

logger = logging.getLogger(__name__)

IG_PROCESSING = ScheduledPostStatus.IG_PROCESSING.value


def _processing_timed_out(post: ScheduledPost, now: datetime) -> bool:
    started_at = as_utc(post.container_created_at) or as_utc(post.claimed_at)
    if started_at is None:
        return True
    return (now - started_at).total_seconds() > settings.ig_processing_timeout_seconds


def _timeout_message() -> str:
    minutes = settings.ig_processing_timeout_seconds // 60
    return f"Instagram processing timed out after {minutes} minutes"


async def _fail(db: Session, post: ScheduledPost, *, message: str, error_kind: str) -> dict:
    post_id = post.id
    if mark_failed(db, post, message=message, error_kind=error_kind, from_status=IG_PROCESSING):
        try:
            await notify_post_outcome(db, post_id)
        except Exception:
            db.rollback()
            logger.exception("scheduled_post_notify_failed post_id=%s", post_id)
    outcome = "timeout" if error_kind == PublishErrorKind.ASYNC_PROCESSING_TIMEOUT.value else "failed"
    CONTAINER_POLLS_TOTAL.labels(outcome=outcome).inc()
    return {"id": str(post_id), "outcome": outcome, "error": message}


async def _check_container(post: ScheduledPost, credentials) -> ContainerStatus:
    adapter = get_publish_adapter(post.provider)
    try:
        return await adapter.check_container(credentials, post.container_id)
    except (AdapterError, httpx.TransportError) as exc:
        if isinstance(exc, AdapterError) and not exc.retryable:
            raise
        logger.warning("container_check_transient post_id=%s container_id=%s error=%s", post.id, post.container_id, exc)
        return ContainerStatus(state=ContainerState.PROCESSING)


async def poll_ig_processing_post(db: Session, post: ScheduledPost, *, now: datetime) -> dict:
    post_id = post.id
    if not acquire_poll_lease(db, post, now=now):
        CONTAINER_POLLS_TOTAL.labels(outcome="leased").inc()
        return {"id": str(post_id), "outcome": "leased"}

    if not post.container_id:
        return await _fail(
            db,
            post,
            message="Instagram container id missing",
            error_kind=PublishErrorKind.ASYNC_PROCESSING_ERROR.value,
        )

    try:
        credentials = await resolve_platform_credentials(db, post)
    except Exception as exc:
        db.rollback()
        return await _fail(db, post, message=str(exc) or exc.__class__.__name__, error_kind=error_kind_for(exc))

    try:
        status = await _check_container(post, credentials)
    except Exception as exc:
        db.rollback()
        error_kind = error_kind_for(exc)
        if error_kind == PublishErrorKind.ADAPTER_FAILURE.value:
            error_kind = PublishErrorKind.ASYNC_PROCESSING_ERROR.value
        return await _fail(db, post, message=str(exc) or exc.__class__.__name__, error_kind=error_kind)

    if status.state == ContainerState.READY and status.post_ref is not None:
        if mark_posted(db, post, post_ref=status.post_ref, now=utcnow(), from_status=IG_PROCESSING):
            try:
                await notify_post_outcome(db, post_id)
            except Exception:
                db.rollback()
                logger.exception("scheduled_post_notify_failed post_id=%s", post_id)
        CONTAINER_POLLS_TOTAL.labels(outcome="posted").inc()
        return {"id": str(post_id), "outcome": "posted", "platformPostId": status.post_ref.platform_post_id}

    if status.state == ContainerState.ERROR:
        return await _fail(
            db,
            post,
            message=status.error or "Instagram media processing failed",
            error_kind=PublishErrorKind.ASYNC_PROCESSING_ERROR.value,
        )

    if _processing_timed_out(post, now):
        return await _fail(
            db,
            post,
            message=_timeout_message(),
            error_kind=PublishErrorKind.ASYNC_PROCESSING_TIMEOUT.value,
        )

    release_poll_lease(db, post)
    CONTAINER_POLLS_TOTAL.labels(outcome="processing").inc()
    logger.info("container_still_processing post_id=%s container_id=%s", post_id, post.container_id)
    return {"id": str(post_id), "outcome": "processing"}


async def poll_ig_processing_posts(db: Session, *, now: datetime) -> list[dict]:
    """
    Advances jobs waiting on an Instagram container, oldest container first.

    Each job is polled at most once per invocation and under a short lease, so
    overlapping invocations never publish the same container twice.
    """
    outcomes = []
    for post in list_ig_processing_posts(db):
        outcomes.append(await poll_ig_processing_post(db, post, now=now))
    return outcomes
