import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from clipdash.core.clock import utcnow
from clipdash.domain.models.notification_preference import NotificationPreference
from clipdash.domain.models.scheduled_post import IN_FLIGHT_STATUSES, ScheduledPost, ScheduledPostStatus
from clipdash.domain.models.user import User
from clipdash.domain.publish_errors import is_reconnect_error
from clipdash.infrastructure.email import notifications
from clipdash.infrastructure.observability.metrics import NOTIFICATIONS_SENT_TOTAL

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationSettings:
    notify_post_success: bool = True
    notify_post_failed: bool = True
    notify_reconnect: bool = True


def get_notification_settings(db: Session, *, user_id: UUID) -> NotificationSettings:
    row = db.execute(
        select(NotificationPreference).where(NotificationPreference.user_id == user_id)
    ).scalar_one_or_none()
    if row is None:
        return NotificationSettings()
    return NotificationSettings(
        notify_post_success=row.notify_post_success,
        notify_post_failed=row.notify_post_failed,
        notify_reconnect=row.notify_reconnect,
    )


def _claim_notification(db: Session, *, post_ids: list[UUID], now: datetime) -> bool:
    result = db.execute(
        update(ScheduledPost)
        .where(ScheduledPost.id.in_(post_ids), ScheduledPost.notified_at.is_(None))
        .values(notified_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return (result.rowcount or 0) > 0


def _post_is_reconnect(post: ScheduledPost) -> bool:
    return post.status == ScheduledPostStatus.FAILED.value and is_reconnect_error(post.last_error, post.last_error_kind)


async def _deliver(notification_type: str, post_id: UUID, send, *args) -> bool:
    try:
        await send(*args)
    except Exception:
        logger.exception("notification_send_failed type=%s post_id=%s", notification_type, post_id)
        return False
    NOTIFICATIONS_SENT_TOTAL.labels(notification_type=notification_type).inc()
    logger.info("notification_sent type=%s post_id=%s", notification_type, post_id)
    return True


async def _notify_single(
    db: Session,
    post: ScheduledPost,
    *,
    recipient: str,
    preferences: NotificationSettings,
) -> list[str]:
    sent: list[str] = []
    title = post.title or "Untitled"
    if post.status == ScheduledPostStatus.POSTED.value:
        if preferences.notify_post_success and await _deliver(
            "post_success", post.id, notifications.send_post_success_email, recipient, title, [post.provider]
        ):
            sent.append("post_success")
    elif _post_is_reconnect(post):
        if preferences.notify_reconnect and await _deliver(
            "reconnect", post.id, notifications.send_reconnect_email, recipient, post.provider
        ):
            sent.append("reconnect")
    elif preferences.notify_post_failed and await _deliver(
        "post_failed",
        post.id,
        notifications.send_post_failed_email,
        recipient,
        title,
        post.provider,
        post.last_error or "Unknown error",
    ):
        sent.append("post_failed")
    return sent


async def _notify_group(
    db: Session,
    post: ScheduledPost,
    siblings: list[ScheduledPost],
    *,
    recipient: str,
    preferences: NotificationSettings,
) -> list[str]:
    sent: list[str] = []
    results = [
        notifications.PlatformResult(
            platform=sibling.provider,
            ok=sibling.status == ScheduledPostStatus.POSTED.value,
            error=sibling.last_error,
        )
        for sibling in siblings
    ]
    all_ok = all(result.ok for result in results)
    wants_summary = preferences.notify_post_success if all_ok else preferences.notify_post_failed
    if wants_summary and await _deliver(
        "group_summary",
        post.id,
        notifications.send_group_summary_email,
        recipient,
        post.title or "Untitled",
        results,
    ):
        sent.append("group_summary")

    if preferences.notify_reconnect:
        reconnect_providers: list[str] = []
        for sibling in siblings:
            if _post_is_reconnect(sibling) and sibling.provider not in reconnect_providers:
                reconnect_providers.append(sibling.provider)
        for provider in reconnect_providers:
            if await _deliver("reconnect", post.id, notifications.send_reconnect_email, recipient, provider):
                sent.append("reconnect")
    return sent


async def notify_post_outcome(db: Session, post_id: UUID, *, now: datetime | None = None) -> list[str]:
    """
    Sends the notifications owed for a job that just became terminal.

    Ungrouped jobs get one email matching their outcome. Grouped jobs stay
    silent until every sibling is terminal, then the group gets one summary
    plus one reconnect notice per provider that needs reconnecting. The right
    to notify is claimed through notified_at so overlapping invocations never
    send the same notification twice. Returns the notification types sent.
    """
    now = now or utcnow()
    post = db.get(ScheduledPost, post_id, populate_existing=True)
    if post is None or not post.is_terminal:
        return []

    if post.group_id is not None:
        siblings = list(
            db.execute(
                select(ScheduledPost)
                .where(ScheduledPost.group_id == post.group_id)
                .order_by(ScheduledPost.created_at.asc(), ScheduledPost.id.asc())
                .execution_options(populate_existing=True)
            )
            .scalars()
            .all()
        )
        pending = [sibling.id for sibling in siblings if sibling.status in IN_FLIGHT_STATUSES]
        if pending:
            logger.info("group_notification_deferred group_id=%s pending=%s", post.group_id, len(pending))
            return []
        # Draft siblings are neither pending nor part of the summary.
        siblings = [sibling for sibling in siblings if sibling.is_terminal]
        notify_ids = [sibling.id for sibling in siblings]
    else:
        siblings = []
        notify_ids = [post.id]

    user = db.get(User, post.user_id)
    if user is None or not user.email:
        logger.warning("notification_recipient_missing post_id=%s user_id=%s", post.id, post.user_id)
        return []

    if not _claim_notification(db, post_ids=notify_ids, now=now):
        logger.info("notification_already_claimed post_id=%s group_id=%s", post.id, post.group_id)
        return []

    preferences = get_notification_settings(db, user_id=post.user_id)
    if siblings:
        return await _notify_group(db, post, siblings, recipient=user.email, preferences=preferences)
    return await _notify_single(db, post, recipient=user.email, preferences=preferences)
