import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from clipdash.application.services.notification_service import notify_post_outcome
from clipdash.application.services.scheduled_post_service import (
    claim_scheduled_post,
    mark_failed,
    mark_ig_processing,
    mark_posted,
)
from clipdash.core.clock import utcnow
from clipdash.domain.models.scheduled_post import ScheduledPost
from clipdash.domain.publish_errors import PublishError, error_kind_for
from clipdash.infrastructure.observability.metrics import (
    CLAIM_CONFLICTS_TOTAL,
    PUBLISH_ATTEMPTS_TOTAL,
    measure_publish,
)
from clipdash.integrations.credential_service import resolve_platform_credentials
from clipdash.integrations.media_storage import resolve_asset_location
from clipdash.integrations.platform_adapters.base_adapter import ContainerRef
from clipdash.integrations.platform_adapters.factory import get_publish_adapter

logger = logging.getLogger(__name__)

_CAMEL_KEYS = {
    "platform_post_id": "platformPostId",
    "ig_processing": "igProcessing",
    "container_id": "containerId",
}


@dataclass
class PostRunResult:
    id: UUID
    ok: bool
    platform_post_id: str | None = None
    error: str | None = None
    skipped: bool | None = None
    ig_processing: bool | None = None
    container_id: str | None = None

    def to_dict(self) -> dict:
        payload = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            payload[_CAMEL_KEYS.get(key, key)] = str(value) if key == "id" else value
        return payload


def build_publish_settings(post: ScheduledPost) -> dict:
    publish_settings = {
        "title": post.title or "",
        "description": post.description or "",
    }
    publish_settings.update(post.settings_json or {})
    return publish_settings


async def _notify(db: Session, post_id: UUID) -> None:
    try:
        await notify_post_outcome(db, post_id)
    except Exception:
        db.rollback()
        logger.exception("scheduled_post_notify_failed post_id=%s", post_id)


async def process_due_post(db: Session, post: ScheduledPost, *, retry_failed: bool, now: datetime) -> PostRunResult:
    """
    Claims one due job and drives it through its adapter.

    A lost claim is reported as a skip. Any failure after a successful claim is
    recorded on the row and never escapes, so one bad job cannot stop the batch.
    """
    post_id = post.id
    if not claim_scheduled_post(db, post, retry_failed=retry_failed, now=now):
        CLAIM_CONFLICTS_TOTAL.inc()
        logger.info("scheduled_post_claim_skipped post_id=%s", post_id)
        return PostRunResult(id=post_id, ok=True, skipped=True)

    provider = post.provider
    try:
        asset = resolve_asset_location(db, upload_id=post.upload_id, thumbnail_path=post.thumbnail_path)
        credentials = await resolve_platform_credentials(db, post)
        adapter = get_publish_adapter(provider)
        PUBLISH_ATTEMPTS_TOTAL.labels(provider=provider).inc()
        with measure_publish(provider):
            outcome = await adapter.publish(credentials, asset, build_publish_settings(post))
    except Exception as exc:
        db.rollback()
        message = str(exc) or exc.__class__.__name__
        if not isinstance(exc, PublishError):
            logger.exception("scheduled_post_unexpected_error post_id=%s provider=%s", post_id, provider)
        mark_failed(db, post, message=message, error_kind=error_kind_for(exc))
        await _notify(db, post_id)
        return PostRunResult(id=post_id, ok=False, error=message)

    # Completion is stamped after the adapter returns; the container deadline runs from here.
    finished_at = utcnow()
    if isinstance(outcome, ContainerRef):
        if not mark_ig_processing(db, post, container=outcome, now=finished_at):
            return PostRunResult(id=post_id, ok=False, error="Job status changed while publishing")
        return PostRunResult(id=post_id, ok=True, ig_processing=True, container_id=outcome.container_id)

    if not mark_posted(db, post, post_ref=outcome, now=finished_at):
        return PostRunResult(id=post_id, ok=False, error="Job status changed while publishing")
    await _notify(db, post_id)
    return PostRunResult(id=post_id, ok=True, platform_post_id=outcome.platform_post_id)
