import logging
from dataclasses import dataclass, field
from datetime import datetime
from time import perf_counter
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clipdash.application.services.ig_processing_service import poll_ig_processing_posts
from clipdash.application.services.publishing_service import PostRunResult, process_due_post
from clipdash.application.services.scheduled_post_service import (
    claimable_statuses,
    override_upload_for_testing,
    select_due_posts,
)
from clipdash.core.clock import utcnow
from clipdash.core.config import settings
from clipdash.domain.publish_errors import WorkerInvocationError
from clipdash.infrastructure.logging.context import reset_invocation_id, set_invocation_id
from clipdash.infrastructure.observability.metrics import SCHEDULED_JOBS_CHECKED_TOTAL, WORKER_INVOCATIONS_TOTAL

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkerRunOptions:
    post_id: UUID | None = None
    retry_failed: bool = False
    debug: bool = False
    set_upload_id: UUID | None = None


@dataclass
class WorkerRunReport:
    ok: bool
    processed: int
    results: list[PostRunResult] = field(default_factory=list)
    debug: dict | None = None

    def to_dict(self) -> dict:
        payload = {
            "ok": self.ok,
            "processed": self.processed,
            "results": [result.to_dict() for result in self.results],
        }
        if self.debug is not None:
            payload["debug"] = self.debug
        return payload


async def run_worker_invocation(
    db: Session,
    *,
    options: WorkerRunOptions | None = None,
    now: datetime | None = None,
    trigger: str = "http",
) -> WorkerRunReport:
    """
    One pass of the scheduler: poll pending containers, then claim and publish
    the due batch sequentially.

    Per-job failures end up in the report. Only a failure to select the batch
    raises, as WorkerInvocationError.
    """
    options = options or WorkerRunOptions()
    now = now or utcnow()
    started_at = perf_counter()
    invocation_id = str(uuid4())
    token = set_invocation_id(invocation_id)
    logger.info(
        "worker_invocation_started trigger=%s post_id=%s retry_failed=%s",
        trigger,
        options.post_id,
        options.retry_failed,
    )
    try:
        debug: dict = {}
        if options.set_upload_id is not None and options.post_id is not None:
            if settings.debug_overrides_enabled:
                debug["uploadOverride"] = override_upload_for_testing(
                    db,
                    post_id=options.post_id,
                    upload_id=options.set_upload_id,
                    now=now,
                )
            else:
                logger.warning("worker_upload_override_rejected post_id=%s", options.post_id)
                debug["uploadOverride"] = "disabled"

        try:
            debug["igPoll"] = await poll_ig_processing_posts(db, now=now)
        except SQLAlchemyError as exc:
            db.rollback()
            raise WorkerInvocationError(f"Failed to poll processing containers: {exc}") from exc

        try:
            due_posts = select_due_posts(
                db,
                now=now,
                retry_failed=options.retry_failed,
                post_id=options.post_id,
                limit=settings.worker_batch_size,
            )
        except SQLAlchemyError as exc:
            db.rollback()
            raise WorkerInvocationError(f"Failed to select due posts: {exc}") from exc
        SCHEDULED_JOBS_CHECKED_TOTAL.inc(len(due_posts))

        results: list[PostRunResult] = []
        for post in due_posts:
            results.append(await process_due_post(db, post, retry_failed=options.retry_failed, now=now))

        debug["selection"] = {
            "now": now.isoformat(),
            "statuses": list(claimable_statuses(options.retry_failed)),
            "postId": str(options.post_id) if options.post_id else None,
            "batchSize": settings.worker_batch_size,
            "selected": len(due_posts),
        }
        debug["invocationId"] = invocation_id
        debug["durationMs"] = round((perf_counter() - started_at) * 1000, 2)

        report = WorkerRunReport(
            ok=True,
            processed=len(results),
            results=results,
            debug=debug if options.debug else None,
        )
        WORKER_INVOCATIONS_TOTAL.labels(trigger=trigger, outcome="ok").inc()
        logger.info(
            "worker_invocation_finished processed=%s skipped=%s failed=%s duration_ms=%s",
            report.processed,
            sum(1 for result in results if result.skipped),
            sum(1 for result in results if not result.ok),
            debug["durationMs"],
        )
        return report
    except Exception:
        WORKER_INVOCATIONS_TOTAL.labels(trigger=trigger, outcome="error").inc()
        logger.exception("worker_invocation_failed trigger=%s", trigger)
        raise
    finally:
        reset_invocation_id(token)
