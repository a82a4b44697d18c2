import asyncio
import logging
from datetime import UTC, datetime

from clipdash.application.services.worker_service import WorkerRunOptions, run_worker_invocation
from clipdash.core.config import settings
from clipdash.domain import models  # noqa: F401
from clipdash.infrastructure.cache.redis_client import get_redis_client
from clipdash.infrastructure.db.session import SessionLocal
from clipdash.infrastructure.observability.metrics import measure_redis
from workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="workers.tasks.worker_heartbeat")
def worker_heartbeat() -> dict:
    redis_client = get_redis_client()
    now = datetime.now(UTC).isoformat()
    with measure_redis("worker_heartbeat_set"):
        redis_client.set(
            settings.worker_heartbeat_key,
            now,
            ex=max(15, settings.worker_heartbeat_ttl_seconds),
        )
    return {"heartbeat_at": now}


@celery_app.task(name="workers.tasks.run_scheduled_posts")
def run_scheduled_posts(retry_failed: bool = False) -> dict:
    with SessionLocal() as db:
        report = asyncio.run(
            run_worker_invocation(
                db,
                options=WorkerRunOptions(retry_failed=retry_failed),
                trigger="beat",
            )
        )
    logger.info("run_scheduled_posts completed processed=%s", report.processed)
    return report.to_dict()
