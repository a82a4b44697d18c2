from time import perf_counter

from fastapi import APIRouter, Response, status
from redis.exceptions import RedisError
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from clipdash.core.clock import utcnow
from clipdash.core.config import settings
from clipdash.domain.models.scheduled_post import ScheduledPost, ScheduledPostStatus
from clipdash.infrastructure.cache.redis_client import get_redis_client
from clipdash.infrastructure.db.session import SessionLocal
from clipdash.infrastructure.observability.metrics import measure_redis, metrics_response

router = APIRouter()


def _probe_scheduler_backlog() -> tuple[str, float | None, dict]:
    backlog = {"due": None, "ig_processing": None}
    try:
        started_at = perf_counter()
        with SessionLocal() as db:
            backlog["due"] = db.scalar(
                select(func.count(ScheduledPost.id)).where(
                    ScheduledPost.status == ScheduledPostStatus.SCHEDULED.value,
                    ScheduledPost.scheduled_for <= utcnow(),
                )
            )
            backlog["ig_processing"] = db.scalar(
                select(func.count(ScheduledPost.id)).where(
                    ScheduledPost.status == ScheduledPostStatus.IG_PROCESSING.value
                )
            )
        return "up", round((perf_counter() - started_at) * 1000, 2), backlog
    except SQLAlchemyError:
        return "down", None, backlog


def _probe_worker_heartbeat() -> tuple[str, str | None]:
    try:
        redis_client = get_redis_client()
        with measure_redis("health_worker_heartbeat_get"):
            heartbeat = redis_client.get(settings.worker_heartbeat_key)
    except RedisError:
        return "down", None
    return "up", heartbeat


@router.get("/health", status_code=status.HTTP_200_OK)
def health_check() -> dict:
    db_status, db_latency_ms, backlog = _probe_scheduler_backlog()
    redis_status, last_heartbeat_at = _probe_worker_heartbeat()
    worker_alive = last_heartbeat_at is not None
    overall = "ok" if db_status == "up" and redis_status == "up" and worker_alive else "degraded"
    return {
        "status": overall,
        "services": {
            "api": "up",
            "database": db_status,
            "redis": redis_status,
            "worker_alive": worker_alive,
            "db_latency_ms": db_latency_ms,
        },
        "scheduler": {
            "last_heartbeat_at": last_heartbeat_at,
            "due_posts": backlog["due"],
            "ig_processing_posts": backlog["ig_processing"],
        },
    }


@router.get("/ready", status_code=status.HTTP_200_OK)
def readiness_check(response: Response) -> dict:
    # Readiness is gated on the database only.
    payload = health_check()
    if payload["services"]["database"] != "up":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not_ready", "services": payload["services"]}
    return {"status": "ready", "services": payload["services"]}


@router.get("/metrics", include_in_schema=False)
def metrics():
    return metrics_response()
