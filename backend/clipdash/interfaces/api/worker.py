import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from clipdash.application.services.worker_service import WorkerRunOptions, run_worker_invocation
from clipdash.core.security import extract_worker_token, is_worker_token_valid
from clipdash.domain.publish_errors import WorkerInvocationError
from clipdash.infrastructure.db.session import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/worker", tags=["worker"])

TRUTHY_FLAGS = {"1", "true", "yes", "on"}


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in TRUTHY_FLAGS


def _failure(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "processed": 0, "results": [], "error": error},
    )


def _parse_uuid(value: str | None) -> UUID | None:
    if not value:
        return None
    return UUID(value)


@router.api_route("/run-scheduled", methods=["GET", "POST"])
async def run_scheduled(
    db: Session = Depends(get_db),
    authorization: str | None = Header(default=None),
    cron_secret: str | None = Header(default=None, alias="X-Cron-Secret"),
    token: str | None = Query(default=None),
    post_id: str | None = Query(default=None, alias="postId"),
    retry_failed: str | None = Query(default=None, alias="retryFailed"),
    debug: str | None = Query(default=None),
    set_upload_id: str | None = Query(default=None, alias="setUploadId"),
) -> JSONResponse:
    presented = extract_worker_token(
        authorization=authorization,
        cron_secret_header=cron_secret,
        query_token=token,
    )
    if not is_worker_token_valid(presented):
        logger.warning("worker_trigger_unauthorized")
        return _failure(status.HTTP_401_UNAUTHORIZED, "Unauthorized")

    try:
        options = WorkerRunOptions(
            post_id=_parse_uuid(post_id),
            retry_failed=_flag(retry_failed),
            debug=_flag(debug),
            set_upload_id=_parse_uuid(set_upload_id),
        )
    except ValueError:
        return _failure(status.HTTP_400_BAD_REQUEST, "postId and setUploadId must be UUIDs")

    try:
        report = await run_worker_invocation(db, options=options, trigger="http")
    except WorkerInvocationError as exc:
        return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    return JSONResponse(status_code=status.HTTP_200_OK, content=report.to_dict())

