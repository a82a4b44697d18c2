import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from clipdash.application.services import ig_processing_service, publishing_service, scheduled_post_service
from clipdash.application.services import worker_service
from clipdash.application.services.worker_service import WorkerRunOptions, run_worker_invocation
from clipdash.core.clock import as_utc
from clipdash.core.config import settings
from clipdash.domain.models.scheduled_post import ScheduledPost, ScheduledPostStatus
from clipdash.domain.publish_errors import PublishErrorKind, WorkerInvocationError
from clipdash.integrations.platform_adapters.base_adapter import (
    AdapterResolutionError,
    AdapterRetryableError,
    ContainerRef,
)

from conftest import NOW, FakeAdapter, connect_account, create_post, create_user, posted_ref


@pytest.fixture
def adapters(monkeypatch):
    registry: dict[str, FakeAdapter] = {}

    def _resolve(provider):
        return registry[provider]

    monkeypatch.setattr(publishing_service, "get_publish_adapter", _resolve)
    monkeypatch.setattr(ig_processing_service, "get_publish_adapter", _resolve)
    return registry


def _run(db, **options):
    return asyncio.run(run_worker_invocation(db, options=WorkerRunOptions(**options), now=NOW))


def _reload(db, post_id) -> ScheduledPost:
    db.expire_all()
    return db.get(ScheduledPost, post_id)


def test_youtube_post_is_published_and_owner_notified(db, adapters, sent_emails):
    user = create_user(db, email="owner@example.com")
    connect_account(db, user, "youtube")
    post = create_post(db, user, provider="youtube", description="Full description")
    adapters["youtube"] = FakeAdapter(outcome=posted_ref("yt-video-1"))

    report = _run(db)

    assert report.to_dict() == {
        "ok": True,
        "processed": 1,
        "results": [{"id": str(post.id), "ok": True, "platformPostId": "yt-video-1"}],
    }
    stored = _reload(db, post.id)
    assert stored.status == ScheduledPostStatus.POSTED.value
    assert stored.platform_post_id == "yt-video-1"
    assert stored.notified_at is not None

    call = adapters["youtube"].publish_calls[0]
    assert call["credentials"].access_token == "youtube-access-token"
    assert call["asset"].path.endswith("clip.mp4")
    assert call["settings"]["title"] == "Launch clip"
    assert call["settings"]["description"] == "Full description"

    assert [(email["to"], email["subject"]) for email in sent_emails] == [("owner@example.com", "Your post is live!")]


def test_tiktok_without_refresh_token_fails_with_reconnect_notice(db, adapters, sent_emails):
    user = create_user(db)
    connect_account(db, user, "tiktok", refresh_token=None)
    post = create_post(db, user, provider="tiktok")
    adapters["tiktok"] = FakeAdapter(outcome=posted_ref())

    report = _run(db)

    result = report.results[0].to_dict()
    assert result["ok"] is False
    assert "TikTok not connected" in result["error"]
    assert adapters["tiktok"].publish_calls == []

    stored = _reload(db, post.id)
    assert stored.status == ScheduledPostStatus.FAILED.value
    assert stored.last_error_kind == PublishErrorKind.ACCOUNT_NOT_CONNECTED.value
    assert [email["subject"] for email in sent_emails] == ["Platform reconnection needed"]


def test_missing_platform_account_fails_as_reconnect(db, adapters, sent_emails):
    user = create_user(db)
    post = create_post(db, user, provider="facebook")
    adapters["facebook"] = FakeAdapter(outcome=posted_ref())

    _run(db)

    stored = _reload(db, post.id)
    assert stored.status == ScheduledPostStatus.FAILED.value
    assert stored.last_error == f"Facebook not connected for user {user.id}"
    assert [email["subject"] for email in sent_emails] == ["Platform reconnection needed"]


def test_missing_upload_fails_job_without_calling_adapter(db, adapters, sent_emails):
    user = create_user(db)
    connect_account(db, user, "youtube")
    post = create_post(db, user, with_upload=False)
    adapters["youtube"] = FakeAdapter(outcome=posted_ref())

    report = _run(db)

    assert report.results[0].ok is False
    assert adapters["youtube"].publish_calls == []
    stored = _reload(db, post.id)
    assert stored.status == ScheduledPostStatus.FAILED.value
    assert stored.last_error_kind == PublishErrorKind.ASSET_MISSING.value
    assert [email["subject"] for email in sent_emails] == ["Post upload failed"]


def test_one_failing_job_does_not_stop_the_batch(db, adapters, sent_emails):
    user = create_user(db)
    connect_account(db, user, "youtube")
    connect_account(db, user, "linkedin")
    failing = create_post(db, user, provider="linkedin", scheduled_for=NOW - timedelta(minutes=3))
    succeeding = create_post(db, user, provider="youtube", scheduled_for=NOW - timedelta(minutes=2))
    adapters["linkedin"] = FakeAdapter(error=AdapterRetryableError("LinkedIn video init temporary failure: 503"))
    adapters["youtube"] = FakeAdapter(outcome=posted_ref("yt-2"))

    report = _run(db)

    assert report.ok is True
    assert [result.to_dict() for result in report.results] == [
        {"id": str(failing.id), "ok": False, "error": "LinkedIn video init temporary failure: 503"},
        {"id": str(succeeding.id), "ok": True, "platformPostId": "yt-2"},
    ]
    assert _reload(db, failing.id).last_error_kind == PublishErrorKind.ADAPTER_FAILURE.value
    assert _reload(db, succeeding.id).status == ScheduledPostStatus.POSTED.value


def test_unexpected_adapter_exception_is_recorded_on_the_job(db, adapters, sent_emails):
    user = create_user(db)
    connect_account(db, user, "youtube")
    post = create_post(db, user)
    adapters["youtube"] = FakeAdapter(error=KeyError("id"))

    report = _run(db)

    assert report.results[0].ok is False
    stored = _reload(db, post.id)
    assert stored.status == ScheduledPostStatus.FAILED.value
    assert stored.last_error_kind == PublishErrorKind.ADAPTER_FAILURE.value


def test_instagram_container_moves_job_to_ig_processing(db, adapters, sent_emails):
    user = create_user(db)
    connect_account(db, user, "instagram", refresh_token=None)
    post = create_post(db, user, provider="instagram")
    adapters["instagram"] = FakeAdapter(outcome=ContainerRef(container_id="container-77"))

    report = _run(db)

    assert report.results[0].to_dict() == {
        "id": str(post.id),
        "ok": True,
        "igProcessing": True,
        "containerId": "container-77",
    }
    stored = _reload(db, post.id)
    assert stored.status == ScheduledPostStatus.IG_PROCESSING.value
    assert stored.container_id == "container-77"
    assert stored.container_created_at is not None
    assert sent_emails == []


def test_overlapping_invocations_publish_once_and_skip_once(db, session_factory, adapters, sent_emails):
    user = create_user(db)
    connect_account(db, user, "youtube")
    post = create_post(db, user)
    adapter = FakeAdapter(outcome=posted_ref("yt-once"))
    adapters["youtube"] = adapter

    first = session_factory()
    second = session_factory()
    try:
        first_post = scheduled_post_service.select_due_posts(first, now=NOW)[0]
        second_post = scheduled_post_service.select_due_posts(second, now=NOW)[0]

        first_result = asyncio.run(
            publishing_service.process_due_post(first, first_post, retry_failed=False, now=NOW)
        )
        second_result = asyncio.run(
            publishing_service.process_due_post(second, second_post, retry_failed=False, now=NOW)
        )
    finally:
        first.close()
        second.close()

    assert first_result.to_dict() == {"id": str(post.id), "ok": True, "platformPostId": "yt-once"}
    assert second_result.to_dict() == {"id": str(post.id), "ok": True, "skipped": True}
    assert len(adapter.publish_calls) == 1
    assert len(sent_emails) == 1


def test_single_post_override_only_processes_that_post(db, adapters, sent_emails):
    user = create_user(db)
    connect_account(db, user, "youtube")
    target = create_post(db, user)
    other = create_post(db, user)
    adapters["youtube"] = FakeAdapter(outcome=posted_ref())

    report = _run(db, post_id=target.id)

    assert [result.id for result in report.results] == [target.id]
    assert _reload(db, other.id).status == ScheduledPostStatus.SCHEDULED.value


def test_retry_mode_picks_up_failed_posts(db, adapters, sent_emails):
    user = create_user(db)
    connect_account(db, user, "youtube")
    post = create_post(db, user, status=ScheduledPostStatus.FAILED.value, attempt_count=1, last_error="boom")
    adapters["youtube"] = FakeAdapter(outcome=posted_ref("yt-retry"))

    assert _run(db).processed == 0
    report = _run(db, retry_failed=True)

    assert report.results[0].platform_post_id == "yt-retry"
    stored = _reload(db, post.id)
    assert stored.status == ScheduledPostStatus.POSTED.value
    assert stored.attempt_count == 2


def test_upload_override_rebinds_and_requeues_post(db, adapters, sent_emails, monkeypatch):
    monkeypatch.setattr(settings, "app_env", "development")
    user = create_user(db)
    connect_account(db, user, "youtube")
    post = create_post(db, user, status=ScheduledPostStatus.FAILED.value, scheduled_for=NOW + timedelta(days=1))
    replacement = create_post(db, user, status=ScheduledPostStatus.DRAFT.value)
    adapters["youtube"] = FakeAdapter(outcome=posted_ref("yt-override"))

    report = _run(db, post_id=post.id, set_upload_id=replacement.upload_id, debug=True)

    assert report.debug["uploadOverride"] is True
    assert report.results[0].platform_post_id == "yt-override"
    assert _reload(db, post.id).upload_id == replacement.upload_id


def test_upload_override_is_disabled_in_production(db, adapters, sent_emails, monkeypatch):
    monkeypatch.setattr(settings, "app_env", "production")
    user = create_user(db)
    post = create_post(db, user, status=ScheduledPostStatus.FAILED.value)

    report = _run(db, post_id=post.id, set_upload_id=uuid4(), debug=True)

    assert report.debug["uploadOverride"] == "disabled"
    assert report.processed == 0
    assert _reload(db, post.id).status == ScheduledPostStatus.FAILED.value


def test_debug_payload_includes_poller_and_selection(db, adapters, sent_emails):
    report = _run(db, debug=True)

    payload = report.to_dict()
    assert payload["ok"] is True
    assert payload["processed"] == 0
    assert payload["debug"]["igPoll"] == []
    assert payload["debug"]["selection"]["statuses"] == ["scheduled"]
    assert "debug" not in _run(db).to_dict()


def test_selection_failure_raises_invocation_error(db, adapters, monkeypatch):
    def _broken(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("relation does not exist"))

    monkeypatch.setattr(worker_service, "select_due_posts", _broken)

    with pytest.raises(WorkerInvocationError):
        _run(db)


def test_completion_times_are_taken_when_the_adapter_returns(db, adapters, sent_emails, monkeypatch):
    returned_at = NOW + timedelta(seconds=45)
    monkeypatch.setattr(publishing_service, "utcnow", lambda: returned_at)
    user = create_user(db)
    connect_account(db, user, "instagram", refresh_token=None)
    connect_account(db, user, "youtube")
    container_post = create_post(db, user, provider="instagram")
    video_post = create_post(db, user, provider="youtube")
    adapters["instagram"] = FakeAdapter(outcome=ContainerRef(container_id="container-slow"))
    adapters["youtube"] = FakeAdapter(outcome=posted_ref("yt-slow"))

    _run(db)

    assert as_utc(_reload(db, container_post.id).container_created_at) == returned_at
    assert as_utc(_reload(db, video_post.id).posted_at) == returned_at


def test_unresolvable_adapter_fails_the_job(db, sent_emails, monkeypatch):
    def _unsupported(provider):
        raise AdapterResolutionError(f"Unsupported provider: {provider}")

    monkeypatch.setattr(publishing_service, "get_publish_adapter", _unsupported)
    user = create_user(db)
    connect_account(db, user, "youtube")
    post = create_post(db, user)

    report = _run(db)

    assert report.results[0].to_dict() == {"id": str(post.id), "ok": False, "error": "Unsupported provider: youtube"}
    stored = _reload(db, post.id)
    assert stored.status == ScheduledPostStatus.FAILED.value
    assert stored.last_error_kind == PublishErrorKind.ADAPTER_FAILURE.value
