import logging
from datetime import datetime, timedelta

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from clipdash.core.clock import as_utc, utcnow
from clipdash.core.config import settings
from clipdash.core.security import decrypt_secret, encrypt_secret
from clipdash.domain.models.platform_account import PlatformAccount
from clipdash.domain.models.scheduled_post import Provider, ScheduledPost
from clipdash.domain.publish_errors import AccountNotConnectedError, PublishError
from clipdash.integrations.platform_adapters.base_adapter import PlatformCredentials, provider_label

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
LINKEDIN_TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"

REFRESHABLE_PROVIDERS = {Provider.YOUTUBE.value, Provider.TIKTOK.value, Provider.LINKEDIN.value}


def get_platform_account(db: Session, *, user_id, provider: str) -> PlatformAccount | None:
    return db.execute(
        select(PlatformAccount).where(
            PlatformAccount.user_id == user_id,
            PlatformAccount.provider == provider,
        )
    ).scalar_one_or_none()


def _decrypt(value: str | None, *, label: str) -> str:
    try:
        return decrypt_secret(value or "")
    except ValueError as exc:
        raise AccountNotConnectedError(f"{label} token unreadable, reconnect the account") from exc


def _needs_refresh(expires_at: datetime | None, now: datetime) -> bool:
    expires_at = as_utc(expires_at)
    if expires_at is None:
        return False
    return expires_at <= now + timedelta(seconds=settings.token_refresh_margin_seconds)


def _refresh_request(provider: str, refresh_token: str) -> tuple[str, dict]:
    if provider == Provider.YOUTUBE.value:
        if not settings.google_client_id or not settings.google_client_secret:
            raise PublishError("Google client configuration is missing")
        return GOOGLE_TOKEN_URL, {
            "client_id": settings.google_client_id,
            "client_secret": settings.google_client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
    if provider == Provider.TIKTOK.value:
        if not settings.tiktok_client_key or not settings.tiktok_client_secret:
            raise PublishError("TikTok client configuration is missing")
        return f"{settings.tiktok_api_base_url}/oauth/token/", {
            "client_key": settings.tiktok_client_key,
            "client_secret": settings.tiktok_client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
    if not settings.linkedin_client_id or not settings.linkedin_client_secret:
        raise PublishError("LinkedIn client configuration is missing")
    return LINKEDIN_TOKEN_URL, {
        "client_id": settings.linkedin_client_id,
        "client_secret": settings.linkedin_client_secret,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }


async def refresh_account_token(db: Session, account: PlatformAccount, *, now: datetime) -> str:
    label = provider_label(account.provider)
    refresh_token = _decrypt(account.refresh_token, label=label)
    if not refresh_token:
        raise AccountNotConnectedError(f"{label} refresh token missing, reconnect the account")

    url, form = _refresh_request(account.provider, refresh_token)
    async with httpx.AsyncClient(timeout=20.0) as client:
        response = await client.post(
            url,
            data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
    if response.status_code in {400, 401}:
        raise AccountNotConnectedError(
            f"{label} token refresh rejected, reconnect the account: {response.status_code} {response.text}"
        )
    if response.status_code >= 400:
        raise PublishError(f"{label} token refresh failed: {response.status_code} {response.text}")

    payload = response.json()
    access_token = str(payload.get("access_token") or "")
    if not access_token:
        raise PublishError(f"{label} token refresh response missing access_token")

    account.access_token = encrypt_secret(access_token)
    if payload.get("refresh_token"):
        account.refresh_token = encrypt_secret(str(payload["refresh_token"]))
    account.expires_at = now + timedelta(seconds=int(payload.get("expires_in", 3600)))
    db.add(account)
    db.commit()
    logger.info("platform_token_refreshed provider=%s user_id=%s", account.provider, account.user_id)
    return access_token


async def resolve_platform_credentials(db: Session, post: ScheduledPost) -> PlatformCredentials:
    """
    Loads the connected account for the post owner and provider.

    OAuth providers with refresh tokens are refreshed when the access token
    expires within the configured margin. Meta tokens are long-lived and cannot
    be refreshed here, so an expired one requires the user to reconnect.
    """
    label = provider_label(post.provider)
    account = get_platform_account(db, user_id=post.user_id, provider=post.provider)
    if account is None:
        raise AccountNotConnectedError(f"{label} not connected for user {post.user_id}")

    now = utcnow()
    if post.provider in REFRESHABLE_PROVIDERS:
        if not account.refresh_token:
            raise AccountNotConnectedError(f"{label} not connected for user {post.user_id}")
        if _needs_refresh(account.expires_at, now) or not account.access_token:
            access_token = await refresh_account_token(db, account, now=now)
        else:
            access_token = _decrypt(account.access_token, label=label)
    else:
        expires_at = as_utc(account.expires_at)
        if expires_at is not None and expires_at <= now:
            raise AccountNotConnectedError(f"{label} token expired, reconnect the account")
        access_token = _decrypt(account.access_token, label=label)

    if not access_token:
        raise AccountNotConnectedError(f"{label} not connected for user {post.user_id}")

    return PlatformCredentials(
        provider=post.provider,
        access_token=access_token,
        account_id=account.id,
        external_account_id=account.external_account_id,
        metadata=dict(account.metadata_json or {}),
    )
