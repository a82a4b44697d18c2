from dataclasses import dataclass
from urllib.parse import quote
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from clipdash.core.config import settings
from clipdash.domain.models.upload import Upload
from clipdash.domain.publish_errors import AssetMissingError, PublishError


@dataclass(frozen=True)
class AssetLocation:
    bucket: str
    path: str
    thumbnail_path: str | None = None


def resolve_asset_location(db: Session, *, upload_id: UUID, thumbnail_path: str | None = None) -> AssetLocation:
    upload = db.execute(select(Upload).where(Upload.id == upload_id)).scalar_one_or_none()
    if upload is None:
        raise AssetMissingError(f"Upload row not found for upload_id={upload_id}")
    storage_path = (upload.storage_path or "").strip()
    if not storage_path:
        raise AssetMissingError(f"Upload {upload_id} exists but has no usable storage path")
    return AssetLocation(
        bucket=(upload.bucket or settings.uploads_bucket),
        path=storage_path,
        thumbnail_path=(thumbnail_path or None),
    )


def _storage_headers() -> dict:
    if not settings.storage_service_key:
        raise PublishError("Storage service key is not configured")
    return {
        "Authorization": f"Bearer {settings.storage_service_key}",
        "apikey": settings.storage_service_key,
    }


async def create_signed_url(bucket: str, path: str, *, expires_in_seconds: int | None = None) -> str:
    """
    Signs a download URL against the storage REST API so providers that pull
    media by URL (Facebook, Instagram) can fetch it without credentials.
    """
    expires_in = expires_in_seconds or settings.signed_url_ttl_seconds
    base_url = settings.storage_api_url.rstrip("/")
    object_path = quote(path.lstrip("/"))
    async with httpx.AsyncClient(timeout=20.0) as client:
        response = await client.post(
            f"{base_url}/object/sign/{bucket}/{object_path}",
            json={"expiresIn": expires_in},
            headers=_storage_headers(),
        )
        if response.status_code == 404:
            raise AssetMissingError(f"Media object not found: {bucket}/{path}")
        if response.status_code >= 400:
            raise PublishError(
                f"Failed to create signed URL: {response.status_code} {response.text}"
            )
        payload = response.json()

    signed_path = str(payload.get("signedURL") or payload.get("signedUrl") or "")
    if not signed_path:
        raise PublishError("Failed to create signed URL: response missing signedURL")
    if signed_path.startswith("http"):
        return signed_path
    return f"{base_url}{signed_path if signed_path.startswith('/') else '/' + signed_path}"


async def download_bytes(url: str) -> bytes:
    async with httpx.AsyncClient(timeout=120.0) as client:
        response = await client.get(url)
    if response.status_code >= 400:
        raise AssetMissingError(f"Failed to fetch media from signed URL. status={response.status_code}")
    return response.content
