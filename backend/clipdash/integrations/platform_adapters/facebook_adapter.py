import logging

from clipdash.core.config import settings as app_settings
from clipdash.domain.models.scheduled_post import Provider
from clipdash.domain.publish_errors import PublishError
from clipdash.integrations.media_storage import AssetLocation, create_signed_url, download_bytes
from clipdash.integrations.platform_adapters.base_adapter import (
    AdapterAuthError,
    AdapterPermanentError,
    BasePublishAdapter,
    PlatformCredentials,
    PostRef,
)

logger = logging.getLogger(__name__)


def parse_graph_error(payload: dict) -> str:
    error = payload.get("error") or {}
    if isinstance(error, dict):
        return str(error.get("message") or error.get("type") or "unknown error")
    return str(error)


class FacebookAdapter(BasePublishAdapter):
    provider = Provider.FACEBOOK.value

    async def publish(self, credentials: PlatformCredentials, asset: AssetLocation, settings: dict) -> PostRef:
        page_id = credentials.external_account_id
        if not page_id:
            raise AdapterAuthError("Facebook page not connected, reconnect the account")

        signed_url = await create_signed_url(asset.bucket, asset.path)
        data = {
            "access_token": credentials.access_token,
            "title": str(settings.get("title") or "")[:255],
            "description": str(settings.get("description") or "")[:5000],
            "file_url": signed_url,
        }
        files = await self._thumbnail_file(asset)

        async with self._client(timeout=120.0) as client:
            response = await client.post(
                f"{app_settings.meta_graph_api_base_url}/{page_id}/videos",
                data=data,
                files=files,
            )
            self._raise_for_status(response, "video upload")
            payload = response.json()

        if payload.get("error"):
            raise AdapterPermanentError(f"Facebook upload error: {parse_graph_error(payload)}")
        video_id = str(payload.get("id") or "")
        if not video_id:
            raise AdapterPermanentError("Facebook upload succeeded but no video ID was returned")
        return PostRef(platform_post_id=video_id, platform_media_id=video_id, metadata={"page_id": page_id})

    async def _thumbnail_file(self, asset: AssetLocation) -> dict | None:
        # The Graph API wants thumbnail bytes, not a URL; posting without one is acceptable.
        if not asset.thumbnail_path:
            return None
        extension = asset.thumbnail_path.rsplit(".", 1)[-1].lower() if "." in asset.thumbnail_path else "jpg"
        mime_type = "image/png" if extension == "png" else "image/jpeg"
        try:
            thumbnail_url = await create_signed_url(asset.bucket, asset.thumbnail_path)
            thumbnail_bytes = await download_bytes(thumbnail_url)
        except PublishError as exc:
            logger.warning("facebook_thumbnail_skipped path=%s reason=%s", asset.thumbnail_path, exc)
            return None
        return {"thumb": (f"thumbnail.{extension}", thumbnail_bytes, mime_type)}
