import logging

import httpx

from clipdash.core.config import settings as app_settings
from clipdash.domain.models.scheduled_post import Provider
from clipdash.domain.publish_errors import PublishError
from clipdash.integrations.media_storage import AssetLocation, create_signed_url, download_bytes
from clipdash.integrations.platform_adapters.base_adapter import (
    AdapterPermanentError,
    BasePublishAdapter,
    PlatformCredentials,
    PostRef,
)

logger = logging.getLogger(__name__)

YOUTUBE_PRIVACY_STATUSES = {"private", "unlisted", "public"}
DEFAULT_VIDEO_TITLE = "Clip Scheduler Upload"


class YouTubeAdapter(BasePublishAdapter):
    provider = Provider.YOUTUBE.value

    async def publish(self, credentials: PlatformCredentials, asset: AssetLocation, settings: dict) -> PostRef:
        title = str(settings.get("title") or DEFAULT_VIDEO_TITLE)[:100]
        description = str(settings.get("description") or "")[:5000]
        privacy_status = str(settings.get("privacy_status") or "private").lower()
        if privacy_status not in YOUTUBE_PRIVACY_STATUSES:
            raise AdapterPermanentError(f"YouTube privacy status '{privacy_status}' is not supported")

        signed_url = await create_signed_url(asset.bucket, asset.path)
        video_bytes = await download_bytes(signed_url)

        metadata = {
            "snippet": {"title": title, "description": description},
            "status": {"privacyStatus": privacy_status},
        }
        if settings.get("made_for_kids") is not None:
            metadata["status"]["selfDeclaredMadeForKids"] = bool(settings["made_for_kids"])

        headers = {"Authorization": f"Bearer {credentials.access_token}"}
        async with self._client(timeout=300.0) as client:
            init_response = await client.post(
                f"{app_settings.youtube_upload_base_url}/videos",
                params={"uploadType": "resumable", "part": "snippet,status"},
                json=metadata,
                headers={
                    **headers,
                    "X-Upload-Content-Type": "video/*",
                    "X-Upload-Content-Length": str(len(video_bytes)),
                },
            )
            self._raise_for_status(init_response, "upload init")
            upload_url = init_response.headers.get("location")
            if not upload_url:
                raise AdapterPermanentError("YouTube upload init response missing resumable session URL")

            upload_response = await client.put(
                upload_url,
                content=video_bytes,
                headers={**headers, "Content-Type": "video/*"},
            )
            self._raise_for_status(upload_response, "upload")
            payload = upload_response.json()

        video_id = str(payload.get("id") or "")
        if not video_id:
            raise AdapterPermanentError("YouTube upload succeeded but no video ID was returned")

        if asset.thumbnail_path:
            await self._set_thumbnail(credentials, asset, video_id)

        return PostRef(
            platform_post_id=video_id,
            platform_media_id=video_id,
            metadata={"privacy_status": privacy_status},
        )

    async def _set_thumbnail(self, credentials: PlatformCredentials, asset: AssetLocation, video_id: str) -> None:
        # Custom thumbnails need a verified channel; a failure here must not fail the upload.
        thumbnail_path = asset.thumbnail_path or ""
        content_type = "image/png" if thumbnail_path.lower().endswith(".png") else "image/jpeg"
        try:
            thumbnail_url = await create_signed_url(asset.bucket, thumbnail_path)
            thumbnail_bytes = await download_bytes(thumbnail_url)
            async with self._client(timeout=60.0) as client:
                response = await client.post(
                    f"{app_settings.youtube_upload_base_url}/thumbnails/set",
                    params={"videoId": video_id},
                    content=thumbnail_bytes,
                    headers={
                        "Authorization": f"Bearer {credentials.access_token}",
                        "Content-Type": content_type,
                    },
                )
                self._raise_for_status(response, "thumbnail set")
        except (httpx.HTTPError, PublishError) as exc:
            logger.warning("youtube_thumbnail_failed video_id=%s reason=%s", video_id, exc)
