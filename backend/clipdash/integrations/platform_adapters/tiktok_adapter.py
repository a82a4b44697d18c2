import asyncio
import logging

from clipdash.core.config import settings as app_settings
from clipdash.domain.models.scheduled_post import Provider
from clipdash.integrations.media_storage import AssetLocation, create_signed_url, download_bytes
from clipdash.integrations.platform_adapters.base_adapter import (
    AdapterAuthError,
    AdapterPermanentError,
    AdapterRetryableError,
    BasePublishAdapter,
    PlatformCredentials,
    PostRef,
)

logger = logging.getLogger(__name__)

TIKTOK_TERMINAL_SUCCESS = {"PUBLISH_COMPLETE", "SEND_TO_USER_INBOX"}
TIKTOK_TERMINAL_FAILED = {"FAILED"}


def _raise_for_api_error(payload: dict, action: str) -> None:
    error = payload.get("error") or {}
    code = str(error.get("code") or "ok")
    if code == "ok":
        return
    message = str(error.get("message") or "unknown")
    lowered = code.lower()
    if "token" in lowered or "scope" in lowered or "auth" in lowered:
        raise AdapterAuthError(f"TikTok {action} auth error, reconnect the account: {code} - {message}")
    if lowered.startswith("internal") or "rate_limit" in lowered:
        raise AdapterRetryableError(f"TikTok {action} temporary error: {code} - {message}")
    raise AdapterPermanentError(f"TikTok {action} error: {code} - {message}")


class TikTokAdapter(BasePublishAdapter):
    provider = Provider.TIKTOK.value

    async def publish(self, credentials: PlatformCredentials, asset: AssetLocation, settings: dict) -> PostRef:
        title = str(settings.get("title") or settings.get("caption") or "")
        if not title:
            raise AdapterPermanentError("TikTok publish requires a title")

        signed_url = await create_signed_url(asset.bucket, asset.path)
        video_bytes = await download_bytes(signed_url)
        file_size = len(video_bytes)
        if file_size == 0:
            raise AdapterPermanentError("TikTok publish requires a non-empty video file")

        headers = {
            "Authorization": f"Bearer {credentials.access_token}",
            "Content-Type": "application/json; charset=UTF-8",
        }
        init_payload = {
            "post_info": {
                "title": title[:2200],
                "privacy_level": str(settings.get("privacy_level") or "SELF_ONLY"),
                "disable_comment": not bool(settings.get("allow_comments", False)),
                "disable_duet": not bool(settings.get("allow_duet", False)),
                "disable_stitch": not bool(settings.get("allow_stitch", False)),
                "brand_organic_toggle": bool(settings.get("brand_organic_toggle", False)),
                "brand_content_toggle": bool(settings.get("brand_content_toggle", False)),
            },
            "source_info": {
                "source": "FILE_UPLOAD",
                "video_size": file_size,
                "chunk_size": file_size,
                "total_chunk_count": 1,
            },
        }

        async with self._client(timeout=300.0) as client:
            init_response = await client.post(
                f"{app_settings.tiktok_api_base_url}/post/publish/video/init/",
                headers=headers,
                json=init_payload,
            )
            self._raise_for_status(init_response, "upload init")
            init_data = init_response.json()
            _raise_for_api_error(init_data, "upload init")

            data = init_data.get("data") or {}
            upload_url = str(data.get("upload_url") or "")
            publish_id = str(data.get("publish_id") or "")
            if not upload_url or not publish_id:
                raise AdapterPermanentError("TikTok upload init did not return upload_url or publish_id")

            upload_response = await client.put(
                upload_url,
                content=video_bytes,
                headers={
                    "Content-Type": "video/mp4",
                    "Content-Range": f"bytes 0-{file_size - 1}/{file_size}",
                },
            )
            self._raise_for_status(upload_response, "video upload")

        status_value = await self._poll_publish_status(access_token=credentials.access_token, publish_id=publish_id)
        return PostRef(platform_post_id=publish_id, metadata={"status": status_value})

    async def _poll_publish_status(self, *, access_token: str, publish_id: str) -> str:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json; charset=UTF-8",
        }
        status_value = ""
        async with self._client(timeout=20.0) as client:
            for _ in range(max(1, app_settings.tiktok_status_poll_attempts)):
                await asyncio.sleep(app_settings.tiktok_status_poll_interval_seconds)
                response = await client.post(
                    f"{app_settings.tiktok_api_base_url}/post/publish/status/fetch/",
                    headers=headers,
                    json={"publish_id": publish_id},
                )
                if response.status_code >= 400:
                    continue
                payload = response.json()
                data = payload.get("data") or {}
                status_value = str(data.get("status") or "").upper()
                if status_value in TIKTOK_TERMINAL_SUCCESS:
                    return status_value
                if status_value in TIKTOK_TERMINAL_FAILED:
                    fail_reason = data.get("fail_reason") or "Unknown reason"
                    raise AdapterPermanentError(f"TikTok publish failed: {fail_reason}")

        # TikTok keeps processing after the upload is accepted; the publish id stays valid.
        logger.info("tiktok_publish_status_pending publish_id=%s status=%s", publish_id, status_value or "unknown")
        return status_value or "PROCESSING"
