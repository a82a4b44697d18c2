import logging

import httpx

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


def _person_urn(external_account_id: str) -> str:
    if external_account_id.startswith("urn:"):
        return external_account_id
    return f"urn:li:person:{external_account_id}"


class LinkedInAdapter(BasePublishAdapter):
    provider = Provider.LINKEDIN.value

    def _api_headers(self, access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "LinkedIn-Version": app_settings.linkedin_api_version,
            "X-Restli-Protocol-Version": "2.0.0",
        }

    async def publish(self, credentials: PlatformCredentials, asset: AssetLocation, settings: dict) -> PostRef:
        if not credentials.external_account_id:
            raise AdapterAuthError("LinkedIn member not connected, reconnect the account")
        owner_urn = _person_urn(credentials.external_account_id)
        title = str(settings.get("title") or "")
        description = str(settings.get("description") or "")
        headers = self._api_headers(credentials.access_token)

        signed_url = await create_signed_url(asset.bucket, asset.path)
        video_bytes = await download_bytes(signed_url)
        has_thumbnail = bool(asset.thumbnail_path)

        async with self._client(timeout=300.0) as client:
            init_response = await client.post(
                f"{app_settings.linkedin_api_base_url}/videos",
                params={"action": "initializeUpload"},
                headers=headers,
                json={
                    "initializeUploadRequest": {
                        "owner": owner_urn,
                        "fileSizeBytes": len(video_bytes),
                        "uploadCaptions": False,
                        "uploadThumbnail": has_thumbnail,
                    }
                },
            )
            self._raise_for_status(init_response, "video init")
            init_value = (init_response.json() or {}).get("value") or {}
            instructions = init_value.get("uploadInstructions") or []
            video_urn = str(init_value.get("video") or "")
            upload_token = str(init_value.get("uploadToken") or "")
            if not instructions or not video_urn:
                raise AdapterPermanentError("LinkedIn video init missing uploadInstructions or video URN")

            uploaded_part_ids: list[str] = []
            for instruction in instructions:
                first_byte = int(instruction["firstByte"])
                last_byte = int(instruction["lastByte"])
                part_response = await client.put(
                    instruction["uploadUrl"],
                    content=video_bytes[first_byte:last_byte + 1],
                    headers={"Content-Type": "application/octet-stream"},
                )
                self._raise_for_status(part_response, "video part upload")
                etag = part_response.headers.get("etag")
                if etag:
                    uploaded_part_ids.append(etag.replace('"', ""))

            finalize_response = await client.post(
                f"{app_settings.linkedin_api_base_url}/videos",
                params={"action": "finalizeUpload"},
                headers=headers,
                json={
                    "finalizeUploadRequest": {
                        "video": video_urn,
                        "uploadToken": upload_token,
                        "uploadedPartIds": uploaded_part_ids,
                    }
                },
            )
            self._raise_for_status(finalize_response, "video finalize")

            thumbnail_upload_url = init_value.get("thumbnailUploadUrl")
            if has_thumbnail and thumbnail_upload_url:
                await self._upload_thumbnail(client, asset, thumbnail_upload_url)

            commentary = f"{title}\n\n{description}" if description else title
            post_response = await client.post(
                f"{app_settings.linkedin_api_base_url}/posts",
                headers=headers,
                json={
                    "author": owner_urn,
                    "commentary": commentary[:3000],
                    "visibility": "PUBLIC",
                    "distribution": {
                        "feedDistribution": "MAIN_FEED",
                        "targetEntities": [],
                        "thirdPartyDistributionChannels": [],
                    },
                    "content": {"media": {"title": title[:200], "id": video_urn}},
                    "lifecycleState": "PUBLISHED",
                    "isReshareDisabledByAuthor": False,
                },
            )
            self._raise_for_status(post_response, "post creation")

        post_id = (
            post_response.headers.get("x-restli-id")
            or post_response.headers.get("x-linkedin-id")
            or video_urn
        )
        return PostRef(platform_post_id=post_id, platform_media_id=video_urn)

    async def _upload_thumbnail(self, client: httpx.AsyncClient, asset: AssetLocation, upload_url: str) -> None:
        try:
            thumbnail_url = await create_signed_url(asset.bucket, asset.thumbnail_path or "")
            thumbnail_bytes = await download_bytes(thumbnail_url)
            response = await client.put(
                upload_url,
                content=thumbnail_bytes,
                headers={"Content-Type": "application/octet-stream", "media-type-family": "STILLIMAGE"},
            )
            self._raise_for_status(response, "thumbnail upload")
        except (httpx.HTTPError, PublishError) as exc:
            logger.warning("linkedin_thumbnail_failed path=%s reason=%s", asset.thumbnail_path, exc)
