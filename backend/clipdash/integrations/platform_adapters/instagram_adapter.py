from clipdash.core.config import settings as app_settings
from clipdash.domain.models.scheduled_post import Provider
from clipdash.integrations.media_storage import AssetLocation, create_signed_url
from clipdash.integrations.platform_adapters.base_adapter import (
    AdapterAuthError,
    AdapterPermanentError,
    BasePublishAdapter,
    ContainerRef,
    ContainerState,
    ContainerStatus,
    PlatformCredentials,
    PostRef,
)
from clipdash.integrations.platform_adapters.facebook_adapter import parse_graph_error

CONTAINER_FINISHED = "FINISHED"
CONTAINER_FAILED = {"ERROR", "EXPIRED"}


class InstagramAdapter(BasePublishAdapter):
    """
    Two-phase Reels publishing.

    publish() only creates the media container and returns its id. Instagram
    then processes the video in the background; check_container() reports the
    processing state and performs media_publish once the container is FINISHED.
    """

    provider = Provider.INSTAGRAM.value
    supports_containers = True

    def _ig_user_id(self, credentials: PlatformCredentials) -> str:
        if not credentials.external_account_id:
            raise AdapterAuthError("Instagram account not connected, reconnect the account")
        return credentials.external_account_id

    async def publish(self, credentials: PlatformCredentials, asset: AssetLocation, settings: dict) -> ContainerRef:
        ig_user_id = self._ig_user_id(credentials)
        caption = str(settings.get("caption") or settings.get("description") or settings.get("title") or "")
        # The container fetches the video asynchronously, so the URL must outlive processing.
        signed_url = await create_signed_url(
            asset.bucket,
            asset.path,
            expires_in_seconds=app_settings.instagram_signed_url_ttl_seconds,
        )
        data = {
            "access_token": credentials.access_token,
            "media_type": "REELS",
            "video_url": signed_url,
            "caption": caption[:2200],
        }
        if settings.get("share_to_feed") is not None:
            data["share_to_feed"] = "true" if settings["share_to_feed"] else "false"

        async with self._client() as client:
            response = await client.post(f"{app_settings.instagram_graph_api_base_url}/{ig_user_id}/media", data=data)
            self._raise_for_status(response, "container creation")
            payload = response.json()

        if payload.get("error"):
            raise AdapterPermanentError(f"Instagram container error: {parse_graph_error(payload)}")
        container_id = str(payload.get("id") or "")
        if not container_id:
            raise AdapterPermanentError("Instagram container creation succeeded but no container ID returned")
        return ContainerRef(container_id=container_id, metadata={"ig_user_id": ig_user_id})

    async def check_container(self, credentials: PlatformCredentials, container_id: str) -> ContainerStatus:
        ig_user_id = self._ig_user_id(credentials)
        async with self._client(timeout=app_settings.ig_check_timeout_seconds) as client:
            status_response = await client.get(
                f"{app_settings.instagram_graph_api_base_url}/{container_id}",
                params={"fields": "status_code,status", "access_token": credentials.access_token},
            )
            self._raise_for_status(status_response, "container status check")
            status_payload = status_response.json()

            status_code = str(status_payload.get("status_code") or "").upper()
            if status_code in CONTAINER_FAILED:
                reason = status_payload.get("status") or "Unknown error"
                return ContainerStatus(
                    state=ContainerState.ERROR,
                    error=f"Instagram media processing failed: {reason}",
                )
            if status_code != CONTAINER_FINISHED:
                return ContainerStatus(state=ContainerState.PROCESSING)

            publish_response = await client.post(
                f"{app_settings.instagram_graph_api_base_url}/{ig_user_id}/media_publish",
                data={"creation_id": container_id, "access_token": credentials.access_token},
            )
            self._raise_for_status(publish_response, "publish")
            publish_payload = publish_response.json()

        if publish_payload.get("error"):
            return ContainerStatus(
                state=ContainerState.ERROR,
                error=f"Instagram publish error: {parse_graph_error(publish_payload)}",
            )
        media_id = str(publish_payload.get("id") or "")
        if not media_id:
            return ContainerStatus(
                state=ContainerState.ERROR,
                error="Instagram publish succeeded but no media ID returned",
            )
        return ContainerStatus(
            state=ContainerState.READY,
            post_ref=PostRef(platform_post_id=media_id, platform_media_id=media_id),
        )
