from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
from typing import ClassVar
from uuid import UUID

import httpx

from clipdash.domain.publish_errors import PublishError, PublishErrorKind
from clipdash.integrations.media_storage import AssetLocation

PROVIDER_LABELS = {
    "youtube": "YouTube",
    "tiktok": "TikTok",
    "instagram": "Instagram",
    "facebook": "Facebook",
    "linkedin": "LinkedIn",
}


def provider_label(provider: str) -> str:
    return PROVIDER_LABELS.get(provider.strip().lower(), provider)


class AdapterResolutionError(RuntimeError):
    pass


class AdapterError(PublishError):
    retryable: bool = False
    error_kind = PublishErrorKind.ADAPTER_FAILURE.value


class AdapterRetryableError(AdapterError):
    retryable = True


class AdapterPermanentError(AdapterError):
    pass


class AdapterAuthError(AdapterPermanentError):
    error_kind = PublishErrorKind.ACCOUNT_NOT_CONNECTED.value


@dataclass(frozen=True)
class PlatformCredentials:
    provider: str
    access_token: str
    account_id: UUID | None = None
    external_account_id: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class PostRef:
    platform_post_id: str
    platform_media_id: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ContainerRef:
    container_id: str
    metadata: dict = field(default_factory=dict)


class ContainerState(StrEnum):
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class ContainerStatus:
    state: ContainerState
    post_ref: PostRef | None = None
    error: str | None = None


class BasePublishAdapter(ABC):
    provider: ClassVar[str] = ""
    supports_containers: ClassVar[bool] = False

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    @property
    def label(self) -> str:
        return provider_label(self.provider)

    def _client(self, timeout: float = 20.0) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    @abstractmethod
    async def publish(
        self,
        credentials: PlatformCredentials,
        asset: AssetLocation,
        settings: dict,
    ) -> PostRef | ContainerRef:
        """
        Publish one asset to the provider.

        Returns a PostRef when the provider answers synchronously with the final
        post id, or a ContainerRef when publishing continues in the background
        and must be completed through check_container on a later invocation.
        """
        raise NotImplementedError

    async def check_container(self, credentials: PlatformCredentials, container_id: str) -> ContainerStatus:
        raise AdapterPermanentError(f"{self.label} does not use two-phase publishing")

    def _raise_for_status(self, response: httpx.Response, action: str) -> None:
        if response.status_code < 400:
            return
        detail = f"{response.status_code} {response.text}".strip()
        if response.status_code in {401, 403}:
            raise AdapterAuthError(f"{self.label} {action} unauthorized, reconnect the account: {detail}")
        if response.status_code == 429 or response.status_code >= 500:
            raise AdapterRetryableError(f"{self.label} {action} temporary failure: {detail}")
        raise AdapterPermanentError(f"{self.label} {action} failed: {detail}")
