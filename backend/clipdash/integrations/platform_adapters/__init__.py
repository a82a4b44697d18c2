from clipdash.integrations.platform_adapters.base_adapter import (
    AdapterAuthError,
    AdapterError,
    AdapterPermanentError,
    AdapterResolutionError,
    AdapterRetryableError,
    BasePublishAdapter,
    ContainerRef,
    ContainerState,
    ContainerStatus,
    PlatformCredentials,
    PostRef,
    provider_label,
)
from clipdash.integrations.platform_adapters.factory import get_publish_adapter, list_registered_providers

__all__ = [
    "AdapterResolutionError",
    "AdapterError",
    "AdapterRetryableError",
    "AdapterPermanentError",
    "AdapterAuthError",
    "BasePublishAdapter",
    "PlatformCredentials",
    "PostRef",
    "ContainerRef",
    "ContainerState",
    "ContainerStatus",
    "provider_label",
    "get_publish_adapter",
    "list_registered_providers",
]
