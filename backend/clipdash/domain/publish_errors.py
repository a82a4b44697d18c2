from enum import StrEnum


class PublishErrorKind(StrEnum):
    ASSET_MISSING = "asset_missing"
    ACCOUNT_NOT_CONNECTED = "account_not_connected"
    ADAPTER_FAILURE = "adapter_failure"
    ASYNC_PROCESSING_TIMEOUT = "async_processing_timeout"
    ASYNC_PROCESSING_ERROR = "async_processing_error"


RECONNECT_MESSAGE_MARKERS = ("not connected", "reconnect", "expired")


class PublishError(RuntimeError):
    error_kind: str = PublishErrorKind.ADAPTER_FAILURE.value


class AssetMissingError(PublishError):
    error_kind = PublishErrorKind.ASSET_MISSING.value


class AccountNotConnectedError(PublishError):
    error_kind = PublishErrorKind.ACCOUNT_NOT_CONNECTED.value


class InvalidStatusTransition(RuntimeError):
    pass


class WorkerInvocationError(RuntimeError):
    pass


def error_kind_for(exc: BaseException) -> str:
    return getattr(exc, "error_kind", None) or PublishErrorKind.ADAPTER_FAILURE.value


def is_reconnect_error(message: str | None, error_kind: str | None = None) -> bool:
    """
    Reconnect classification for notification routing.

    A persisted error kind wins. Messages recorded without a kind fall back to
    substring matching, which is a heuristic and can misclassify free text.
    """
    if error_kind == PublishErrorKind.ACCOUNT_NOT_CONNECTED.value:
        return True
    if error_kind is not None and error_kind != PublishErrorKind.ADAPTER_FAILURE.value:
        return False
    text = (message or "").lower()
    return any(marker in text for marker in RECONNECT_MESSAGE_MARKERS)
