from contextvars import ContextVar

_request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
_invocation_id_ctx: ContextVar[str | None] = ContextVar("invocation_id", default=None)


def set_request_id(request_id: str | None) -> object:
    return _request_id_ctx.set(request_id)


def get_request_id() -> str | None:
    return _request_id_ctx.get()


def reset_request_id(token: object) -> None:
    _request_id_ctx.reset(token)


def set_invocation_id(invocation_id: str | None) -> object:
    return _invocation_id_ctx.set(invocation_id)


def get_invocation_id() -> str | None:
    return _invocation_id_ctx.get()


def reset_invocation_id(token: object) -> None:
    _invocation_id_ctx.reset(token)
