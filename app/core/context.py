import contextvars

_request_id: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")
_caller: contextvars.ContextVar[str] = contextvars.ContextVar("caller", default="-")


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def get_request_id() -> str:
    return _request_id.get()


def set_caller(email: str) -> None:
    _caller.set(email)


def get_caller() -> str:
    return _caller.get()


def clear_context() -> None:
    _request_id.set("-")
    _caller.set("-")
