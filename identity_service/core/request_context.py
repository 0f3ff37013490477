"""Request context for correlating log lines."""

from contextvars import ContextVar
from typing import Optional

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def set_request_id(request_id: str | None) -> None:
    """Set the current request id.

    Args:
        request_id: Request id to set in context
    """
    request_id_var.set(request_id)


def get_request_id() -> str | None:
    """Get the current request id.

    Returns:
        Current request id or None outside a request
    """
    return request_id_var.get()


def clear_request_id() -> None:
    """Clear the current request id."""
    request_id_var.set(None)
