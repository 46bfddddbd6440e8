"""Per-request caller context"""

from contextvars import ContextVar
from typing import Optional

_caller_id: ContextVar[Optional[int]] = ContextVar("caller_id", default=None)
_caller_email: ContextVar[Optional[str]] = ContextVar("caller_email", default=None)


def set_current_caller(user_id: Optional[int], email: Optional[str] = None) -> None:
    """Bind the authenticated caller to the current request context."""
    _caller_id.set(user_id)
    _caller_email.set(email)


def clear_current_caller() -> None:
    set_current_caller(None, None)


def get_current_caller_id() -> Optional[int]:
    """Local id of the authenticated caller, or None outside an authenticated request."""
    return _caller_id.get()


def get_current_caller_email() -> Optional[str]:
    return _caller_email.get()
