"""Authentication module."""

from caldesk.auth.session import (
    create_session_token,
    verify_session_token,
    get_current_user,
)

__all__ = [
    "create_session_token",
    "verify_session_token",
    "get_current_user",
]
