"""Auth package: bearer token dependencies."""

from dealroom.auth.dependencies import get_current_user

__all__ = [
    "get_current_user",
]
