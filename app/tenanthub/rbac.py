from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g

from app.tenanthub.errors import ApiError
from app.tenanthub.models import User


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    for role in user.roles:
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def require_api_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    JSON-API variant of a permission gate.
    Unauthenticated -> 401 UNAUTHENTICATED; authenticated but missing the key -> 403 PERMISSION_DENIED.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                raise ApiError(401, "UNAUTHENTICATED", "Login required.")
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                raise ApiError(403, "PERMISSION_DENIED", f"Missing permission: {permission_key}")
            return fn(*args, **kwargs)

        return wrapped

    return decorator
