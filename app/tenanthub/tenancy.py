"""
Tenant + principal context for the current request.

Every API handler works against a UserContext derived from the logged-in user.
An explicit X-Tenant-Id / X-Tenant header is allowed (the BFF forwards it) but
must name the user's own tenant, by id or key.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from flask import g, request

from app.tenanthub.errors import ApiError
from app.tenanthub.models import User

TENANT_HEADERS = ("X-Tenant-Id", "X-Tenant")


@dataclass(frozen=True)
class UserContext:
    user_id: int
    tenant_id: int
    personas: tuple[str, ...] = field(default_factory=tuple)
    roles: tuple[str, ...] = field(default_factory=tuple)
    groups: tuple[str, ...] = field(default_factory=tuple)

    def principals(self) -> list[tuple[str, str]]:
        """(principal_type, principal_key) pairs used for ACL matching."""
        out: list[tuple[str, str]] = [("persona", p) for p in self.personas]
        out.extend(("role", r) for r in self.roles)
        out.extend(("group", gk) for gk in self.groups)
        out.append(("user", str(self.user_id)))
        return out


def user_context_for(user: User) -> UserContext:
    return UserContext(
        user_id=user.id,
        tenant_id=user.tenant_id,
        personas=(user.persona,) if user.persona else (),
        roles=tuple(sorted(r.key for r in user.roles)),
        groups=tuple(sorted(gr.key for gr in user.groups if gr.tenant_id == user.tenant_id)),
    )


def _header_tenant() -> str | None:
    for name in TENANT_HEADERS:
        raw = (request.headers.get(name) or "").strip()
        if raw:
            return raw
    return None


def current_context() -> UserContext:
    """
    Resolve (and memoize on g) the request's UserContext.
    Raises 401 when anonymous, 403 TENANT_MISMATCH / TENANT_INACTIVE on tenant problems.
    """
    ctx: UserContext | None = getattr(g, "user_context", None)
    if ctx is not None:
        return ctx

    user: User | None = getattr(g, "current_user", None)
    if not user or not user.is_active:
        raise ApiError(401, "UNAUTHENTICATED", "Login required.")
    tenant = user.tenant
    if tenant is None or not tenant.is_active:
        raise ApiError(403, "TENANT_INACTIVE", "Tenant is not active.")

    requested = _header_tenant()
    if requested is not None and requested not in (str(tenant.id), tenant.key):
        raise ApiError(403, "TENANT_MISMATCH", "Requested tenant does not match the session tenant.")

    ctx = user_context_for(user)
    g.user_context = ctx
    return ctx
