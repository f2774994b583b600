from __future__ import annotations

import uuid

from flask import Blueprint, current_app, g, request, session
from werkzeug.security import check_password_hash

from app.tenanthub.audit import record_event
from app.tenanthub.cache import get_rate_limiter
from app.tenanthub.db import db_session
from app.tenanthub.errors import ApiError, ok
from app.tenanthub.models import User
from app.tenanthub.security import ensure_csrf_token
from app.tenanthub.tenancy import current_context
from app.tenanthub.utils import str_field

bp = Blueprint("auth", __name__)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = (request.headers.get("X-Request-Id") or "").strip()[:64] or uuid.uuid4().hex
    if request.path.startswith(("/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


def _user_payload(user: User) -> dict:
    ctx = current_context() if getattr(g, "current_user", None) is user else None
    return {
        "id": user.id,
        "email": user.email,
        "displayName": user.display_name,
        "tenantId": user.tenant_id,
        "tenantKey": user.tenant.key if user.tenant else None,
        "persona": user.persona,
        "roles": list(ctx.roles) if ctx else sorted(r.key for r in user.roles),
        "groups": list(ctx.groups) if ctx else sorted(gr.key for gr in user.groups),
    }


@bp.get("/csrf")
def csrf_token():
    return ok({"csrfToken": ensure_csrf_token()})


@bp.post("/login")
def login_post():
    payload = request.get_json(silent=True) if request.is_json else None
    source = payload if isinstance(payload, dict) else request.form
    email = str_field(source, "email").lower()
    password = source.get("password") or ""
    if not isinstance(password, str):
        raise ApiError(400, "VALIDATION_ERROR", "password must be a string.", {"field": "password"})
    ip = request.remote_addr or "unknown"

    limiter = get_rate_limiter()
    attempt = limiter.hit("login", ip, limit=_LOGIN_RATE_LIMIT, window_seconds=_LOGIN_RATE_WINDOW)
    if not attempt.allowed:
        raise ApiError(429, "RATE_LIMITED", "Too many login attempts. Please wait 5 minutes.", {"retryAfter": attempt.retry_after})

    try:
        s = db_session()
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user or not user.is_active or not check_password_hash(user.password_hash, password):
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=email,
                reason="Invalid credentials",
                metadata={"email": email},
            )
            s.commit()
            raise ApiError(401, "INVALID_CREDENTIALS", "Invalid credentials.")

        session.clear()
        session["user_id"] = user.id
        session.permanent = True
        g.current_user = user
        limiter.reset("login", ip)
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
        return ok({"user": _user_payload(user), "csrfToken": ensure_csrf_token()})
    except ApiError:
        raise
    except Exception:
        current_app.logger.exception("Login POST crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.clear()
    return ok({"ok": True})


@bp.get("/me")
def me():
    user = getattr(g, "current_user", None)
    if not user:
        raise ApiError(401, "UNAUTHENTICATED", "Login required.")
    return ok({"user": _user_payload(user)})
