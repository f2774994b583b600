from __future__ import annotations

from flask import Blueprint, request

from app.tenanthub.db import db_session
from app.tenanthub.errors import ApiError, ok
from app.tenanthub.modules.notifications import service
from app.tenanthub.rbac import require_api_permission
from app.tenanthub.tenancy import current_context
from app.tenanthub.utils import parse_bool, parse_int

bp = Blueprint("notifications_api", __name__)


@bp.get("")
@require_api_permission("notifications.view")
def list_notifications():
    ctx = current_context()
    s = db_session()
    rows = service.list_notifications(
        s,
        ctx,
        unread_only=parse_bool(request.args.get("unreadOnly")),
        category=(request.args.get("category") or "").strip() or None,
        limit=parse_int(request.args.get("limit"), default=service.DEFAULT_LIMIT, minimum=1, maximum=service.MAX_LIMIT),
        offset=parse_int(request.args.get("offset"), default=0, minimum=0),
    )
    return ok({"notifications": [service.notification_to_dict(n) for n in rows], "count": len(rows)})


@bp.get("/unread-count")
@require_api_permission("notifications.view")
def unread_count():
    ctx = current_context()
    return ok({"count": service.unread_count(db_session(), ctx)})


@bp.post("/<int:notification_id>/read")
@require_api_permission("notifications.view")
def mark_read(notification_id: int):
    ctx = current_context()
    s = db_session()
    n = service.mark_read(s, ctx, notification_id)
    s.commit()
    return ok(service.notification_to_dict(n))


@bp.post("/read-all")
@require_api_permission("notifications.view")
def mark_all_read():
    ctx = current_context()
    s = db_session()
    updated = service.mark_all_read(s, ctx)
    s.commit()
    return ok({"updated": updated})


@bp.post("/<int:notification_id>/dismiss")
@require_api_permission("notifications.view")
def dismiss(notification_id: int):
    ctx = current_context()
    s = db_session()
    n = service.dismiss(s, ctx, notification_id)
    s.commit()
    return ok(service.notification_to_dict(n))


@bp.get("/preferences")
@require_api_permission("notifications.view")
def list_preferences():
    ctx = current_context()
    prefs = service.list_preferences(db_session(), ctx)
    return ok({"preferences": [service.preference_to_dict(p) for p in prefs]})


@bp.put("/preferences")
@require_api_permission("notifications.view")
def put_preference():
    ctx = current_context()
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ApiError(400, "INVALID_JSON", "Request body must be a JSON object.")
    s = db_session()
    pref = service.upsert_preference(s, ctx, payload)
    s.commit()
    return ok(service.preference_to_dict(pref))
