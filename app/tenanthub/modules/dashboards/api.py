from __future__ import annotations

from flask import Blueprint, g, request

from app.tenanthub.db import db_session
from app.tenanthub.errors import ApiError, ok
from app.tenanthub.modules.dashboards import service
from app.tenanthub.rbac import require_api_permission
from app.tenanthub.tenancy import current_context
from app.tenanthub.utils import isoformat, str_field, utcnow

bp = Blueprint("dashboards_api", __name__)


def _json_body(required: bool = True) -> dict:
    payload = request.get_json(silent=True)
    if payload is None and not required:
        return {}
    if not isinstance(payload, dict):
        raise ApiError(400, "INVALID_JSON", "Request body must be a JSON object.")
    return payload


@bp.get("")
@require_api_permission("dashboards.view")
def list_dashboards():
    ctx = current_context()
    workbench = (request.args.get("workbench") or "user").strip()
    return ok(service.list_for_user(db_session(), ctx, workbench))


@bp.get("/resolve")
@require_api_permission("dashboards.view")
def resolve():
    ctx = current_context()
    code = (request.args.get("code") or "").strip()
    workbench = (request.args.get("workbench") or "user").strip()
    if not code:
        raise ApiError(400, "MISSING_REQUIRED_FIELDS", "code is required")
    resolved = service.resolve_for_user(db_session(), ctx, code, workbench)
    return ok(service.resolved_to_dict(resolved))


@bp.get("/<int:dashboard_id>")
@require_api_permission("dashboards.view")
def get_dashboard(dashboard_id: int):
    ctx = current_context()
    return ok(service.get_published_with_permission(db_session(), ctx, dashboard_id))


@bp.get("/<int:dashboard_id>/draft")
@require_api_permission("dashboards.edit")
def get_draft(dashboard_id: int):
    ctx = current_context()
    return ok(service.get_draft_view(db_session(), ctx, dashboard_id))


@bp.post("")
@require_api_permission("dashboards.edit")
def create_dashboard():
    ctx = current_context()
    s = db_session()
    d = service.create_dashboard(s, ctx, g.current_user, _json_body())
    s.commit()
    return ok({"id": d.id}, 201)


@bp.post("/<int:dashboard_id>/duplicate")
@require_api_permission("dashboards.edit")
def duplicate(dashboard_id: int):
    ctx = current_context()
    s = db_session()
    d = service.duplicate_dashboard(s, ctx, g.current_user, dashboard_id, str_field(_json_body(required=False), "newCode"))
    s.commit()
    return ok({"id": d.id}, 201)


@bp.patch("/<int:dashboard_id>")
@require_api_permission("dashboards.edit")
def update(dashboard_id: int):
    ctx = current_context()
    s = db_session()
    service.update_dashboard(s, ctx, g.current_user, dashboard_id, _json_body())
    s.commit()
    return ok({"ok": True})


@bp.put("/<int:dashboard_id>/layout")
@require_api_permission("dashboards.edit")
def save_layout(dashboard_id: int):
    ctx = current_context()
    s = db_session()
    draft = service.save_draft(s, ctx, dashboard_id, _json_body().get("layout"))
    s.commit()
    return ok({"ok": True, "versionNo": draft.version_no, "savedAt": isoformat(utcnow())})


@bp.post("/<int:dashboard_id>/publish")
@require_api_permission("dashboards.edit")
def publish(dashboard_id: int):
    ctx = current_context()
    s = db_session()
    v = service.publish(s, ctx, g.current_user, dashboard_id)
    s.commit()
    return ok({"ok": True, "versionNo": v.version_no, "publishedAt": isoformat(v.published_at)})


@bp.delete("/<int:dashboard_id>/draft")
@require_api_permission("dashboards.edit")
def discard_draft(dashboard_id: int):
    ctx = current_context()
    s = db_session()
    removed = service.discard_draft(s, ctx, dashboard_id)
    s.commit()
    return ok({"ok": True, "removed": removed})


@bp.delete("/<int:dashboard_id>")
@require_api_permission("dashboards.edit")
def delete(dashboard_id: int):
    ctx = current_context()
    s = db_session()
    service.delete_dashboard(s, ctx, g.current_user, dashboard_id)
    s.commit()
    return ok({"ok": True})


@bp.get("/<int:dashboard_id>/acl")
@require_api_permission("dashboards.edit")
def list_acl(dashboard_id: int):
    ctx = current_context()
    entries = service.list_acl(db_session(), ctx, dashboard_id)
    return ok([service.acl_to_dict(e) for e in entries])


@bp.post("/<int:dashboard_id>/acl")
@require_api_permission("dashboards.edit")
def add_acl(dashboard_id: int):
    ctx = current_context()
    s = db_session()
    entry = service.add_acl(s, ctx, g.current_user, dashboard_id, _json_body())
    s.commit()
    return ok({"id": entry.id}, 201)


@bp.delete("/<int:dashboard_id>/acl/<int:acl_id>")
@require_api_permission("dashboards.edit")
def remove_acl(dashboard_id: int, acl_id: int):
    ctx = current_context()
    s = db_session()
    service.remove_acl(s, ctx, g.current_user, dashboard_id, acl_id)
    s.commit()
    return ok({"ok": True})
