from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, delete, func, or_, select, update

from app.tenanthub.audit import record_event
from app.tenanthub.errors import ApiError
from app.tenanthub.modules.dashboards.layout import validate_layout
from app.tenanthub.modules.dashboards.models import Dashboard, DashboardAcl, DashboardVersion
from app.tenanthub.modules.dashboards.resolution import (
    DashboardCandidate,
    ResolvedDashboard,
    empty_layout,
    resolve_dashboard,
)
from app.tenanthub.utils import isoformat, str_field, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.tenanthub.models import User
    from app.tenanthub.tenancy import UserContext

logger = logging.getLogger(__name__)

PERMISSION_RANK = {"owner": 3, "edit": 2, "view": 1, "none": 0}
PRINCIPAL_TYPES = ("role", "group", "user", "persona")
ACL_PERMISSIONS = ("view", "edit")
SYSTEM_ACTOR = "system"
DEFAULT_SORT_ORDER = 100


class DashboardError(ApiError):
    pass


def not_found(dashboard_id: int) -> DashboardError:
    return DashboardError(404, "DASHBOARD_NOT_FOUND", f"Dashboard {dashboard_id} not found")


def _user_key(ctx: "UserContext") -> str:
    return str(ctx.user_id)


def _principal_clause(ctx: "UserContext"):
    return or_(
        *[
            and_(DashboardAcl.principal_type == ptype, DashboardAcl.principal_key == pkey)
            for ptype, pkey in ctx.principals()
        ]
    )


def _scope_clause(ctx: "UserContext"):
    """System rows (no tenant) plus the caller's own tenant."""
    return or_(
        and_(Dashboard.visibility == "system", Dashboard.tenant_id.is_(None)),
        Dashboard.tenant_id == ctx.tenant_id,
    )


def _owned_clause(ctx: "UserContext"):
    key = _user_key(ctx)
    return and_(Dashboard.visibility != "system", or_(Dashboard.owner_id == key, Dashboard.created_by == key))


# --- lookup + permission ----------------------------------------------------


def get_dashboard(s: "Session", ctx: "UserContext", dashboard_id: int) -> Dashboard:
    d = s.get(Dashboard, dashboard_id)
    if not d or (d.tenant_id is not None and d.tenant_id != ctx.tenant_id):
        raise not_found(dashboard_id)
    return d


def resolve_permission(s: "Session", d: Dashboard, ctx: "UserContext") -> str:
    """owner > best ACL match (edit | view) > none."""
    key = _user_key(ctx)
    if d.visibility != "system" and (d.owner_id == key or d.created_by == key):
        return "owner"
    perms = s.execute(
        select(DashboardAcl.permission).where(DashboardAcl.dashboard_id == d.id).where(_principal_clause(ctx))
    ).scalars()
    best = "none"
    for perm in perms:
        if PERMISSION_RANK.get(perm, 0) > PERMISSION_RANK[best]:
            best = perm
    return best


def assert_permission(s: "Session", d: Dashboard, ctx: "UserContext", required: str) -> str:
    actual = resolve_permission(s, d, ctx)
    if PERMISSION_RANK[actual] < PERMISSION_RANK[required]:
        logger.warning(
            "[dashboard] permission denied dashboard=%s user=%s required=%s actual=%s",
            d.id,
            ctx.user_id,
            required,
            actual,
        )
        raise DashboardError(403, "PERMISSION_DENIED", f'Requires "{required}" permission, have "{actual}"')
    return actual


def assert_owner(s: "Session", d: Dashboard, ctx: "UserContext") -> None:
    actual = resolve_permission(s, d, ctx)
    if actual != "owner":
        logger.warning("[dashboard] owner required dashboard=%s user=%s actual=%s", d.id, ctx.user_id, actual)
        raise DashboardError(403, "PERMISSION_DENIED", "Only the owner can perform this action")


def assert_not_system(d: Dashboard) -> None:
    if d.visibility == "system":
        raise DashboardError(403, "SYSTEM_DASHBOARD_IMMUTABLE", "System dashboards cannot be modified")


def published_version(s: "Session", dashboard_id: int) -> DashboardVersion | None:
    return (
        s.execute(
            select(DashboardVersion)
            .where(DashboardVersion.dashboard_id == dashboard_id, DashboardVersion.status == "published")
            .order_by(DashboardVersion.version_no.desc())
            .limit(1)
        )
        .scalars()
        .first()
    )


def draft_version(s: "Session", dashboard_id: int) -> DashboardVersion | None:
    return (
        s.execute(
            select(DashboardVersion)
            .where(DashboardVersion.dashboard_id == dashboard_id, DashboardVersion.status == "draft")
            .order_by(DashboardVersion.version_no.desc())
            .limit(1)
        )
        .scalars()
        .first()
    )


def _latest_version_no(s: "Session", dashboard_id: int) -> int:
    return int(
        s.execute(
            select(func.coalesce(func.max(DashboardVersion.version_no), 0)).where(
                DashboardVersion.dashboard_id == dashboard_id
            )
        ).scalar_one()
    )


# --- reads ------------------------------------------------------------------


def list_for_user(s: "Session", ctx: "UserContext", workbench: str) -> dict[str, Any]:
    """Sidebar listing: visible dashboards for a workbench, grouped by module."""
    acl_match = select(DashboardAcl.dashboard_id).where(_principal_clause(ctx))
    q = (
        select(Dashboard)
        .where(Dashboard.workbench == workbench)
        .where(Dashboard.is_hidden.is_(False))
        .where(_scope_clause(ctx))
        .where(or_(Dashboard.id.in_(acl_match), _owned_clause(ctx)))
        .order_by(Dashboard.module_code, Dashboard.sort_order, Dashboard.id)
    )
    rows: list[Dashboard] = []
    seen: set[int] = set()
    for d in s.execute(q).scalars():
        if d.id in seen:
            continue
        seen.add(d.id)
        rows.append(d)

    groups: dict[str, list[dict[str, Any]]] = {}
    for d in rows:
        item = dashboard_summary(d)
        item["permission"] = resolve_permission(s, d, ctx)
        groups.setdefault(d.module_code, []).append(item)

    return {
        "total": len(rows),
        "groups": [{"moduleCode": code, "dashboards": items} for code, items in groups.items()],
    }


def candidates_for(s: "Session", ctx: "UserContext", code: str, workbench: str) -> list[DashboardCandidate]:
    """Visible, published dashboards sharing a code, in query order (sort_order, id)."""
    acl_match = select(DashboardAcl.dashboard_id).where(_principal_clause(ctx))
    user_rows = and_(Dashboard.visibility == "user", Dashboard.owner_id == _user_key(ctx))
    q = (
        select(Dashboard, DashboardVersion)
        .join(
            DashboardVersion,
            and_(DashboardVersion.dashboard_id == Dashboard.id, DashboardVersion.status == "published"),
        )
        .where(Dashboard.code == code, Dashboard.workbench == workbench)
        .where(Dashboard.is_hidden.is_(False))
        .where(_scope_clause(ctx))
        .where(
            or_(
                user_rows,
                and_(Dashboard.visibility != "user", or_(Dashboard.id.in_(acl_match), _owned_clause(ctx))),
            )
        )
        .order_by(Dashboard.sort_order, Dashboard.id)
    )
    out: list[DashboardCandidate] = []
    for d, v in s.execute(q).all():
        out.append(
            DashboardCandidate(
                id=d.id,
                code=d.code,
                visibility=d.visibility,
                layout=v.layout,
                forked_from_id=d.forked_from_id,
                version_no=v.version_no,
                meta=dashboard_summary(d),
            )
        )
    return out


def resolve_for_user(s: "Session", ctx: "UserContext", code: str, workbench: str) -> ResolvedDashboard:
    resolved = resolve_dashboard(candidates_for(s, ctx, code, workbench))
    logger.debug("[dashboard] resolved code=%s workbench=%s tier=%s", code, workbench, resolved.tier)
    return resolved


def get_published_with_permission(s: "Session", ctx: "UserContext", dashboard_id: int) -> dict[str, Any]:
    d = get_dashboard(s, ctx, dashboard_id)
    v = published_version(s, d.id)
    if v is None:
        raise not_found(dashboard_id)
    permission = resolve_permission(s, d, ctx)
    if permission == "none":
        raise DashboardError(403, "PERMISSION_DENIED", "You do not have access to this dashboard")
    return {
        "id": d.id,
        "code": d.code,
        "titleKey": d.title_key,
        "descriptionKey": d.description_key,
        "moduleCode": d.module_code,
        "workbench": d.workbench,
        "visibility": d.visibility,
        "icon": d.icon,
        "layout": v.layout,
        "versionNo": v.version_no,
        "publishedAt": isoformat(v.published_at),
        "ownerId": d.owner_id,
        "createdBy": d.created_by,
        "permission": permission,
    }


def get_draft_view(s: "Session", ctx: "UserContext", dashboard_id: int) -> dict[str, Any]:
    """Editor view: the draft when one exists, else the published layout."""
    d = get_dashboard(s, ctx, dashboard_id)
    assert_permission(s, d, ctx, "edit")
    assert_not_system(d)
    draft = draft_version(s, d.id)
    if draft is not None:
        return {
            "layout": draft.layout,
            "versionNo": draft.version_no,
            "status": draft.status,
            "createdAt": isoformat(draft.created_at),
        }
    published = published_version(s, d.id)
    if published is None:
        raise not_found(dashboard_id)
    return {
        "layout": published.layout,
        "versionNo": published.version_no,
        "status": "published",
        "createdAt": isoformat(published.published_at),
    }


# --- validation -------------------------------------------------------------


def validate_acl_entry(entry: Any) -> tuple[str, str, str]:
    if not isinstance(entry, dict):
        raise DashboardError(400, "MISSING_REQUIRED_FIELDS", "principalType, principalKey, and permission are required")
    ptype = entry.get("principalType")
    pkey = entry.get("principalKey")
    perm = entry.get("permission")
    if not ptype or not pkey or not perm:
        raise DashboardError(400, "MISSING_REQUIRED_FIELDS", "principalType, principalKey, and permission are required")
    if ptype not in PRINCIPAL_TYPES:
        raise DashboardError(400, "INVALID_PRINCIPAL_TYPE", f"principalType must be one of: {', '.join(PRINCIPAL_TYPES)}")
    if perm not in ACL_PERMISSIONS:
        raise DashboardError(400, "INVALID_PERMISSION", f"permission must be one of: {', '.join(ACL_PERMISSIONS)}")
    return ptype, str(pkey), perm


def checked_layout(raw: Any) -> dict[str, Any]:
    if raw is None:
        raise DashboardError(400, "MISSING_LAYOUT", "layout is required")
    layout, issues = validate_layout(raw)
    if issues:
        raise ApiError(400, "INVALID_LAYOUT", "Layout validation failed", {"issues": issues})
    return layout


def _ensure_code_free(s: "Session", tenant_id: int | None, code: str, workbench: str) -> None:
    tenant_match = Dashboard.tenant_id.is_(None) if tenant_id is None else Dashboard.tenant_id == tenant_id
    exists = s.execute(
        select(Dashboard.id).where(tenant_match, Dashboard.code == code, Dashboard.workbench == workbench)
    ).first()
    if exists:
        raise DashboardError(409, "DASHBOARD_CODE_EXISTS", f"Dashboard code {code!r} already exists for {workbench}")


# --- writes -----------------------------------------------------------------


def _insert_dashboard(
    s: "Session",
    *,
    tenant_id: int | None,
    code: str,
    title_key: str,
    description_key: str | None,
    module_code: str,
    workbench: str,
    visibility: str,
    icon: str | None,
    sort_order: int | None,
    forked_from_id: int | None,
    owner_id: str | None,
    layout: dict[str, Any],
    acl: list[tuple[str, str, str]],
    created_by: str,
) -> Dashboard:
    now = utcnow()
    d = Dashboard(
        tenant_id=tenant_id,
        code=code,
        title_key=title_key,
        description_key=description_key,
        module_code=module_code,
        workbench=workbench,
        visibility=visibility,
        icon=icon,
        sort_order=sort_order if sort_order is not None else DEFAULT_SORT_ORDER,
        is_hidden=False,
        forked_from_id=forked_from_id,
        owner_id=owner_id,
        created_at=now,
        created_by=created_by,
    )
    s.add(d)
    s.flush()
    s.add(
        DashboardVersion(
            tenant_id=tenant_id,
            dashboard_id=d.id,
            version_no=1,
            status="published",
            layout=layout,
            published_at=now,
            published_by=created_by,
            created_at=now,
            created_by=created_by,
        )
    )
    for ptype, pkey, perm in acl:
        s.add(
            DashboardAcl(
                tenant_id=tenant_id,
                dashboard_id=d.id,
                principal_type=ptype,
                principal_key=pkey,
                permission=perm,
                created_at=now,
                created_by=created_by,
            )
        )
    s.flush()
    return d


def create_dashboard(s: "Session", ctx: "UserContext", actor: "User", payload: dict) -> Dashboard:
    code = str_field(payload, "code")
    title_key = str_field(payload, "titleKey")
    module_code = str_field(payload, "moduleCode")
    workbench = str_field(payload, "workbench")
    description_key = str_field(payload, "descriptionKey") or None
    icon = str_field(payload, "icon") or None
    if not code or not title_key or not module_code or not workbench:
        raise DashboardError(400, "MISSING_REQUIRED_FIELDS", "code, titleKey, moduleCode, and workbench are required")

    raw_layout = payload.get("layout")
    layout = checked_layout(raw_layout) if raw_layout is not None else empty_layout()
    acl = [validate_acl_entry(e) for e in (payload.get("acl") or [])]
    sort_order = payload.get("sortOrder")
    if sort_order is not None and not isinstance(sort_order, int):
        raise DashboardError(400, "INVALID_SORT_ORDER", "sortOrder must be an integer")
    _ensure_code_free(s, ctx.tenant_id, code, workbench)

    logger.info("[dashboard] creating dashboard code=%s module=%s workbench=%s", code, module_code, workbench)
    d = _insert_dashboard(
        s,
        tenant_id=ctx.tenant_id,
        code=code,
        title_key=title_key,
        description_key=description_key,
        module_code=module_code,
        workbench=workbench,
        visibility="tenant",
        icon=icon,
        sort_order=sort_order,
        forked_from_id=None,
        owner_id=_user_key(ctx),
        layout=layout,
        acl=acl,
        created_by=_user_key(ctx),
    )
    record_event(s, actor=actor, action="dashboard.create", entity_type="Dashboard", entity_id=str(d.id), metadata={"code": code})
    return d


def duplicate_dashboard(
    s: "Session", ctx: "UserContext", actor: "User", source_id: int, new_code: str | None = None
) -> Dashboard:
    """Fork a visible dashboard (typically system) into the caller's tenant, ACL included."""
    source = get_dashboard(s, ctx, source_id)
    assert_permission(s, source, ctx, "view")
    v = published_version(s, source.id)
    if v is None:
        raise not_found(source_id)

    code = (new_code or "").strip() or f"{source.code}_copy_{int(time.time() * 1000)}"
    _ensure_code_free(s, ctx.tenant_id, code, source.workbench)
    acl = [(a.principal_type, a.principal_key, a.permission) for a in source.acl]

    logger.info("[dashboard] duplicating dashboard source=%s new_code=%s", source.id, code)
    d = _insert_dashboard(
        s,
        tenant_id=ctx.tenant_id,
        code=code,
        title_key=source.title_key,
        description_key=source.description_key,
        module_code=source.module_code,
        workbench=source.workbench,
        visibility="tenant",
        icon=source.icon,
        sort_order=source.sort_order,
        forked_from_id=source.id,
        owner_id=_user_key(ctx),
        layout=v.layout,
        acl=acl,
        created_by=_user_key(ctx),
    )
    record_event(
        s,
        actor=actor,
        action="dashboard.duplicate",
        entity_type="Dashboard",
        entity_id=str(d.id),
        metadata={"source": source.id, "code": code},
    )
    return d


def update_dashboard(s: "Session", ctx: "UserContext", actor: "User", dashboard_id: int, payload: dict) -> Dashboard:
    d = get_dashboard(s, ctx, dashboard_id)
    assert_permission(s, d, ctx, "edit")
    assert_not_system(d)

    changes: dict[str, Any] = {}
    if payload.get("titleKey") is not None:
        title_key = str_field(payload, "titleKey")
        if not title_key:
            raise DashboardError(400, "MISSING_REQUIRED_FIELDS", "titleKey cannot be empty")
        d.title_key = changes["titleKey"] = title_key
    if "descriptionKey" in payload:
        d.description_key = changes["descriptionKey"] = str_field(payload, "descriptionKey") or None
    hidden = payload.get("isHidden", payload.get("is_hidden"))
    if hidden is not None:
        d.is_hidden = changes["isHidden"] = bool(hidden)
    if payload.get("sortOrder") is not None:
        if not isinstance(payload["sortOrder"], int):
            raise DashboardError(400, "INVALID_SORT_ORDER", "sortOrder must be an integer")
        d.sort_order = changes["sortOrder"] = payload["sortOrder"]
    d.updated_at = utcnow()
    d.updated_by = _user_key(ctx)
    record_event(s, actor=actor, action="dashboard.update", entity_type="Dashboard", entity_id=str(d.id), metadata=changes)
    return d


def save_draft(s: "Session", ctx: "UserContext", dashboard_id: int, raw_layout: Any) -> DashboardVersion:
    layout = checked_layout(raw_layout)
    d = get_dashboard(s, ctx, dashboard_id)
    assert_permission(s, d, ctx, "edit")
    assert_not_system(d)

    draft = draft_version(s, d.id)
    if draft is not None:
        draft.layout = layout
    else:
        draft = DashboardVersion(
            tenant_id=d.tenant_id,
            dashboard_id=d.id,
            version_no=_latest_version_no(s, d.id) + 1,
            status="draft",
            layout=layout,
            created_at=utcnow(),
            created_by=_user_key(ctx),
        )
        s.add(draft)
    s.flush()
    return draft


def publish(s: "Session", ctx: "UserContext", actor: "User", dashboard_id: int) -> DashboardVersion:
    d = get_dashboard(s, ctx, dashboard_id)
    assert_permission(s, d, ctx, "edit")
    assert_not_system(d)
    draft = draft_version(s, d.id)
    if draft is None:
        raise DashboardError(400, "NO_DRAFT", "There is no draft to publish")

    logger.info("[dashboard] publishing dashboard=%s version=%s", d.id, draft.version_no)
    s.execute(
        update(DashboardVersion)
        .where(DashboardVersion.dashboard_id == d.id, DashboardVersion.status == "published")
        .values(status="archived")
        .execution_options(synchronize_session="fetch")
    )
    draft.status = "published"
    draft.published_at = utcnow()
    draft.published_by = _user_key(ctx)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="dashboard.publish",
        entity_type="Dashboard",
        entity_id=str(d.id),
        metadata={"versionNo": draft.version_no},
    )
    return draft


def discard_draft(s: "Session", ctx: "UserContext", dashboard_id: int) -> int:
    d = get_dashboard(s, ctx, dashboard_id)
    assert_permission(s, d, ctx, "edit")
    assert_not_system(d)
    logger.info("[dashboard] discarding draft dashboard=%s", d.id)
    res = s.execute(
        delete(DashboardVersion)
        .where(DashboardVersion.dashboard_id == d.id, DashboardVersion.status == "draft")
        .execution_options(synchronize_session="fetch")
    )
    return int(res.rowcount or 0)


def delete_dashboard(s: "Session", ctx: "UserContext", actor: "User", dashboard_id: int) -> None:
    d = get_dashboard(s, ctx, dashboard_id)
    assert_not_system(d)
    assert_owner(s, d, ctx)
    code = d.code
    logger.info("[dashboard] deleting dashboard=%s", d.id)
    s.execute(
        update(Dashboard).where(Dashboard.forked_from_id == d.id).values(forked_from_id=None)
    )
    s.execute(delete(DashboardAcl).where(DashboardAcl.dashboard_id == d.id))
    s.execute(delete(DashboardVersion).where(DashboardVersion.dashboard_id == d.id))
    s.execute(delete(Dashboard).where(Dashboard.id == d.id).execution_options(synchronize_session="fetch"))
    record_event(s, actor=actor, action="dashboard.delete", entity_type="Dashboard", entity_id=str(dashboard_id), metadata={"code": code})


# --- ACL --------------------------------------------------------------------


def list_acl(s: "Session", ctx: "UserContext", dashboard_id: int) -> list[DashboardAcl]:
    d = get_dashboard(s, ctx, dashboard_id)
    assert_permission(s, d, ctx, "edit")
    return list(
        s.execute(
            select(DashboardAcl).where(DashboardAcl.dashboard_id == d.id).order_by(DashboardAcl.created_at, DashboardAcl.id)
        ).scalars()
    )


def add_acl(s: "Session", ctx: "UserContext", actor: "User", dashboard_id: int, payload: Any) -> DashboardAcl:
    ptype, pkey, perm = validate_acl_entry(payload)
    d = get_dashboard(s, ctx, dashboard_id)
    assert_permission(s, d, ctx, "edit")
    assert_not_system(d)
    logger.info("[dashboard] adding ACL entry dashboard=%s %s:%s=%s", d.id, ptype, pkey, perm)
    entry = DashboardAcl(
        tenant_id=d.tenant_id,
        dashboard_id=d.id,
        principal_type=ptype,
        principal_key=pkey,
        permission=perm,
        created_at=utcnow(),
        created_by=_user_key(ctx),
    )
    s.add(entry)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="dashboard.acl_add",
        entity_type="Dashboard",
        entity_id=str(d.id),
        metadata={"principalType": ptype, "principalKey": pkey, "permission": perm},
    )
    return entry


def remove_acl(s: "Session", ctx: "UserContext", actor: "User", dashboard_id: int, acl_id: int) -> None:
    d = get_dashboard(s, ctx, dashboard_id)
    assert_permission(s, d, ctx, "edit")
    assert_not_system(d)
    entry = s.get(DashboardAcl, acl_id)
    if not entry or entry.dashboard_id != d.id:
        raise DashboardError(404, "ACL_NOT_FOUND", f"ACL entry {acl_id} not found")
    logger.info("[dashboard] removing ACL entry %s from dashboard=%s", acl_id, d.id)
    s.delete(entry)
    record_event(s, actor=actor, action="dashboard.acl_remove", entity_type="Dashboard", entity_id=str(d.id), metadata={"aclId": acl_id})


# --- system dashboards (contribution seeding) -------------------------------


def upsert_system(
    s: "Session",
    *,
    code: str,
    title_key: str,
    module_code: str,
    workbench: str,
    layout: dict[str, Any],
    acl: list[dict[str, str]],
    description_key: str | None = None,
    icon: str | None = None,
    sort_order: int | None = None,
    created_by: str = SYSTEM_ACTOR,
) -> tuple[Dashboard, bool]:
    """
    Idempotent by (tenant NULL, code, workbench). An existing row gets its metadata refreshed,
    its published layout replaced and its ACL rewritten. Returns (dashboard, created).
    """
    acl_rows = [validate_acl_entry(a) for a in acl]
    existing = (
        s.execute(
            select(Dashboard).where(
                Dashboard.tenant_id.is_(None), Dashboard.code == code, Dashboard.workbench == workbench
            )
        )
        .scalars()
        .first()
    )
    if existing is None:
        d = _insert_dashboard(
            s,
            tenant_id=None,
            code=code,
            title_key=title_key,
            description_key=description_key,
            module_code=module_code,
            workbench=workbench,
            visibility="system",
            icon=icon,
            sort_order=sort_order,
            forked_from_id=None,
            owner_id=None,
            layout=layout,
            acl=acl_rows,
            created_by=created_by,
        )
        return d, True

    now = utcnow()
    existing.title_key = title_key
    existing.description_key = description_key
    existing.module_code = module_code
    existing.icon = icon
    existing.sort_order = sort_order if sort_order is not None else DEFAULT_SORT_ORDER
    existing.updated_at = now
    existing.updated_by = created_by

    v = published_version(s, existing.id)
    if v is None:
        s.add(
            DashboardVersion(
                tenant_id=None,
                dashboard_id=existing.id,
                version_no=_latest_version_no(s, existing.id) + 1,
                status="published",
                layout=layout,
                published_at=now,
                published_by=created_by,
                created_at=now,
                created_by=created_by,
            )
        )
    elif v.layout != layout:
        v.layout = layout
        v.published_at = now
        v.published_by = created_by

    s.execute(delete(DashboardAcl).where(DashboardAcl.dashboard_id == existing.id))
    for ptype, pkey, perm in acl_rows:
        s.add(
            DashboardAcl(
                tenant_id=None,
                dashboard_id=existing.id,
                principal_type=ptype,
                principal_key=pkey,
                permission=perm,
                created_at=now,
                created_by=created_by,
            )
        )
    s.flush()
    s.expire(existing, ["acl", "versions"])
    return existing, False


# --- serialization ----------------------------------------------------------


def dashboard_summary(d: Dashboard) -> dict[str, Any]:
    return {
        "id": d.id,
        "code": d.code,
        "titleKey": d.title_key,
        "descriptionKey": d.description_key,
        "moduleCode": d.module_code,
        "workbench": d.workbench,
        "visibility": d.visibility,
        "icon": d.icon,
        "sortOrder": d.sort_order,
        "isHidden": d.is_hidden,
        "forkedFromId": d.forked_from_id,
    }


def acl_to_dict(a: DashboardAcl) -> dict[str, Any]:
    return {
        "id": a.id,
        "principalType": a.principal_type,
        "principalKey": a.principal_key,
        "permission": a.permission,
        "createdBy": a.created_by,
        "createdAt": isoformat(a.created_at),
    }


def resolved_to_dict(r: ResolvedDashboard) -> dict[str, Any]:
    return {
        "tier": r.tier,
        "dashboard": r.dashboard.meta if r.dashboard else None,
        "versionNo": r.dashboard.version_no if r.dashboard else None,
        "layout": r.layout,
    }
