from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, func, or_, select, update

from app.tenanthub.errors import ApiError
from app.tenanthub.modules.notifications import preferences
from app.tenanthub.modules.notifications.models import Notification, NotificationPreference
from app.tenanthub.modules.notifications.templates import render_for
from app.tenanthub.utils import isoformat, str_field, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.tenanthub.tenancy import UserContext

logger = logging.getLogger(__name__)

VALID_PRIORITIES = ("low", "normal", "high", "critical")
DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def notify(
    s: "Session",
    *,
    tenant_id: int,
    recipient_id: int,
    event_code: str,
    title: str | None = None,
    body: str | None = None,
    variables: dict[str, Any] | None = None,
    locale: str | None = None,
    sender_id: int | None = None,
    category: str | None = None,
    priority: str = "normal",
    icon: str | None = None,
    action_url: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    expires_at: datetime | None = None,
    metadata: dict[str, Any] | None = None,
    created_by_service: str | None = None,
) -> Notification | None:
    """
    Store an in-app notification for one recipient.

    Preferences are checked first (disabled -> None). When an active template exists for
    `event_code` its rendered subject/body replace `title`/`body`. Quiet hours defer
    delivery via `deliver_after` unless priority is critical.
    """
    if priority not in VALID_PRIORITIES:
        raise ApiError(400, "INVALID_PRIORITY", f"priority must be one of: {', '.join(VALID_PRIORITIES)}")

    check = preferences.evaluate(
        s,
        tenant_id=tenant_id,
        user_id=recipient_id,
        event_code=event_code,
        channel="in_app",
        priority=priority,
    )
    if not check.allowed:
        logger.debug("Notification suppressed (%s) event=%s recipient=%s", check.reason, event_code, recipient_id)
        return None

    rendered = render_for(
        s,
        template_key=event_code,
        channel="in_app",
        locale=locale,
        tenant_id=tenant_id,
        variables=variables or {},
    )
    if rendered is not None:
        title = rendered.subject or title
        body = rendered.body_text or body
    if not title:
        title = event_code

    n = Notification(
        tenant_id=tenant_id,
        recipient_id=recipient_id,
        sender_id=sender_id,
        channel="in_app",
        category=category,
        priority=priority,
        title=title[:500],
        body=body,
        icon=icon,
        action_url=action_url,
        entity_type=entity_type,
        entity_id=entity_id,
        expires_at=expires_at,
        deliver_after=check.defer_until,
        metadata_json=metadata,
        created_by_service=created_by_service,
    )
    s.add(n)
    s.flush()
    return n


def _visible(ctx: "UserContext", now: datetime):
    return and_(
        Notification.tenant_id == ctx.tenant_id,
        Notification.recipient_id == ctx.user_id,
        Notification.is_dismissed.is_(False),
        or_(Notification.expires_at.is_(None), Notification.expires_at > now),
        or_(Notification.deliver_after.is_(None), Notification.deliver_after <= now),
    )


def list_notifications(
    s: "Session",
    ctx: "UserContext",
    *,
    unread_only: bool = False,
    category: str | None = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
) -> list[Notification]:
    q = select(Notification).where(_visible(ctx, utcnow()))
    if unread_only:
        q = q.where(Notification.is_read.is_(False))
    if category:
        q = q.where(Notification.category == category)
    q = q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).offset(offset)
    return list(s.execute(q).scalars())


def unread_count(s: "Session", ctx: "UserContext") -> int:
    q = select(func.count(Notification.id)).where(_visible(ctx, utcnow())).where(Notification.is_read.is_(False))
    return int(s.execute(q).scalar_one())


def _get_own_or_404(s: "Session", ctx: "UserContext", notification_id: int) -> Notification:
    n = s.get(Notification, notification_id)
    if not n or n.tenant_id != ctx.tenant_id or n.recipient_id != ctx.user_id:
        raise ApiError(404, "NOTIFICATION_NOT_FOUND", f"Notification {notification_id} not found")
    return n


def mark_read(s: "Session", ctx: "UserContext", notification_id: int) -> Notification:
    n = _get_own_or_404(s, ctx, notification_id)
    if not n.is_read:
        n.is_read = True
        n.read_at = utcnow()
    return n


def mark_all_read(s: "Session", ctx: "UserContext") -> int:
    now = utcnow()
    res = s.execute(
        update(Notification)
        .where(
            Notification.tenant_id == ctx.tenant_id,
            Notification.recipient_id == ctx.user_id,
            Notification.is_read.is_(False),
            Notification.is_dismissed.is_(False),
        )
        .values(is_read=True, read_at=now)
        .execution_options(synchronize_session=False)
    )
    return int(res.rowcount or 0)


def dismiss(s: "Session", ctx: "UserContext", notification_id: int) -> Notification:
    n = _get_own_or_404(s, ctx, notification_id)
    if not n.is_dismissed:
        n.is_dismissed = True
        n.dismissed_at = utcnow()
    return n


def list_preferences(s: "Session", ctx: "UserContext") -> list[NotificationPreference]:
    return list(
        s.execute(
            select(NotificationPreference)
            .where(NotificationPreference.tenant_id == ctx.tenant_id, NotificationPreference.user_id == ctx.user_id)
            .order_by(NotificationPreference.event_code, NotificationPreference.channel)
        ).scalars()
    )


def validate_preference_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    if not str_field(payload, "eventCode"):
        errors.append("eventCode is required.")
    str_field(payload, "channel")
    start, end = payload.get("quietHoursStart"), payload.get("quietHoursEnd")
    if bool(start) != bool(end):
        errors.append("quietHoursStart and quietHoursEnd must be set together.")
    for label, raw in (("quietHoursStart", start), ("quietHoursEnd", end)):
        if raw and preferences.parse_hhmm(raw) is None:
            errors.append(f"{label} must be HH:MM.")
    if start and not str_field(payload, "timezone"):
        errors.append("timezone is required with quiet hours.")
    return errors


def upsert_preference(s: "Session", ctx: "UserContext", payload: dict) -> NotificationPreference:
    errors = validate_preference_payload(payload)
    if errors:
        raise ApiError(400, "INVALID_PREFERENCE", "; ".join(errors), {"issues": errors})
    event_code = str_field(payload, "eventCode")
    channel = str_field(payload, "channel") or "in_app"
    pref = preferences.get_preference(s, tenant_id=ctx.tenant_id, user_id=ctx.user_id, event_code=event_code, channel=channel)
    if pref is None:
        pref = NotificationPreference(tenant_id=ctx.tenant_id, user_id=ctx.user_id, event_code=event_code, channel=channel)
        s.add(pref)
    if "isEnabled" in payload:
        pref.is_enabled = bool(payload.get("isEnabled"))
    elif pref.is_enabled is None:
        pref.is_enabled = True
    pref.quiet_hours_start = str_field(payload, "quietHoursStart") or None
    pref.quiet_hours_end = str_field(payload, "quietHoursEnd") or None
    pref.timezone = str_field(payload, "timezone") or None
    pref.updated_at = utcnow()
    s.flush()
    return pref


def notification_to_dict(n: Notification) -> dict[str, Any]:
    return {
        "id": n.id,
        "tenantId": n.tenant_id,
        "recipientId": n.recipient_id,
        "senderId": n.sender_id,
        "channel": n.channel,
        "category": n.category,
        "priority": n.priority,
        "title": n.title,
        "body": n.body,
        "icon": n.icon,
        "actionUrl": n.action_url,
        "entityType": n.entity_type,
        "entityId": n.entity_id,
        "isRead": n.is_read,
        "readAt": isoformat(n.read_at),
        "isDismissed": n.is_dismissed,
        "dismissedAt": isoformat(n.dismissed_at),
        "expiresAt": isoformat(n.expires_at),
        "metadata": n.metadata_json,
        "createdAt": isoformat(n.created_at),
    }


def preference_to_dict(p: NotificationPreference) -> dict[str, Any]:
    return {
        "id": p.id,
        "eventCode": p.event_code,
        "channel": p.channel,
        "isEnabled": p.is_enabled,
        "quietHoursStart": p.quiet_hours_start,
        "quietHoursEnd": p.quiet_hours_end,
        "timezone": p.timezone,
    }
