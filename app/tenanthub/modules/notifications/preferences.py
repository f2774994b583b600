from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from app.tenanthub.modules.notifications.models import NotificationPreference
from app.tenanthub.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreferenceCheck:
    allowed: bool
    reason: str | None = None  # preference_disabled | quiet_hours_deferred
    defer_until: datetime | None = None  # naive UTC


def parse_hhmm(raw: object) -> time | None:
    if not raw or not isinstance(raw, str):
        return None
    try:
        hh, mm = raw.strip().split(":")
        return time(int(hh), int(mm))
    except (ValueError, TypeError):
        return None


def quiet_hours_end(start: str | None, end: str | None, tz_name: str | None, now: datetime | None = None) -> datetime | None:
    """
    If `now` (naive UTC) falls inside the quiet window, return when it ends (naive UTC), else None.
    Windows with start > end wrap midnight (e.g. 22:00-07:00).
    """
    t_start, t_end = parse_hhmm(start), parse_hhmm(end)
    if t_start is None or t_end is None or not tz_name:
        return None
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown quiet-hours timezone %r; ignoring quiet hours", tz_name)
        return None

    now_utc = (now or utcnow()).replace(tzinfo=timezone.utc)
    local = now_utc.astimezone(tz)
    now_t = local.time().replace(second=0, microsecond=0)

    if t_start > t_end:
        inside = now_t >= t_start or now_t < t_end
    else:
        inside = t_start <= now_t < t_end
    if not inside:
        return None

    ends_local = local.replace(hour=t_end.hour, minute=t_end.minute, second=0, microsecond=0)
    if ends_local <= local:
        ends_local = ends_local + timedelta(days=1)
    return ends_local.astimezone(timezone.utc).replace(tzinfo=None)


def get_preference(s: Session, *, tenant_id: int, user_id: int, event_code: str, channel: str) -> NotificationPreference | None:
    return (
        s.query(NotificationPreference)
        .filter(
            NotificationPreference.tenant_id == tenant_id,
            NotificationPreference.user_id == user_id,
            NotificationPreference.event_code == event_code,
            NotificationPreference.channel == channel,
        )
        .one_or_none()
    )


def evaluate(
    s: Session,
    *,
    tenant_id: int,
    user_id: int,
    event_code: str,
    channel: str = "in_app",
    priority: str = "normal",
    now: datetime | None = None,
) -> PreferenceCheck:
    pref = get_preference(s, tenant_id=tenant_id, user_id=user_id, event_code=event_code, channel=channel)
    if pref is None:
        return PreferenceCheck(allowed=True)
    if not pref.is_enabled:
        logger.debug("[notify:preference] disabled user=%s event=%s channel=%s", user_id, event_code, channel)
        return PreferenceCheck(allowed=False, reason="preference_disabled")
    if priority != "critical":
        ends = quiet_hours_end(pref.quiet_hours_start, pref.quiet_hours_end, pref.timezone, now)
        if ends is not None:
            return PreferenceCheck(allowed=True, reason="quiet_hours_deferred", defer_until=ends)
    return PreferenceCheck(allowed=True)
