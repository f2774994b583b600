from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.tenanthub.modules.notifications.models import NotificationTemplate

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "en"
_PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+(?:\.\w+)*)\s*\}\}")


@dataclass(frozen=True)
class RenderedTemplate:
    subject: str | None
    body_text: str | None
    body_html: str | None


def resolve_path(variables: dict[str, Any], dotted: str) -> Any:
    current: Any = variables
    for part in dotted.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        else:
            current = getattr(current, part, None)
        if current is None:
            return None
    return current


def substitute(text: str, variables: dict[str, Any]) -> str:
    """Replace {{a.b.c}} placeholders; missing or null values render as ""."""

    def _repl(m: re.Match) -> str:
        value = resolve_path(variables, m.group(1))
        return "" if value is None else str(value)

    return _PLACEHOLDER_RE.sub(_repl, text)


def locale_chain(locale: str | None) -> list[str]:
    """'ar-SA' -> ['ar-SA', 'ar', 'en']; always ends with the default locale."""
    chain: list[str] = []
    loc = (locale or "").strip()
    if loc:
        chain.append(loc)
        base = loc.split("-")[0]
        if base and base not in chain:
            chain.append(base)
    if DEFAULT_LOCALE not in chain:
        chain.append(DEFAULT_LOCALE)
    return chain


def find_template(
    s: Session,
    *,
    template_key: str,
    channel: str,
    locale: str | None,
    tenant_id: int | None,
) -> NotificationTemplate | None:
    for loc in locale_chain(locale):
        scopes: list[int | None] = [tenant_id, None] if tenant_id is not None else [None]
        for scope in scopes:
            if scope is None:
                scope_clause = NotificationTemplate.tenant_id.is_(None)
            else:
                scope_clause = NotificationTemplate.tenant_id == scope
            q = (
                select(NotificationTemplate)
                .where(scope_clause)
                .where(NotificationTemplate.template_key == template_key)
                .where(NotificationTemplate.channel == channel)
                .where(NotificationTemplate.locale == loc)
                .where(NotificationTemplate.status == "active")
                .order_by(NotificationTemplate.version.desc())
                .limit(1)
            )
            row = s.execute(q).scalars().first()
            if row is not None:
                return row
    return None


def render(template: NotificationTemplate, variables: dict[str, Any]) -> RenderedTemplate:
    return RenderedTemplate(
        subject=substitute(template.subject, variables) if template.subject else None,
        body_text=substitute(template.body_text, variables) if template.body_text else None,
        body_html=substitute(template.body_html, variables) if template.body_html else None,
    )


def render_for(
    s: Session,
    *,
    template_key: str,
    channel: str,
    locale: str | None,
    tenant_id: int | None,
    variables: dict[str, Any],
) -> RenderedTemplate | None:
    template = find_template(s, template_key=template_key, channel=channel, locale=locale, tenant_id=tenant_id)
    if template is None:
        logger.warning(
            "[notify:template] No template found key=%s channel=%s locale=%s tenant=%s",
            template_key,
            channel,
            locale,
            tenant_id,
        )
        return None
    return render(template, variables)
