"""
Dashboard resolution tiers.

Given candidates already filtered (tenant/system scope, ACL) and ordered by the
database query, pick the most specific one:

    user > tenant fork > tenant > system > empty fallback
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence


def empty_layout() -> dict[str, Any]:
    return {"schema_version": 1, "columns": 12, "row_height": 80, "items": []}


@dataclass(frozen=True)
class DashboardCandidate:
    id: int
    code: str
    visibility: str  # system | tenant | user
    layout: dict[str, Any]
    forked_from_id: int | None = None
    version_no: int | None = None
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolvedDashboard:
    tier: str  # user | tenant_fork | tenant | system | fallback
    dashboard: DashboardCandidate | None
    layout: dict[str, Any]


def _first(candidates: Sequence[DashboardCandidate], predicate) -> DashboardCandidate | None:
    return next((c for c in candidates if predicate(c)), None)


_TIERS = (
    ("user", lambda c: c.visibility == "user"),
    ("tenant_fork", lambda c: c.visibility == "tenant" and c.forked_from_id is not None),
    ("tenant", lambda c: c.visibility == "tenant" and c.forked_from_id is None),
    ("system", lambda c: c.visibility == "system"),
)


def resolve_dashboard(candidates: Sequence[DashboardCandidate]) -> ResolvedDashboard:
    for tier, predicate in _TIERS:
        match = _first(candidates, predicate)
        if match is not None:
            return ResolvedDashboard(tier=tier, dashboard=match, layout=match.layout)
    return ResolvedDashboard(tier="fallback", dashboard=None, layout=empty_layout())
