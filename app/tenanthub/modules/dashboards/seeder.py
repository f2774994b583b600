"""
System dashboard seeding from module contribution files.

Each module ships a `dashboard.contribution.json`:

    {
      "$schema": "tenanthub://dashboard-contribution/v1",
      "module_code": "MSG",
      "module_name": "Messaging",
      "dashboards": [
        {
          "code": "msg_overview",
          "title_key": "dashboard.MSG.overview.title",
          "workbenches": ["user", "admin"],
          "sort_order": 100,
          "acl": [{"principal_type": "persona", "principal_key": "agent", "permission": "view"}],
          "layout": {"schema_version": 1, "columns": 12, "row_height": 80, "items": []}
        }
      ]
    }

One system dashboard is upserted per dashboard x workbench.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sqlalchemy.orm import Session

from app.tenanthub.modules.dashboards.layout import validate_layout
from app.tenanthub.modules.dashboards.service import SYSTEM_ACTOR, upsert_system

logger = logging.getLogger(__name__)

CONTRIBUTION_FILENAME = "dashboard.contribution.json"
DEFAULT_CONTRIBUTIONS_DIR = Path(__file__).resolve().parent / "contributions"


class ContributionError(ValueError):
    pass


@dataclass(frozen=True)
class SeedResult:
    files: int
    seeded: int
    errors: int

    def to_dict(self) -> dict[str, int]:
        return {"files": self.files, "seeded": self.seeded, "errors": self.errors}


def _require_str(obj: dict, key: str, where: str) -> str:
    v = obj.get(key)
    if not isinstance(v, str) or not v.strip():
        raise ContributionError(f"{where}: {key} is required")
    return v.strip()


def parse_contribution(data: Any) -> dict[str, Any]:
    """Validate a contribution document; returns it with layouts normalized."""
    if not isinstance(data, dict):
        raise ContributionError("contribution must be a JSON object")
    module_code = _require_str(data, "module_code", "contribution")
    dashboards = data.get("dashboards")
    if not isinstance(dashboards, list) or not dashboards:
        raise ContributionError("contribution: dashboards must be a non-empty list")

    parsed = []
    for idx, item in enumerate(dashboards):
        where = f"dashboards[{idx}]"
        if not isinstance(item, dict):
            raise ContributionError(f"{where}: must be an object")
        code = _require_str(item, "code", where)
        title_key = _require_str(item, "title_key", where)
        workbenches = item.get("workbenches")
        if not isinstance(workbenches, list) or not workbenches or not all(isinstance(w, str) and w for w in workbenches):
            raise ContributionError(f"{where}: workbenches must be a non-empty list of strings")
        sort_order = item.get("sort_order", 100)
        if not isinstance(sort_order, int) or isinstance(sort_order, bool):
            raise ContributionError(f"{where}: sort_order must be an integer")
        acl = item.get("acl") or []
        if not isinstance(acl, list):
            raise ContributionError(f"{where}: acl must be a list")
        mapped_acl = []
        for a in acl:
            if not isinstance(a, dict):
                raise ContributionError(f"{where}: acl entries must be objects")
            mapped_acl.append(
                {
                    "principalType": a.get("principal_type"),
                    "principalKey": a.get("principal_key"),
                    "permission": a.get("permission"),
                }
            )
        layout, issues = validate_layout(item.get("layout"))
        if issues:
            first = issues[0]
            raise ContributionError(f"{where}: invalid layout at {first['path'] or '<root>'}: {first['message']}")
        parsed.append(
            {
                "code": code,
                "title_key": title_key,
                "description_key": item.get("description_key"),
                "icon": item.get("icon"),
                "workbenches": workbenches,
                "sort_order": sort_order,
                "acl": mapped_acl,
                "layout": layout,
            }
        )
    return {"module_code": module_code, "module_name": data.get("module_name"), "dashboards": parsed}


class DashboardContributionSeeder:
    def __init__(self, session: Session, upsert=upsert_system):
        self.session = session
        self._upsert = upsert

    @staticmethod
    def find_contribution_files(root: str | os.PathLike) -> list[Path]:
        base = Path(root)
        if not base.is_dir():
            return []
        return sorted(p for p in base.rglob(CONTRIBUTION_FILENAME) if p.is_file())

    def seed(self, root: str | os.PathLike | None = None) -> SeedResult:
        root = root or DEFAULT_CONTRIBUTIONS_DIR
        files = self.find_contribution_files(root)
        seeded = 0
        errors = 0
        logger.info("[dashboard-seeder] found %s contribution file(s) under %s", len(files), root)

        for path in files:
            try:
                contribution = parse_contribution(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, ValueError) as e:
                errors += 1
                logger.warning("[dashboard-seeder] failed to parse contribution file %s: %s", path, e)
                continue

            for dash in contribution["dashboards"]:
                for workbench in dash["workbenches"]:
                    try:
                        self._upsert(
                            self.session,
                            code=dash["code"],
                            title_key=dash["title_key"],
                            description_key=dash["description_key"],
                            module_code=contribution["module_code"],
                            workbench=workbench,
                            icon=dash["icon"],
                            sort_order=dash["sort_order"],
                            layout=dash["layout"],
                            acl=dash["acl"],
                            created_by=SYSTEM_ACTOR,
                        )
                        self.session.commit()
                        seeded += 1
                    except Exception as e:
                        self.session.rollback()
                        errors += 1
                        logger.warning(
                            "[dashboard-seeder] failed to upsert dashboard code=%s workbench=%s: %s",
                            dash["code"],
                            workbench,
                            e,
                        )

        logger.info("[dashboard-seeder] seeded=%s errors=%s", seeded, errors)
        return SeedResult(files=len(files), seeded=seeded, errors=errors)
