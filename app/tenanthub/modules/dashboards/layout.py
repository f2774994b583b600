"""
Dashboard layout validation.

validate_layout() returns (normalized_layout, issues). Issues are
{"path": "items.0.grid.w", "message": "..."} dicts; an empty list means valid.
"""
from __future__ import annotations

import copy
from typing import Any, Callable

SCHEMA_VERSION = 1
MAX_COLUMNS = 24

HEADING_LEVELS = ("h1", "h2", "h3", "h4")
SPACER_HEIGHTS = ("sm", "md", "lg")
KPI_FORMATS = ("number", "currency", "percent")
CHART_TYPES = ("bar", "line", "area", "pie")
LIST_DEFAULT_PAGE_SIZE = 10
LIST_MAX_PAGE_SIZE = 100

Issues = list[dict[str, str]]


def _issue(issues: Issues, path: str, message: str) -> None:
    issues.append({"path": path, "message": message})


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def _require_str(params: dict, key: str, path: str, issues: Issues) -> None:
    v = params.get(key)
    if not isinstance(v, str) or not v.strip():
        _issue(issues, f"{path}.{key}", f"{key} is required")


def _optional_str(params: dict, key: str, path: str, issues: Issues) -> None:
    if key in params and params[key] is not None and not isinstance(params[key], str):
        _issue(issues, f"{path}.{key}", f"{key} must be a string")


def _require_choice(params: dict, key: str, choices: tuple[str, ...], path: str, issues: Issues) -> None:
    if params.get(key) not in choices:
        _issue(issues, f"{path}.{key}", f"{key} must be one of: {', '.join(choices)}")


def _heading(params: dict, path: str, issues: Issues) -> None:
    _require_str(params, "text_key", path, issues)
    _require_choice(params, "level", HEADING_LEVELS, path, issues)


def _spacer(params: dict, path: str, issues: Issues) -> None:
    _require_choice(params, "height", SPACER_HEIGHTS, path, issues)


def _shortcut(params: dict, path: str, issues: Issues) -> None:
    _require_str(params, "label_key", path, issues)
    _require_str(params, "href", path, issues)
    _optional_str(params, "icon", path, issues)
    _optional_str(params, "description_key", path, issues)


def _kpi(params: dict, path: str, issues: Issues) -> None:
    _require_str(params, "label_key", path, issues)
    _require_str(params, "query_key", path, issues)
    _require_choice(params, "format", KPI_FORMATS, path, issues)
    _optional_str(params, "trend_query_key", path, issues)
    _optional_str(params, "currency_code", path, issues)


def _list(params: dict, path: str, issues: Issues) -> None:
    _require_str(params, "title_key", path, issues)
    _require_str(params, "query_key", path, issues)
    cols = params.get("columns")
    if not isinstance(cols, list) or not cols or not all(isinstance(c, str) and c for c in cols):
        _issue(issues, f"{path}.columns", "columns must be a non-empty list of strings")
    if params.get("page_size") is None:
        params["page_size"] = LIST_DEFAULT_PAGE_SIZE
    page_size = params["page_size"]
    if not _is_int(page_size) or not 1 <= page_size <= LIST_MAX_PAGE_SIZE:
        _issue(issues, f"{path}.page_size", f"page_size must be an integer between 1 and {LIST_MAX_PAGE_SIZE}")
    _optional_str(params, "link_template", path, issues)


def _chart(params: dict, path: str, issues: Issues) -> None:
    _require_str(params, "title_key", path, issues)
    _require_str(params, "query_key", path, issues)
    _require_choice(params, "chart_type", CHART_TYPES, path, issues)
    if params.get("config") is not None and not isinstance(params["config"], dict):
        _issue(issues, f"{path}.config", "config must be an object")


WIDGET_VALIDATORS: dict[str, Callable[[dict, str, Issues], None]] = {
    "heading": _heading,
    "spacer": _spacer,
    "shortcut": _shortcut,
    "kpi": _kpi,
    "list": _list,
    "chart": _chart,
}


def validate_widget_params(widget_type: str, params: Any, path: str = "params") -> tuple[dict, Issues]:
    issues: Issues = []
    validator = WIDGET_VALIDATORS.get(widget_type)
    if validator is None:
        _issue(issues, "widget_type", f"Unknown widget type: {widget_type!r}")
        return {}, issues
    if not isinstance(params, dict):
        _issue(issues, path, "params must be an object")
        return {}, issues
    clean = dict(params)
    validator(clean, path, issues)
    return clean, issues


def _validate_grid(grid: Any, columns: int, path: str, issues: Issues) -> None:
    if not isinstance(grid, dict):
        _issue(issues, path, "grid must be an object")
        return
    for key in ("x", "y", "w", "h"):
        v = grid.get(key)
        if not _is_int(v) or v < 0:
            _issue(issues, f"{path}.{key}", f"{key} must be a non-negative integer")
    w, h, x = grid.get("w"), grid.get("h"), grid.get("x")
    if _is_int(w) and w < 1:
        _issue(issues, f"{path}.w", "w must be at least 1")
    if _is_int(h) and h < 1:
        _issue(issues, f"{path}.h", "h must be at least 1")
    if _is_int(x) and _is_int(w) and _is_int(columns) and x + w > columns:
        _issue(issues, path, f"item overflows the grid (x + w > {columns})")


def validate_layout(layout: Any) -> tuple[dict[str, Any], Issues]:
    issues: Issues = []
    if not isinstance(layout, dict):
        _issue(issues, "", "layout must be an object")
        return {}, issues

    clean = copy.deepcopy(layout)
    if clean.get("schema_version") != SCHEMA_VERSION:
        _issue(issues, "schema_version", f"schema_version must be {SCHEMA_VERSION}")
    columns = clean.get("columns")
    if not _is_int(columns) or not 1 <= columns <= MAX_COLUMNS:
        _issue(issues, "columns", f"columns must be an integer between 1 and {MAX_COLUMNS}")
    row_height = clean.get("row_height")
    if not _is_int(row_height) or row_height <= 0:
        _issue(issues, "row_height", "row_height must be a positive integer")

    items = clean.get("items")
    if not isinstance(items, list):
        _issue(issues, "items", "items must be a list")
        return clean, issues

    seen: set[str] = set()
    for idx, item in enumerate(items):
        path = f"items.{idx}"
        if not isinstance(item, dict):
            _issue(issues, path, "item must be an object")
            continue
        item_id = item.get("id")
        if not isinstance(item_id, str) or not item_id:
            _issue(issues, f"{path}.id", "id is required")
        elif item_id in seen:
            _issue(issues, f"{path}.id", f"duplicate item id {item_id!r}")
        else:
            seen.add(item_id)

        widget_type = item.get("widget_type")
        if not isinstance(widget_type, str) or widget_type not in WIDGET_VALIDATORS:
            _issue(issues, f"{path}.widget_type", f"widget_type must be one of: {', '.join(WIDGET_VALIDATORS)}")
        else:
            params, param_issues = validate_widget_params(widget_type, item.get("params"), f"{path}.params")
            issues.extend(param_issues)
            item["params"] = params

        _validate_grid(item.get("grid"), columns, f"{path}.grid", issues)

    return clean, issues
