from flask import Blueprint, current_app

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON, including schema drift status."""
    missing = current_app.config.get("_schema_health_missing") or []
    return {"ok": True, "schemaOk": not missing, "schemaMissing": missing}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for k8s/DO liveness checks. No DB access, minimal overhead.
    """
    return "ok", 200
