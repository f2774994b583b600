import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, request, session
from sqlalchemy import inspect as sa_inspect

from app.tenanthub.auth import bp as auth_bp, load_current_user
from app.tenanthub.cache import init_rate_limiter
from app.tenanthub.config import load_config
from app.tenanthub.db import init_db, teardown_db_session
from app.tenanthub.errors import fail, register_error_handlers
from app.tenanthub.logging_config import setup_logging
from app.tenanthub.models import Base
from app.tenanthub.routes import bp as routes_bp
from app.tenanthub.modules.content.api import bp as content_bp, local_bp as storage_local_bp
from app.tenanthub.modules.dashboards.api import bp as dashboards_bp
from app.tenanthub.modules.messaging.api import conversations_bp, messages_bp
from app.tenanthub.modules.notifications.api import bp as notifications_bp

# Endpoints that skip the session CSRF check: login/logout, and signed storage URLs.
CSRF_EXEMPT_PREFIXES = ("auth.", "storage_local.")
_UNGUARDED_PATHS = ("/health", "/healthz")


def create_app() -> Flask:
    load_dotenv()
    config = load_config()
    setup_logging(config["LOG_LEVEL"], config["LOG_FILE"] or None)

    app = Flask(__name__)
    app.config.from_mapping(config)
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.json.sort_keys = False

    from app.tenanthub.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNGUARDED_PATHS):
            return None
        if (request.endpoint or "").startswith("storage_local."):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if (request.endpoint or "").startswith(CSRF_EXEMPT_PREFIXES):
                return None
            if not validate_csrf(request):
                return fail(400, "CSRF_FAILED", "CSRF token missing or invalid.")
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("REDIS_URL"):
            app.logger.warning("REDIS_URL not set; rate limits are per-process only.")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage health check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
        else:
            from botocore.exceptions import BotoCoreError, ClientError

            from app.tenanthub.storage import S3Storage, storage_from_config

            try:
                storage = storage_from_config(app.config)
                if isinstance(storage, S3Storage):
                    storage._client().head_bucket(Bucket=storage.bucket)
                    app.logger.info("Storage health check PASSED: S3 bucket '%s' accessible", storage.bucket)
            except (BotoCoreError, ClientError) as e:
                app.logger.error("STORAGE CONFIG ERROR: Cannot access S3 bucket: %s", e)

    init_rate_limiter(app)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(conversations_bp, url_prefix="/api/conversations")
    app.register_blueprint(messages_bp, url_prefix="/api/messages")
    app.register_blueprint(notifications_bp, url_prefix="/api/notifications")
    app.register_blueprint(dashboards_bp, url_prefix="/api/ui/dashboards")
    app.register_blueprint(content_bp, url_prefix="/api/content")
    app.register_blueprint(storage_local_bp, url_prefix="/api/content/local")

    def _load_user_wrapper():
        if request.path.startswith(_UNGUARDED_PATHS):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    # Schema health (lean): every mapped table must exist.
    app.config.setdefault("_schema_health_missing", [])

    def _run_schema_health_check() -> None:
        missing: list[str] = []
        try:
            engine = app.extensions.get("sqlalchemy_engine")
            if engine is None:
                raise RuntimeError("sqlalchemy_engine not initialized")
            insp = sa_inspect(engine)
            existing = set(insp.get_table_names())
            missing = sorted(f"{name} (table)" for name in Base.metadata.tables if name not in existing)
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)

        app.config["_schema_health_missing"] = missing
        if missing and not app.config.get("_schema_health_logged"):
            app.config["_schema_health_logged"] = True
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))

    _run_schema_health_check()

    @app.before_request
    def _schema_health_guardrail():  # type: ignore[no-redef]
        if not app.config.get("_schema_health_missing"):
            return None
        is_api = request.path.startswith("/api/")
        if not is_api and request.path != "/health":
            return None
        # Re-inspect while degraded so a migration applied after boot clears the flag.
        _run_schema_health_check()
        missing = app.config.get("_schema_health_missing") or []
        if not missing or not is_api:
            return None
        return fail(503, "SCHEMA_OUT_OF_DATE", "Database schema is out of date.", missing=missing)

    register_error_handlers(app)

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")
    return app
