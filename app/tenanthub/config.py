import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    storage_backend: str
    storage_local_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str
    signed_url_expiry_seconds: int
    max_upload_bytes: int
    upload_orphan_ttl_hours: int

    redis_url: str
    rate_limit_messages_per_minute: int
    rate_limit_search_per_minute: int

    log_level: str
    log_file: str
    dashboard_contributions_dir: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).") from e


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///tenanthub.db"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_local_root=_getenv("STORAGE_LOCAL_ROOT", os.path.join(os.getcwd(), "storage")),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        signed_url_expiry_seconds=_getenv_int("SIGNED_URL_EXPIRY_SECONDS", 3600),
        max_upload_bytes=_getenv_int("MAX_UPLOAD_BYTES", 25 * 1024 * 1024),
        upload_orphan_ttl_hours=_getenv_int("UPLOAD_ORPHAN_TTL_HOURS", 24),
        redis_url=_getenv("REDIS_URL", ""),
        rate_limit_messages_per_minute=_getenv_int("RATE_LIMIT_MESSAGES_PER_MINUTE", 60),
        rate_limit_search_per_minute=_getenv_int("RATE_LIMIT_SEARCH_PER_MINUTE", 30),
        log_level=_getenv("LOG_LEVEL", "INFO"),
        log_file=_getenv("LOG_FILE", ""),
        dashboard_contributions_dir=_getenv("DASHBOARD_CONTRIBUTIONS_DIR", ""),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_LOCAL_ROOT": s.storage_local_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "SIGNED_URL_EXPIRY_SECONDS": s.signed_url_expiry_seconds,
        "MAX_UPLOAD_BYTES": s.max_upload_bytes,
        "UPLOAD_ORPHAN_TTL_HOURS": s.upload_orphan_ttl_hours,
        "REDIS_URL": s.redis_url,
        "RATE_LIMIT_MESSAGES_PER_MINUTE": s.rate_limit_messages_per_minute,
        "RATE_LIMIT_SEARCH_PER_MINUTE": s.rate_limit_search_per_minute,
        "LOG_LEVEL": s.log_level,
        "LOG_FILE": s.log_file,
        "DASHBOARD_CONTRIBUTIONS_DIR": s.dashboard_contributions_dir,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # request body cap; uploads go straight to storage via signed URLs
        "MAX_CONTENT_LENGTH": s.max_upload_bytes + 1024 * 1024,
    }
