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

    geo_lookup_enabled: bool
    geo_lookup_url: str
    geo_lookup_timeout: int

    notify_backend: str
    smtp_host: str
    smtp_port: int
    smtp_username: str
    smtp_password: str
    smtp_use_tls: bool
    sender_email: str
    admin_email: str

    admin_api_token: str
    diagnostics_enabled: bool
    ledger_retention_days: int
    max_upload_files: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getenv_bool(name: str, default: bool = False) -> bool:
    raw = _getenv(name).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///ipverify.db"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_local_root=_getenv("STORAGE_LOCAL_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        geo_lookup_enabled=_getenv_bool("GEO_LOOKUP_ENABLED", True),
        geo_lookup_url=_getenv("GEO_LOOKUP_URL", "https://ipwho.is"),
        geo_lookup_timeout=_getenv_int("GEO_LOOKUP_TIMEOUT", 5),
        notify_backend=_getenv("NOTIFY_BACKEND", "log"),
        smtp_host=_getenv("SMTP_HOST", ""),
        smtp_port=_getenv_int("SMTP_PORT", 587),
        smtp_username=_getenv("SMTP_USERNAME", ""),
        smtp_password=_getenv("SMTP_PASSWORD", ""),
        smtp_use_tls=_getenv_bool("SMTP_USE_TLS", True),
        sender_email=_getenv("SENDER_EMAIL", ""),
        admin_email=_getenv("ADMIN_EMAIL", ""),
        admin_api_token=_getenv("ADMIN_API_TOKEN", ""),
        diagnostics_enabled=_getenv_bool("DIAGNOSTICS_ENABLED", False),
        ledger_retention_days=_getenv_int("LEDGER_RETENTION_DAYS", 30),
        max_upload_files=_getenv_int("MAX_UPLOAD_FILES", 5),
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
        "GEO_LOOKUP_ENABLED": s.geo_lookup_enabled,
        "GEO_LOOKUP_URL": s.geo_lookup_url,
        "GEO_LOOKUP_TIMEOUT": s.geo_lookup_timeout,
        "NOTIFY_BACKEND": s.notify_backend,
        "SMTP_HOST": s.smtp_host,
        "SMTP_PORT": s.smtp_port,
        "SMTP_USERNAME": s.smtp_username,
        "SMTP_PASSWORD": s.smtp_password,
        "SMTP_USE_TLS": s.smtp_use_tls,
        "SENDER_EMAIL": s.sender_email,
        "ADMIN_EMAIL": s.admin_email,
        "ADMIN_API_TOKEN": s.admin_api_token,
        # stack traces in error envelopes (never in production unless forced)
        "DIAGNOSTICS_ENABLED": s.diagnostics_enabled or not is_production,
        "LEDGER_RETENTION_DAYS": s.ledger_retention_days,
        "MAX_UPLOAD_FILES": s.max_upload_files,
        # file upload limits (25MB)
        "MAX_CONTENT_LENGTH": 25 * 1024 * 1024,
    }
