import os
from dataclasses import dataclass, field

# Non-functional stand-in used when DATABASE_URL is absent outside production.
PLACEHOLDER_DATABASE_URL = "sqlite:///teamspace-placeholder.db"

PRODUCTION_ENVS = ("prod", "production")


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getfloat(name: str, default: float) -> float:
    try:
        return float(_getenv(name) or default)
    except ValueError:
        return default


@dataclass(frozen=True)
class S3Settings:
    endpoint: str = ""
    region: str = "nyc3"
    bucket: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""

    @classmethod
    def from_env(cls) -> "S3Settings":
        return cls(
            endpoint=_getenv("S3_ENDPOINT"),
            region=_getenv("S3_REGION", "nyc3"),
            bucket=_getenv("S3_BUCKET"),
            access_key_id=_getenv("S3_ACCESS_KEY_ID"),
            secret_access_key=_getenv("S3_SECRET_ACCESS_KEY"),
        )


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    database_url_missing: bool = False

    storage_backend: str = "local"
    storage_public_base_url: str = ""
    storage_local_root: str = ""
    s3: S3Settings = field(default_factory=S3Settings)

    # Upper bound on how long sign-out waits for the token revoke.
    sign_out_timeout_seconds: float = 3.0
    # An open chat stream with no traffic is closed after this long.
    chat_stream_idle_seconds: float = 300.0
    # Polling interval for messages posted through other worker processes.
    chat_poll_seconds: float = 5.0
    max_upload_mb: float = 10.0

    @property
    def is_production(self) -> bool:
        return self.env.lower() in PRODUCTION_ENVS


def load_settings() -> Settings:
    database_url = _getenv("DATABASE_URL")
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=database_url or PLACEHOLDER_DATABASE_URL,
        database_url_missing=not database_url,
        storage_backend=_getenv("STORAGE_BACKEND", "local").lower(),
        storage_public_base_url=_getenv("STORAGE_PUBLIC_BASE_URL"),
        storage_local_root=_getenv("STORAGE_LOCAL_ROOT"),
        s3=S3Settings.from_env(),
        sign_out_timeout_seconds=_getfloat("SIGN_OUT_TIMEOUT_SECONDS", 3.0),
        chat_stream_idle_seconds=_getfloat("CHAT_STREAM_IDLE_SECONDS", 300.0),
        chat_poll_seconds=_getfloat("CHAT_POLL_SECONDS", 5.0),
        max_upload_mb=_getfloat("MAX_UPLOAD_MB", 10.0),
    )


def load_config() -> dict:
    """Flatten ``Settings`` into Flask config keys."""
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "DATABASE_URL_MISSING": s.database_url_missing,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_PUBLIC_BASE_URL": s.storage_public_base_url,
        "STORAGE_LOCAL_ROOT": s.storage_local_root,
        "S3_ENDPOINT": s.s3.endpoint,
        "S3_REGION": s.s3.region,
        "S3_BUCKET": s.s3.bucket,
        "S3_ACCESS_KEY_ID": s.s3.access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3.secret_access_key,
        "SIGN_OUT_TIMEOUT_SECONDS": s.sign_out_timeout_seconds,
        "CHAT_STREAM_IDLE_SECONDS": s.chat_stream_idle_seconds,
        "CHAT_POLL_SECONDS": s.chat_poll_seconds,
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": s.is_production,
        "MAX_CONTENT_LENGTH": int(s.max_upload_mb * 1024 * 1024),
    }
