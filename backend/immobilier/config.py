from __future__ import annotations

import os


def _load_dotenv_if_present() -> None:
    """
    Load environment variables from a local `.env` file (dev convenience).

    Production deployments should set real environment variables instead.
    """
    try:
        from dotenv import load_dotenv  # type: ignore

        # Do not override existing environment variables.
        load_dotenv(override=False)
    except ImportError:
        return


# Load .env as early as possible (dev only).
_load_dotenv_if_present()


DEFAULT_ADMIN_PASSWORD = "Admin@123"


def _int_env(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    try:
        return int(raw or str(default))
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = (os.environ.get(name) or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def database_url() -> str:
    url = os.environ.get("DATABASE_URL") or "sqlite:///./local.db"
    # Some managed providers still supply `postgres://...` which SQLAlchemy treats as invalid.
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def is_local_dev() -> bool:
    """
    We treat the app as "local dev" when DATABASE_URL is not set, because
    `database_url()` falls back to sqlite in that case.
    """
    return not (os.environ.get("DATABASE_URL") or "").strip()


def app_env() -> str:
    """
    Application environment marker:
    - local (default when running with sqlite fallback)
    - staging
    - prod
    """
    raw = (os.environ.get("APP_ENV") or "").strip().lower()
    if raw:
        return raw
    return "local" if is_local_dev() else "prod"


def allowed_hosts() -> list[str]:
    """
    Comma-separated list for TrustedHost middleware.
    Example: ALLOWED_HOSTS=api.example.com,example.com
    """
    raw = (os.environ.get("ALLOWED_HOSTS") or "").strip()
    if not raw:
        return ["*"]
    hosts = [h.strip() for h in raw.split(",") if h.strip()]
    return hosts or ["*"]


def cors_origins() -> list[str]:
    """
    The web UI is served from a different origin in dev (React dev server).
    Configure with env `CORS_ORIGINS` as a comma-separated list.
    """
    raw = (os.environ.get("CORS_ORIGINS") or "").strip()
    if raw:
        return [o.strip() for o in raw.split(",") if o.strip()]
    return [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:8081",
    ]


def uploads_dir() -> str:
    return os.environ.get("UPLOADS_DIR") or os.path.join(os.path.dirname(__file__), "..", "uploads")


def max_upload_image_bytes() -> int:
    # Default: 10 MB per photo.
    return _int_env("MAX_UPLOAD_IMAGE_BYTES", 10_000_000)


def max_photos_per_property() -> int:
    return _int_env("MAX_PHOTOS_PER_PROPERTY", 20)


# -----------------------
# Sessions
# -----------------------
def session_cookie_name() -> str:
    return (os.environ.get("SESSION_COOKIE_NAME") or "immo_session").strip() or "immo_session"


def session_cookie_secure() -> bool:
    # Browsers drop Secure cookies over plain http, so only default to Secure outside local dev.
    return _bool_env("SESSION_COOKIE_SECURE", app_env() not in {"local", "dev", "test"})


def session_ttl_hours() -> int:
    v = _int_env("SESSION_TTL_HOURS", 24)
    return max(1, v)


def login_rate_limit() -> int:
    """
    Max failed login attempts per client address per minute.
    """
    return max(1, _int_env("LOGIN_RATE_LIMIT", 10))


def trust_proxy_headers() -> bool:
    # Only enable behind a reverse proxy that overwrites X-Forwarded-For; clients can forge it otherwise.
    return _bool_env("TRUST_PROXY_HEADERS", False)


# -----------------------
# Seeded administrator
# -----------------------
def admin_email() -> str:
    return (os.environ.get("ADMIN_EMAIL") or "admin@local").strip().lower()


def admin_password() -> str:
    return (os.environ.get("ADMIN_PASSWORD") or DEFAULT_ADMIN_PASSWORD).strip()


def enforce_secure_secrets() -> None:
    """
    Fail-fast in production if dangerous defaults are still in use.
    """
    if app_env() in {"prod", "production"}:
        if admin_password() == DEFAULT_ADMIN_PASSWORD:
            raise RuntimeError("ADMIN_PASSWORD must be set in production (default dev password detected)")


def bcrypt_rounds() -> int:
    # bcrypt accepts 4..31; tests lower this to keep hashing fast.
    return min(31, max(4, _int_env("BCRYPT_ROUNDS", 12)))
