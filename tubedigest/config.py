"""
Application configuration from environment variables.

In development the project-root .env is loaded first (python-dotenv), so the
values below see it; production sets env vars directly.
Validates critical secrets at module load; missing values raise RuntimeError.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

from tubedigest.errors import SELECTION_LIMIT

# Environment: development | production (affects .env loading, key fallback)
ENV = os.getenv("ENV", "development").lower()

if ENV == "development":
    load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# --- Required (raise if missing) ---
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI")
JWT_SECRET = os.getenv("JWT_SECRET")

for name, val in [
    ("GOOGLE_CLIENT_ID", GOOGLE_CLIENT_ID),
    ("GOOGLE_CLIENT_SECRET", GOOGLE_CLIENT_SECRET),
    ("GOOGLE_REDIRECT_URI", GOOGLE_REDIRECT_URI),
    ("JWT_SECRET", JWT_SECRET),
]:
    if not val or not str(val).strip():
        raise RuntimeError(f"Required env var {name} is missing or empty")

JWT_ALGORITHM = "HS256"


def _int_env(key: str, default: int, minimum: int = 1) -> int:
    try:
        return max(minimum, int(os.getenv(key, str(default))))
    except ValueError:
        return default


# --- Optional with defaults ---
# Frontend URL for post-login redirect; cookie is set by backend, no token in URL
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")

# Session cookie: JWT lifetime and cookie max_age should match (24 hours)
JWT_COOKIE_NAME = os.getenv("JWT_COOKIE_NAME", "session")
JWT_COOKIE_MAX_AGE = _int_env("JWT_COOKIE_MAX_AGE", 86400, minimum=60)

# OAuth CSRF: cookie name for state parameter, short-lived
OAUTH_STATE_COOKIE_NAME = os.getenv("OAUTH_STATE_COOKIE_NAME", "oauth_state")
OAUTH_STATE_MAX_AGE = 600  # 10 minutes

# Scopes requested at consent; youtube.readonly is needed for subscriptions.list
GOOGLE_OAUTH_SCOPES = (
    "openid",
    "email",
    "profile",
    "https://www.googleapis.com/auth/youtube.readonly",
)

# AES-256-GCM key for OAuth tokens at rest: 64 hex chars (32 bytes).
# Unset in development derives a fixed dev key (see crypto.load_key).
TOKEN_ENC_KEY = os.getenv("TOKEN_ENC_KEY")

# Hard cap on channels a user may select for digests (an invariant, not a tunable)
MAX_SELECTED_CHANNELS = SELECTION_LIMIT

# YouTube Data API
YOUTUBE_MAX_RESULTS = min(50, _int_env("YOUTUBE_MAX_RESULTS", 50))
YOUTUBE_REQUEST_TIMEOUT = (5, 30)  # connect 5s, read 30s
GOOGLE_REQUEST_TIMEOUT = (5, 30)

# Refresh access tokens that expire within this window
TOKEN_REFRESH_LEEWAY_SECONDS = 300

# Secure cookie flag (set True in production over HTTPS)
SECURE_COOKIES = os.getenv("SECURE_COOKIES", "false").lower() in ("1", "true", "yes")

# Database URL (SQLite default; use Postgres URL in production)
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./tubedigest.db")

# Skip create_all at startup (set in production when using Alembic migrations)
SKIP_DB_INIT = os.getenv("SKIP_DB_INIT", "false").lower() in ("1", "true", "yes")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
