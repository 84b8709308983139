# backend/conversly/config.py
import os
from pathlib import Path
from dotenv import load_dotenv
from urllib.parse import quote_plus

BACKEND_DIR = Path(__file__).resolve().parents[1]   # backend/
REPO_DIR = BACKEND_DIR.parent                        # repo root

ENV_BACKEND = BACKEND_DIR / ".env"
ENV_REPO = REPO_DIR / ".env"
ENV_FILE = ENV_BACKEND if ENV_BACKEND.exists() else ENV_REPO

load_dotenv(dotenv_path=str(ENV_FILE))


def _build_database_url() -> str:
    """Use DATABASE_URL directly, build a PostgreSQL URL from DB_* parts, or fall back to SQLite."""
    direct_url = os.getenv("DATABASE_URL")
    if direct_url:
        return direct_url

    host = os.getenv("DB_HOST")
    if not host:
        return "sqlite:///./conversly.db"

    port = os.getenv("DB_PORT", "5432")
    user = os.getenv("DB_USER", "postgres")
    password = quote_plus(os.getenv("DB_PASSWORD", ""))
    db = os.getenv("DB_NAME", "postgres")
    return f"postgresql://{user}:{password}@{host}:{port}/{db}"


def _parse_origins(raw: str) -> list[str]:
    out = []
    for o in (raw or "").split(","):
        o = (o or "").strip().rstrip("/")
        if o:
            out.append(o)
    return out


class Settings:
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    DATABASE_URL: str = _build_database_url()

    # "database" (SQLAlchemy) or "memory" (demo mode, nothing survives a restart)
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "database").strip().lower()

    # ================= ElevenLabs Configuration =================
    ELEVENLABS_API_KEY: str | None = os.getenv("ELEVENLABS_API_KEY")

    # Agent used when the browser does not pick a persona
    ELEVENLABS_AGENT_ID: str = os.getenv("ELEVENLABS_AGENT_ID", "agent_01jyfb9fh8f67agfzvv09tvg3t")

    # Shared secret for post-call webhooks; unset means signatures are not checked
    ELEVENLABS_WEBHOOK_SECRET: str | None = os.getenv("ELEVENLABS_WEBHOOK_SECRET")

    WEBHOOK_MAX_AGE_SECONDS: int = int(os.getenv("WEBHOOK_MAX_AGE_SECONDS", str(30 * 60)))
    WEBHOOK_MAX_SKEW_SECONDS: int = int(os.getenv("WEBHOOK_MAX_SKEW_SECONDS", str(5 * 60)))

    # ================= Scoring (OpenAI) Configuration =================
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    ANALYSIS_TIMEOUT_SECONDS: float = float(os.getenv("ANALYSIS_TIMEOUT_SECONDS", "60"))

    # IMPORTANT: keep localhost + 127.0.0.1 for Vite dev
    CORS_ORIGINS: list[str] = _parse_origins(
        os.getenv(
            "CORS_ORIGINS",
            "http://127.0.0.1:5173,http://localhost:5173,http://127.0.0.1:5000,http://localhost:5000",
        )
    )

    # MVP: every request acts as this user
    DEMO_USER_EMAIL: str = os.getenv("DEMO_USER_EMAIL", "demo@conversly.com")

    SSE_KEEPALIVE_SECONDS: float = float(os.getenv("SSE_KEEPALIVE_SECONDS", "15"))


settings = Settings()


# =============================================================================
# CONFIGURATION VALIDATION
# =============================================================================

class ConfigValidationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def validate_config(raise_on_error: bool = True) -> dict:
    """
    Validate configuration settings.

    Args:
        raise_on_error: If True, raises ConfigValidationError on critical errors.
                       If False, returns dict with errors and warnings.

    Returns:
        Dict with 'errors' (critical) and 'warnings' (non-critical) lists.
    """
    errors = []
    warnings = []

    if settings.STORAGE_BACKEND not in ("database", "memory"):
        errors.append(f"STORAGE_BACKEND must be 'database' or 'memory', got '{settings.STORAGE_BACKEND}'")
    if settings.STORAGE_BACKEND == "database" and not settings.DATABASE_URL:
        errors.append("DATABASE_URL is required when STORAGE_BACKEND=database")

    if not settings.ELEVENLABS_API_KEY:
        warnings.append("ELEVENLABS_API_KEY missing - signed session URLs unavailable")
    if not settings.OPENAI_API_KEY:
        warnings.append("OPENAI_API_KEY missing - conversation analysis will fail")
    if not settings.ELEVENLABS_WEBHOOK_SECRET:
        warnings.append("ELEVENLABS_WEBHOOK_SECRET missing - webhook signature verification disabled")

    if settings.ENVIRONMENT == "production":
        if settings.STORAGE_BACKEND == "memory":
            warnings.append("STORAGE_BACKEND=memory in production - data is lost on restart")
        if settings.DATABASE_URL.startswith("sqlite"):
            warnings.append("SQLite DATABASE_URL in production - consider PostgreSQL")
        if not settings.CORS_ORIGINS or any("localhost" in o for o in settings.CORS_ORIGINS):
            warnings.append("CORS_ORIGINS includes localhost in production - consider restricting")

    result = {"errors": errors, "warnings": warnings}

    if raise_on_error and errors:
        raise ConfigValidationError(f"Configuration errors: {'; '.join(errors)}")

    return result


def get_config_status() -> dict:
    """Configuration presence flags for the health endpoint. Never includes secret values."""
    return {
        "environment": settings.ENVIRONMENT,
        "storage_backend": settings.STORAGE_BACKEND,
        "database_configured": bool(settings.DATABASE_URL),
        "elevenlabs_configured": bool(settings.ELEVENLABS_API_KEY),
        "openai_configured": bool(settings.OPENAI_API_KEY),
        "webhook_security_enabled": bool(settings.ELEVENLABS_WEBHOOK_SECRET),
    }
