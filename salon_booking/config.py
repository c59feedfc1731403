import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./salon_booking.db")
# Postgres only, applied per connection
DB_STATEMENT_TIMEOUT_MS = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "3000"))

# Tenant defaults
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/Sao_Paulo")
DEFAULT_SERVICE_DURATION_MINUTES = int(os.getenv("DEFAULT_SERVICE_DURATION_MINUTES", "60"))

# Slot generation
SLOT_STEP_MINUTES = int(os.getenv("SLOT_STEP_MINUTES", "15"))
AGENT_SLOT_LIMIT = int(os.getenv("AGENT_SLOT_LIMIT", "2"))
# A requested reschedule start may drift this much from a generated slot
RESCHEDULE_SLOT_TOLERANCE_SECONDS = int(os.getenv("RESCHEDULE_SLOT_TOLERANCE_SECONDS", "60"))

# Security - CRITICAL: No default encryption key in production
TOKEN_ENCRYPTION_KEY = os.getenv("TOKEN_ENCRYPTION_KEY")
if not TOKEN_ENCRYPTION_KEY:
    import warnings

    warnings.warn(
        "TOKEN_ENCRYPTION_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION",
        RuntimeWarning,
        stacklevel=2,
    )
    TOKEN_ENCRYPTION_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

# Google Calendar OAuth Configuration
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")

# Trinks scheduling platform
TRINKS_API_BASE_URL = os.getenv("TRINKS_API_BASE_URL", "https://api.trinks.com/v1")
TRINKS_TOKEN_URL = os.getenv("TRINKS_TOKEN_URL", f"{TRINKS_API_BASE_URL}/oauth/token")
TRINKS_CLIENT_ID = os.getenv("TRINKS_CLIENT_ID")
TRINKS_CLIENT_SECRET = os.getenv("TRINKS_CLIENT_SECRET")

# External provider calls
TOKEN_REFRESH_HORIZON_MINUTES = int(os.getenv("TOKEN_REFRESH_HORIZON_MINUTES", "5"))
PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "3"))
SYNC_TIMEOUT_SECONDS = float(os.getenv("SYNC_TIMEOUT_SECONDS", "3"))
# "inline" runs sync jobs as asyncio tasks, "arq" enqueues them for the worker
SYNC_BACKEND = os.getenv("SYNC_BACKEND", "inline")

# Rate limiting (requests per window, per salon)
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
RATE_LIMIT_CREATE = int(os.getenv("RATE_LIMIT_CREATE", "10"))
RATE_LIMIT_CHECK_AVAILABILITY = int(os.getenv("RATE_LIMIT_CHECK_AVAILABILITY", "30"))
RATE_LIMIT_UPDATE = int(os.getenv("RATE_LIMIT_UPDATE", "20"))
RATE_LIMIT_CANCEL = int(os.getenv("RATE_LIMIT_CANCEL", "10"))
RATE_LIMIT_RESCHEDULE = int(os.getenv("RATE_LIMIT_RESCHEDULE", "10"))
RATE_LIMIT_CLEANUP_INTERVAL_SECONDS = int(os.getenv("RATE_LIMIT_CLEANUP_INTERVAL_SECONDS", "300"))
RATE_LIMIT_STALE_AFTER_SECONDS = int(os.getenv("RATE_LIMIT_STALE_AFTER_SECONDS", "600"))
RATE_LIMIT_USE_REDIS = os.getenv("RATE_LIMIT_USE_REDIS", "false").lower() == "true"

# Redis (rate limiter mirror + arq queue)
REDIS_URL = os.getenv("REDIS_URL")

# Frontend base URL for CORS
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
