import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinicbook.db")

# Per-statement bound for persistence calls (PostgreSQL only). 0 disables it.
DB_STATEMENT_TIMEOUT_MS = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "5000"))

# PII encryption - both values are base64 encoded and supplied by the operator.
# Generate with: python -c "import os, base64; print(base64.b64encode(os.urandom(32)).decode())"
ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY")
SEARCH_PEPPER = os.getenv("SEARCH_PEPPER")
if not ENCRYPTION_KEY or not SEARCH_PEPPER:
    import warnings

    warnings.warn(
        "ENCRYPTION_KEY or SEARCH_PEPPER not set! Patient data cannot be stored until both are configured",
        RuntimeWarning,
        stacklevel=2,
    )

# Rate limiting
# "database" keeps counters in the rate_limits table, "redis" uses REDIS_URL / REDIS_HOST
RATE_LIMIT_BACKEND = os.getenv("RATE_LIMIT_BACKEND", "database").lower()
BOOKING_RATE_LIMIT = int(os.getenv("BOOKING_RATE_LIMIT", "5"))
BOOKING_RATE_WINDOW_SECONDS = int(os.getenv("BOOKING_RATE_WINDOW_SECONDS", str(15 * 60)))
CONTACT_RATE_LIMIT = int(os.getenv("CONTACT_RATE_LIMIT", "5"))
CONTACT_RATE_WINDOW_SECONDS = int(os.getenv("CONTACT_RATE_WINDOW_SECONDS", str(60 * 60)))

# Availability
SLOT_GRANULARITY_MINUTES = int(os.getenv("SLOT_GRANULARITY_MINUTES", "10"))
FIRST_AVAILABLE_MAX_WEEKS = int(os.getenv("FIRST_AVAILABLE_MAX_WEEKS", "8"))

# Staff endpoints (block time, cancellation, decrypted details) require this key
STAFF_API_KEY = os.getenv("STAFF_API_KEY")

# Frontend origins allowed by CORS
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000"
).split(",")
