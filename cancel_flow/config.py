"""Cancel Flow configuration — loaded from environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv

REPO_ROOT = Path(__file__).resolve().parent.parent

load_dotenv(REPO_ROOT / ".env")


def _flag(name: str, default: str = "true") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


def _floats(name: str, default: str) -> tuple[float, ...]:
    return tuple(float(v) for v in os.environ.get(name, default).split(",") if v.strip())


# Application
APP_NAME = os.environ.get("APP_NAME", "Migrate Mate")
APP_VERSION = os.environ.get("APP_VERSION", "1.0.0")
APP_ENV = os.environ.get("APP_ENV", "development")

# Supabase
SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
SUPABASE_SERVICE_KEY = os.environ.get("SUPABASE_SERVICE_KEY", "")

# Feature flags
ENABLE_AB_TESTING = _flag("ENABLE_AB_TESTING")
ENABLE_ANALYTICS = _flag("ENABLE_ANALYTICS")

# Pricing (integer cents)
DEFAULT_MONTHLY_PRICE = int(os.environ.get("DEFAULT_MONTHLY_PRICE", "2500"))
DOWNSELL_DISCOUNT_AMOUNT = int(os.environ.get("DOWNSELL_DISCOUNT_AMOUNT", "1000"))

# Share of users assigned to variant A (0-1). 0.5 means byte < 128 -> A.
AB_TEST_SPLIT = float(os.environ.get("AB_TEST_SPLIT", "0.5"))

# Form validation
MIN_FEEDBACK_LENGTH = int(os.environ.get("MIN_FEEDBACK_LENGTH", "25"))
MAX_FEEDBACK_LENGTH = int(os.environ.get("MAX_FEEDBACK_LENGTH", "1000"))

# Payment stub
PAYMENT_STUB_DELAY_SECONDS = float(os.environ.get("PAYMENT_STUB_DELAY_SECONDS", "1.0"))
PAYMENT_STUB_SUCCESS_RATE = float(os.environ.get("PAYMENT_STUB_SUCCESS_RATE", "0.95"))

# Daily ETL schedule (UTC)
ETL_HOUR = int(os.environ.get("ETL_HOUR", "2"))
ETL_MINUTE = int(os.environ.get("ETL_MINUTE", "0"))
EVENT_RETENTION_DAYS = int(os.environ.get("EVENT_RETENTION_DAYS", "90"))

# Revenue assumptions used by the rollups (cents)
REVENUE_PER_CANCELLATION = int(os.environ.get("REVENUE_PER_CANCELLATION", "2500"))
REVENUE_SAVED_PER_DOWNSELL = int(os.environ.get("REVENUE_SAVED_PER_DOWNSELL", "1500"))

# Cohort placeholders: not measured retention, fixed rates applied to cohort size
COHORT_RETENTION_RATES = _floats("COHORT_RETENTION_RATES", "0.85,0.75,0.70")
COHORT_MRR_PER_USER = int(os.environ.get("COHORT_MRR_PER_USER", "25"))

# Insight thresholds (naive deltas, not a significance test)
INSIGHT_CONVERSION_DELTA = float(os.environ.get("INSIGHT_CONVERSION_DELTA", "10"))
INSIGHT_REVENUE_MULTIPLIER = float(os.environ.get("INSIGHT_REVENUE_MULTIPLIER", "1.5"))
INSIGHT_AB_DELTA = float(os.environ.get("INSIGHT_AB_DELTA", "5"))
INSIGHT_AB_MIN_USERS = int(os.environ.get("INSIGHT_AB_MIN_USERS", "30"))

# Bearer token for operator endpoints (manual ETL trigger)
ADMIN_SECRET = os.environ.get("ADMIN_SECRET", "")

# Open wizard sessions kept in memory: idle ones expire, the oldest go first at the cap
SESSION_TTL_SECONDS = int(os.environ.get("SESSION_TTL_SECONDS", "1800"))
MAX_SESSIONS = int(os.environ.get("MAX_SESSIONS", "1000"))

# Server
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "8000"))
