# ======================================
# config.py
# (Loads critical environment variables)
# ======================================
import os
from decimal import Decimal
from dotenv import load_dotenv

# Load .env when running locally
load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# ----------------------
# Sessions (issued by the identity layer, verified here)
# ----------------------
SESSION_SECRET = os.getenv("SESSION_SECRET")
if not SESSION_SECRET:
    raise RuntimeError("❌ Missing SESSION_SECRET env var")

SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", str(60 * 60 * 24 * 7)))

# ----------------------
# Wallet
# ----------------------
# Idempotency tokens are mandatory unless explicitly relaxed
REQUIRE_IDEMPOTENCY_TOKEN = _env_flag("REQUIRE_IDEMPOTENCY_TOKEN", "true")
DEFAULT_ACCESS_PRICE = Decimal(os.getenv("DEFAULT_ACCESS_PRICE", "2.00"))

# ----------------------
# Quiz listing cache
# ----------------------
QUIZ_LIST_CACHE_TTL = int(os.getenv("QUIZ_LIST_CACHE_TTL", "300"))
QUIZ_LIST_CACHE_MAXSIZE = int(os.getenv("QUIZ_LIST_CACHE_MAXSIZE", "10000"))

# ----------------------
# Database bootstrap
# ----------------------
AUTO_CREATE_TABLES = _env_flag("AUTO_CREATE_TABLES", "false")

ENVIRONMENT = os.getenv("ENVIRONMENT", "production")
