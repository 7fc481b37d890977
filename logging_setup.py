# ===============================================================
# logging_setup.py
# ===============================================================
import logging
import os
import sys
import re
import sentry_sdk

# ------------------------------------------------
# Environment & log level
# ------------------------------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, LOG_LEVEL, logging.INFO)
SENTRY_DSN = os.getenv("SENTRY_DSN")  # optional, leave empty if not using
ENVIRONMENT = os.getenv("ENVIRONMENT", "production")

# ------------------------------------------------
# 🔒 Secret Filter to hide tokens / API keys
# ------------------------------------------------
class SecretFilter(logging.Filter):
    BEARER_PATTERN = re.compile(r"(Bearer\s+)[A-Za-z0-9._-]{16,}", re.IGNORECASE)
    KEY_PATTERN = re.compile(
        r"((?:secret|token|key|password|dsn)[^\s=:'\"]*['\"]?[:=]\s*['\"]?)([\w.-]+)(['\"]?)",
        re.IGNORECASE
    )

    def _scrub(self, value: str) -> str:
        value = self.BEARER_PATTERN.sub(r"\1[SECRET]", value)
        return self.KEY_PATTERN.sub(r"\1[REDACTED]\3", value)

    def _scrub_arg(self, value):
        # Non-string args keep their type so %d / %f placeholders still format
        return self._scrub(value) if isinstance(value, str) else value

    def filter(self, record):
        record.msg = self._scrub(str(record.msg))
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._scrub_arg(v) for k, v in record.args.items()}
            else:
                record.args = tuple(self._scrub_arg(a) for a in record.args)
        return True

# ------------------------------------------------
# Configure root logger
# ------------------------------------------------
formatter = logging.Formatter(
    "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    "%Y-%m-%d %H:%M:%S",
)
handler = logging.StreamHandler(sys.stdout)
handler.setFormatter(formatter)
handler.addFilter(SecretFilter())

root = logging.getLogger()
root.setLevel(numeric_level)
if not any(getattr(h, "_think2win", False) for h in root.handlers):
    handler._think2win = True
    root.addHandler(handler)

logger = logging.getLogger("think2win")

# ------------------------------------------------
# Ensure uvicorn/gunicorn logs flow through this formatter
# ------------------------------------------------
for noisy in ("uvicorn", "uvicorn.error", "uvicorn.access",
              "gunicorn", "gunicorn.error", "gunicorn.access"):
    logging.getLogger(noisy).handlers = []
    logging.getLogger(noisy).propagate = True

# ------------------------------------------------
# Optional: Initialize Sentry
# ------------------------------------------------
if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        traces_sample_rate=1.0,
        environment=ENVIRONMENT,
    )

logger.info("✅ Secure logger initialized (tokens masked from output).")
