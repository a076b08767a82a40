"""
Logging setup for the Cultivate backend.

LOG_LEVEL picks the level (INFO when unset). Output switches to one JSON
object per line when LOG_JSON=1 or when a hosted platform variable
(RAILWAY_ENVIRONMENT / VERCEL_ENV / RENDER) is present.

Log lines identify rows by id. Google tokens, OAuth codes, Stripe secrets
and emails passed through ``extra=`` are masked by ``RedactSecretsFilter``.
"""
import json
import logging
import os
import sys
from typing import Any

HOSTED_ENV_VARS = ("RAILWAY_ENVIRONMENT", "VERCEL_ENV", "RENDER")
NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "stripe")
SENSITIVE_KEYS = frozenset(
    {"access_token", "refresh_token", "code", "client_secret", "stripe_signature", "email", "authorization"}
)
MASK = "[redacted]"
PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# attributes every LogRecord carries; anything else arrived via extra=
_RECORD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}


class RedactSecretsFilter(logging.Filter):
    """Mask sensitive ``extra=`` values before any handler formats them."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key in _extra_fields(record):
            if key.lower() in SENSITIVE_KEYS:
                setattr(record, key, MASK)
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        for key, value in _extra_fields(record).items():
            if value is not None:
                entry.setdefault(key, value)
        return json.dumps(entry, default=lambda o: o.isoformat() if hasattr(o, "isoformat") else str(o))


def wants_json_logs() -> bool:
    if os.getenv("LOG_JSON", "").lower() in ("1", "true", "yes"):
        return True
    return any(os.getenv(name) for name in HOSTED_ENV_VARS)


def configure_logging() -> None:
    level = getattr(logging, (os.getenv("LOG_LEVEL") or "INFO").upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(RedactSecretsFilter())
    handler.setFormatter(JsonFormatter() if wants_json_logs() else logging.Formatter(PLAIN_FORMAT))

    root = logging.getLogger()
    root.setLevel(level)
    # uvicorn --reload calls this again; replace rather than stack handlers
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
