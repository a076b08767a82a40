# middleware/rate_limit.py
"""
slowapi limiter shared by the routers.

Callers are bucketed per Supabase user when a bearer token is present,
otherwise per client IP. Limits are env-tunable:

    RATE_LIMIT_DEFAULT   every route                 (60/minute)
    RATE_LIMIT_OAUTH     /api/gmail/auth, /api/google/combined-auth  (20/minute)
    RATE_LIMIT_UPLOAD    /api/meetings/content       (30/minute)
    RATE_LIMIT_ENABLED   0 turns the limiter off (tests)

Counters live in Redis when REDIS_URL is set so every instance shares them.
"""
import logging
import os

from fastapi import Request
from jose import JWTError, jwt
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT_DEFAULT", "60/minute")
OAUTH_RATE_LIMIT = os.getenv("RATE_LIMIT_OAUTH", "20/minute")
UPLOAD_RATE_LIMIT = os.getenv("RATE_LIMIT_UPLOAD", "30/minute")
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "1").lower() in ("1", "true", "yes")


def _bearer_subject(request: Request) -> str | None:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    try:
        # unverified: the claim only names the bucket, routes still authenticate
        return jwt.get_unverified_claims(token.strip()).get("sub")
    except JWTError:
        logger.debug("rate_limit_unparseable_token path=%s", request.url.path)
        return None


def rate_limit_key(request: Request) -> str:
    subject = _bearer_subject(request)
    if subject:
        return f"user:{subject}"
    return get_remote_address(request)


limiter = Limiter(
    key_func=rate_limit_key,
    default_limits=[DEFAULT_RATE_LIMIT],
    storage_uri=os.getenv("REDIS_URL", "memory://"),
    strategy="fixed-window",
    enabled=RATE_LIMIT_ENABLED,
)
