from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.user_integration import UserIntegration
from services.onboarding import state_store

logger = logging.getLogger(__name__)

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
SITE_URL = os.getenv("SITE_URL", "http://localhost:3000").rstrip("/")
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI", f"{SITE_URL}/api/google/combined-callback")
GOOGLE_TIMEOUT_SEC = float(os.getenv("GOOGLE_TIMEOUT_SEC", "10"))

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

SCOPE_GMAIL_READONLY = "https://www.googleapis.com/auth/gmail.readonly"
SCOPE_GMAIL_MODIFY = "https://www.googleapis.com/auth/gmail.modify"
SCOPE_CALENDAR_READONLY = "https://www.googleapis.com/auth/calendar.readonly"
SCOPE_USERINFO_EMAIL = "https://www.googleapis.com/auth/userinfo.email"
SCOPE_USERINFO_PROFILE = "https://www.googleapis.com/auth/userinfo.profile"

GMAIL_SCOPES = [SCOPE_GMAIL_READONLY, SCOPE_GMAIL_MODIFY, SCOPE_USERINFO_EMAIL]
CALENDAR_SCOPES = [SCOPE_CALENDAR_READONLY, SCOPE_USERINFO_EMAIL, SCOPE_USERINFO_PROFILE]
COMBINED_SCOPES = [
    SCOPE_GMAIL_READONLY,
    SCOPE_GMAIL_MODIFY,
    SCOPE_CALENDAR_READONLY,
    SCOPE_USERINFO_EMAIL,
    SCOPE_USERINFO_PROFILE,
]

DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)


class GoogleNotConfiguredError(RuntimeError):
    """GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET are missing."""


class GoogleTokenExchangeError(RuntimeError):
    """The authorization code could not be exchanged for tokens."""


@dataclass(frozen=True)
class GoogleTokens:
    access_token: str
    refresh_token: Optional[str]
    expires_at: datetime
    scope: Optional[str] = None


def is_configured() -> bool:
    return bool(GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET)


def encode_state(user_id: str, source: str) -> str:
    return f"{user_id}|{source}"


def decode_state(state: str) -> Tuple[Optional[str], str]:
    """``userId|source`` -> (user_id, source). user_id is None when malformed."""
    user_id, _, source = (state or "").partition("|")
    user_id = user_id.strip()
    return (user_id or None), (source.strip() or "success")


def build_auth_url(
    user_id: str,
    *,
    source: str,
    scopes: List[str],
    redirect_uri: Optional[str] = None,
) -> str:
    if not is_configured():
        raise GoogleNotConfiguredError("Google OAuth credentials not configured")

    params = {
        "client_id": GOOGLE_CLIENT_ID,
        "redirect_uri": redirect_uri or GOOGLE_REDIRECT_URI,
        "response_type": "code",
        "scope": " ".join(scopes),
        "access_type": "offline",
        "prompt": "consent",
        "include_granted_scopes": "true",
        "state": encode_state(user_id, source),
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


async def exchange_code(code: str, *, redirect_uri: Optional[str] = None) -> GoogleTokens:
    if not is_configured():
        raise GoogleNotConfiguredError("Google OAuth credentials not configured")

    data = {
        "code": code,
        "client_id": GOOGLE_CLIENT_ID,
        "client_secret": GOOGLE_CLIENT_SECRET,
        "redirect_uri": redirect_uri or GOOGLE_REDIRECT_URI,
        "grant_type": "authorization_code",
    }
    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(GOOGLE_TIMEOUT_SEC)) as client:
            response = await client.post(GOOGLE_TOKEN_URL, data=data)
            response.raise_for_status()
            payload: Dict[str, Any] = response.json()
    except httpx.HTTPError as exc:
        raise GoogleTokenExchangeError(f"Token exchange failed: {type(exc).__name__}") from exc
    except ValueError as exc:
        raise GoogleTokenExchangeError("Token endpoint returned invalid JSON") from exc

    access_token = payload.get("access_token")
    if not access_token:
        raise GoogleTokenExchangeError("No access token received")

    expires_in = payload.get("expires_in")
    lifetime = timedelta(seconds=int(expires_in)) if expires_in else DEFAULT_TOKEN_LIFETIME
    return GoogleTokens(
        access_token=access_token,
        refresh_token=payload.get("refresh_token"),
        expires_at=datetime.now(timezone.utc) + lifetime,
        scope=payload.get("scope"),
    )


def upsert_integration(
    db: Session,
    *,
    user_id: str,
    integration_type: str,
    tokens: GoogleTokens,
    scopes: List[str],
    source: str,
) -> UserIntegration:
    """Insert or replace the user's integration row of this type. Commits."""
    row = (
        db.query(UserIntegration)
        .filter(UserIntegration.user_id == user_id, UserIntegration.integration_type == integration_type)
        .first()
    )
    if row is None:
        row = UserIntegration(user_id=user_id, integration_type=integration_type)
        db.add(row)

    row.access_token = tokens.access_token
    # Google only sends a refresh token on consent; keep the old one otherwise
    if tokens.refresh_token:
        row.refresh_token = tokens.refresh_token
    row.token_expires_at = tokens.expires_at
    row.scopes = list(scopes)
    row.integration_data = {
        "connected_at": datetime.now(timezone.utc).isoformat(),
        "source": source,
    }
    db.commit()
    db.refresh(row)
    return row


def store_combined_tokens(db: Session, *, user_id: str, tokens: GoogleTokens, source: str) -> Dict[str, bool]:
    """Write the gmail and google_calendar rows independently.

    Returns which halves were stored. A half that stored also flips the
    matching onboarding connection flag.
    """
    halves = (
        ("gmail", GMAIL_SCOPES, "gmail_connected"),
        ("google_calendar", CALENDAR_SCOPES, "calendar_connected"),
    )
    stored: Dict[str, bool] = {}
    for integration_type, scopes, onboarding_flag in halves:
        try:
            upsert_integration(
                db,
                user_id=user_id,
                integration_type=integration_type,
                tokens=tokens,
                scopes=scopes,
                source=source,
            )
        except SQLAlchemyError:
            db.rollback()
            logger.exception("google_integration_store_failed user_id=%s type=%s", user_id, integration_type)
            stored[integration_type] = False
            continue

        stored[integration_type] = True
        try:
            state_store.mark_connected(db, user_id, **{onboarding_flag: True})
        except SQLAlchemyError:
            # the integration row is what matters; the flag is a convenience
            db.rollback()
            logger.exception("onboarding_connection_flag_failed user_id=%s flag=%s", user_id, onboarding_flag)
    return stored
