"""
Google OAuth for Gmail and Calendar.

``/api/gmail/auth`` and ``/api/google/combined-auth`` hand the client a consent
URL whose ``state`` is ``userId|source``. The provider sends the user back to
``/api/google/combined-callback``, which exchanges the code and stores one
integration row per product, then redirects to the page the flow started on.
"""
import logging
from typing import Dict, List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from database import get_db
from middleware.rate_limit import OAUTH_RATE_LIMIT, limiter
from models.user import User
from services import google_oauth_service as google
from services.supabase_auth import authenticate_request
from services.sync.change_feed import publish_change
from utils.errors import Unauthorized, UpstreamError

logger = logging.getLogger(__name__)

gmail_router = APIRouter()
router = APIRouter()


def _resolve_user(request: Request, db: Session, user_id: Optional[str]) -> User:
    # session first; the user_id fallback only names an existing account
    user = authenticate_request(request, db)
    if user is None and user_id:
        user = db.get(User, user_id)
    if user is None:
        raise Unauthorized("User not authenticated. Please try again.")
    return user


def _auth_url(user: User, *, source: str, scopes: List[str], redirect_uri: Optional[str] = None) -> Dict[str, str]:
    try:
        url = google.build_auth_url(user.id, source=source, scopes=scopes, redirect_uri=redirect_uri)
    except google.GoogleNotConfiguredError:
        logger.error("google_oauth_not_configured")
        raise UpstreamError("Gmail integration not configured")
    logger.info("google_auth_url_issued user_id=%s source=%s scopes=%d", user.id, source, len(scopes))
    return {"authUrl": url}


@gmail_router.get("/auth")
@limiter.limit(OAUTH_RATE_LIMIT)
def gmail_auth(
    request: Request,
    source: str = Query("dashboard"),
    redirect_uri: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    user = _resolve_user(request, db, user_id)
    return _auth_url(user, source=source, scopes=google.GMAIL_SCOPES, redirect_uri=redirect_uri)


@router.get("/combined-auth")
@limiter.limit(OAUTH_RATE_LIMIT)
def combined_auth(
    request: Request,
    source: str = Query("success"),
    user_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    user = _resolve_user(request, db, user_id)
    return _auth_url(user, source=source, scopes=google.COMBINED_SCOPES)


# ─── Callback ────────────────────────────────────────────────────

def landing_url(source: Optional[str], **params: str) -> str:
    page = "onboarding" if source == "onboarding" else "success"
    url = f"{google.SITE_URL}/{page}"
    return f"{url}?{urlencode(params)}" if params else url


def _redirect(source: Optional[str], **params: str) -> RedirectResponse:
    return RedirectResponse(landing_url(source, **params), status_code=307)


@router.get("/combined-callback")
async def combined_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    if error:
        logger.warning("google_oauth_denied error=%s", error)
        return _redirect(None, error="oauth_denied")
    if not code or not state:
        return _redirect(None, error="invalid_callback")

    user_id, source = google.decode_state(state)
    if not user_id or db.get(User, user_id) is None:
        logger.warning("google_oauth_invalid_state user_id=%s", user_id)
        return _redirect(None, error="invalid_state")

    try:
        tokens = await google.exchange_code(code)
    except (google.GoogleTokenExchangeError, google.GoogleNotConfiguredError):
        logger.exception("google_token_exchange_failed user_id=%s", user_id)
        return _redirect(source, error="callback_error")

    stored = google.store_combined_tokens(db, user_id=user_id, tokens=tokens, source=source)
    if any(stored.values()):
        publish_change("onboarding_state", "UPDATE", user_id=user_id)

    if all(stored.values()):
        logger.info("google_connected user_id=%s source=%s", user_id, source)
        return _redirect(source, connected="gmail_calendar")
    if not any(stored.values()):
        return _redirect(source, error="storage_failed")

    half = "gmail" if stored.get("gmail") else "google_calendar"
    logger.warning("google_partial_connection user_id=%s connected=%s", user_id, half)
    return _redirect(source, connected=half, warning="partial_connection")
