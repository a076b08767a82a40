import os
import logging
from typing import Optional

from jose import jwt, JWTError
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from models.user import User
from database import get_db

logger = logging.getLogger(__name__)

SUPABASE_PROJECT_URL = os.getenv("SUPABASE_PROJECT_URL", "").rstrip("/")
SUPABASE_JWT_AUD = os.getenv("SUPABASE_JWT_AUD", "authenticated")
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET")
if not SUPABASE_JWT_SECRET:
    raise RuntimeError("SUPABASE_JWT_SECRET is not set in environment variables")


def get_bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization")
    if not auth or not auth.lower().startswith("bearer "):
        return None
    token = auth.split(" ", 1)[1].strip()
    return token or None


def decode_supabase_token(token: str) -> dict:
    """Verify a Supabase access token. Raises JWTError when invalid or expired."""
    return jwt.decode(
        token,
        SUPABASE_JWT_SECRET,  # HS256 uses shared secret
        algorithms=["HS256"],
        audience=SUPABASE_JWT_AUD,
        issuer=f"{SUPABASE_PROJECT_URL}/auth/v1",
    )


def _get_or_create_user(db: Session, payload: dict) -> User:
    supabase_user_id = payload.get("sub")
    if not supabase_user_id:
        raise HTTPException(status_code=401, detail="Invalid auth token")

    user = db.get(User, str(supabase_user_id))
    if user:
        return user

    # Auto-create local user on first login.
    # Email can be in different places depending on Supabase config
    email = payload.get("email")
    if not email:
        email = (payload.get("user_metadata") or {}).get("email")

    if not email:
        raise HTTPException(
            status_code=400,
            detail="Cannot create user: email missing from Supabase token",
        )

    name = (payload.get("user_metadata") or {}).get("full_name")
    user = User(id=str(supabase_user_id), email=email, name=name)

    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("user_created user_id=%s", user.id)

    return user


def authenticate_request(request: Request, db: Session) -> Optional[User]:
    """Resolve the caller's user row, or None when there is no valid session."""
    token = get_bearer_token(request)
    if not token:
        return None
    try:
        payload = decode_supabase_token(token)
    except JWTError as e:
        logger.info("jwt_rejected path=%s reason=%s", request.url.path, type(e).__name__)
        return None
    if not payload.get("sub"):
        return None
    return _get_or_create_user(db, payload)


async def get_current_supabase_user(request: Request) -> dict:
    token = get_bearer_token(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")

    try:
        return decode_supabase_token(token)
    except JWTError as e:
        logger.info("jwt_rejected path=%s reason=%s", request.url.path, type(e).__name__)
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def get_current_db_user(
    db: Session = Depends(get_db),
    payload: dict = Depends(get_current_supabase_user),
) -> User:
    return _get_or_create_user(db, payload)


def get_optional_db_user(
    request: Request,
    db: Session = Depends(get_db),
) -> Optional[User]:
    return authenticate_request(request, db)
