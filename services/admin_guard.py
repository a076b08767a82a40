"""
Admin authorization guard.

Usage in a route:

    guard = require_admin(request, db)
    if not guard.is_admin:
        return guard.response
    admin = guard.user

The guard is called explicitly, once per request, before the body is parsed,
so a non-admin caller never reaches validation or any write.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Union

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.user import User
from services.supabase_auth import authenticate_request

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdminGranted:
    user: User
    is_admin: Literal[True] = True


@dataclass(frozen=True)
class AdminDenied:
    response: JSONResponse
    reason: str
    is_admin: Literal[False] = False


AdminCheckResult = Union[AdminGranted, AdminDenied]


def _deny(status_code: int, error: str, reason: str) -> AdminDenied:
    return AdminDenied(
        response=JSONResponse(status_code=status_code, content={"error": error}),
        reason=reason,
    )


def require_admin(request: Request, db: Session) -> AdminCheckResult:
    try:
        user = authenticate_request(request, db)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("admin_check_failed path=%s", request.url.path)
        return _deny(500, "Internal server error", "database_error")
    except HTTPException:
        # e.g. token without an email for a first-time user
        logger.warning("admin_check_unauthenticated path=%s", request.url.path)
        return _deny(401, "Authentication required", "unauthorized")

    if user is None:
        return _deny(401, "Authentication required", "unauthorized")

    if not user.is_admin:
        logger.warning("admin_access_denied user_id=%s path=%s", user.id, request.url.path)
        return _deny(403, "Admin access required", "forbidden")

    return AdminGranted(user=user)
