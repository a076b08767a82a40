from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from database import get_db
from models.user import User
from schemas.feature_flags import (
    FeatureFlagCreate,
    FeatureFlagOut,
    FeatureFlagUpdate,
    FeatureFlagWithCount,
    ResolvedFlagOut,
)
from services.admin_guard import require_admin
from services.audit_logger import admin_transaction, log_admin_action
from services.feature_flag_service import (
    DuplicateFlagError,
    create_flag,
    delete_flag,
    get_flag,
    list_flags,
    toggle_flag,
    update_flag,
)
from services.flag_resolver import FlagNotFoundError, resolve, resolve_all
from services.sync.change_feed import publish_change
from utils.errors import Conflict, NotFound, ValidationFailed
from utils.request_body import read_json_body

logger = logging.getLogger(__name__)

router = APIRouter()


def _flag_json(flag) -> dict:
    return FeatureFlagOut.model_validate(flag).model_dump(mode="json")


@router.get("")
def list_feature_flags(request: Request, db: Session = Depends(get_db)):
    guard = require_admin(request, db)
    if not guard.is_admin:
        return guard.response

    with admin_transaction(db, "LIST_FEATURE_FLAGS"):
        rows = list_flags(db)
        flags = [
            FeatureFlagWithCount(
                **FeatureFlagOut.model_validate(flag).model_dump(),
                override_count=count,
            ).model_dump(mode="json")
            for flag, count in rows
        ]
        log_admin_action(
            db, guard.user.id, "LIST_FEATURE_FLAGS", "feature_flags",
            details={"count": len(flags)}, request=request,
        )
    return {"flags": flags}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_feature_flag(request: Request, db: Session = Depends(get_db)):
    guard = require_admin(request, db)
    if not guard.is_admin:
        return guard.response

    payload = await read_json_body(request, FeatureFlagCreate)
    with admin_transaction(db, "CREATE_FEATURE_FLAG"):
        try:
            flag = create_flag(
                db,
                name=payload.name,
                description=payload.description,
                enabled_globally=payload.enabled_globally,
            )
        except DuplicateFlagError as exc:
            raise Conflict(str(exc))
        log_admin_action(
            db, guard.user.id, "CREATE_FEATURE_FLAG", "feature_flags",
            resource_id=flag.id,
            details={
                "name": flag.name,
                "description": flag.description,
                "enabled_globally": flag.enabled_globally,
            },
            request=request,
        )

    db.refresh(flag)
    publish_change("feature_flags", "INSERT", row_id=flag.id)
    logger.info("feature_flag_created flag=%s admin_user_id=%s", flag.name, guard.user.id)
    return JSONResponse(status_code=status.HTTP_201_CREATED, content={"flag": _flag_json(flag)})


# Registered before /{flag_id} so "resolve" is not taken for an id.
@router.get("/resolve")
def resolve_feature_flag(
    request: Request,
    name: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    guard = require_admin(request, db)
    if not guard.is_admin:
        return guard.response

    if not name or not user_id:
        raise ValidationFailed("name and user_id are required")

    with admin_transaction(db, "RESOLVE_FEATURE_FLAGS"):
        if db.get(User, user_id) is None:
            raise NotFound("User not found")
        try:
            enabled = resolve(db, name, user_id, strict=True)
        except FlagNotFoundError as exc:
            raise NotFound(str(exc))
        log_admin_action(
            db, guard.user.id, "RESOLVE_FEATURE_FLAGS", "feature_flags",
            details={"user_id": user_id, "flag_name": name}, request=request,
        )
    return {"name": name, "user_id": user_id, "enabled": enabled}


@router.get("/{flag_id}")
def get_feature_flag(flag_id: str, request: Request, db: Session = Depends(get_db)):
    guard = require_admin(request, db)
    if not guard.is_admin:
        return guard.response

    with admin_transaction(db, "VIEW_FEATURE_FLAG"):
        try:
            flag = get_flag(db, flag_id)
        except FlagNotFoundError as exc:
            raise NotFound(str(exc))
        log_admin_action(
            db, guard.user.id, "VIEW_FEATURE_FLAG", "feature_flags",
            resource_id=flag.id, details={"name": flag.name}, request=request,
        )
        body = {"flag": _flag_json(flag)}
    return body


@router.put("/{flag_id}")
async def update_feature_flag(flag_id: str, request: Request, db: Session = Depends(get_db)):
    guard = require_admin(request, db)
    if not guard.is_admin:
        return guard.response

    payload = await read_json_body(request, FeatureFlagUpdate)
    changes = payload.model_dump(exclude_unset=True)
    with admin_transaction(db, "UPDATE_FEATURE_FLAG"):
        try:
            flag, before, after = update_flag(db, flag_id, changes)
        except FlagNotFoundError as exc:
            raise NotFound(str(exc))
        except DuplicateFlagError as exc:
            raise Conflict(str(exc))
        log_admin_action(
            db, guard.user.id, "UPDATE_FEATURE_FLAG", "feature_flags",
            resource_id=flag.id,
            details={"name": flag.name, "before": before, "after": after},
            request=request,
        )

    db.refresh(flag)
    if after:
        publish_change("feature_flags", "UPDATE", row_id=flag.id)
    return {"flag": _flag_json(flag)}


@router.post("/{flag_id}/toggle")
def toggle_feature_flag(flag_id: str, request: Request, db: Session = Depends(get_db)):
    guard = require_admin(request, db)
    if not guard.is_admin:
        return guard.response

    with admin_transaction(db, "TOGGLE_FEATURE_FLAG"):
        try:
            flag, previous = toggle_flag(db, flag_id)
        except FlagNotFoundError as exc:
            raise NotFound(str(exc))
        log_admin_action(
            db, guard.user.id, "TOGGLE_FEATURE_FLAG", "feature_flags",
            resource_id=flag.id,
            details={"name": flag.name, "from": previous, "to": flag.enabled_globally},
            request=request,
        )

    db.refresh(flag)
    publish_change("feature_flags", "UPDATE", row_id=flag.id)
    return {"flag": _flag_json(flag)}


@router.delete("/{flag_id}")
def delete_feature_flag(flag_id: str, request: Request, db: Session = Depends(get_db)):
    guard = require_admin(request, db)
    if not guard.is_admin:
        return guard.response

    with admin_transaction(db, "DELETE_FEATURE_FLAG"):
        try:
            snapshot = delete_flag(db, flag_id)
        except FlagNotFoundError as exc:
            raise NotFound(str(exc))
        log_admin_action(
            db, guard.user.id, "DELETE_FEATURE_FLAG", "feature_flags",
            resource_id=flag_id, details=snapshot, request=request,
        )

    publish_change("feature_flags", "DELETE", row_id=flag_id)
    logger.info("feature_flag_deleted flag=%s admin_user_id=%s", snapshot["name"], guard.user.id)
    return {"message": "Feature flag deleted successfully"}


# Mounted separately under /api/admin/users
users_router = APIRouter()


@users_router.get("/{user_id}/feature-flags")
def get_user_feature_flags(user_id: str, request: Request, db: Session = Depends(get_db)):
    guard = require_admin(request, db)
    if not guard.is_admin:
        return guard.response

    with admin_transaction(db, "RESOLVE_FEATURE_FLAGS"):
        if db.get(User, user_id) is None:
            raise NotFound("User not found")
        flags = [ResolvedFlagOut(**f.to_dict()).model_dump() for f in resolve_all(db, user_id)]
        log_admin_action(
            db, guard.user.id, "RESOLVE_FEATURE_FLAGS", "users",
            resource_id=user_id, details={"user_id": user_id}, request=request,
        )
    return {"user_id": user_id, "flags": flags}
