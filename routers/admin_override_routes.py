from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from database import get_db
from schemas.feature_flags import UserOverrideCreate, UserOverrideOut, UserOverrideUpdate
from services.admin_guard import require_admin
from services.audit_logger import admin_transaction, log_admin_action
from services.feature_flag_service import (
    OverrideNotFoundError,
    UserNotFoundError,
    delete_override,
    list_overrides,
    set_override_enabled,
    upsert_override,
)
from services.flag_resolver import FlagNotFoundError
from services.sync.change_feed import publish_change
from utils.errors import NotFound
from utils.request_body import read_json_body

router = APIRouter()

RESOURCE = "user_feature_overrides"


def _override_json(override) -> dict:
    return UserOverrideOut.model_validate(override).model_dump(mode="json")


@router.get("")
def list_user_overrides(
    request: Request,
    user_id: Optional[str] = Query(None),
    feature_flag_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    guard = require_admin(request, db)
    if not guard.is_admin:
        return guard.response

    with admin_transaction(db, "LIST_USER_OVERRIDES"):
        overrides = [
            _override_json(o)
            for o in list_overrides(db, user_id=user_id, feature_flag_id=feature_flag_id)
        ]
        log_admin_action(
            db, guard.user.id, "LIST_USER_OVERRIDES", RESOURCE,
            details={
                "filters": {"user_id": user_id, "feature_flag_id": feature_flag_id},
                "count": len(overrides),
            },
            request=request,
        )
    return {"overrides": overrides}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user_override(request: Request, db: Session = Depends(get_db)):
    guard = require_admin(request, db)
    if not guard.is_admin:
        return guard.response

    payload = await read_json_body(request, UserOverrideCreate)
    with admin_transaction(db, "CREATE_USER_OVERRIDE"):
        try:
            override, previous = upsert_override(
                db,
                user_id=payload.user_id,
                feature_flag_id=payload.feature_flag_id,
                enabled=payload.enabled,
            )
        except (UserNotFoundError, FlagNotFoundError) as exc:
            raise NotFound(str(exc))

        base = {
            "user_id": override.user_id,
            "user_email": override.user.email,
            "flag_name": override.flag.name,
            "enabled": override.enabled,
        }
        if previous is None:
            action, details = "CREATE_USER_OVERRIDE", base
        else:
            action, details = "UPDATE_USER_OVERRIDE", {**base, "previous_enabled": previous}
        log_admin_action(
            db, guard.user.id, action, RESOURCE,
            resource_id=override.id, details=details, request=request,
        )
        body = {"override": _override_json(override)}

    publish_change(
        RESOURCE,
        "INSERT" if previous is None else "UPDATE",
        user_id=body["override"]["user_id"],
        row_id=body["override"]["id"],
    )
    return JSONResponse(
        status_code=status.HTTP_201_CREATED if previous is None else status.HTTP_200_OK,
        content=body,
    )


@router.put("/{override_id}")
async def update_user_override(override_id: str, request: Request, db: Session = Depends(get_db)):
    guard = require_admin(request, db)
    if not guard.is_admin:
        return guard.response

    payload = await read_json_body(request, UserOverrideUpdate)
    with admin_transaction(db, "UPDATE_USER_OVERRIDE"):
        try:
            override, previous = set_override_enabled(db, override_id, payload.enabled)
        except OverrideNotFoundError as exc:
            raise NotFound(str(exc))
        log_admin_action(
            db, guard.user.id, "UPDATE_USER_OVERRIDE", RESOURCE,
            resource_id=override.id,
            details={
                "user_id": override.user_id,
                "user_email": override.user.email,
                "flag_name": override.flag.name,
                "previous_enabled": previous,
                "enabled": override.enabled,
            },
            request=request,
        )
        body = {"override": _override_json(override)}

    publish_change(RESOURCE, "UPDATE", user_id=body["override"]["user_id"], row_id=override_id)
    return body


@router.delete("/{override_id}")
def delete_user_override(override_id: str, request: Request, db: Session = Depends(get_db)):
    guard = require_admin(request, db)
    if not guard.is_admin:
        return guard.response

    with admin_transaction(db, "DELETE_USER_OVERRIDE"):
        try:
            snapshot = delete_override(db, override_id)
        except OverrideNotFoundError as exc:
            raise NotFound(str(exc))
        log_admin_action(
            db, guard.user.id, "DELETE_USER_OVERRIDE", RESOURCE,
            resource_id=override_id, details=snapshot, request=request,
        )

    publish_change(RESOURCE, "DELETE", user_id=snapshot["user_id"], row_id=override_id)
    return {"message": "User feature override deleted successfully"}

