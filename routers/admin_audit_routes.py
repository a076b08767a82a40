from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from database import get_db
from schemas.audit import AuditLogEntryOut
from services.admin_guard import require_admin
from services.audit_logger import admin_transaction, list_audit_entries, log_admin_action
from utils.errors import ValidationFailed

router = APIRouter()

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def _parse_limit(raw: Optional[str]) -> int:
    if raw is None or raw == "":
        return DEFAULT_LIMIT
    try:
        limit = int(raw)
    except ValueError:
        raise ValidationFailed("limit must be an integer")
    if limit < 1 or limit > MAX_LIMIT:
        raise ValidationFailed(f"limit must be between 1 and {MAX_LIMIT}")
    return limit


@router.get("")
def get_audit_log(
    request: Request,
    admin_user_id: Optional[str] = Query(None),
    resource_type: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    resource_id: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    guard = require_admin(request, db)
    if not guard.is_admin:
        return guard.response

    n = _parse_limit(limit)
    filters = {
        "admin_user_id": admin_user_id,
        "resource_type": resource_type,
        "action": action,
        "resource_id": resource_id,
    }
    with admin_transaction(db, "VIEW_AUDIT_LOG"):
        entries = [
            AuditLogEntryOut.model_validate(e).model_dump(mode="json")
            for e in list_audit_entries(db, limit=n, **filters)
        ]
        # listed before this read adds its own row
        log_admin_action(
            db, guard.user.id, "VIEW_AUDIT_LOG", "admin_audit_log",
            details={"filters": filters, "count": len(entries)}, request=request,
        )
    return {"entries": entries}
