"""
Admin audit logger.

Every privileged read or mutation goes through ``log_admin_action``. The audit
row is added to the caller's session and flushed, so it commits (or rolls
back) together with the change it describes. Callers commit after this
returns; if it raises ``AuditLogError`` they roll back and report failure.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from fastapi import Request
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.admin_audit_log import AdminAuditLog
from schemas.audit import audit_details_adapter
from utils.errors import ApiError

logger = logging.getLogger(__name__)

_IP_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")
MAX_USER_AGENT_LEN = 512


class AuditLogError(RuntimeError):
    """The audit record could not be written; the enclosing operation must fail."""


def request_context(request: Optional[Request]) -> tuple[Optional[str], Optional[str]]:
    """(ip_address, user_agent) for the request, proxies first."""
    if request is None:
        return None, None

    ip_address: Optional[str] = None
    for header in _IP_HEADERS:
        value = request.headers.get(header)
        if value:
            # x-forwarded-for is "client, proxy1, proxy2"
            ip_address = value.split(",")[0].strip()
            break
    if not ip_address and request.client:
        ip_address = request.client.host

    user_agent = request.headers.get("user-agent")
    if user_agent:
        user_agent = user_agent[:MAX_USER_AGENT_LEN]
    return ip_address, user_agent


def build_details(action: str, details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Validate ``details`` against the shape registered for ``action``."""
    payload = dict(details or {})
    payload["action"] = action
    try:
        model = audit_details_adapter.validate_python(payload)
    except ValidationError as exc:
        raise AuditLogError(f"Invalid audit details for {action}: {exc.error_count()} error(s)") from exc
    return model.model_dump(mode="json", by_alias=True, exclude={"action"})


def log_admin_action(
    db: Session,
    admin_user_id: str,
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> AdminAuditLog:
    clean_details = build_details(action, details)
    ip_address, user_agent = request_context(request)

    entry = AdminAuditLog(
        admin_user_id=admin_user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=clean_details,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    try:
        db.add(entry)
        db.flush()
    except SQLAlchemyError as exc:
        logger.exception(
            "audit_write_failed admin_user_id=%s action=%s resource_type=%s",
            admin_user_id, action, resource_type,
        )
        raise AuditLogError("Failed to write admin audit log") from exc

    logger.info(
        "admin_action admin_user_id=%s action=%s resource_type=%s resource_id=%s",
        admin_user_id, action, resource_type, resource_id,
    )
    return entry


def list_audit_entries(
    db: Session,
    *,
    admin_user_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    action: Optional[str] = None,
    resource_id: Optional[str] = None,
    limit: int = 50,
) -> List[AdminAuditLog]:
    query = db.query(AdminAuditLog)
    if admin_user_id:
        query = query.filter(AdminAuditLog.admin_user_id == admin_user_id)
    if resource_type:
        query = query.filter(AdminAuditLog.resource_type == resource_type)
    if action:
        query = query.filter(AdminAuditLog.action == action)
    if resource_id:
        query = query.filter(AdminAuditLog.resource_id == resource_id)
    return (
        query.order_by(AdminAuditLog.created_at.desc(), AdminAuditLog.id.desc())
        .limit(limit)
        .all()
    )


@contextmanager
def admin_transaction(db: Session, action: str) -> Iterator[None]:
    """Commit the block's writes and its audit row together, or neither.

    API errors raised inside roll back and propagate unchanged; audit or
    database failures roll back and surface as a generic 500.
    """
    try:
        yield
        db.commit()
    except ApiError:
        db.rollback()
        raise
    except (AuditLogError, SQLAlchemyError) as exc:
        db.rollback()
        logger.exception("admin_transaction_failed action=%s", action)
        raise ApiError("Internal server error", status_code=500) from exc
    except Exception:
        db.rollback()
        raise
