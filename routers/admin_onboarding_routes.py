from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from database import get_db
from models.user import User
from schemas.onboarding import OnboardingStateOut
from services.admin_guard import require_admin
from services.audit_logger import admin_transaction, log_admin_action
from services.onboarding.state_store import reset_state, serialize_state
from services.sync.change_feed import publish_change
from utils.errors import NotFound

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{user_id}/reset")
def reset_user_onboarding(user_id: str, request: Request, db: Session = Depends(get_db)):
    guard = require_admin(request, db)
    if not guard.is_admin:
        return guard.response

    with admin_transaction(db, "RESET_ONBOARDING"):
        if db.get(User, user_id) is None:
            raise NotFound("User not found")
        state, previous = reset_state(db, user_id, commit=False)
        log_admin_action(
            db, guard.user.id, "RESET_ONBOARDING", "onboarding_state",
            resource_id=state.id,
            details={
                "user_id": user_id,
                "previous_screen": previous.current_screen,
                "completed_screens": list(previous.completed_screens),
            },
            request=request,
        )

    db.refresh(state)
    publish_change("onboarding_state", "UPDATE", user_id=user_id, row_id=state.id)
    logger.info("admin_onboarding_reset user_id=%s admin_user_id=%s", user_id, guard.user.id)
    return {"state": OnboardingStateOut.model_validate(serialize_state(state)).model_dump(mode="json")}
