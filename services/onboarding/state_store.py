"""
Persistence for onboarding progress.

Every write goes through the same cycle: lock the user's row
(``SELECT ... FOR UPDATE``), rebuild an ``OnboardingProgress`` from it, apply a
pure transition, write the result back, commit. Concurrent writes for one user
therefore apply one after the other instead of overwriting each other.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.artifact import Artifact
from models.onboarding_state import OnboardingState
from models.user import User
from services.onboarding import tracker
from services.onboarding.screens import STAGES, is_stage_clickable, stage_status
from services.onboarding.tracker import OnboardingProgress

logger = logging.getLogger(__name__)

Transition = Callable[[OnboardingProgress], OnboardingProgress]

VOICE_MEMO_FIELDS = (
    "challenge_voice_memo_id",
    "goal_voice_memo_id",
    "profile_enhancement_voice_memo_id",
)

AUXILIARY_FIELDS = (
    *VOICE_MEMO_FIELDS,
    "goal_id",
    "goal_contact_urls",
    "imported_goal_contacts",
    "linkedin_contacts_added",
    "linkedin_connected",
    "gmail_connected",
    "calendar_connected",
)

_AUXILIARY_DEFAULTS: Dict[str, Any] = {
    "challenge_voice_memo_id": None,
    "goal_voice_memo_id": None,
    "profile_enhancement_voice_memo_id": None,
    "goal_id": None,
    "goal_contact_urls": [],
    "imported_goal_contacts": None,
    "linkedin_contacts_added": None,
    "linkedin_connected": False,
    "gmail_connected": False,
    "calendar_connected": False,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ─── Reads ───────────────────────────────────────────────────────

def get_state(db: Session, user_id: str) -> Optional[OnboardingState]:
    return db.query(OnboardingState).filter(OnboardingState.user_id == user_id).first()


def get_or_create_state(db: Session, user_id: str) -> OnboardingState:
    state = get_state(db, user_id)
    if state:
        return state

    state = OnboardingState(user_id=user_id, current_screen=1, completed_screens=[], goal_contact_urls=[])
    db.add(state)
    try:
        db.commit()
    except IntegrityError:
        # another request created it first
        db.rollback()
        existing = get_state(db, user_id)
        if existing is None:
            raise
        return existing
    db.refresh(state)
    logger.info("onboarding_state_created user_id=%s", user_id)
    return state


def _lock_state(db: Session, user_id: str) -> OnboardingState:
    get_or_create_state(db, user_id)
    return (
        db.query(OnboardingState)
        .filter(OnboardingState.user_id == user_id)
        .populate_existing()
        .with_for_update()
        .one()
    )


def to_progress(state: OnboardingState) -> OnboardingProgress:
    return tracker.normalize(state.current_screen, state.completed_screens, state.completed_at)


def _write_progress(state: OnboardingState, progress: OnboardingProgress) -> None:
    state.current_screen = progress.current_screen
    # new list so the JSON column registers the change
    state.completed_screens = list(progress.completed_screens)
    state.completed_at = progress.completed_at


def serialize_state(state: OnboardingState) -> Dict[str, Any]:
    progress = to_progress(state)
    stages = [
        {
            "id": stage.id,
            "label": stage.label,
            "number": stage.number,
            "screens": list(stage.screens),
            "status": stage_status(stage, progress.current_screen, progress.completed_screens),
            "clickable": is_stage_clickable(stage, progress.current_screen, progress.completed_screens),
        }
        for stage in STAGES
    ]
    out: Dict[str, Any] = {
        "id": state.id,
        "user_id": state.user_id,
        "current_screen": progress.current_screen,
        "current_screen_name": progress.current_screen_name,
        "completed_screens": list(progress.completed_screens),
        "completion_rate": progress.completion_rate,
        "is_complete": progress.is_complete,
        "started_at": state.started_at,
        "last_activity_at": state.last_activity_at,
        "completed_at": progress.completed_at,
        "stages": stages,
    }
    for field in AUXILIARY_FIELDS:
        out[field] = getattr(state, field)
    if out["goal_contact_urls"] is None:
        out["goal_contact_urls"] = []
    return out


# ─── Writes ──────────────────────────────────────────────────────

def apply_transition(db: Session, user_id: str, transition: Transition) -> Tuple[OnboardingState, bool]:
    """Run one pure transition under the row lock. Returns (row, changed)."""
    state = _lock_state(db, user_id)
    before = to_progress(state)
    after = transition(before)

    changed = after != before
    if changed:
        _write_progress(state, after)
        if after.is_complete and not before.is_complete:
            _stamp_user_completed(db, user_id, after.completed_at)
            logger.info("onboarding_completed user_id=%s", user_id)
    state.last_activity_at = _now()
    db.commit()
    db.refresh(state)
    return state, changed


def update_state(db: Session, user_id: str, fields: Dict[str, Any]) -> OnboardingState:
    unknown = set(fields) - set(AUXILIARY_FIELDS)
    if unknown:
        raise ValueError(f"Unknown onboarding fields: {', '.join(sorted(unknown))}")

    state = _lock_state(db, user_id)
    for field, value in fields.items():
        if field == "goal_contact_urls" and value is None:
            value = []
        setattr(state, field, value)
    state.last_activity_at = _now()
    db.commit()
    db.refresh(state)
    return state


def mark_connected(db: Session, user_id: str, **flags: bool) -> OnboardingState:
    """Set integration connection flags (gmail_connected, calendar_connected, ...)."""
    return update_state(db, user_id, {k: bool(v) for k, v in flags.items()})


def _stamp_user_completed(db: Session, user_id: str, completed_at: Optional[datetime]) -> None:
    user = db.get(User, user_id)
    if user is not None and user.onboarding_completed_at is None:
        user.onboarding_completed_at = completed_at or _now()


def complete_onboarding(db: Session, user: User) -> OnboardingState:
    state = _lock_state(db, user.id)
    progress = tracker.complete_onboarding(to_progress(state))
    _write_progress(state, progress)
    state.last_activity_at = _now()
    _stamp_user_completed(db, user.id, progress.completed_at)
    db.commit()
    db.refresh(state)
    logger.info("onboarding_completed user_id=%s", user.id)
    return state


def _delete_voice_memos(db: Session, user_id: str, memo_ids: List[str]) -> int:
    if not memo_ids:
        return 0
    return (
        db.query(Artifact)
        .filter(
            Artifact.user_id == user_id,
            Artifact.type == "voice_memo",
            Artifact.id.in_(memo_ids),
        )
        .delete(synchronize_session=False)
    )


def reset_state(db: Session, user_id: str, *, commit: bool = True) -> Tuple[OnboardingState, OnboardingProgress]:
    """Back to screen 1 with nothing completed and no captured artifacts.

    Returns the row and the progress it had before the reset. With
    ``commit=False`` the caller commits (admin resets audit in the same
    transaction).
    """
    state = _lock_state(db, user_id)
    previous = to_progress(state)

    memo_ids = [getattr(state, f) for f in VOICE_MEMO_FIELDS if getattr(state, f)]
    deleted = _delete_voice_memos(db, user_id, memo_ids)

    _write_progress(state, tracker.restart())
    for field, default in _AUXILIARY_DEFAULTS.items():
        setattr(state, field, list(default) if isinstance(default, list) else default)
    now = _now()
    state.started_at = now
    state.last_activity_at = now

    user = db.get(User, user_id)
    if user is not None:
        user.onboarding_completed_at = None

    db.flush()
    if commit:
        db.commit()
        db.refresh(state)
    logger.info("onboarding_reset user_id=%s voice_memos_deleted=%d", user_id, deleted)
    return state, previous
