# routers/onboarding_routes.py
from functools import partial

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from models.user import User
from schemas.onboarding import (
    OnboardingStateOut,
    OnboardingStateUpdate,
    OnboardingTransitionOut,
    ScreenRequest,
)
from services.onboarding import tracker
from services.onboarding.screens import screen_number
from services.onboarding.state_store import (
    apply_transition,
    complete_onboarding,
    reset_state,
    serialize_state,
    update_state,
)
from services.supabase_auth import get_current_db_user
from services.sync.change_feed import publish_change
from services.sync.state_cache import user_state_cache
from utils.errors import ValidationFailed

router = APIRouter()


def _state_out(state) -> OnboardingStateOut:
    return OnboardingStateOut.model_validate(serialize_state(state))


def _published(state, user_id: str) -> OnboardingStateOut:
    publish_change("onboarding_state", "UPDATE", user_id=user_id, row_id=state.id)
    return _state_out(state)


@router.get("", response_model=OnboardingStateOut)
def get_onboarding(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_db_user),
):
    return user_state_cache.get_onboarding(db, current_user.id)


@router.patch("", response_model=OnboardingStateOut)
def update_onboarding(
    payload: OnboardingStateUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_db_user),
):
    # only fields the client actually sent
    fields = payload.model_dump(exclude_unset=True)
    state = update_state(db, current_user.id, fields)
    return _published(state, current_user.id)


@router.post("/next", response_model=OnboardingStateOut)
def next_screen(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_db_user),
):
    state, _ = apply_transition(db, current_user.id, tracker.next_screen)
    return _published(state, current_user.id)


@router.post("/previous", response_model=OnboardingStateOut)
def previous_screen(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_db_user),
):
    state, _ = apply_transition(db, current_user.id, tracker.previous_screen)
    return _published(state, current_user.id)


@router.post("/navigate", response_model=OnboardingTransitionOut)
def navigate(
    payload: ScreenRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_db_user),
):
    """Jump to a screen. Out-of-range targets leave the state alone and report applied=false."""
    target = screen_number(payload.screen)
    state, _ = apply_transition(
        db, current_user.id, partial(tracker.navigate_to_screen, ref=payload.screen)
    )
    return OnboardingTransitionOut(applied=target is not None, state=_published(state, current_user.id))


@router.post("/complete-screen", response_model=OnboardingStateOut)
def complete_screen(
    payload: ScreenRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_db_user),
):
    if screen_number(payload.screen) is None:
        raise ValidationFailed(f"Unknown onboarding screen: {payload.screen}")
    state, _ = apply_transition(
        db, current_user.id, partial(tracker.complete_screen, ref=payload.screen)
    )
    return _published(state, current_user.id)


@router.post("/complete", response_model=OnboardingStateOut)
def complete(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_db_user),
):
    state = complete_onboarding(db, current_user)
    return _published(state, current_user.id)


@router.post("/restart", response_model=OnboardingStateOut)
def restart(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_db_user),
):
    state, _ = reset_state(db, current_user.id)
    return _published(state, current_user.id)
