"""
Onboarding progress as an immutable value plus pure transitions.

Every transition returns a new ``OnboardingProgress``; none of them touch the
database. ``state_store`` loads a row, applies one of these and writes it back.

Invariants kept by every transition:
    1 <= current_screen <= TOTAL_SCREENS
    completed_screens is sorted, unique and within [1, TOTAL_SCREENS]
    completed_at is set iff TERMINAL_SCREEN has been completed
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Iterable, Optional, Tuple

from services.onboarding.screens import (
    FIRST_SCREEN,
    TERMINAL_SCREEN,
    TOTAL_SCREENS,
    ScreenRef,
    is_valid_screen,
    screen_name,
    screen_number,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _clean_screens(screens: Iterable[int]) -> Tuple[int, ...]:
    return tuple(sorted({s for s in screens if is_valid_screen(s)}))


@dataclass(frozen=True)
class OnboardingProgress:
    current_screen: int = FIRST_SCREEN
    completed_screens: Tuple[int, ...] = field(default_factory=tuple)
    completed_at: Optional[datetime] = None

    @property
    def is_complete(self) -> bool:
        return TERMINAL_SCREEN in self.completed_screens

    @property
    def completion_rate(self) -> float:
        return len(self.completed_screens) / TOTAL_SCREENS

    @property
    def current_screen_name(self) -> Optional[str]:
        return screen_name(self.current_screen)

    def is_screen_completed(self, ref: ScreenRef) -> bool:
        number = screen_number(ref)
        return number is not None and number in self.completed_screens


def normalize(
    current_screen: Optional[int],
    completed_screens: Optional[Iterable[int]],
    completed_at: Optional[datetime] = None,
) -> OnboardingProgress:
    """Bring stored values back into the legal range."""
    screens = _clean_screens(
        s for s in (completed_screens or ()) if isinstance(s, int) and not isinstance(s, bool)
    )
    current = current_screen if isinstance(current_screen, int) else FIRST_SCREEN
    current = min(max(current, FIRST_SCREEN), TOTAL_SCREENS)
    if TERMINAL_SCREEN not in screens:
        completed_at = None
    return OnboardingProgress(current_screen=current, completed_screens=screens, completed_at=completed_at)


def complete_screen(
    progress: OnboardingProgress,
    ref: ScreenRef,
    now: Optional[datetime] = None,
) -> OnboardingProgress:
    number = screen_number(ref)
    if number is None:
        return progress

    screens = progress.completed_screens
    if number not in screens:
        screens = _clean_screens((*screens, number))

    completed_at = progress.completed_at
    if number == TERMINAL_SCREEN and completed_at is None:
        completed_at = now or _now()

    if screens == progress.completed_screens and completed_at == progress.completed_at:
        return progress
    return replace(progress, completed_screens=screens, completed_at=completed_at)


def next_screen(progress: OnboardingProgress, now: Optional[datetime] = None) -> OnboardingProgress:
    """Complete the current screen and advance; at the terminal screen only completes."""
    updated = complete_screen(progress, progress.current_screen, now=now)
    if updated.current_screen >= TOTAL_SCREENS:
        return updated
    return replace(updated, current_screen=updated.current_screen + 1)


def previous_screen(progress: OnboardingProgress) -> OnboardingProgress:
    if progress.current_screen <= FIRST_SCREEN:
        return progress
    return replace(progress, current_screen=progress.current_screen - 1)


def navigate_to_screen(progress: OnboardingProgress, ref: ScreenRef) -> OnboardingProgress:
    number = screen_number(ref)
    if number is None or number == progress.current_screen:
        return progress
    return replace(progress, current_screen=number)


def complete_onboarding(progress: OnboardingProgress, now: Optional[datetime] = None) -> OnboardingProgress:
    updated = complete_screen(progress, TERMINAL_SCREEN, now=now)
    if updated.current_screen == TERMINAL_SCREEN:
        return updated
    return replace(updated, current_screen=TERMINAL_SCREEN)


def restart() -> OnboardingProgress:
    return OnboardingProgress()
