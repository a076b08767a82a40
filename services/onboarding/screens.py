# services/onboarding/screens.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Literal, Optional, Tuple, Union

SCREEN_NAMES: Tuple[str, ...] = (
    "welcome",
    "challenges",
    "recognition",
    "bridge",
    "goals",
    "contacts",
    "contact_confirmation",
    "context_discovery",
    "linkedin",
    "processing",
    "profile",
    "complete",
)

TOTAL_SCREENS = len(SCREEN_NAMES)
FIRST_SCREEN = 1
TERMINAL_SCREEN = TOTAL_SCREENS

_NUMBER_BY_NAME: Dict[str, int] = {name: i for i, name in enumerate(SCREEN_NAMES, start=1)}

ScreenRef = Union[int, str]
StageStatus = Literal["completed", "active", "upcoming"]


def is_valid_screen(number: int) -> bool:
    return isinstance(number, int) and not isinstance(number, bool) and FIRST_SCREEN <= number <= TOTAL_SCREENS


def screen_name(number: int) -> Optional[str]:
    if not is_valid_screen(number):
        return None
    return SCREEN_NAMES[number - 1]


def screen_number(ref: ScreenRef) -> Optional[int]:
    """Resolve a screen given by number or by name. None when unknown."""
    if isinstance(ref, bool):
        return None
    if isinstance(ref, int):
        return ref if is_valid_screen(ref) else None
    if isinstance(ref, str):
        key = ref.strip().lower()
        if key.isdigit():
            return screen_number(int(key))
        return _NUMBER_BY_NAME.get(key)
    return None


@dataclass(frozen=True)
class Stage:
    id: str
    label: str
    number: int
    screens: Tuple[int, ...]

    @property
    def first_screen(self) -> int:
        return self.screens[0]


# Welcome (screen 1) is shown under the challenges stage but is not one of its screens.
STAGES: Tuple[Stage, ...] = (
    Stage(id="challenges", label="Challenges", number=1, screens=(2, 3, 4)),
    Stage(id="goals", label="Goals", number=2, screens=(5,)),
    Stage(id="contacts", label="Contacts", number=3, screens=(6, 7, 8)),
    Stage(id="profile", label="Profile", number=4, screens=(9, 10, 11, 12)),
)


def stage_for_screen(number: int) -> Optional[Stage]:
    if number == FIRST_SCREEN:
        return STAGES[0]
    for stage in STAGES:
        if number in stage.screens:
            return stage
    return None


def stage_status(stage: Stage, current_screen: int, completed_screens: Iterable[int]) -> StageStatus:
    completed = set(completed_screens)
    if all(s in completed for s in stage.screens):
        return "completed"
    is_current = current_screen in stage.screens or (stage.id == "challenges" and current_screen == FIRST_SCREEN)
    if is_current or any(s in completed for s in stage.screens):
        return "active"
    return "upcoming"


def is_stage_clickable(stage: Stage, current_screen: int, completed_screens: Iterable[int]) -> bool:
    completed = set(completed_screens)
    status = stage_status(stage, current_screen, completed)
    if status == "completed":
        return True
    return status == "active" and any(s in completed for s in stage.screens)
