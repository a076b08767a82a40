from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, field_validator


class OnboardingStateUpdate(BaseModel):
    """Auxiliary fields a client may merge into its onboarding row."""

    model_config = ConfigDict(extra="forbid")

    challenge_voice_memo_id: Optional[str] = None
    goal_voice_memo_id: Optional[str] = None
    profile_enhancement_voice_memo_id: Optional[str] = None
    goal_id: Optional[str] = None
    goal_contact_urls: Optional[List[str]] = None
    imported_goal_contacts: Optional[Any] = None
    linkedin_contacts_added: Optional[int] = Field(default=None, ge=0)
    linkedin_connected: Optional[bool] = None
    gmail_connected: Optional[bool] = None
    calendar_connected: Optional[bool] = None

    @field_validator("goal_contact_urls")
    @classmethod
    def validate_urls(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        return [url.strip() for url in value if url and url.strip()]


class ScreenRequest(BaseModel):
    # JSON booleans stay booleans and name no screen
    screen: Union[StrictBool, StrictInt, str]


class StageOut(BaseModel):
    id: str
    label: str
    number: int
    screens: List[int]
    status: str
    clickable: bool


class OnboardingStateOut(BaseModel):
    id: str
    user_id: str
    current_screen: int
    current_screen_name: Optional[str] = None
    completed_screens: List[int]
    completion_rate: float
    is_complete: bool
    started_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    challenge_voice_memo_id: Optional[str] = None
    goal_voice_memo_id: Optional[str] = None
    profile_enhancement_voice_memo_id: Optional[str] = None
    goal_id: Optional[str] = None
    goal_contact_urls: List[str] = Field(default_factory=list)
    imported_goal_contacts: Optional[Any] = None
    linkedin_contacts_added: Optional[int] = None
    linkedin_connected: bool = False
    gmail_connected: bool = False
    calendar_connected: bool = False

    stages: List[StageOut] = Field(default_factory=list)


class OnboardingTransitionOut(BaseModel):
    applied: bool
    state: OnboardingStateOut
