from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

FLAG_NAME_RE = re.compile(r"^[a-z0-9_-]+$")
FLAG_NAME_MAX_LEN = 100


def _normalize_flag_name(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("Flag name is required and must be a string")
    name = value.strip()
    if not name:
        raise ValueError("Flag name is required and must be a string")
    if len(name) > FLAG_NAME_MAX_LEN:
        raise ValueError(f"Flag name must be at most {FLAG_NAME_MAX_LEN} characters")
    if not FLAG_NAME_RE.match(name):
        raise ValueError("Flag name may only contain lowercase letters, numbers, hyphens and underscores")
    return name


def _normalize_description(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = value.strip()
    return text or None


class FeatureFlagCreate(BaseModel):
    name: str
    description: Optional[str] = None
    enabled_globally: bool = False

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, value):
        return _normalize_flag_name(value)

    @field_validator("description")
    @classmethod
    def validate_description(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_description(value)


class FeatureFlagUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    enabled_globally: Optional[bool] = None

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, value):
        if value is None:
            return None
        return _normalize_flag_name(value)

    @field_validator("description")
    @classmethod
    def validate_description(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_description(value)


class FeatureFlagOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    enabled_globally: bool
    created_at: datetime
    updated_at: datetime


class FeatureFlagWithCount(FeatureFlagOut):
    override_count: int = 0


class UserOverrideCreate(BaseModel):
    user_id: str
    feature_flag_id: str
    enabled: bool

    @field_validator("user_id", "feature_flag_id")
    @classmethod
    def validate_ids(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("must not be empty")
        return value


class UserOverrideUpdate(BaseModel):
    enabled: bool


class OverrideUserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: Optional[str] = None


class OverrideFlagOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None


class UserOverrideOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    feature_flag_id: str
    enabled: bool
    created_at: datetime
    updated_at: datetime
    user: Optional[OverrideUserOut] = None
    flag: Optional[OverrideFlagOut] = None


class ResolvedFlagOut(BaseModel):
    flag_id: str
    name: str
    description: Optional[str] = None
    enabled_globally: bool
    has_override: bool
    user_enabled: bool
