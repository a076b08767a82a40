from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


AdminResourceType = Literal[
    "feature_flags",
    "user_feature_overrides",
    "admin_audit_log",
    "onboarding_state",
    "users",
]


class _Details(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


# ─── Feature flags ───────────────────────────────────────────────

class ListFeatureFlagsDetails(_Details):
    action: Literal["LIST_FEATURE_FLAGS"] = "LIST_FEATURE_FLAGS"
    count: int


class ViewFeatureFlagDetails(_Details):
    action: Literal["VIEW_FEATURE_FLAG"] = "VIEW_FEATURE_FLAG"
    name: str


class CreateFeatureFlagDetails(_Details):
    action: Literal["CREATE_FEATURE_FLAG"] = "CREATE_FEATURE_FLAG"
    name: str
    description: Optional[str] = None
    enabled_globally: bool


class UpdateFeatureFlagDetails(_Details):
    action: Literal["UPDATE_FEATURE_FLAG"] = "UPDATE_FEATURE_FLAG"
    name: str
    before: Dict[str, Any]
    after: Dict[str, Any]


class ToggleFeatureFlagDetails(_Details):
    action: Literal["TOGGLE_FEATURE_FLAG"] = "TOGGLE_FEATURE_FLAG"
    name: str
    from_: bool = Field(alias="from")
    to: bool


class DeleteFeatureFlagDetails(_Details):
    action: Literal["DELETE_FEATURE_FLAG"] = "DELETE_FEATURE_FLAG"
    name: str
    description: Optional[str] = None
    overrides_deleted: int = 0


class ResolveFeatureFlagsDetails(_Details):
    action: Literal["RESOLVE_FEATURE_FLAGS"] = "RESOLVE_FEATURE_FLAGS"
    user_id: str
    flag_name: Optional[str] = None


# ─── Overrides ───────────────────────────────────────────────────

class OverrideFilters(_Details):
    user_id: Optional[str] = None
    feature_flag_id: Optional[str] = None


class ListUserOverridesDetails(_Details):
    action: Literal["LIST_USER_OVERRIDES"] = "LIST_USER_OVERRIDES"
    filters: OverrideFilters
    count: int


class CreateUserOverrideDetails(_Details):
    action: Literal["CREATE_USER_OVERRIDE"] = "CREATE_USER_OVERRIDE"
    user_id: str
    user_email: str
    flag_name: str
    enabled: bool


class UpdateUserOverrideDetails(_Details):
    action: Literal["UPDATE_USER_OVERRIDE"] = "UPDATE_USER_OVERRIDE"
    user_id: str
    user_email: str
    flag_name: str
    previous_enabled: bool
    enabled: bool


class DeleteUserOverrideDetails(_Details):
    action: Literal["DELETE_USER_OVERRIDE"] = "DELETE_USER_OVERRIDE"
    user_id: str
    user_email: str
    flag_name: str
    enabled: bool


# ─── Audit log / onboarding ─────────────────────────────────────

class ViewAuditLogDetails(_Details):
    action: Literal["VIEW_AUDIT_LOG"] = "VIEW_AUDIT_LOG"
    filters: Dict[str, Optional[str]] = Field(default_factory=dict)
    count: int


class ResetOnboardingDetails(_Details):
    action: Literal["RESET_ONBOARDING"] = "RESET_ONBOARDING"
    user_id: str
    previous_screen: int
    completed_screens: List[int]


AuditDetails = Annotated[
    Union[
        ListFeatureFlagsDetails,
        ViewFeatureFlagDetails,
        CreateFeatureFlagDetails,
        UpdateFeatureFlagDetails,
        ToggleFeatureFlagDetails,
        DeleteFeatureFlagDetails,
        ResolveFeatureFlagsDetails,
        ListUserOverridesDetails,
        CreateUserOverrideDetails,
        UpdateUserOverrideDetails,
        DeleteUserOverrideDetails,
        ViewAuditLogDetails,
        ResetOnboardingDetails,
    ],
    Field(discriminator="action"),
]

audit_details_adapter: TypeAdapter = TypeAdapter(AuditDetails)

AdminAction = Literal[
    "LIST_FEATURE_FLAGS",
    "VIEW_FEATURE_FLAG",
    "CREATE_FEATURE_FLAG",
    "UPDATE_FEATURE_FLAG",
    "TOGGLE_FEATURE_FLAG",
    "DELETE_FEATURE_FLAG",
    "RESOLVE_FEATURE_FLAGS",
    "LIST_USER_OVERRIDES",
    "CREATE_USER_OVERRIDE",
    "UPDATE_USER_OVERRIDE",
    "DELETE_USER_OVERRIDE",
    "VIEW_AUDIT_LOG",
    "RESET_ONBOARDING",
]


class AuditLogEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    admin_user_id: str
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime
