"""
Feature flag resolution.

A flag's effective value for a user is the user's override when one exists,
otherwise the flag's global value. A flag that does not exist resolves to
False for end users; admin tooling asks for ``strict=True`` and gets
``FlagNotFoundError`` instead.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.feature_flag import FeatureFlag, UserFeatureOverride

logger = logging.getLogger(__name__)


class FlagNotFoundError(ValueError):
    pass


@dataclass(frozen=True)
class ResolvedFlag:
    flag_id: str
    name: str
    description: Optional[str]
    enabled_globally: bool
    has_override: bool
    user_enabled: bool

    def to_dict(self) -> dict:
        return asdict(self)


def effective_value(enabled_globally: bool, override_enabled: Optional[bool]) -> bool:
    if override_enabled is not None:
        return bool(override_enabled)
    return bool(enabled_globally)


def _override_for(db: Session, user_id: str, flag_id: str) -> Optional[UserFeatureOverride]:
    return (
        db.query(UserFeatureOverride)
        .filter(
            UserFeatureOverride.user_id == user_id,
            UserFeatureOverride.feature_flag_id == flag_id,
        )
        .first()
    )


def lookup(db: Session, flag_name: str, user_id: str, *, strict: bool = False) -> bool:
    """Effective value with store errors propagated, so callers can tell a failure from False."""
    flag = db.query(FeatureFlag).filter(FeatureFlag.name == flag_name).first()
    if flag is None:
        if strict:
            raise FlagNotFoundError(f"Feature flag '{flag_name}' not found")
        return False

    override = _override_for(db, user_id, flag.id)
    return effective_value(flag.enabled_globally, override.enabled if override else None)


def resolve(db: Session, flag_name: str, user_id: str, *, strict: bool = False) -> bool:
    try:
        return lookup(db, flag_name, user_id, strict=strict)
    except SQLAlchemyError:
        if strict:
            raise
        logger.exception("flag_resolve_failed flag=%s user_id=%s", flag_name, user_id)
        return False


def resolve_all(db: Session, user_id: str) -> List[ResolvedFlag]:
    flags = db.query(FeatureFlag).order_by(FeatureFlag.name.asc()).all()
    overrides: Dict[str, bool] = {
        o.feature_flag_id: o.enabled
        for o in db.query(UserFeatureOverride).filter(UserFeatureOverride.user_id == user_id).all()
    }

    out: List[ResolvedFlag] = []
    for flag in flags:
        override = overrides.get(flag.id)
        out.append(
            ResolvedFlag(
                flag_id=flag.id,
                name=flag.name,
                description=flag.description,
                enabled_globally=flag.enabled_globally,
                has_override=override is not None,
                user_enabled=effective_value(flag.enabled_globally, override),
            )
        )
    return out
