"""
Feature flag and user override management.

Nothing here commits. Admin routes write the audit row into the same session
and commit once, so a flag change and its audit record land together.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from models.feature_flag import FeatureFlag, UserFeatureOverride
from models.user import User
from services.flag_resolver import FlagNotFoundError

UPDATABLE_FLAG_FIELDS = ("name", "description", "enabled_globally")


class DuplicateFlagError(ValueError):
    pass


class OverrideNotFoundError(ValueError):
    pass


class UserNotFoundError(ValueError):
    pass


# ─── Flags ───────────────────────────────────────────────────────

def list_flags(db: Session) -> List[Tuple[FeatureFlag, int]]:
    counts = dict(
        db.query(UserFeatureOverride.feature_flag_id, func.count(UserFeatureOverride.id))
        .group_by(UserFeatureOverride.feature_flag_id)
        .all()
    )
    flags = (
        db.query(FeatureFlag)
        .order_by(FeatureFlag.created_at.desc(), FeatureFlag.name.asc())
        .all()
    )
    return [(flag, int(counts.get(flag.id, 0))) for flag in flags]


def get_flag(db: Session, flag_id: str) -> FeatureFlag:
    flag = db.get(FeatureFlag, flag_id)
    if flag is None:
        raise FlagNotFoundError("Feature flag not found")
    return flag


def _name_taken(db: Session, name: str, exclude_id: Optional[str] = None) -> bool:
    query = db.query(FeatureFlag.id).filter(FeatureFlag.name == name)
    if exclude_id is not None:
        query = query.filter(FeatureFlag.id != exclude_id)
    return query.first() is not None


def _flush_flag(db: Session) -> None:
    try:
        db.flush()
    except IntegrityError as exc:
        raise DuplicateFlagError("A feature flag with this name already exists") from exc


def create_flag(
    db: Session,
    *,
    name: str,
    description: Optional[str] = None,
    enabled_globally: bool = False,
) -> FeatureFlag:
    if _name_taken(db, name):
        raise DuplicateFlagError("A feature flag with this name already exists")

    flag = FeatureFlag(name=name, description=description, enabled_globally=bool(enabled_globally))
    db.add(flag)
    _flush_flag(db)
    return flag


def update_flag(
    db: Session,
    flag_id: str,
    changes: Dict[str, Any],
) -> Tuple[FeatureFlag, Dict[str, Any], Dict[str, Any]]:
    """Apply the given fields. Returns (flag, before, after) for changed fields only."""
    flag = get_flag(db, flag_id)

    before: Dict[str, Any] = {}
    after: Dict[str, Any] = {}
    for field in UPDATABLE_FLAG_FIELDS:
        if field not in changes:
            continue
        value = changes[field]
        if field == "name" and value is None:
            continue
        if field == "enabled_globally":
            if value is None:
                continue
            value = bool(value)
        current = getattr(flag, field)
        if current == value:
            continue
        before[field] = current
        after[field] = value

    if "name" in after and _name_taken(db, after["name"], exclude_id=flag.id):
        raise DuplicateFlagError("A feature flag with this name already exists")

    for field, value in after.items():
        setattr(flag, field, value)
    if after:
        _flush_flag(db)
    return flag, before, after


def toggle_flag(db: Session, flag_id: str) -> Tuple[FeatureFlag, bool]:
    flag = get_flag(db, flag_id)
    previous = flag.enabled_globally
    flag.enabled_globally = not previous
    db.flush()
    return flag, previous


def delete_flag(db: Session, flag_id: str) -> Dict[str, Any]:
    flag = get_flag(db, flag_id)
    snapshot = {
        "name": flag.name,
        "description": flag.description,
        "overrides_deleted": len(flag.overrides),
    }
    # overrides go with it (delete-orphan cascade)
    db.delete(flag)
    db.flush()
    return snapshot


# ─── Overrides ───────────────────────────────────────────────────

def _override_query(db: Session):
    return db.query(UserFeatureOverride).options(
        joinedload(UserFeatureOverride.user),
        joinedload(UserFeatureOverride.flag),
    )


def list_overrides(
    db: Session,
    *,
    user_id: Optional[str] = None,
    feature_flag_id: Optional[str] = None,
) -> List[UserFeatureOverride]:
    query = _override_query(db)
    if user_id:
        query = query.filter(UserFeatureOverride.user_id == user_id)
    if feature_flag_id:
        query = query.filter(UserFeatureOverride.feature_flag_id == feature_flag_id)
    return query.order_by(UserFeatureOverride.created_at.desc(), UserFeatureOverride.id.asc()).all()


def get_override(db: Session, override_id: str) -> UserFeatureOverride:
    override = _override_query(db).filter(UserFeatureOverride.id == override_id).first()
    if override is None:
        raise OverrideNotFoundError("User feature override not found")
    return override


def upsert_override(
    db: Session,
    *,
    user_id: str,
    feature_flag_id: str,
    enabled: bool,
) -> Tuple[UserFeatureOverride, Optional[bool]]:
    """Create or update the (user, flag) override.

    Returns the override and its previous value (None when it was created).
    """
    user = db.get(User, user_id)
    if user is None:
        raise UserNotFoundError("User not found")
    flag = get_flag(db, feature_flag_id)

    override = (
        db.query(UserFeatureOverride)
        .filter(
            UserFeatureOverride.user_id == user.id,
            UserFeatureOverride.feature_flag_id == flag.id,
        )
        .first()
    )
    previous: Optional[bool] = None
    if override is None:
        override = UserFeatureOverride(user_id=user.id, feature_flag_id=flag.id, enabled=bool(enabled))
        db.add(override)
    else:
        previous = override.enabled
        override.enabled = bool(enabled)

    db.flush()
    db.refresh(override)
    return override, previous


def set_override_enabled(db: Session, override_id: str, enabled: bool) -> Tuple[UserFeatureOverride, bool]:
    override = get_override(db, override_id)
    previous = override.enabled
    override.enabled = bool(enabled)
    db.flush()
    return override, previous


def delete_override(db: Session, override_id: str) -> Dict[str, Any]:
    override = get_override(db, override_id)
    snapshot = {
        "user_id": override.user_id,
        "user_email": override.user.email if override.user else "",
        "flag_name": override.flag.name if override.flag else "",
        "enabled": override.enabled,
    }
    db.delete(override)
    db.flush()
    return snapshot
