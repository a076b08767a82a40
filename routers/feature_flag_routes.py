from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from database import get_db
from models.user import User
from schemas.feature_flags import ResolvedFlagOut
from services.supabase_auth import get_current_db_user
from services.sync.state_cache import user_state_cache

router = APIRouter()


class UserFlagsOut(BaseModel):
    flags: List[ResolvedFlagOut]


class UserFlagOut(BaseModel):
    name: str
    enabled: bool


@router.get("", response_model=UserFlagsOut)
def my_feature_flags(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_db_user),
):
    return {"flags": user_state_cache.get_all_flags(db, current_user.id)}


# unknown flags resolve to disabled, never 404
@router.get("/{name}", response_model=UserFlagOut)
def my_feature_flag(
    name: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_db_user),
):
    return UserFlagOut(name=name, enabled=user_state_cache.get_flag(db, current_user.id, name))
