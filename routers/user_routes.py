from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from models.user import User
from services.supabase_auth import get_current_db_user

router = APIRouter()


class MeOut(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    is_admin: bool
    onboarding_completed_at: Optional[datetime] = None


@router.get("/me", response_model=MeOut)
def me(current_user: User = Depends(get_current_db_user)):
    return MeOut(
        id=current_user.id,
        email=current_user.email,
        name=current_user.name,
        is_admin=bool(current_user.is_admin),
        onboarding_completed_at=current_user.onboarding_completed_at,
    )
