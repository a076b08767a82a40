import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from sqlalchemy.orm import Session

from database import get_db
from middleware.rate_limit import UPLOAD_RATE_LIMIT, limiter
from models.user import User
from schemas.meetings import MeetingContentOut
from services.meeting_content_service import (
    MeetingArtifactNotFoundError,
    MeetingContentError,
    save_meeting_content,
)
from services.storage_service import StorageError
from services.supabase_auth import get_current_db_user
from utils.errors import ApiError, NotFound, ValidationFailed

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/content", response_model=MeetingContentOut)
@limiter.limit(UPLOAD_RATE_LIMIT)
async def upload_meeting_content(
    request: Request,
    artifact_id: str = Form(""),
    contact_id: str = Form(""),
    content_type: str = Form(""),
    content: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_db_user),
):
    try:
        artifact = await save_meeting_content(
            db,
            user_id=current_user.id,
            artifact_id=artifact_id,
            contact_id=contact_id,
            content_type=content_type,
            content=content,
            file=file,
        )
    except MeetingArtifactNotFoundError as exc:
        raise NotFound(str(exc))
    except MeetingContentError as exc:
        raise ValidationFailed(str(exc))
    except StorageError:
        logger.exception("meeting_upload_failed artifact_id=%s user_id=%s", artifact_id, current_user.id)
        raise ApiError("Failed to upload file", status_code=500)

    return MeetingContentOut(artifact_id=artifact.id, content_type=content_type)
