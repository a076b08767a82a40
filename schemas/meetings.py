from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

MeetingContentType = Literal["notes", "transcript", "recording", "voice_memo"]


class MeetingContentOut(BaseModel):
    success: bool = True
    artifact_id: str
    content_type: MeetingContentType
    message: str = "Content saved and queued for AI processing"
