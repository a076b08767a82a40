from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Dict, Optional

from fastapi import UploadFile
from sqlalchemy.orm import Session

from models.artifact import Artifact
from services import storage_service

logger = logging.getLogger(__name__)

MAX_FILE_BYTES = 100 * 1024 * 1024
MAX_TEXT_CHARS = 1_000_000

ALLOWED_MIME_TYPES = frozenset({
    "audio/mpeg", "audio/mp3", "audio/wav", "audio/m4a", "audio/aac",
    "video/mp4", "video/mov", "video/avi", "video/webm",
})
ALLOWED_EXTENSIONS = frozenset({"mp3", "wav", "m4a", "aac", "mp4", "mov", "avi", "webm"})

CONTENT_TYPES = ("notes", "transcript", "recording", "voice_memo")
FILE_CONTENT_TYPES = ("recording", "voice_memo")
TEXT_CONTENT_TYPES = ("notes", "transcript")

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9_-]")
MAX_PATH_COMPONENT_LEN = 100


class MeetingContentError(ValueError):
    """Bad upload input; the message is safe to return to the client."""


class MeetingArtifactNotFoundError(ValueError):
    pass


def sanitize_path_component(value: str) -> str:
    return _UNSAFE_PATH_CHARS.sub("", value or "")[:MAX_PATH_COMPONENT_LEN]


def file_extension(filename: Optional[str]) -> Optional[str]:
    name = filename or ""
    if "." not in name:
        return None
    ext = name.rsplit(".", 1)[-1].strip().lower()
    return ext or None


def validate_media_file(filename: Optional[str], mime_type: Optional[str], size: int) -> Optional[str]:
    """Error message for a rejected file, None when it is acceptable. Size first, then MIME, then extension."""
    if size > MAX_FILE_BYTES:
        return f"File size must be less than {MAX_FILE_BYTES // (1024 * 1024)}MB"
    if (mime_type or "").lower() not in ALLOWED_MIME_TYPES:
        return "Invalid file type. Only audio and video files are allowed."
    if file_extension(filename) not in ALLOWED_EXTENSIONS:
        return "Invalid file extension."
    return None


def build_storage_path(contact_id: str, artifact_id: str, content_type: str, ext: str, now_ms: Optional[int] = None) -> str:
    ts = now_ms if now_ms is not None else int(time.time() * 1000)
    file_name = f"{contact_id}-{artifact_id}-{content_type}-{ts}.{ext}"
    return f"meeting-content/{contact_id}/{file_name}"


def _load_meeting_content(artifact: Artifact) -> Dict[str, Any]:
    try:
        parsed = json.loads(artifact.content) if artifact.content else {}
    except ValueError:
        logger.warning("meeting_content_unparseable artifact_id=%s", artifact.id)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def get_meeting_artifact(db: Session, user_id: str, artifact_id: str, contact_id: str) -> Artifact:
    artifact = (
        db.query(Artifact)
        .filter(
            Artifact.id == artifact_id,
            Artifact.contact_id == contact_id,
            Artifact.user_id == user_id,
        )
        .first()
    )
    if artifact is None:
        raise MeetingArtifactNotFoundError("Meeting artifact not found or access denied")
    if artifact.type != "meeting":
        raise MeetingContentError("Artifact is not a meeting type")
    return artifact


async def _read_upload(file: UploadFile) -> bytes:
    size = getattr(file, "size", None)
    if size is not None and size > MAX_FILE_BYTES:
        # reject before pulling the body into memory
        raise MeetingContentError(validate_media_file(file.filename, file.content_type, size) or "File too large")
    return await file.read()


async def save_meeting_content(
    db: Session,
    *,
    user_id: str,
    artifact_id: str,
    contact_id: str,
    content_type: str,
    content: Optional[str] = None,
    file: Optional[UploadFile] = None,
) -> Artifact:
    if not artifact_id or not contact_id or not content_type:
        raise MeetingContentError("artifact_id, contact_id, and content_type are required")
    if content_type not in CONTENT_TYPES:
        raise MeetingContentError(
            "Invalid content_type. Must be one of: notes, transcript, recording, voice_memo"
        )

    safe_artifact_id = sanitize_path_component(artifact_id)
    safe_contact_id = sanitize_path_component(contact_id)
    if not safe_artifact_id or not safe_contact_id:
        raise MeetingContentError("Invalid artifact_id or contact_id format")

    artifact = get_meeting_artifact(db, user_id, artifact_id, contact_id)
    meeting_content = _load_meeting_content(artifact)

    if content_type in FILE_CONTENT_TYPES and file is not None:
        data = await _read_upload(file)
        error = validate_media_file(file.filename, file.content_type, len(data))
        if error:
            raise MeetingContentError(error)

        path = build_storage_path(
            safe_contact_id, safe_artifact_id, content_type, file_extension(file.filename) or "bin",
        )
        url = await storage_service.upload_object(
            path,
            data,
            content_type=(file.content_type or "application/octet-stream").lower(),
            metadata={"contentType": content_type, "artifactId": safe_artifact_id, "contactId": safe_contact_id},
        )
        meeting_content["recording_url" if content_type == "recording" else "voice_memo_url"] = url
    elif content and content_type in TEXT_CONTENT_TYPES:
        if len(content) > MAX_TEXT_CHARS:
            raise MeetingContentError("Content too large. Maximum 1MB text allowed.")
        meeting_content[content_type] = content
    else:
        raise MeetingContentError("Invalid content type or missing content/file")

    artifact.content = json.dumps(meeting_content)
    artifact.ai_parsing_status = "pending"
    db.commit()
    db.refresh(artifact)
    logger.info("meeting_content_saved artifact_id=%s content_type=%s", artifact.id, content_type)
    return artifact
