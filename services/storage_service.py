from __future__ import annotations

import logging
import os
from typing import Dict, Optional
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

SUPABASE_PROJECT_URL = os.getenv("SUPABASE_PROJECT_URL", "").rstrip("/")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
STORAGE_BUCKET = os.getenv("STORAGE_BUCKET", "artifacts")
STORAGE_TIMEOUT_SEC = float(os.getenv("STORAGE_TIMEOUT_SEC", "60"))


class StorageError(RuntimeError):
    """Raised when an object upload fails or storage is misconfigured."""


def public_url(path: str, bucket: str = STORAGE_BUCKET) -> str:
    return f"{SUPABASE_PROJECT_URL}/storage/v1/object/public/{bucket}/{quote(path)}"


async def upload_object(
    path: str,
    data: bytes,
    *,
    content_type: str,
    bucket: str = STORAGE_BUCKET,
    metadata: Optional[Dict[str, str]] = None,
) -> str:
    """Upload (upsert) ``data`` to Supabase Storage and return its public URL."""
    if not SUPABASE_PROJECT_URL or not SUPABASE_SERVICE_ROLE_KEY:
        raise StorageError("Missing SUPABASE_PROJECT_URL or SUPABASE_SERVICE_ROLE_KEY")

    url = f"{SUPABASE_PROJECT_URL}/storage/v1/object/{bucket}/{quote(path)}"
    headers = {
        "Authorization": f"Bearer {SUPABASE_SERVICE_ROLE_KEY}",
        "apikey": SUPABASE_SERVICE_ROLE_KEY,
        "Content-Type": content_type,
        "x-upsert": "true",
    }
    for key, value in (metadata or {}).items():
        headers[f"x-meta-{key}"] = value

    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(STORAGE_TIMEOUT_SEC)) as client:
            response = await client.post(url, content=data, headers=headers)
            response.raise_for_status()
    except httpx.HTTPError as exc:
        status = exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else None
        logger.error("storage_upload_failed bucket=%s path=%s status=%s", bucket, path, status)
        raise StorageError(f"Upload failed: {type(exc).__name__}") from exc

    logger.info("storage_upload_ok bucket=%s path=%s bytes=%d", bucket, path, len(data))
    return public_url(path, bucket)
