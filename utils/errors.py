"""
API error types.

Routers raise these (or translate service-level ValueErrors into them);
middleware/error_handlers.py turns them into ``{"error": ..., "details": ...}``
bodies.
"""
from __future__ import annotations

from typing import Any, Optional


class ApiError(Exception):
    status_code: int = 500

    def __init__(self, error: str, *, details: Any = None, status_code: Optional[int] = None):
        super().__init__(error)
        self.error = error
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_body(self) -> dict:
        body: dict = {"error": self.error}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationFailed(ApiError):
    status_code = 400


class Unauthorized(ApiError):
    status_code = 401


class NotFound(ApiError):
    status_code = 404


class Conflict(ApiError):
    status_code = 409


class UpstreamError(ApiError):
    status_code = 503
