from __future__ import annotations

import json
from typing import Type, TypeVar

from fastapi import Request
from pydantic import BaseModel, ValidationError

from utils.errors import ValidationFailed

ModelT = TypeVar("ModelT", bound=BaseModel)


def describe_validation_errors(errors) -> tuple[str, list[dict]]:
    """First error as a ``field: message`` string plus a trimmed error list.

    Raw inputs are left out of the list so request data never echoes back.
    """
    trimmed: list[dict] = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        trimmed.append({"field": ".".join(loc) or None, "message": err.get("msg", "Invalid value")})

    if not trimmed:
        return "Invalid request", trimmed

    first = trimmed[0]
    message = first["message"]
    # pydantic prefixes custom validator messages
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    if first["field"]:
        return f"{first['field']}: {message}", trimmed
    return message, trimmed


async def read_json_body(request: Request, model: Type[ModelT]) -> ModelT:
    """Parse and validate a JSON body after the caller has been authorized."""
    raw = await request.body()
    if not raw:
        data: object = {}
    else:
        try:
            data = json.loads(raw)
        except ValueError:
            raise ValidationFailed("Request body must be valid JSON")

    if not isinstance(data, dict):
        raise ValidationFailed("Request body must be a JSON object")

    try:
        return model.model_validate(data)
    except ValidationError as exc:
        message, details = describe_validation_errors(exc.errors())
        raise ValidationFailed(message, details=details)
