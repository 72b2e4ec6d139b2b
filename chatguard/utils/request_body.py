"""
Tolerant JSON body reading for the guarded write paths.

A body typed as a pydantic model is validated by FastAPI before any
dependency runs, so an anonymous or banned caller would get a 422 for a
malformed payload. Write routes take the raw body instead and hand it to
the pipeline, which validates it only after auth, ban and rate-limit checks.
"""

import json
from typing import Any

from fastapi import Request
from pydantic import BaseModel


class MalformedBody:
    """Placeholder for a body that is not valid JSON."""

    def __repr__(self) -> str:
        return "MALFORMED_BODY"


MALFORMED_BODY = MalformedBody()


async def json_body(request: Request) -> Any:
    """FastAPI dependency. Never raises; returns None for an empty body."""
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return MALFORMED_BODY


def body_fields(body: Any, model: type[BaseModel]) -> BaseModel:
    """
    Map a decoded body onto a loose request model.

    Anything other than a JSON object yields an all-empty model, so the
    missing-field checks of the pipeline reject it at validation time.
    """
    if isinstance(body, dict):
        return model.model_validate(body)
    return model()
