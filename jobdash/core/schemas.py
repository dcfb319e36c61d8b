"""Shared schema helpers: camelCase wire models, the API envelope, UTC time."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from jobdash.core.exceptions import AppException


class CamelModel(BaseModel):
    """Entity schema whose wire form is camelCase.

    Accepts both ``scheduleCron`` and ``schedule_cron`` on input and dumps
    camelCase with ``model_dump(by_alias=True)``.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApiEnvelope(BaseModel):
    """Response envelope shared by every backend route."""
    status: Literal["ok", "error"]
    data: Optional[Any] = None
    message: Optional[str] = None
    error: Optional[str] = None
    code: Optional[int] = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps from the wire as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_model(model: type, data: Any, what: str) -> Any:
    """Validate one backend object, mapping schema drift to AppException."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise AppException(f"Unexpected {what} payload from server: {e.error_count()} error(s)") from e


def parse_models(model: type, data: Any, what: str) -> List[Any]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise AppException(f"Unexpected {what} payload from server: expected a list")
    return [parse_model(model, item, what) for item in data]
