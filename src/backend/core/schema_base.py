"""
Base schema model for API payloads.

Field names are exposed in camelCase and accepted in either case; datetimes
are stored as naive UTC and serialized with a 'Z' suffix.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, field_serializer


def to_camel(string: str) -> str:
    """
    Convert snake_case to camelCase.

    Example:
        >>> to_camel("last_activity_at")
        'lastActivityAt'
    """
    head, *rest = string.split("_")
    return head + "".join(word.capitalize() for word in rest)


def serialize_datetime(dt: datetime | None) -> str | None:
    """
    Serialize a datetime as ISO 8601 UTC with a 'Z' suffix.

    Aware datetimes are converted to UTC first; naive ones are assumed UTC.
    """
    if dt is None:
        return None

    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)

    return dt.isoformat() + "Z"


class HTTPSchemaModel(BaseModel):
    """
    Base model for every request and response schema.

    - camelCase aliases, snake_case still accepted on input
    - builds from ORM rows (from_attributes=True)
    - datetimes rendered as "2026-01-05T09:30:00Z"
    """

    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @field_serializer("*", mode="wrap")
    @classmethod
    def serialize_any_datetime(cls, value: Any, handler: Any) -> Any:
        if isinstance(value, datetime):
            return serialize_datetime(value)
        return handler(value)
