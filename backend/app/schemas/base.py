"""Shared schema base: camelCase on the wire, snake_case in Python."""

import uuid

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

# Sentinels some clients send instead of omitting the field
_MISSING_IDS = {"", "null", "undefined"}


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def parse_required_id(value: object, field_name: str) -> uuid.UUID:
    """Reject empty and "null"/"undefined" ids before any state access."""
    if isinstance(value, uuid.UUID):
        return value
    text = str(value).strip() if value is not None else ""
    if text.lower() in _MISSING_IDS:
        raise ValueError(f"{field_name} is required")
    try:
        return uuid.UUID(text)
    except ValueError:
        raise ValueError(f"{field_name} must be a UUID") from None
