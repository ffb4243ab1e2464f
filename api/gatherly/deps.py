import uuid
from typing import Any

from gatherly.errors import ValidationFailed


def parse_uuid(raw: Any, field_name: str) -> str:
    value = str(raw or "").strip()
    if not value:
        raise ValidationFailed(f"{field_name} required")
    try:
        return str(uuid.UUID(value))
    except ValueError:
        raise ValidationFailed(f"{field_name} must be a valid UUID")


def parse_optional_uuid(raw: Any, field_name: str) -> str | None:
    if raw is None or not str(raw).strip():
        return None
    return parse_uuid(raw, field_name)
