from typing import Any

from gatherly.deps import parse_optional_uuid, parse_uuid
from gatherly.errors import ValidationFailed


def optional_text(payload: dict[str, Any], key: str, max_length: int = 2000) -> str | None:
    raw = payload.get(key)
    if raw is None:
        return None
    value = str(raw).strip()
    if len(value) > max_length:
        raise ValidationFailed(f"{key} must be at most {max_length} characters")
    return value or None


def optional_positive_int(payload: dict[str, Any], key: str) -> int | None:
    raw = payload.get(key)
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ValidationFailed(f"{key} must be a positive integer")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationFailed(f"{key} must be a positive integer")
    if value <= 0:
        raise ValidationFailed(f"{key} must be a positive integer")
    return value


def validate_join_payload(payload: dict[str, Any]) -> str:
    return parse_uuid(payload.get("event_id"), "event_id")


def validate_message_payload(payload: dict[str, Any]) -> tuple[str, Any]:
    group_id = parse_uuid(payload.get("group_id"), "group_id")
    return group_id, payload.get("content")


def validate_group_action_payload(payload: dict[str, Any]) -> tuple[str, str]:
    event_id = parse_uuid(payload.get("event_id"), "event_id")
    action = str(payload.get("action") or "").strip().lower()
    if not action:
        raise ValidationFailed("action required")
    return event_id, action


def validate_report_payload(payload: dict[str, Any]) -> dict[str, Any]:
    reason = str(payload.get("reason") or "").strip()
    if not reason:
        raise ValidationFailed("reason required")
    return {
        "reported_user_id": parse_uuid(payload.get("reported_user_id"), "reported_user_id"),
        "reason": reason[:200],
        "group_id": parse_optional_uuid(payload.get("group_id"), "group_id"),
        "message_id": parse_optional_uuid(payload.get("message_id"), "message_id"),
        "details": optional_text(payload, "details"),
    }
