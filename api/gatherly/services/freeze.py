"""Freeze clock: decides when an event's groups stop changing.

Recomputed on every call from the event row and the supplied `now`.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from gatherly.config import DEFAULT_FREEZE_HOURS


def to_utc(value: Any) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def freeze_hours(event: dict[str, Any]) -> float:
    raw = event.get("freeze_hours_before")
    if raw is None:
        return DEFAULT_FREEZE_HOURS
    try:
        return float(raw)
    except (TypeError, ValueError):
        return DEFAULT_FREEZE_HOURS


def hours_until_start(event: dict[str, Any], now: datetime | None = None) -> float:
    now = to_utc(now or datetime.now(timezone.utc))
    return (to_utc(event["starts_at"]) - now).total_seconds() / 3600.0


def clock_frozen(event: dict[str, Any], now: datetime | None = None) -> bool:
    return hours_until_start(event, now) <= freeze_hours(event)


def is_frozen(event: dict[str, Any], now: datetime | None = None) -> bool:
    if event.get("freeze_override"):
        return True
    return clock_frozen(event, now)


def freeze_status(event: dict[str, Any], now: datetime | None = None) -> dict[str, Any]:
    now = to_utc(now or datetime.now(timezone.utc))
    hours = freeze_hours(event)
    freeze_time = to_utc(event["starts_at"]) - timedelta(hours=hours)
    until_freeze = (freeze_time - now).total_seconds() / 3600.0
    return {
        "event_id": str(event.get("id")) if event.get("id") else None,
        "is_frozen": is_frozen(event, now),
        "freeze_override": bool(event.get("freeze_override")),
        "freeze_hours_before": hours,
        "freeze_time": freeze_time.isoformat(),
        "hours_until_freeze": round(max(0.0, until_freeze), 2),
    }
