from datetime import datetime, timedelta, timezone
from typing import Any

from gatherly import repo
from gatherly.config import CHECK_IN_WINDOW_AFTER_MINUTES, CHECK_IN_WINDOW_BEFORE_MINUTES
from gatherly.errors import NotFound, PermissionDenied, ValidationFailed
from gatherly.services.events import emit_product_event
from gatherly.services.freeze import to_utc


def check_in(user_id: str, event_id: str, now: datetime | None = None) -> dict[str, Any]:
    now = to_utc(now or datetime.now(timezone.utc))
    event = repo.get_event(event_id)
    if not event:
        raise NotFound("Event not found")
    if not repo.get_participation(event_id, user_id):
        raise PermissionDenied("You have not joined this event")

    starts_at = to_utc(event["starts_at"])
    opens = starts_at - timedelta(minutes=CHECK_IN_WINDOW_BEFORE_MINUTES)
    closes = starts_at + timedelta(minutes=CHECK_IN_WINDOW_AFTER_MINUTES)
    if now < opens:
        raise ValidationFailed(f"Check-in opens {CHECK_IN_WINDOW_BEFORE_MINUTES} minutes before the event starts")
    if now > closes:
        raise ValidationFailed("Check-in window has closed")

    minutes_before = int((starts_at - now).total_seconds() // 60)
    record = repo.record_check_in(
        event_id,
        user_id,
        org_id=str(event["host_org_id"]) if event.get("host_org_id") else None,
        minutes_before_start=minutes_before,
        now=now,
    )
    if record is None:
        return {"success": True, "already_checked_in": True, "message": "Already checked in"}

    emit_product_event(
        event_name="event_check_in",
        user_id=user_id,
        event_id=event_id,
        properties={"minutes_before_start": minutes_before},
    )
    return {"success": True, "already_checked_in": False, "message": "Checked in", "minutes_before_start": minutes_before}
