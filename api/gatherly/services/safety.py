import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from gatherly import repo
from gatherly.errors import NotFound, ValidationFailed
from gatherly.services.events import emit_product_event

logger = logging.getLogger(__name__)

DEFAULT_BAN_DAYS = 7
DEFAULT_ADMIN_MUTE_MINUTES = 60
REPORT_STATUSES = {"pending", "resolved", "dismissed"}
REPORT_RESOLUTIONS = {"resolved", "dismissed"}


def list_reports(status: str | None = "pending", limit: int = 100) -> list[dict[str, Any]]:
    if status == "all":
        status = None
    if status is not None and status not in REPORT_STATUSES:
        raise ValidationFailed(f"status must be one of: all, {', '.join(sorted(REPORT_STATUSES))}")
    return repo.list_reports(status=status, limit=limit)


def resolve_report(
    actor_id: str,
    report_id: str,
    status: str = "resolved",
    notes: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    if status not in REPORT_RESOLUTIONS:
        raise ValidationFailed("status must be 'resolved' or 'dismissed'")
    row = repo.resolve_report(report_id, actor_id=actor_id, status=status, notes=notes, now=now)
    if not row:
        raise NotFound("Report not found")
    logger.info("[moderation] report=%s %s by=%s", report_id, status, actor_id)
    return row


def submit_report(
    reporter_id: str,
    reported_user_id: str,
    reason: str,
    *,
    group_id: str | None = None,
    message_id: str | None = None,
    details: str | None = None,
) -> dict[str, Any]:
    if reporter_id == reported_user_id:
        raise ValidationFailed("Cannot report yourself")
    if group_id and not repo.is_group_member(group_id, reporter_id):
        raise ValidationFailed("You can only report users from your own groups")
    report = repo.create_report(
        reporter_id=reporter_id,
        reported_user_id=reported_user_id,
        group_id=group_id,
        message_id=message_id,
        reason=reason,
        details=details,
    )
    emit_product_event(
        event_name="safety_report_created",
        user_id=reporter_id,
        group_id=group_id,
        properties={"reason": reason},
    )
    return report


def ban_user(
    actor_id: str,
    user_id: str,
    *,
    permanent: bool = False,
    duration_days: int | None = None,
    reason: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    banned_until = None
    if not permanent:
        days = duration_days or DEFAULT_BAN_DAYS
        if days <= 0:
            raise ValidationFailed("duration_days must be positive")
        banned_until = now + timedelta(days=days)
    ban = repo.create_ban(user_id, permanent=permanent, banned_until=banned_until, reason=reason, banned_by=actor_id)
    logger.info("[moderation] user=%s banned by=%s permanent=%s until=%s", user_id, actor_id, permanent, banned_until)
    return ban


def unban_user(actor_id: str, user_id: str) -> dict[str, Any]:
    removed = repo.delete_bans(user_id)
    logger.info("[moderation] user=%s unbanned by=%s removed=%s", user_id, actor_id, removed)
    return {"success": True, "removed": removed}


def mute_user(
    actor_id: str,
    user_id: str,
    group_id: str,
    *,
    minutes: int | None = None,
    reason: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    if not repo.get_group(group_id):
        raise NotFound("Group not found")
    minutes = minutes or DEFAULT_ADMIN_MUTE_MINUTES
    if minutes <= 0:
        raise ValidationFailed("minutes must be positive")
    mute = repo.upsert_mute(user_id, group_id, now + timedelta(minutes=minutes), reason or "admin_action", muted_by=actor_id)
    logger.info("[moderation] user=%s muted in group=%s by=%s minutes=%s", user_id, group_id, actor_id, minutes)
    return mute


def unmute_user(actor_id: str, user_id: str, group_id: str | None = None) -> dict[str, Any]:
    removed = repo.delete_mutes(user_id, group_id)
    logger.info("[moderation] user=%s unmuted group=%s by=%s removed=%s", user_id, group_id or "*", actor_id, removed)
    return {"success": True, "removed": removed}


def list_mutes(now: datetime | None = None) -> list[dict[str, Any]]:
    return repo.list_active_mutes(now or datetime.now(timezone.utc))


def freeze_single_group(actor_id: str, group_id: str, now: datetime | None = None) -> dict[str, Any]:
    group = repo.freeze_group(group_id, actor_id, now or datetime.now(timezone.utc))
    if not group:
        raise NotFound("Group not found")
    logger.info("[freeze] group=%s frozen by=%s", group_id, actor_id)
    return group
