import json
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from gatherly.database import SessionLocal


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_interests(values: Any) -> list[str]:
    if not isinstance(values, (list, tuple)):
        return []
    out: list[str] = []
    for value in values:
        v = str(value or "").strip().lower()
        if v and v not in out:
            out.append(v)
    return out


# Events and participation


def get_event(event_id: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                SELECT id, host_org_id, title, starts_at, max_group_size, freeze_hours_before, freeze_override, auto_match
                FROM events
                WHERE id=CAST(:event_id AS uuid)
                """
            ),
            {"event_id": event_id},
        ).mappings().first()
    return dict(row) if row else None


def set_event_freeze_override(event_id: str, value: bool) -> None:
    with SessionLocal() as db:
        db.execute(
            text("UPDATE events SET freeze_override=:value WHERE id=CAST(:event_id AS uuid)"),
            {"event_id": event_id, "value": bool(value)},
        )
        db.commit()


def create_participation(event_id: str, user_id: str) -> bool:
    """Insert a participation row. False means the user had already joined."""
    try:
        with SessionLocal() as db:
            db.execute(
                text(
                    """
                    INSERT INTO event_participants (id, event_id, user_id, status)
                    VALUES (:id, CAST(:event_id AS uuid), CAST(:user_id AS uuid), 'joined')
                    """
                ),
                {"id": str(uuid.uuid4()), "event_id": event_id, "user_id": user_id},
            )
            db.commit()
    except IntegrityError:
        return False
    return True


def get_participation(event_id: str, user_id: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                SELECT id, event_id, user_id, status, attendance_status, attendance_at, created_at
                FROM event_participants
                WHERE event_id=CAST(:event_id AS uuid)
                  AND user_id=CAST(:user_id AS uuid)
                """
            ),
            {"event_id": event_id, "user_id": user_id},
        ).mappings().first()
    return dict(row) if row else None


def list_unassigned_participant_ids(event_id: str) -> list[str]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT ep.user_id
                FROM event_participants ep
                WHERE ep.event_id=CAST(:event_id AS uuid)
                  AND ep.status='joined'
                  AND NOT EXISTS (
                    SELECT 1
                    FROM micro_group_members m
                    WHERE m.event_id=ep.event_id
                      AND m.user_id=ep.user_id
                  )
                ORDER BY ep.created_at ASC
                """
            ),
            {"event_id": event_id},
        ).mappings().all()
    return [str(r["user_id"]) for r in rows]


def list_participant_ids_outside_frozen_groups(event_id: str) -> list[str]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT ep.user_id
                FROM event_participants ep
                WHERE ep.event_id=CAST(:event_id AS uuid)
                  AND ep.status='joined'
                  AND NOT EXISTS (
                    SELECT 1
                    FROM micro_group_members m
                    JOIN micro_groups g ON g.id = m.group_id
                    WHERE m.event_id=ep.event_id
                      AND m.user_id=ep.user_id
                      AND g.frozen = TRUE
                  )
                ORDER BY ep.created_at ASC
                """
            ),
            {"event_id": event_id},
        ).mappings().all()
    return [str(r["user_id"]) for r in rows]


def get_profiles(user_ids: list[str]) -> list[dict[str, Any]]:
    """Fetch profiles for all `user_ids` in one query, keeping input order."""
    if not user_ids:
        return []
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT id, display_name, interests, social_energy, city
                FROM profiles
                WHERE id = ANY(CAST(:ids AS uuid[]))
                """
            ),
            {"ids": list(user_ids)},
        ).mappings().all()
    by_id = {
        str(r["id"]): {
            "user_id": str(r["id"]),
            "display_name": r.get("display_name"),
            "interests": _normalize_interests(r.get("interests")),
            "social_energy": r.get("social_energy"),
            "city": r.get("city"),
        }
        for r in rows
    }
    return [by_id[uid] for uid in user_ids if uid in by_id]


def get_user_roles(user_id: str) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT role, org_id
                FROM user_roles
                WHERE user_id=CAST(:user_id AS uuid)
                """
            ),
            {"user_id": user_id},
        ).mappings().all()
    return [{"role": r["role"], "org_id": str(r["org_id"]) if r.get("org_id") else None} for r in rows]


# Groups and memberships


def get_membership_for_event(user_id: str, event_id: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                SELECT m.group_id, m.role, g.status AS group_status, g.frozen, g.compatibility_score,
                       (SELECT COUNT(1) FROM micro_group_members mm WHERE mm.group_id = m.group_id) AS members_count
                FROM micro_group_members m
                JOIN micro_groups g ON g.id = m.group_id
                WHERE m.event_id=CAST(:event_id AS uuid)
                  AND m.user_id=CAST(:user_id AS uuid)
                """
            ),
            {"event_id": event_id, "user_id": user_id},
        ).mappings().first()
    if not row:
        return None
    out = dict(row)
    out["group_id"] = str(out["group_id"])
    return out


def create_group(
    event_id: str,
    *,
    status: str,
    compatibility_score: int | None,
    meet_time: datetime | None = None,
    auto_generated: bool = True,
) -> dict[str, Any]:
    group_id = str(uuid.uuid4())
    with SessionLocal() as db:
        db.execute(
            text(
                """
                INSERT INTO micro_groups (id, event_id, status, frozen, compatibility_score, meet_time, auto_generated)
                VALUES (CAST(:id AS uuid), CAST(:event_id AS uuid), :status, FALSE, :compatibility_score, :meet_time, :auto_generated)
                """
            ),
            {
                "id": group_id,
                "event_id": event_id,
                "status": status,
                "compatibility_score": compatibility_score,
                "meet_time": meet_time,
                "auto_generated": auto_generated,
            },
        )
        db.commit()
    return {
        "id": group_id,
        "event_id": event_id,
        "status": status,
        "frozen": False,
        "compatibility_score": compatibility_score,
        "meet_time": meet_time,
        "auto_generated": auto_generated,
    }


def add_group_members(group_id: str, event_id: str, members: list[tuple[str, str]]) -> bool:
    """Insert all `(user_id, role)` rows in one transaction.

    Returns False when a uniqueness constraint rejects any row; nothing is
    written in that case.
    """
    if not members:
        return True
    try:
        with SessionLocal() as db:
            db.execute(
                text(
                    """
                    INSERT INTO micro_group_members (id, group_id, event_id, user_id, role)
                    VALUES (CAST(:id AS uuid), CAST(:group_id AS uuid), CAST(:event_id AS uuid), CAST(:user_id AS uuid), :role)
                    """
                ),
                [
                    {
                        "id": str(uuid.uuid4()),
                        "group_id": group_id,
                        "event_id": event_id,
                        "user_id": user_id,
                        "role": role,
                    }
                    for user_id, role in members
                ],
            )
            db.commit()
    except IntegrityError:
        return False
    return True


def delete_group(group_id: str) -> None:
    with SessionLocal() as db:
        db.execute(text("DELETE FROM micro_groups WHERE id=CAST(:group_id AS uuid)"), {"group_id": group_id})
        db.commit()


def delete_unfrozen_groups(event_id: str) -> int:
    with SessionLocal() as db:
        result = db.execute(
            text(
                """
                DELETE FROM micro_groups
                WHERE event_id=CAST(:event_id AS uuid)
                  AND frozen = FALSE
                """
            ),
            {"event_id": event_id},
        )
        db.commit()
    return int(result.rowcount or 0)


def get_group(group_id: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                SELECT id, event_id, status, frozen, frozen_at, frozen_by, compatibility_score, meet_time, auto_generated, created_at
                FROM micro_groups
                WHERE id=CAST(:group_id AS uuid)
                """
            ),
            {"group_id": group_id},
        ).mappings().first()
    return dict(row) if row else None


def list_event_groups(event_id: str) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT g.id, g.event_id, g.status, g.frozen, g.compatibility_score, g.created_at,
                       COUNT(m.id) AS member_count
                FROM micro_groups g
                LEFT JOIN micro_group_members m ON m.group_id = g.id
                WHERE g.event_id=CAST(:event_id AS uuid)
                GROUP BY g.id
                ORDER BY g.created_at ASC
                """
            ),
            {"event_id": event_id},
        ).mappings().all()
    return [{**dict(r), "id": str(r["id"]), "member_count": int(r["member_count"] or 0)} for r in rows]


def list_group_members(group_id: str) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT m.user_id, m.role, p.display_name
                FROM micro_group_members m
                LEFT JOIN profiles p ON p.id = m.user_id
                WHERE m.group_id=CAST(:group_id AS uuid)
                ORDER BY m.created_at ASC
                """
            ),
            {"group_id": group_id},
        ).mappings().all()
    return [{"user_id": str(r["user_id"]), "role": r["role"], "display_name": r.get("display_name")} for r in rows]


def is_group_member(group_id: str, user_id: str) -> bool:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                SELECT 1
                FROM micro_group_members
                WHERE group_id=CAST(:group_id AS uuid)
                  AND user_id=CAST(:user_id AS uuid)
                """
            ),
            {"group_id": group_id, "user_id": user_id},
        ).first()
    return row is not None


def freeze_event_groups(event_id: str, actor_id: str, now: datetime | None = None) -> int:
    with SessionLocal() as db:
        result = db.execute(
            text(
                """
                UPDATE micro_groups
                SET frozen = TRUE,
                    frozen_at = :now,
                    frozen_by = CAST(:actor_id AS uuid),
                    status = 'locked'
                WHERE event_id=CAST(:event_id AS uuid)
                  AND frozen = FALSE
                """
            ),
            {"event_id": event_id, "actor_id": actor_id, "now": now or _now_utc()},
        )
        db.commit()
    return int(result.rowcount or 0)


def freeze_group(group_id: str, actor_id: str, now: datetime | None = None) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                UPDATE micro_groups
                SET frozen = TRUE,
                    frozen_at = :now,
                    frozen_by = CAST(:actor_id AS uuid),
                    status = 'locked'
                WHERE id=CAST(:group_id AS uuid)
                RETURNING id, event_id, status, frozen, frozen_at, frozen_by
                """
            ),
            {"group_id": group_id, "actor_id": actor_id, "now": now or _now_utc()},
        ).mappings().first()
        db.commit()
    return dict(row) if row else None


def unfreeze_group(group_id: str, status: str) -> None:
    with SessionLocal() as db:
        db.execute(
            text(
                """
                UPDATE micro_groups
                SET frozen = FALSE,
                    frozen_at = NULL,
                    frozen_by = NULL,
                    status = :status
                WHERE id=CAST(:group_id AS uuid)
                """
            ),
            {"group_id": group_id, "status": status},
        )
        db.commit()


def update_group_status(group_id: str, status: str) -> None:
    with SessionLocal() as db:
        db.execute(
            text("UPDATE micro_groups SET status=:status WHERE id=CAST(:group_id AS uuid)"),
            {"group_id": group_id, "status": status},
        )
        db.commit()


def list_stale_forming_groups(cutoff: datetime) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT g.id, g.event_id, g.status, g.created_at, COUNT(m.id) AS member_count
                FROM micro_groups g
                LEFT JOIN micro_group_members m ON m.group_id = g.id
                WHERE g.status = 'forming'
                  AND g.frozen = FALSE
                  AND g.created_at < :cutoff
                GROUP BY g.id
                ORDER BY g.created_at ASC
                """
            ),
            {"cutoff": cutoff},
        ).mappings().all()
    return [{**dict(r), "id": str(r["id"]), "member_count": int(r["member_count"] or 0)} for r in rows]


# Moderation


def get_active_mute(user_id: str, group_id: str, now: datetime | None = None) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                SELECT id, user_id, group_id, muted_until, reason
                FROM user_mutes
                WHERE user_id=CAST(:user_id AS uuid)
                  AND group_id=CAST(:group_id AS uuid)
                  AND muted_until > :now
                """
            ),
            {"user_id": user_id, "group_id": group_id, "now": now or _now_utc()},
        ).mappings().first()
    return dict(row) if row else None


def get_active_ban(user_id: str, now: datetime | None = None) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                SELECT id, user_id, permanent, banned_until, reason
                FROM user_bans
                WHERE user_id=CAST(:user_id AS uuid)
                  AND (permanent = TRUE OR banned_until > :now)
                ORDER BY permanent DESC, banned_until DESC NULLS LAST
                LIMIT 1
                """
            ),
            {"user_id": user_id, "now": now or _now_utc()},
        ).mappings().first()
    return dict(row) if row else None


def create_report(
    *,
    reporter_id: str | None,
    reported_user_id: str,
    reason: str,
    group_id: str | None = None,
    message_id: str | None = None,
    details: str | None = None,
    moderation_flags: dict[str, Any] | None = None,
) -> dict[str, Any]:
    report_id = str(uuid.uuid4())
    with SessionLocal() as db:
        db.execute(
            text(
                """
                INSERT INTO reports (id, reporter_id, reported_user_id, message_id, group_id, reason, details, moderation_flags, status)
                VALUES (
                  CAST(:id AS uuid),
                  CAST(NULLIF(:reporter_id, '') AS uuid),
                  CAST(:reported_user_id AS uuid),
                  CAST(NULLIF(:message_id, '') AS uuid),
                  CAST(NULLIF(:group_id, '') AS uuid),
                  :reason,
                  :details,
                  CAST(:moderation_flags AS jsonb),
                  'pending'
                )
                """
            ),
            {
                "id": report_id,
                "reporter_id": reporter_id or "",
                "reported_user_id": reported_user_id,
                "message_id": message_id or "",
                "group_id": group_id or "",
                "reason": reason,
                "details": details,
                "moderation_flags": json.dumps(moderation_flags) if moderation_flags is not None else None,
            },
        )
        db.commit()
    return {
        "id": report_id,
        "reporter_id": reporter_id,
        "reported_user_id": reported_user_id,
        "message_id": message_id,
        "group_id": group_id,
        "reason": reason,
        "details": details,
        "moderation_flags": moderation_flags,
        "status": "pending",
    }


def list_reports(status: str | None = "pending", limit: int = 100) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT id, reporter_id, reported_user_id, message_id, group_id, reason, details,
                       moderation_flags, status, resolved_by, resolved_at, resolution_notes, created_at
                FROM reports
                WHERE (:status IS NULL OR status = :status)
                ORDER BY created_at DESC
                LIMIT :limit
                """
            ),
            {"status": status, "limit": limit},
        ).mappings().all()
    return [dict(r) for r in rows]


def resolve_report(
    report_id: str,
    *,
    actor_id: str,
    status: str,
    notes: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                UPDATE reports
                SET status = :status,
                    resolved_by = CAST(:actor_id AS uuid),
                    resolved_at = :now,
                    resolution_notes = :notes
                WHERE id=CAST(:report_id AS uuid)
                RETURNING id, reported_user_id, status, resolved_by, resolved_at, resolution_notes
                """
            ),
            {"report_id": report_id, "actor_id": actor_id, "status": status, "notes": notes, "now": now or _now_utc()},
        ).mappings().first()
        db.commit()
    return dict(row) if row else None


def upsert_mute(
    user_id: str,
    group_id: str,
    muted_until: datetime,
    reason: str,
    muted_by: str | None = None,
) -> dict[str, Any]:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                INSERT INTO user_mutes (id, user_id, group_id, muted_until, reason, muted_by)
                VALUES (
                  CAST(:id AS uuid),
                  CAST(:user_id AS uuid),
                  CAST(:group_id AS uuid),
                  :muted_until,
                  :reason,
                  CAST(NULLIF(:muted_by, '') AS uuid)
                )
                ON CONFLICT (user_id, group_id)
                DO UPDATE SET
                  muted_until = EXCLUDED.muted_until,
                  reason = EXCLUDED.reason,
                  muted_by = EXCLUDED.muted_by
                RETURNING id, user_id, group_id, muted_until, reason
                """
            ),
            {
                "id": str(uuid.uuid4()),
                "user_id": user_id,
                "group_id": group_id,
                "muted_until": muted_until,
                "reason": reason,
                "muted_by": muted_by or "",
            },
        ).mappings().first()
        db.commit()
    return dict(row) if row else {"user_id": user_id, "group_id": group_id, "muted_until": muted_until, "reason": reason}


def delete_mutes(user_id: str, group_id: str | None = None) -> int:
    with SessionLocal() as db:
        result = db.execute(
            text(
                """
                DELETE FROM user_mutes
                WHERE user_id=CAST(:user_id AS uuid)
                  AND (CAST(NULLIF(:group_id, '') AS uuid) IS NULL OR group_id = CAST(NULLIF(:group_id, '') AS uuid))
                """
            ),
            {"user_id": user_id, "group_id": group_id or ""},
        )
        db.commit()
    return int(result.rowcount or 0)


def list_active_mutes(now: datetime | None = None, limit: int = 200) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT id, user_id, group_id, muted_until, reason, muted_by, created_at
                FROM user_mutes
                WHERE muted_until > :now
                ORDER BY muted_until DESC
                LIMIT :limit
                """
            ),
            {"now": now or _now_utc(), "limit": limit},
        ).mappings().all()
    return [dict(r) for r in rows]


def create_ban(
    user_id: str,
    *,
    permanent: bool,
    banned_until: datetime | None,
    reason: str | None,
    banned_by: str | None,
) -> dict[str, Any]:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                INSERT INTO user_bans (id, user_id, permanent, banned_until, reason, banned_by)
                VALUES (
                  CAST(:id AS uuid),
                  CAST(:user_id AS uuid),
                  :permanent,
                  :banned_until,
                  :reason,
                  CAST(NULLIF(:banned_by, '') AS uuid)
                )
                RETURNING id, user_id, permanent, banned_until, reason
                """
            ),
            {
                "id": str(uuid.uuid4()),
                "user_id": user_id,
                "permanent": permanent,
                "banned_until": banned_until,
                "reason": reason,
                "banned_by": banned_by or "",
            },
        ).mappings().first()
        db.commit()
    return dict(row) if row else {"user_id": user_id, "permanent": permanent, "banned_until": banned_until, "reason": reason}


def delete_bans(user_id: str) -> int:
    with SessionLocal() as db:
        result = db.execute(text("DELETE FROM user_bans WHERE user_id=CAST(:user_id AS uuid)"), {"user_id": user_id})
        db.commit()
    return int(result.rowcount or 0)


# Messages


def create_message(group_id: str, user_id: str, content: str, moderated: bool = True) -> dict[str, Any]:
    message_id = str(uuid.uuid4())
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                INSERT INTO messages (id, group_id, user_id, content, moderated)
                VALUES (CAST(:id AS uuid), CAST(:group_id AS uuid), CAST(:user_id AS uuid), :content, :moderated)
                RETURNING id, group_id, user_id, content, moderated, created_at
                """
            ),
            {"id": message_id, "group_id": group_id, "user_id": user_id, "content": content, "moderated": moderated},
        ).mappings().first()
        db.commit()
    return dict(row) if row else {"id": message_id, "group_id": group_id, "user_id": user_id, "content": content, "moderated": moderated}


def list_group_messages(group_id: str, limit: int = 200) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT id, group_id, user_id, content, moderated, created_at
                FROM messages
                WHERE group_id=CAST(:group_id AS uuid)
                ORDER BY created_at ASC
                LIMIT :limit
                """
            ),
            {"group_id": group_id, "limit": limit},
        ).mappings().all()
    return [dict(r) for r in rows]


# Attendance and no-show predictions


def record_check_in(
    event_id: str,
    user_id: str,
    *,
    org_id: str | None,
    minutes_before_start: int,
    now: datetime | None = None,
) -> dict[str, Any] | None:
    """Returns None when the user already checked in for the event."""
    now = now or _now_utc()
    try:
        with SessionLocal() as db:
            db.execute(
                text(
                    """
                    INSERT INTO attendance_records (id, event_id, user_id, org_id, checked_in_at, minutes_before_start)
                    VALUES (
                      CAST(:id AS uuid),
                      CAST(:event_id AS uuid),
                      CAST(:user_id AS uuid),
                      CAST(NULLIF(:org_id, '') AS uuid),
                      :now,
                      :minutes_before_start
                    )
                    """
                ),
                {
                    "id": str(uuid.uuid4()),
                    "event_id": event_id,
                    "user_id": user_id,
                    "org_id": org_id or "",
                    "now": now,
                    "minutes_before_start": minutes_before_start,
                },
            )
            db.execute(
                text(
                    """
                    UPDATE event_participants
                    SET attendance_status='attended', attendance_at=:now
                    WHERE event_id=CAST(:event_id AS uuid)
                      AND user_id=CAST(:user_id AS uuid)
                    """
                ),
                {"event_id": event_id, "user_id": user_id, "now": now},
            )
            db.commit()
    except IntegrityError:
        return None
    return {
        "event_id": event_id,
        "user_id": user_id,
        "checked_in_at": now,
        "minutes_before_start": minutes_before_start,
    }


def get_attendance_counts(user_ids: list[str]) -> dict[str, dict[str, int]]:
    if not user_ids:
        return {}
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT ep.user_id,
                       COUNT(ep.id) AS joined,
                       COUNT(ar.id) AS attended
                FROM event_participants ep
                LEFT JOIN attendance_records ar
                  ON ar.event_id = ep.event_id AND ar.user_id = ep.user_id
                WHERE ep.user_id = ANY(CAST(:ids AS uuid[]))
                GROUP BY ep.user_id
                """
            ),
            {"ids": list(user_ids)},
        ).mappings().all()
    counts = {uid: {"joined": 0, "attended": 0} for uid in user_ids}
    for r in rows:
        counts[str(r["user_id"])] = {"joined": int(r["joined"] or 0), "attended": int(r["attended"] or 0)}
    return counts


def upsert_no_show_predictions(event_id: str, predictions: list[dict[str, Any]], now: datetime | None = None) -> int:
    if not predictions:
        return 0
    now = now or _now_utc()
    with SessionLocal() as db:
        db.execute(
            text(
                """
                INSERT INTO no_show_predictions (id, user_id, event_id, risk_score, factors, computed_at)
                VALUES (CAST(:id AS uuid), CAST(:user_id AS uuid), CAST(:event_id AS uuid), :risk_score, CAST(:factors AS jsonb), :now)
                ON CONFLICT (user_id, event_id)
                DO UPDATE SET
                  risk_score = EXCLUDED.risk_score,
                  factors = EXCLUDED.factors,
                  computed_at = EXCLUDED.computed_at
                """
            ),
            [
                {
                    "id": str(uuid.uuid4()),
                    "user_id": p["user_id"],
                    "event_id": event_id,
                    "risk_score": int(p["risk_score"]),
                    "factors": json.dumps(p.get("factors") or {}),
                    "now": now,
                }
                for p in predictions
            ],
        )
        db.commit()
    return len(predictions)


# Fan-out


def enqueue_outbox_notification(
    *,
    user_id: str,
    notification_type: str,
    payload: dict[str, Any],
    idempotency_key: str,
    scheduled_for: datetime | None = None,
) -> dict[str, Any]:
    scheduled_for = scheduled_for or _now_utc()
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                INSERT INTO notifications_outbox (
                  id,
                  user_id,
                  notification_type,
                  payload_json,
                  status,
                  scheduled_for,
                  idempotency_key,
                  created_at,
                  updated_at
                )
                VALUES (
                  CAST(:id AS uuid),
                  CAST(:user_id AS uuid),
                  :notification_type,
                  CAST(:payload_json AS jsonb),
                  'pending',
                  :scheduled_for,
                  :idempotency_key,
                  NOW(),
                  NOW()
                )
                ON CONFLICT (idempotency_key)
                DO UPDATE SET
                  payload_json = EXCLUDED.payload_json,
                  updated_at = NOW()
                RETURNING id, user_id, notification_type, payload_json, status, scheduled_for, idempotency_key
                """
            ),
            {
                "id": str(uuid.uuid4()),
                "user_id": user_id,
                "notification_type": notification_type,
                "payload_json": json.dumps(payload or {}),
                "scheduled_for": scheduled_for,
                "idempotency_key": idempotency_key,
            },
        ).mappings().first()
        db.commit()
    return dict(row) if row else {
        "user_id": user_id,
        "notification_type": notification_type,
        "payload_json": payload,
        "status": "pending",
        "scheduled_for": scheduled_for,
        "idempotency_key": idempotency_key,
    }
