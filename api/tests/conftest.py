"""Shared fixtures: an in-memory stand-in for `gatherly.repo`.

`FakeStore` mirrors the repo function signatures so the services run
unchanged against plain dicts. The `store` fixture patches every repo
function plus the analytics session, so no database is needed.
"""

import os
import uuid
from datetime import datetime, timedelta, timezone

import pytest

os.environ.setdefault("JWT_SECRET", "test-secret")

from gatherly import repo
from gatherly.services import events as events_service

REPO_FUNCTIONS = [
    "get_event",
    "set_event_freeze_override",
    "create_participation",
    "get_participation",
    "list_unassigned_participant_ids",
    "list_participant_ids_outside_frozen_groups",
    "get_profiles",
    "get_user_roles",
    "get_membership_for_event",
    "create_group",
    "add_group_members",
    "delete_group",
    "delete_unfrozen_groups",
    "get_group",
    "list_event_groups",
    "list_group_members",
    "is_group_member",
    "freeze_event_groups",
    "freeze_group",
    "unfreeze_group",
    "update_group_status",
    "list_stale_forming_groups",
    "get_active_mute",
    "get_active_ban",
    "create_report",
    "list_reports",
    "resolve_report",
    "upsert_mute",
    "delete_mutes",
    "list_active_mutes",
    "create_ban",
    "delete_bans",
    "create_message",
    "list_group_messages",
    "record_check_in",
    "get_attendance_counts",
    "upsert_no_show_predictions",
    "enqueue_outbox_notification",
]


def _uid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FakeStore:
    def __init__(self):
        self.events = {}
        self.profiles = {}
        self.participants = []
        self.groups = {}
        self.members = []
        self.roles = []
        self.mutes = {}
        self.bans = []
        self.reports = []
        self.messages = []
        self.attendance = []
        self.predictions = {}
        self.notifications = {}
        self.product_events = []
        self.fail_member_insert = False

    # builders

    def add_event(self, *, starts_in_hours: float = 48, host_org_id=None, **fields) -> str:
        event_id = fields.pop("id", None) or _uid()
        self.events[event_id] = {
            "id": event_id,
            "host_org_id": host_org_id,
            "title": "Board games night",
            "starts_at": _utcnow() + timedelta(hours=starts_in_hours),
            "max_group_size": 3,
            "freeze_hours_before": 2,
            "freeze_override": False,
            "auto_match": True,
            **fields,
        }
        return event_id

    def add_profile(self, user_id=None, *, interests=("music", "art"), social_energy=3, city=None) -> str:
        user_id = user_id or _uid()
        self.profiles[user_id] = {
            "id": user_id,
            "display_name": f"user-{user_id[:4]}",
            "interests": list(interests),
            "social_energy": social_energy,
            "city": city,
        }
        return user_id

    def add_participant(self, event_id: str, user_id: str) -> None:
        self.create_participation(event_id, user_id)

    def add_group(self, event_id: str, user_ids, *, frozen: bool = False, status=None, created_at=None) -> str:
        group_id = _uid()
        self.groups[group_id] = {
            "id": group_id,
            "event_id": event_id,
            "status": status or ("locked" if frozen else "forming"),
            "frozen": frozen,
            "frozen_at": None,
            "frozen_by": None,
            "compatibility_score": 80,
            "meet_time": None,
            "auto_generated": True,
            "created_at": created_at or _utcnow(),
        }
        for idx, uid in enumerate(user_ids):
            self.members.append({"group_id": group_id, "event_id": event_id, "user_id": uid, "role": "host" if idx == 0 else "member"})
        return group_id

    def add_role(self, user_id: str, role: str, org_id=None) -> None:
        self.roles.append({"user_id": user_id, "role": role, "org_id": org_id})

    def members_of(self, group_id: str) -> list[str]:
        return [m["user_id"] for m in self.members if m["group_id"] == group_id]

    def groups_for_event(self, event_id: str) -> list[dict]:
        return [g for g in self.groups.values() if g["event_id"] == event_id]

    # events and participation

    def get_event(self, event_id):
        event = self.events.get(event_id)
        return dict(event) if event else None

    def set_event_freeze_override(self, event_id, value):
        self.events[event_id]["freeze_override"] = bool(value)

    def create_participation(self, event_id, user_id):
        if self.get_participation(event_id, user_id):
            return False
        self.participants.append({"event_id": event_id, "user_id": user_id, "status": "joined", "attendance_status": None})
        return True

    def get_participation(self, event_id, user_id):
        for p in self.participants:
            if p["event_id"] == event_id and p["user_id"] == user_id:
                return dict(p)
        return None

    def _member_row(self, event_id, user_id):
        for m in self.members:
            if m["event_id"] == event_id and m["user_id"] == user_id:
                return m
        return None

    def list_unassigned_participant_ids(self, event_id):
        return [
            p["user_id"]
            for p in self.participants
            if p["event_id"] == event_id and self._member_row(event_id, p["user_id"]) is None
        ]

    def list_participant_ids_outside_frozen_groups(self, event_id):
        out = []
        for p in self.participants:
            if p["event_id"] != event_id:
                continue
            m = self._member_row(event_id, p["user_id"])
            if m and self.groups[m["group_id"]]["frozen"]:
                continue
            out.append(p["user_id"])
        return out

    def get_profiles(self, user_ids):
        out = []
        for uid in user_ids:
            p = self.profiles.get(uid)
            if p:
                out.append(
                    {
                        "user_id": uid,
                        "display_name": p["display_name"],
                        "interests": [str(i).strip().lower() for i in p["interests"]],
                        "social_energy": p["social_energy"],
                        "city": p["city"],
                    }
                )
        return out

    def get_user_roles(self, user_id):
        return [{"role": r["role"], "org_id": r["org_id"]} for r in self.roles if r["user_id"] == user_id]

    # groups

    def get_membership_for_event(self, user_id, event_id):
        m = self._member_row(event_id, user_id)
        if not m:
            return None
        g = self.groups[m["group_id"]]
        return {
            "group_id": m["group_id"],
            "role": m["role"],
            "group_status": g["status"],
            "frozen": g["frozen"],
            "compatibility_score": g["compatibility_score"],
            "members_count": len(self.members_of(m["group_id"])),
        }

    def create_group(self, event_id, *, status, compatibility_score, meet_time=None, auto_generated=True):
        group_id = _uid()
        self.groups[group_id] = {
            "id": group_id,
            "event_id": event_id,
            "status": status,
            "frozen": False,
            "frozen_at": None,
            "frozen_by": None,
            "compatibility_score": compatibility_score,
            "meet_time": meet_time,
            "auto_generated": auto_generated,
            "created_at": _utcnow(),
        }
        return dict(self.groups[group_id])

    def add_group_members(self, group_id, event_id, members):
        if self.fail_member_insert:
            return False
        for user_id, _role in members:
            if self._member_row(event_id, user_id):
                return False
        for user_id, role in members:
            self.members.append({"group_id": group_id, "event_id": event_id, "user_id": user_id, "role": role})
        return True

    def delete_group(self, group_id):
        self.groups.pop(group_id, None)
        self.members = [m for m in self.members if m["group_id"] != group_id]
        self.mutes = {k: v for k, v in self.mutes.items() if k[1] != group_id}

    def delete_unfrozen_groups(self, event_id):
        doomed = [g["id"] for g in self.groups_for_event(event_id) if not g["frozen"]]
        for gid in doomed:
            self.delete_group(gid)
        return len(doomed)

    def get_group(self, group_id):
        g = self.groups.get(group_id)
        return dict(g) if g else None

    def list_event_groups(self, event_id):
        return [{**g, "member_count": len(self.members_of(g["id"]))} for g in self.groups_for_event(event_id)]

    def list_group_members(self, group_id):
        return [{"user_id": m["user_id"], "role": m["role"], "display_name": None} for m in self.members if m["group_id"] == group_id]

    def is_group_member(self, group_id, user_id):
        return any(m["group_id"] == group_id and m["user_id"] == user_id for m in self.members)

    def _freeze(self, g, actor_id, now):
        g.update({"frozen": True, "frozen_at": now or _utcnow(), "frozen_by": actor_id, "status": "locked"})

    def freeze_event_groups(self, event_id, actor_id, now=None):
        count = 0
        for g in self.groups_for_event(event_id):
            if not g["frozen"]:
                self._freeze(g, actor_id, now)
                count += 1
        return count

    def freeze_group(self, group_id, actor_id, now=None):
        g = self.groups.get(group_id)
        if not g:
            return None
        self._freeze(g, actor_id, now)
        return dict(g)

    def unfreeze_group(self, group_id, status):
        self.groups[group_id].update({"frozen": False, "frozen_at": None, "frozen_by": None, "status": status})

    def update_group_status(self, group_id, status):
        self.groups[group_id]["status"] = status

    def list_stale_forming_groups(self, cutoff):
        return [
            {**g, "member_count": len(self.members_of(g["id"]))}
            for g in self.groups.values()
            if g["status"] == "forming" and not g["frozen"] and g["created_at"] < cutoff
        ]

    # moderation

    def get_active_mute(self, user_id, group_id, now=None):
        mute = self.mutes.get((user_id, group_id))
        if mute and mute["muted_until"] > (now or _utcnow()):
            return dict(mute)
        return None

    def get_active_ban(self, user_id, now=None):
        now = now or _utcnow()
        for b in self.bans:
            if b["user_id"] == user_id and (b["permanent"] or (b["banned_until"] and b["banned_until"] > now)):
                return dict(b)
        return None

    def create_report(self, *, reporter_id, reported_user_id, reason, group_id=None, message_id=None, details=None, moderation_flags=None):
        report = {
            "id": _uid(),
            "reporter_id": reporter_id,
            "reported_user_id": reported_user_id,
            "group_id": group_id,
            "message_id": message_id,
            "reason": reason,
            "details": details,
            "moderation_flags": moderation_flags,
            "status": "pending",
        }
        self.reports.append(report)
        return dict(report)

    def list_reports(self, status="pending", limit=100):
        return [dict(r) for r in self.reports if status is None or r["status"] == status][:limit]

    def resolve_report(self, report_id, *, actor_id, status, notes=None, now=None):
        for r in self.reports:
            if r["id"] == report_id:
                r.update({"status": status, "resolved_by": actor_id, "resolved_at": now or _utcnow(), "resolution_notes": notes})
                return dict(r)
        return None

    def upsert_mute(self, user_id, group_id, muted_until, reason, muted_by=None):
        self.mutes[(user_id, group_id)] = {
            "user_id": user_id,
            "group_id": group_id,
            "muted_until": muted_until,
            "reason": reason,
            "muted_by": muted_by,
        }
        return dict(self.mutes[(user_id, group_id)])

    def delete_mutes(self, user_id, group_id=None):
        doomed = [k for k in self.mutes if k[0] == user_id and (group_id is None or k[1] == group_id)]
        for k in doomed:
            del self.mutes[k]
        return len(doomed)

    def list_active_mutes(self, now=None, limit=200):
        now = now or _utcnow()
        return [dict(m) for m in self.mutes.values() if m["muted_until"] > now][:limit]

    def create_ban(self, user_id, *, permanent, banned_until, reason, banned_by):
        ban = {"id": _uid(), "user_id": user_id, "permanent": permanent, "banned_until": banned_until, "reason": reason, "banned_by": banned_by}
        self.bans.append(ban)
        return dict(ban)

    def delete_bans(self, user_id):
        before = len(self.bans)
        self.bans = [b for b in self.bans if b["user_id"] != user_id]
        return before - len(self.bans)

    def create_message(self, group_id, user_id, content, moderated=True):
        msg = {"id": _uid(), "group_id": group_id, "user_id": user_id, "content": content, "moderated": moderated, "created_at": _utcnow()}
        self.messages.append(msg)
        return dict(msg)

    def list_group_messages(self, group_id, limit=200):
        return [dict(m) for m in self.messages if m["group_id"] == group_id][:limit]

    # attendance

    def record_check_in(self, event_id, user_id, *, org_id, minutes_before_start, now=None):
        if any(a["event_id"] == event_id and a["user_id"] == user_id for a in self.attendance):
            return None
        row = {"event_id": event_id, "user_id": user_id, "org_id": org_id, "minutes_before_start": minutes_before_start, "checked_in_at": now}
        self.attendance.append(row)
        for p in self.participants:
            if p["event_id"] == event_id and p["user_id"] == user_id:
                p["attendance_status"] = "attended"
        return dict(row)

    def get_attendance_counts(self, user_ids):
        out = {}
        for uid in user_ids:
            joined = sum(1 for p in self.participants if p["user_id"] == uid)
            attended = sum(1 for a in self.attendance if a["user_id"] == uid)
            out[uid] = {"joined": joined, "attended": attended}
        return out

    def upsert_no_show_predictions(self, event_id, predictions, now=None):
        for p in predictions:
            self.predictions[(p["user_id"], event_id)] = dict(p)
        return len(predictions)

    # fan-out

    def enqueue_outbox_notification(self, *, user_id, notification_type, payload, idempotency_key, scheduled_for=None):
        row = {"user_id": user_id, "notification_type": notification_type, "payload_json": payload, "idempotency_key": idempotency_key}
        self.notifications[idempotency_key] = row
        return dict(row)


class _RecordingSession:
    def __init__(self, sink):
        self.sink = sink

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, stmt, params=None):
        self.sink.append((str(stmt), params))

    def commit(self):
        return None


@pytest.fixture
def store(monkeypatch):
    fake = FakeStore()
    for name in REPO_FUNCTIONS:
        monkeypatch.setattr(repo, name, getattr(fake, name))
    monkeypatch.setattr(events_service, "SessionLocal", lambda: _RecordingSession(fake.product_events))
    return fake


@pytest.fixture
def now():
    return datetime.now(timezone.utc)
