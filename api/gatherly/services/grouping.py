"""Group lifecycle: joining an event, admin regeneration and freezing, cleanup.

Every persistence step goes through `gatherly.repo`. There is no surrounding
transaction; uniqueness constraints on participation and membership are the
concurrency guards and a failed membership insert deletes its group.
"""
from __future__ import annotations

import logging
import random
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from gatherly import repo
from gatherly.auth.admin_deps import can_manage_event
from gatherly.config import DEFAULT_GROUP_SIZE, MAX_GROUP_SIZE, MIN_GROUP_SIZE, STALE_GROUP_MINUTES
from gatherly.errors import EventFrozen, InternalFailure, NotFound, PermissionDenied, ValidationFailed
from gatherly.services.events import emit_product_event, notify_group_assigned
from gatherly.services.freeze import clock_frozen, is_frozen
from gatherly.services.matching import GroupPlan, assign_for_joiner, assign_groups, clamp_group_size, group_status
from gatherly.services.no_show import recompute_no_show_risk
from gatherly.services.state_machine import transition_group

logger = logging.getLogger(__name__)

GROUP_ACTIONS = {"regenerate", "force_regenerate", "freeze", "unfreeze"}


@dataclass
class JoinResult:
    status: str
    message: str
    group_id: str | None = None
    group_status: str | None = None
    members_count: int | None = None
    compatibility_score: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None or k == "group_id"}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def target_group_size(event: dict[str, Any]) -> int:
    return clamp_group_size(
        event.get("max_group_size"),
        default=DEFAULT_GROUP_SIZE,
        minimum=MIN_GROUP_SIZE,
        maximum=MAX_GROUP_SIZE,
    )


def _persist_plan(event: dict[str, Any], plan: GroupPlan, size: int) -> dict[str, Any] | None:
    event_id = str(event["id"])
    status = group_status(len(plan.members), size)
    group = repo.create_group(
        event_id,
        status=status,
        compatibility_score=plan.compatibility_score,
        meet_time=event.get("starts_at"),
    )
    members = [(uid, "host" if idx == 0 else "member") for idx, uid in enumerate(plan.user_ids)]
    try:
        inserted = repo.add_group_members(group["id"], event_id, members)
    except SQLAlchemyError as exc:
        logger.error("[matching] membership insert failed event=%s group=%s; removing group: %s", event_id, group["id"], exc)
        repo.delete_group(group["id"])
        raise InternalFailure("Could not create a group, please try again") from exc
    if not inserted:
        logger.warning("[matching] membership insert rejected event=%s group=%s; removing group", event_id, group["id"])
        repo.delete_group(group["id"])
        return None
    return group


def _announce(group_id: str, event_id: str, plan: GroupPlan, status: str, trigger: str) -> None:
    notify_group_assigned(group_id=group_id, event_id=event_id, user_ids=plan.user_ids)
    emit_product_event(
        event_name="group_created",
        user_id=plan.seed_user_id,
        event_id=event_id,
        group_id=group_id,
        properties={
            "trigger": trigger,
            "members_count": len(plan.members),
            "compatibility_score": plan.compatibility_score,
            "group_status": status,
        },
    )


def _existing_result(membership: dict[str, Any]) -> JoinResult:
    return JoinResult(
        status="assigned",
        message="You are already in a group for this event",
        group_id=membership["group_id"],
        group_status=membership.get("group_status"),
        members_count=int(membership["members_count"]) if membership.get("members_count") is not None else None,
        compatibility_score=membership.get("compatibility_score"),
    )


def join_event(user_id: str, event_id: str, now: datetime | None = None) -> JoinResult:
    now = now or _now()

    event = repo.get_event(event_id)
    if not event:
        raise NotFound("Event not found")

    membership = repo.get_membership_for_event(user_id, event_id)
    if membership:
        return _existing_result(membership)

    if not repo.create_participation(event_id, user_id):
        logger.info("[matching] user=%s already joined event=%s", user_id, event_id)

    if is_frozen(event, now):
        raise EventFrozen("Groups for this event are frozen")

    size = target_group_size(event)
    candidates = repo.get_profiles(repo.list_unassigned_participant_ids(event_id))
    if len(candidates) < 2:
        return JoinResult(status="waiting", message="Waiting for more participants to join")

    plan = assign_for_joiner(candidates, user_id, size)
    if plan is None:
        return JoinResult(status="waiting", message="Complete your profile to be matched into a group")

    group = _persist_plan(event, plan, size)
    if group is None:
        membership = repo.get_membership_for_event(user_id, event_id)
        if membership:
            return _existing_result(membership)
        raise InternalFailure("Could not create a group, please try again")

    status = group["status"]
    _announce(group["id"], event_id, plan, status, trigger="join")
    logger.info(
        "[matching] event=%s group=%s members=%s score=%s status=%s",
        event_id,
        group["id"],
        len(plan.members),
        plan.compatibility_score,
        status,
    )
    return JoinResult(
        status="assigned" if status == "locked" else "forming",
        message="You have been matched into a group" if status == "locked" else "Your group is forming",
        group_id=group["id"],
        group_status=status,
        members_count=len(plan.members),
        compatibility_score=plan.compatibility_score,
    )


def _regenerate(event: dict[str, Any], *, force: bool, now: datetime, rng: random.Random | None) -> dict[str, Any]:
    event_id = str(event["id"])
    if not force and is_frozen(event, now):
        raise EventFrozen("Groups for this event are frozen; use force_regenerate to override")

    size = target_group_size(event)
    removed = repo.delete_unfrozen_groups(event_id)
    candidates = repo.get_profiles(repo.list_participant_ids_outside_frozen_groups(event_id))
    plans, unassigned = assign_groups(candidates, size, rng or random.Random())

    groups_created = 0
    participants_assigned = 0
    for plan in plans:
        group = _persist_plan(event, plan, size)
        if group is None:
            continue
        groups_created += 1
        participants_assigned += len(plan.members)
        _announce(group["id"], event_id, plan, group["status"], trigger="regenerate")

    try:
        recompute_no_show_risk(event_id, [c["user_id"] for c in candidates], now=now)
    except SQLAlchemyError as exc:
        logger.warning("[matching] no-show recompute failed event=%s: %s", event_id, exc)

    logger.info(
        "[matching] regenerated event=%s removed=%s created=%s assigned=%s unassigned=%s force=%s",
        event_id,
        removed,
        groups_created,
        participants_assigned,
        len(unassigned),
        force,
    )
    return {
        "success": True,
        "groups_created": groups_created,
        "participants_assigned": participants_assigned,
        "message": f"Created {groups_created} groups with {participants_assigned} participants",
    }


def _freeze(event: dict[str, Any], actor_id: str, now: datetime) -> dict[str, Any]:
    event_id = str(event["id"])
    repo.set_event_freeze_override(event_id, True)
    count = repo.freeze_event_groups(event_id, actor_id, now)
    logger.info("[freeze] event=%s frozen by=%s groups=%s", event_id, actor_id, count)
    return {"success": True, "count": count, "message": f"Froze {count} groups"}


def _unfreeze(event: dict[str, Any], actor_id: str, now: datetime) -> dict[str, Any]:
    event_id = str(event["id"])
    if clock_frozen(event, now):
        raise EventFrozen("Cannot unfreeze: the event is inside its freeze window")

    repo.set_event_freeze_override(event_id, False)
    size = target_group_size(event)
    count = 0
    for group in repo.list_event_groups(event_id):
        if not group.get("frozen"):
            continue
        status = transition_group(group["status"], "unfreeze", group["member_count"], size)
        repo.unfreeze_group(group["id"], status)
        count += 1
    logger.info("[freeze] event=%s unfrozen by=%s groups=%s", event_id, actor_id, count)
    return {"success": True, "count": count, "message": f"Unfroze {count} groups"}


def manage_event_groups(
    actor_id: str,
    event_id: str,
    action: str,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> dict[str, Any]:
    now = now or _now()
    if action not in GROUP_ACTIONS:
        raise ValidationFailed(f"action must be one of: {', '.join(sorted(GROUP_ACTIONS))}")

    event = repo.get_event(event_id)
    if not event:
        raise NotFound("Event not found")

    if not can_manage_event(repo.get_user_roles(actor_id), event):
        raise PermissionDenied("You are not allowed to manage groups for this event")

    if action == "freeze":
        return _freeze(event, actor_id, now)
    if action == "unfreeze":
        return _unfreeze(event, actor_id, now)
    return _regenerate(event, force=action == "force_regenerate", now=now, rng=rng)


def cleanup_stale_groups(now: datetime | None = None) -> dict[str, Any]:
    now = now or _now()
    cutoff = now - timedelta(minutes=STALE_GROUP_MINUTES)
    locked = 0
    deleted = 0
    for group in repo.list_stale_forming_groups(cutoff):
        status = transition_group(group["status"], "stale", group["member_count"], MIN_GROUP_SIZE)
        if status == "locked":
            repo.update_group_status(group["id"], "locked")
            locked += 1
        else:
            repo.delete_group(group["id"])
            deleted += 1
    logger.info("[matching] stale cleanup locked=%s deleted=%s", locked, deleted)
    return {"success": True, "locked": locked, "deleted": deleted, "message": f"Locked {locked} groups, deleted {deleted}"}


def get_my_group(user_id: str, event_id: str) -> dict[str, Any]:
    if not repo.get_event(event_id):
        raise NotFound("Event not found")
    membership = repo.get_membership_for_event(user_id, event_id)
    if not membership:
        return {"group": None}
    group = repo.get_group(membership["group_id"]) or {}
    return {
        "group": {
            "id": membership["group_id"],
            "status": membership.get("group_status"),
            "frozen": bool(group.get("frozen")),
            "compatibility_score": membership.get("compatibility_score"),
            "meet_time": group.get("meet_time"),
            "role": membership.get("role"),
            "members": repo.list_group_members(membership["group_id"]),
        }
    }
