from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any

from gatherly.services.scoring import compatibility_percent, group_score


@dataclass
class GroupPlan:
    members: list[dict[str, Any]] = field(default_factory=list)

    @property
    def user_ids(self) -> list[str]:
        return [str(m["user_id"]) for m in self.members]

    @property
    def seed_user_id(self) -> str:
        return str(self.members[0]["user_id"])

    @property
    def score(self) -> float:
        return group_score(self.members)

    @property
    def compatibility_score(self) -> int:
        return compatibility_percent(self.members)


def clamp_group_size(value: Any, default: int = 3, minimum: int = 2, maximum: int = 5) -> int:
    try:
        size = int(value) if value is not None else default
    except (TypeError, ValueError):
        size = default
    return max(minimum, min(maximum, size))


def group_status(member_count: int, size: int) -> str:
    return "locked" if member_count >= size else "forming"


def form_group(seed: dict[str, Any], pool: list[dict[str, Any]], size: int) -> GroupPlan:
    """Greedy fill from `seed` up to `size` members.

    Each step adds the pool candidate that maximises the mean pairwise score
    of the resulting group. Ties keep the earliest candidate in pool order.
    `pool` is not mutated.
    """
    group = [seed]
    remaining = list(pool)
    while len(group) < size and remaining:
        best_idx = 0
        best_score = -1.0
        for idx, candidate in enumerate(remaining):
            s = group_score(group + [candidate])
            if s > best_score:
                best_score = s
                best_idx = idx
        group.append(remaining.pop(best_idx))
    return GroupPlan(members=group)


def assign_for_joiner(candidates: list[dict[str, Any]], seed_user_id: str, size: int) -> GroupPlan | None:
    if len(candidates) < 2:
        return None
    seed = None
    pool = []
    for c in candidates:
        if seed is None and str(c.get("user_id")) == str(seed_user_id):
            seed = c
        else:
            pool.append(c)
    if seed is None or not pool:
        return None
    return form_group(seed, pool, size)


def assign_groups(
    candidates: list[dict[str, Any]],
    size: int,
    rng: random.Random | None = None,
) -> tuple[list[GroupPlan], list[dict[str, Any]]]:
    """Partition `candidates` into groups of at most `size`.

    Returns ``(groups, unassigned)``. Leftovers after the main pass join the
    smallest group until it reaches ``size + 1``.
    """
    rng = rng or random.Random()
    remaining = list(candidates)
    groups: list[GroupPlan] = []

    while len(remaining) >= 2:
        seed = remaining.pop(rng.randrange(len(remaining)))
        plan = form_group(seed, remaining, size)
        taken = {id(m) for m in plan.members[1:]}
        remaining = [c for c in remaining if id(c) not in taken]
        groups.append(plan)

    unassigned: list[dict[str, Any]] = []
    for straggler in remaining:
        if not groups:
            unassigned.append(straggler)
            continue
        smallest = min(groups, key=lambda g: len(g.members))
        if len(smallest.members) < size + 1:
            smallest.members.append(straggler)
        else:
            unassigned.append(straggler)

    return groups, unassigned
