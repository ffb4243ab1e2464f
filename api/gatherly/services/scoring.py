"""Pairwise and group compatibility scoring.

Pure functions over profile dicts with ``interests``, ``social_energy`` and
``city`` keys. Missing values never raise; they fall back to neutral defaults.
"""
from __future__ import annotations

from typing import Any, Iterable

INTEREST_W = 0.6
ENERGY_W = 0.2
PROXIMITY_W = 0.2

DEFAULT_ENERGY = 3
MIN_ENERGY = 1
MAX_ENERGY = 5
SAME_CITY_SCORE = 1.0
OTHER_CITY_SCORE = 0.5


def _tag_set(values: Any) -> set[str]:
    if not isinstance(values, (list, tuple, set, frozenset)):
        return set()
    out: set[str] = set()
    for item in values:
        tag = str(item or "").strip().lower()
        if tag:
            out.add(tag)
    return out


def _energy(value: Any) -> int:
    try:
        if value is None:
            return DEFAULT_ENERGY
        level = int(value)
    except (TypeError, ValueError):
        return DEFAULT_ENERGY
    return max(MIN_ENERGY, min(MAX_ENERGY, level))


def _city(value: Any) -> str | None:
    if value is None:
        return None
    v = str(value).strip().lower()
    return v or None


def interest_overlap(a: Any, b: Any) -> float:
    set_a = _tag_set(a)
    set_b = _tag_set(b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def energy_closeness(a: Any, b: Any) -> float:
    return 1.0 - abs(_energy(a) - _energy(b)) / (MAX_ENERGY - MIN_ENERGY)


def proximity(city_a: Any, city_b: Any) -> float:
    a = _city(city_a)
    b = _city(city_b)
    # Unknown location is never fully penalized.
    if a is not None and a == b:
        return SAME_CITY_SCORE
    return OTHER_CITY_SCORE


def pairwise_score(profile_a: dict[str, Any], profile_b: dict[str, Any]) -> float:
    a = profile_a or {}
    b = profile_b or {}
    score = (
        INTEREST_W * interest_overlap(a.get("interests"), b.get("interests"))
        + ENERGY_W * energy_closeness(a.get("social_energy"), b.get("social_energy"))
        + PROXIMITY_W * proximity(a.get("city"), b.get("city"))
    )
    return max(0.0, min(1.0, score))


def score_breakdown(profile_a: dict[str, Any], profile_b: dict[str, Any]) -> dict[str, float]:
    a = profile_a or {}
    b = profile_b or {}
    return {
        "interest_overlap": round(interest_overlap(a.get("interests"), b.get("interests")), 6),
        "energy_closeness": round(energy_closeness(a.get("social_energy"), b.get("social_energy")), 6),
        "proximity": round(proximity(a.get("city"), b.get("city")), 6),
        "score_total": round(pairwise_score(a, b), 6),
    }


def group_score(members: Iterable[dict[str, Any]]) -> float:
    profiles = list(members)
    if len(profiles) < 2:
        return 0.0
    total = 0.0
    count = 0
    for i in range(len(profiles)):
        for j in range(i + 1, len(profiles)):
            total += pairwise_score(profiles[i], profiles[j])
            count += 1
    return total / count


def compatibility_percent(members: Iterable[dict[str, Any]]) -> int:
    return int(round(group_score(members) * 100))
