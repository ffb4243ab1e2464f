import logging
from datetime import datetime
from typing import Any

from gatherly import repo

logger = logging.getLogger(__name__)

UNKNOWN_ATTENDANCE_RATE = 0.5


def attendance_rate(attended: int, joined: int) -> float:
    if joined <= 0:
        return UNKNOWN_ATTENDANCE_RATE
    return max(0.0, min(1.0, attended / joined))


def estimate_no_show_risk(attended: int, joined: int) -> int:
    risk = int(round((1.0 - attendance_rate(attended, joined)) * 100))
    return max(0, min(100, risk))


def recompute_no_show_risk(event_id: str, user_ids: list[str], now: datetime | None = None) -> list[dict[str, Any]]:
    if not user_ids:
        return []
    counts = repo.get_attendance_counts(user_ids)
    predictions = []
    for uid in user_ids:
        c = counts.get(uid) or {"attended": 0, "joined": 0}
        predictions.append(
            {
                "user_id": uid,
                "risk_score": estimate_no_show_risk(c["attended"], c["joined"]),
                "factors": {
                    "attendance_rate": round(attendance_rate(c["attended"], c["joined"]), 4),
                    "events_attended": c["attended"],
                    "events_joined": c["joined"],
                },
            }
        )
    repo.upsert_no_show_predictions(event_id, predictions, now=now)
    logger.info("[no_show] event=%s predictions=%s", event_id, len(predictions))
    return predictions
