from datetime import datetime
from typing import Any

from pydantic import BaseModel


class JoinResponse(BaseModel):
    group_id: str | None = None
    status: str
    group_status: str | None = None
    members_count: int | None = None
    compatibility_score: int | None = None
    message: str


class GateDecisionResponse(BaseModel):
    allowed: bool
    reason: str | None = None
    message: str | None = None
    moderated: bool | None = None


class GroupActionResponse(BaseModel):
    success: bool
    groups_created: int | None = None
    participants_assigned: int | None = None
    count: int | None = None
    message: str


class FreezeStatusResponse(BaseModel):
    event_id: str | None = None
    is_frozen: bool
    freeze_override: bool
    freeze_hours_before: float
    freeze_time: datetime
    hours_until_freeze: float


class CleanupResponse(BaseModel):
    success: bool
    locked: int
    deleted: int
    message: str


class ErrorResponse(BaseModel):
    error: str
    status: str


class MessageOut(BaseModel):
    id: Any
    group_id: Any
    user_id: Any
    content: str
    moderated: bool
    created_at: datetime | None = None
