from typing import Any

from fastapi import APIRouter, Depends

from ..auth.deps import get_current_user
from ..deps import parse_uuid
from ..http_helpers import validate_message_payload
from ..schemas import ErrorResponse, GateDecisionResponse, MessageOut
from ..services import moderation

router = APIRouter()
scaffold_router = APIRouter()


@scaffold_router.get("/health")
def chat_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "chat"}


@router.post(
    "/moderation/check",
    response_model=GateDecisionResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def moderation_check(payload: dict[str, Any], current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    group_id, content = validate_message_payload(payload)
    decision = moderation.evaluate_message(current_user["id"], group_id, content)
    return decision.to_dict()


@router.post("/moderation/send")
def moderation_send(payload: dict[str, Any], current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    group_id, content = validate_message_payload(payload)
    return moderation.send_message(current_user["id"], group_id, content)


@router.get("/groups/{group_id}/messages", response_model=dict[str, list[MessageOut]])
def group_messages(group_id: str, current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    messages = moderation.list_messages(current_user["id"], parse_uuid(group_id, "group_id"))
    return {"messages": messages}
