from typing import Any

from fastapi import APIRouter, Depends

from .. import repo
from ..auth.deps import get_current_user
from ..deps import parse_uuid
from ..errors import NotFound
from ..http_helpers import validate_join_payload
from ..schemas import ErrorResponse, FreezeStatusResponse, JoinResponse
from ..services import attendance, freeze, grouping

router = APIRouter()
scaffold_router = APIRouter()


@scaffold_router.get("/health")
def events_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "events"}


@router.post(
    "/events/join",
    response_model=JoinResponse,
    response_model_exclude_none=True,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def join_event(payload: dict[str, Any], current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    event_id = validate_join_payload(payload)
    result = grouping.join_event(current_user["id"], event_id)
    return result.to_dict()


@router.get("/events/{event_id}/my-group")
def my_group(event_id: str, current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    return grouping.get_my_group(current_user["id"], parse_uuid(event_id, "event_id"))


@router.get("/events/{event_id}/freeze-status", response_model=FreezeStatusResponse)
def freeze_status(event_id: str, current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    event = repo.get_event(parse_uuid(event_id, "event_id"))
    if not event:
        raise NotFound("Event not found")
    return freeze.freeze_status(event)


@router.post("/events/{event_id}/check-in")
def check_in(event_id: str, current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    return attendance.check_in(current_user["id"], parse_uuid(event_id, "event_id"))
