from typing import Any

from fastapi import APIRouter, Depends

from ..auth.admin_deps import require_platform_admin
from ..auth.deps import get_current_user
from ..http_helpers import validate_group_action_payload
from ..schemas import CleanupResponse, ErrorResponse, GroupActionResponse
from ..services import grouping

router = APIRouter()
scaffold_router = APIRouter()


@scaffold_router.get("/health")
def admin_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "admin"}


@router.post(
    "/admin/events/groups",
    response_model=GroupActionResponse,
    response_model_exclude_none=True,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def manage_event_groups(payload: dict[str, Any], current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    # Org-scoped authorization happens in the service against the event's host org.
    event_id, action = validate_group_action_payload(payload)
    return grouping.manage_event_groups(current_user["id"], event_id, action)


@router.post("/admin/groups/cleanup-stale", response_model=CleanupResponse)
def cleanup_stale_groups(admin_user: dict[str, Any] = Depends(require_platform_admin)) -> dict[str, Any]:
    return grouping.cleanup_stale_groups()
