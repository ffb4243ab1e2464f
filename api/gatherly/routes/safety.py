from typing import Any

from fastapi import APIRouter, Depends

from ..auth.admin_deps import require_platform_admin
from ..auth.deps import get_current_user
from ..deps import parse_optional_uuid, parse_uuid
from ..http_helpers import optional_positive_int, optional_text, validate_report_payload
from ..services import safety

router = APIRouter()
scaffold_router = APIRouter()


@scaffold_router.get("/health")
def safety_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "safety"}


@router.post("/safety/report")
def safety_report(payload: dict[str, Any], current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    fields = validate_report_payload(payload)
    report = safety.submit_report(current_user["id"], **fields)
    return {"status": "reported", "report": report}


@router.get("/admin/safety/reports")
def admin_list_reports(
    status: str = "pending",
    limit: int = 100,
    admin_user: dict[str, Any] = Depends(require_platform_admin),
) -> dict[str, Any]:
    return {"reports": safety.list_reports(status=status, limit=max(1, min(limit, 500)))}


@router.post("/admin/safety/reports/{report_id}/resolve")
def admin_resolve_report(
    report_id: str,
    payload: dict[str, Any],
    admin_user: dict[str, Any] = Depends(require_platform_admin),
) -> dict[str, Any]:
    status = str(payload.get("status") or "resolved").strip().lower()
    report = safety.resolve_report(
        admin_user["id"],
        parse_uuid(report_id, "report_id"),
        status=status,
        notes=optional_text(payload, "resolution_notes"),
    )
    return {"success": True, "report": report}


@router.post("/admin/safety/ban")
def admin_ban(payload: dict[str, Any], admin_user: dict[str, Any] = Depends(require_platform_admin)) -> dict[str, Any]:
    ban = safety.ban_user(
        admin_user["id"],
        parse_uuid(payload.get("user_id"), "user_id"),
        permanent=bool(payload.get("permanent")),
        duration_days=optional_positive_int(payload, "duration_days"),
        reason=optional_text(payload, "reason"),
    )
    return {"success": True, "ban": ban}


@router.post("/admin/safety/unban")
def admin_unban(payload: dict[str, Any], admin_user: dict[str, Any] = Depends(require_platform_admin)) -> dict[str, Any]:
    return safety.unban_user(admin_user["id"], parse_uuid(payload.get("user_id"), "user_id"))


@router.post("/admin/safety/mute")
def admin_mute(payload: dict[str, Any], admin_user: dict[str, Any] = Depends(require_platform_admin)) -> dict[str, Any]:
    mute = safety.mute_user(
        admin_user["id"],
        parse_uuid(payload.get("user_id"), "user_id"),
        parse_uuid(payload.get("group_id"), "group_id"),
        minutes=optional_positive_int(payload, "minutes"),
        reason=optional_text(payload, "reason"),
    )
    return {"success": True, "mute": mute}


@router.post("/admin/safety/unmute")
def admin_unmute(payload: dict[str, Any], admin_user: dict[str, Any] = Depends(require_platform_admin)) -> dict[str, Any]:
    return safety.unmute_user(
        admin_user["id"],
        parse_uuid(payload.get("user_id"), "user_id"),
        parse_optional_uuid(payload.get("group_id"), "group_id"),
    )


@router.get("/admin/safety/mutes")
def admin_list_mutes(admin_user: dict[str, Any] = Depends(require_platform_admin)) -> dict[str, Any]:
    return {"mutes": safety.list_mutes()}


@router.post("/admin/safety/groups/{group_id}/freeze")
def admin_freeze_group(group_id: str, admin_user: dict[str, Any] = Depends(require_platform_admin)) -> dict[str, Any]:
    group = safety.freeze_single_group(admin_user["id"], parse_uuid(group_id, "group_id"))
    return {"success": True, "group": group}
