from __future__ import annotations

from typing import Any

from fastapi import Depends

from gatherly import repo
from gatherly.auth.deps import get_current_user
from gatherly.errors import PermissionDenied


ROLE_ORDER = {"user": 20, "org_helper": 40, "org_admin": 60, "org_owner": 80, "admin": 100}
MIN_EVENT_MANAGER_RANK = ROLE_ORDER["org_admin"]


def is_platform_admin(roles: list[dict[str, Any]]) -> bool:
    return any(r.get("role") == "admin" and not r.get("org_id") for r in roles)


def can_manage_event(roles: list[dict[str, Any]], event: dict[str, Any]) -> bool:
    if is_platform_admin(roles):
        return True
    host_org_id = event.get("host_org_id")
    if not host_org_id:
        return False
    return any(
        ROLE_ORDER.get(str(r.get("role")), 0) >= MIN_EVENT_MANAGER_RANK and r.get("org_id") and str(r["org_id"]) == str(host_org_id)
        for r in roles
    )


def require_platform_admin(current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    roles = repo.get_user_roles(current_user["id"])
    if not is_platform_admin(roles):
        raise PermissionDenied("Platform admin role required")
    return {**current_user, "roles": roles}
