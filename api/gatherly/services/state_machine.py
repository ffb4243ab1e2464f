GROUP_STATUSES = {"forming", "locked"}


def transition_group(current: str, action: str, member_count: int, size: int) -> str:
    if current not in GROUP_STATUSES:
        current = "forming"

    if action == "freeze":
        return "locked"

    if action == "unfreeze":
        if member_count >= size:
            return "locked"
        return "forming"

    if action == "member_added":
        if current == "locked":
            return "locked"
        if member_count >= size:
            return "locked"
        return "forming"

    if action == "stale":
        if member_count >= 2:
            return "locked"
        return current

    return current
