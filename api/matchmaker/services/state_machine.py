NONE = "none"
ACTIVE = "active"
INACTIVE = "inactive"


def transition_status(current: str, action: str) -> str:
    if current == INACTIVE:
        return INACTIVE

    if action == "create":
        if current == NONE:
            return ACTIVE
        return current

    if action == "update_activity":
        return current

    if action in {"breakup", "unpair", "deactivate"}:
        if current == ACTIVE:
            return INACTIVE
        return current

    return current


def is_allowed(current: str, action: str) -> bool:
    if action == "update_activity":
        return current == ACTIVE
    return transition_status(current, action) != current


def status_of(pairing) -> str:
    if pairing is None:
        return NONE
    return ACTIVE if pairing.active else INACTIVE
