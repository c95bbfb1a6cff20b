import re
from typing import Any

from ..config import BREAKUP_REASON_MAX_LENGTH
from ..errors import ValidationError

_USER_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
_TAG_RE = re.compile(r"<[^>]*>")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def validate_user_id(value: Any, field: str = "user_id") -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{field} is required", field=field)
    v = value.strip()
    if not _USER_ID_RE.match(v):
        raise ValidationError(f"{field} must be 1-64 characters of letters, digits, '_' or '-'", field=field)
    return v


def sanitize_reason(value: Any, max_length: int = BREAKUP_REASON_MAX_LENGTH) -> str | None:
    if value is None:
        return None
    v = _CONTROL_RE.sub("", _TAG_RE.sub("", str(value))).strip()
    if not v:
        return None
    return v[:max_length]
