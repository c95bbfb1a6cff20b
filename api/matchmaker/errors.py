"""Error kinds surfaced by the matchmaking engine.

Every failure a caller can act on is a ``MatchmakingError`` carrying a stable
``kind`` string. The HTTP layer maps the four families onto status codes:
``ValidationError`` (400), ``NotFound`` (404), ``Conflict`` (409) and
``TransientStoreFailure`` (503).
"""

from __future__ import annotations

from typing import Any


class MatchmakingError(Exception):
    kind = "error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "message": self.message, "details": self.details}


class ValidationError(MatchmakingError):
    kind = "validation_error"


class NotFound(MatchmakingError):
    kind = "not_found"


class Conflict(MatchmakingError):
    kind = "conflict"


class AlreadyPaired(Conflict):
    kind = "already_paired"


class Blacklisted(Conflict):
    kind = "blacklisted"


class InvalidScore(Conflict):
    kind = "invalid_score"


class QueueDisabled(Conflict):
    kind = "queue_disabled"


class PairingInactive(Conflict):
    kind = "pairing_inactive"


class TransientStoreFailure(MatchmakingError):
    kind = "transient_store_failure"
