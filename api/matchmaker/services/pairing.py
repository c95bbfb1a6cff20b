from __future__ import annotations

import logging
import numbers
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError

from .. import repo
from ..config import ADMIN_ACTOR_PREFIX, MAX_COMPATIBILITY_SCORE, SYSTEM_ACTOR
from ..errors import AlreadyPaired, Blacklisted, InvalidScore, NotFound, PairingInactive, ValidationError
from ..models import Pairing, PairingParticipant
from .notifications import MATCH_FOUND, MATCH_FOUND_MESSAGE, PAIRING_ENDED, Publisher, safe_publish
from .queue import entry_profile
from .sanitize import sanitize_reason, validate_user_id
from .state_machine import is_allowed, status_of

logger = logging.getLogger(__name__)

ADMIN_UNPAIR_REASON = "Admin unpair"
ADMIN_DELETION_REASON = "Admin deletion"
DEFAULT_BREAKUP_REASON = "Breakup"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _always_exists(user_id: str) -> bool:
    return True


@dataclass
class ActivityUpdate:
    user1_message_increment: int = 0
    user2_message_increment: int = 0
    word_increment: int = 0
    emoji_increment: int = 0
    voice_minutes_increment: int = 0
    active_days: int | None = None

    @classmethod
    def parse(cls, raw: Any) -> ActivityUpdate:
        if isinstance(raw, ActivityUpdate):
            update = raw
        elif isinstance(raw, dict):
            unknown = set(raw) - set(cls.__dataclass_fields__)
            if unknown:
                raise ValidationError(f"unknown activity fields: {sorted(unknown)}")
            update = cls(**raw)
        else:
            raise ValidationError("activity deltas are required")
        update.validate()
        return update

    def validate(self) -> None:
        for name, value in asdict(self).items():
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f"{name} must be an integer", field=name)
            if value < 0:
                raise ValidationError(f"{name} must be non-negative", field=name)

    def increments(self) -> dict[str, int]:
        return {
            "user1_message_count": self.user1_message_increment,
            "user2_message_count": self.user2_message_increment,
            "word_count": self.word_increment,
            "emoji_count": self.emoji_increment,
            "voice_time_minutes": self.voice_minutes_increment,
        }


def pairing_snapshot(p: Pairing) -> dict[str, Any]:
    return {
        "id": p.id,
        "user1_id": p.user1_id,
        "user2_id": p.user2_id,
        "matched_at": p.matched_at,
        "compatibility_score": p.compatibility_score,
        "message_count": p.message_count,
        "user1_message_count": p.user1_message_count,
        "user2_message_count": p.user2_message_count,
        "word_count": p.word_count,
        "emoji_count": p.emoji_count,
        "active_days": p.active_days,
        "voice_time_minutes": p.voice_time_minutes,
        "active": bool(p.active),
        "breakup_initiator_id": p.breakup_initiator_id,
        "breakup_reason": p.breakup_reason,
        "breakup_at": p.breakup_at,
        "mutual_breakup": bool(p.mutual_breakup),
        "metadata": p.match_metadata or {},
    }


def _validate_score(score: Any) -> int:
    if isinstance(score, bool) or not isinstance(score, numbers.Real):
        raise InvalidScore("compatibility score must be a number", score=score)
    # float.is_integer() is False for nan and inf
    if not isinstance(score, numbers.Integral) and not float(score).is_integer():
        raise InvalidScore("compatibility score must be a whole number", score=score)
    if score <= 0:
        raise InvalidScore("compatibility score must be greater than 0", score=score)
    return min(MAX_COMPATIBILITY_SCORE, int(score))


class PairingService:
    def __init__(
        self,
        session_factory,
        publisher: Publisher | None,
        *,
        clock: Callable[[], datetime] = _now_utc,
        user_exists: Callable[[str], bool] = _always_exists,
        queue_service=None,
    ) -> None:
        self.session_factory = session_factory
        self.publisher = publisher
        self.clock = clock
        self.user_exists = user_exists
        self.queue_service = queue_service

    # Creation

    def create_pairing(
        self,
        user1_id: str,
        user2_id: str,
        score: Any,
        metadata: dict[str, Any] | None = None,
        *,
        announce_queue_change: bool = True,
    ) -> dict[str, Any]:
        stored_score = _validate_score(score)
        user1_id = validate_user_id(user1_id, "user1_id")
        user2_id = validate_user_id(user2_id, "user2_id")
        if user1_id == user2_id:
            raise ValidationError("a user cannot be paired with themselves", user_id=user1_id)
        for uid in (user1_id, user2_id):
            if not self.user_exists(uid):
                raise NotFound(f"user {uid} not found", user_id=uid)

        try:
            with repo.unit_of_work(self.session_factory) as db:
                for uid in (user1_id, user2_id):
                    if repo.active_pairing_id_for(db, uid) is not None:
                        raise AlreadyPaired(f"user {uid} already has an active pairing", user_id=uid)
                if repo.is_blacklisted(db, user1_id, user2_id):
                    raise Blacklisted("these users cannot be paired again", user1_id=user1_id, user2_id=user2_id)

                profiles = {}
                for uid in (user1_id, user2_id):
                    entry = repo.get_queue_entry(db, uid)
                    if entry is not None:
                        profiles[uid] = entry_profile(entry)
                match_metadata = {"source": "manual", **(metadata or {}), "profiles": profiles}

                pairing = Pairing(
                    user1_id=user1_id,
                    user2_id=user2_id,
                    matched_at=self.clock(),
                    compatibility_score=stored_score,
                    active=True,
                    mutual_breakup=False,
                    match_metadata=match_metadata,
                )
                db.add(pairing)
                db.flush()
                db.add_all(
                    [
                        PairingParticipant(user_id=user1_id, pairing_id=pairing.id),
                        PairingParticipant(user_id=user2_id, pairing_id=pairing.id),
                    ]
                )
                db.flush()
                evicted = repo.deactivate_queue_entries(db, [user1_id, user2_id])
                snapshot = pairing_snapshot(pairing)
        except IntegrityError as exc:
            logger.warning("[PAIRING] lost race creating %s-%s: %s", user1_id, user2_id, exc.__class__.__name__)
            raise AlreadyPaired(
                "one of the users was paired concurrently", user1_id=user1_id, user2_id=user2_id
            ) from exc

        logger.info(
            "[PAIRING] created pairing %s for %s and %s (score=%s)",
            snapshot["id"],
            user1_id,
            user2_id,
            stored_score,
        )
        for uid, partner in ((user1_id, user2_id), (user2_id, user1_id)):
            safe_publish(
                self.publisher,
                uid,
                MATCH_FOUND,
                {"pairing": snapshot, "partner_id": partner, "message": MATCH_FOUND_MESSAGE},
            )
        if evicted and announce_queue_change and self.queue_service is not None:
            self.queue_service.broadcast_queue_update()
        return snapshot

    # Activity

    def update_activity(self, pairing_id: int, deltas: Any) -> dict[str, Any]:
        update = ActivityUpdate.parse(deltas)
        with repo.unit_of_work(self.session_factory) as db:
            pairing = repo.get_pairing(db, pairing_id)
            if pairing is None:
                raise NotFound(f"pairing {pairing_id} not found", pairing_id=pairing_id)
            if not is_allowed(status_of(pairing), "update_activity"):
                raise PairingInactive(f"pairing {pairing_id} is not active", pairing_id=pairing_id)
            touched = repo.increment_activity(db, pairing_id, update.increments(), update.active_days)
            if touched == 0 and (any(update.increments().values()) or update.active_days is not None):
                raise PairingInactive(f"pairing {pairing_id} is not active", pairing_id=pairing_id)
            db.flush()
            db.refresh(pairing)
            snapshot = pairing_snapshot(pairing)
        logger.debug("[PAIRING] activity updated for pairing %s", pairing_id)
        return snapshot

    # Termination

    def breakup(
        self,
        pairing_id: int,
        initiator_id: str,
        reason: str | None = None,
        mutual: bool = False,
    ) -> dict[str, Any]:
        initiator_id = validate_user_id(initiator_id, "initiator_id")
        clean_reason = sanitize_reason(reason)
        with repo.unit_of_work(self.session_factory) as db:
            pairing = repo.get_pairing(db, pairing_id, for_update=True)
            if pairing is None:
                raise NotFound(f"pairing {pairing_id} not found", pairing_id=pairing_id)
            if not is_allowed(status_of(pairing), "breakup"):
                raise PairingInactive(f"pairing {pairing_id} is already inactive", pairing_id=pairing_id)
            if initiator_id not in (pairing.user1_id, pairing.user2_id):
                raise ValidationError(
                    f"user {initiator_id} is not part of pairing {pairing_id}",
                    pairing_id=pairing_id,
                    initiator_id=initiator_id,
                )
            snapshot = self._end(db, pairing, initiator_id, clean_reason, bool(mutual), DEFAULT_BREAKUP_REASON)

        logger.info("[PAIRING] pairing %s ended by %s (mutual=%s)", pairing_id, initiator_id, bool(mutual))
        self._announce_end(snapshot)
        return snapshot

    def unpair(self, pairing_id: int, actor: str | None = None) -> dict[str, Any]:
        initiator = ADMIN_ACTOR_PREFIX + ((actor or "").strip() or SYSTEM_ACTOR)
        with repo.unit_of_work(self.session_factory) as db:
            pairing = repo.get_pairing(db, pairing_id, for_update=True)
            if pairing is None:
                raise NotFound(f"pairing {pairing_id} not found", pairing_id=pairing_id)
            if not is_allowed(status_of(pairing), "unpair"):
                raise PairingInactive(f"pairing {pairing_id} is already inactive", pairing_id=pairing_id)
            snapshot = self._end(db, pairing, initiator, ADMIN_UNPAIR_REASON, False, ADMIN_UNPAIR_REASON)

        logger.info("[PAIRING] pairing %s unpaired by %s", pairing_id, initiator)
        self._announce_end(snapshot)
        return snapshot

    def deactivate_all(self, actor: str | None = None) -> int:
        initiator = ADMIN_ACTOR_PREFIX + ((actor or "").strip() or SYSTEM_ACTOR)
        ended: list[dict[str, Any]] = []
        with repo.unit_of_work(self.session_factory) as db:
            for pairing in repo.fetch_active_pairings(db):
                snapshot = self._end(
                    db, pairing, initiator, ADMIN_DELETION_REASON, False, ADMIN_DELETION_REASON, strict=False
                )
                if snapshot is None:
                    logger.info("[PAIRING] pairing %s already ended, skipping", pairing.id)
                    continue
                ended.append(snapshot)

        logger.info("[PAIRING] deactivated %s active pairings (actor=%s)", len(ended), initiator)
        for snapshot in ended:
            self._announce_end(snapshot)
        return len(ended)

    def _end(
        self,
        db,
        pairing: Pairing,
        initiator_id: str,
        reason: str | None,
        mutual: bool,
        blacklist_reason: str,
        *,
        strict: bool = True,
    ) -> dict[str, Any] | None:
        now = self.clock()
        flipped = repo.end_pairing(db, pairing.id, initiator_id=initiator_id, reason=reason, mutual=mutual, now=now)
        if not flipped:
            if not strict:
                return None
            raise PairingInactive(f"pairing {pairing.id} is already inactive", pairing_id=pairing.id)
        repo.release_participants(db, pairing.id)
        repo.insert_blacklist(db, pairing.user1_id, pairing.user2_id, reason or blacklist_reason, now)
        db.flush()
        db.refresh(pairing)
        return pairing_snapshot(pairing)

    def _announce_end(self, snapshot: dict[str, Any]) -> None:
        for uid in (snapshot["user1_id"], snapshot["user2_id"]):
            safe_publish(self.publisher, uid, PAIRING_ENDED, {"pairing": snapshot})

    # Deletion

    def permanently_delete(self, pairing_id: int) -> bool:
        """Remove a pairing and its blacklist entry; False if it was already gone."""
        with repo.unit_of_work(self.session_factory) as db:
            pairing = repo.get_pairing(db, pairing_id, for_update=True)
            if pairing is None:
                return False
            was_active = bool(pairing.active)
            snapshot = pairing_snapshot(pairing)
            repo.release_participants(db, pairing.id)
            repo.delete_blacklist(db, pairing.user1_id, pairing.user2_id)
            db.delete(pairing)

        logger.info("[PAIRING] permanently deleted pairing %s (was_active=%s)", pairing_id, was_active)
        if was_active:
            self._announce_end({**snapshot, "active": False})
        return True

    def delete_all_inactive(self) -> int:
        with repo.unit_of_work(self.session_factory) as db:
            pairings = repo.fetch_inactive_pairings(db)
            for pairing in pairings:
                repo.delete_blacklist(db, pairing.user1_id, pairing.user2_id)
                db.delete(pairing)
            deleted = len(pairings)
        logger.info("[PAIRING] deleted %s inactive pairings", deleted)
        return deleted

    # Reads

    def get_pairing(self, pairing_id: int) -> dict[str, Any]:
        with repo.unit_of_work(self.session_factory) as db:
            pairing = repo.get_pairing(db, pairing_id)
            if pairing is None:
                raise NotFound(f"pairing {pairing_id} not found", pairing_id=pairing_id)
            return pairing_snapshot(pairing)

    def get_current_pairing(self, user_id: str) -> dict[str, Any] | None:
        user_id = validate_user_id(user_id)
        with repo.unit_of_work(self.session_factory) as db:
            pairing_id = repo.active_pairing_id_for(db, user_id)
            if pairing_id is None:
                return None
            pairing = repo.get_pairing(db, pairing_id)
            return pairing_snapshot(pairing) if pairing else None

    def list_active_pairings(self) -> list[dict[str, Any]]:
        with repo.unit_of_work(self.session_factory) as db:
            return [pairing_snapshot(p) for p in repo.fetch_active_pairings(db)]

    def list_inactive_pairings(self) -> list[dict[str, Any]]:
        with repo.unit_of_work(self.session_factory) as db:
            return [pairing_snapshot(p) for p in repo.fetch_inactive_pairings(db)]

    def get_pairing_history(self, user_id: str) -> list[dict[str, Any]]:
        user_id = validate_user_id(user_id)
        with repo.unit_of_work(self.session_factory) as db:
            return [pairing_snapshot(p) for p in repo.fetch_pairing_history(db, user_id)]

    def check_blacklist_status(self, user1_id: str, user2_id: str) -> dict[str, Any]:
        user1_id = validate_user_id(user1_id, "user1_id")
        user2_id = validate_user_id(user2_id, "user2_id")
        with repo.unit_of_work(self.session_factory) as db:
            entry = repo.get_blacklist_entry(db, user1_id, user2_id)
            return {
                "user1_id": user1_id,
                "user2_id": user2_id,
                "blacklisted": entry is not None,
                "reason": entry.reason if entry else None,
                "created_at": entry.created_at if entry else None,
            }
