from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError

from .. import repo
from ..config import MAX_AGE, QUEUE_ENABLED, SYSTEM_ACTOR
from ..errors import AlreadyPaired, NotFound, QueueDisabled, ValidationError
from ..models import QueueEntry
from .compatibility import GENDERS, RANKS, REGIONS
from .notifications import (
    BROADCAST,
    QUEUE_CONFIG_CHANGED,
    QUEUE_REMOVED,
    QUEUE_REMOVED_MESSAGE,
    QUEUE_SIZE_CHANGED,
    Publisher,
    safe_publish,
)
from .sanitize import validate_user_id

logger = logging.getLogger(__name__)

# Extra eviction sweeps for entries that land from another process mid-disable.
MAX_EVICTION_ROUNDS = 3


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _always_exists(user_id: str) -> bool:
    return True


def estimate_wait_minutes(position: int) -> int:
    return max(2, ((max(position, 1) - 1) // 2) * 3 + 2)


@dataclass
class QueueState:
    """Admission gate plus the bookkeeping shown on the admin dashboard.

    ``lock`` serialises gate flips, disable-eviction and joins.
    """

    enabled: bool = QUEUE_ENABLED
    updated_by: str = SYSTEM_ACTOR
    updated_at: datetime | None = None
    started_at: datetime | None = None
    last_matchmaking_run: datetime | None = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def as_config(self) -> dict[str, Any]:
        return {
            "queue_enabled": self.enabled,
            "message": "Queue is active" if self.enabled else "Queue is disabled",
            "updated_by": self.updated_by,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class QueuePreferences:
    age: int
    gender: str
    region: str
    rank: str

    @classmethod
    def parse(cls, raw: Any) -> QueuePreferences:
        if isinstance(raw, QueuePreferences):
            return raw
        if not isinstance(raw, dict):
            raise ValidationError("preferences are required")

        age = raw.get("age")
        if age is None or isinstance(age, bool):
            raise ValidationError("age is required", field="age")
        try:
            age = int(age)
        except (TypeError, ValueError):
            raise ValidationError("age must be an integer", field="age")
        if age < 1 or age > MAX_AGE:
            raise ValidationError(f"age must be between 1 and {MAX_AGE}", field="age")

        values: dict[str, str] = {}
        for name, allowed in (("gender", GENDERS), ("region", REGIONS), ("rank", RANKS)):
            value = str(raw.get(name) or "").strip().upper()
            if not value:
                raise ValidationError(f"{name} is required", field=name)
            if value not in allowed:
                raise ValidationError(f"unknown {name} '{value}'", field=name, allowed=list(allowed))
            values[name] = value
        return cls(age=age, **values)

    def as_dict(self) -> dict[str, Any]:
        return {"age": self.age, "gender": self.gender, "region": self.region, "rank": self.rank}


def entry_profile(entry: QueueEntry) -> dict[str, Any]:
    return {
        "user_id": entry.user_id,
        "age": entry.age,
        "gender": entry.gender,
        "region": entry.region,
        "rank": entry.rank,
    }


class QueueService:
    def __init__(
        self,
        session_factory,
        publisher: Publisher | None,
        state: QueueState,
        *,
        clock: Callable[[], datetime] = _now_utc,
        user_exists: Callable[[str], bool] = _always_exists,
    ) -> None:
        self.session_factory = session_factory
        self.publisher = publisher
        self.state = state
        self.clock = clock
        self.user_exists = user_exists

    def is_enabled(self) -> bool:
        return self.state.enabled

    def get_config(self) -> dict[str, Any]:
        return self.state.as_config()

    def join(self, user_id: str, preferences: Any) -> dict[str, Any]:
        user_id = validate_user_id(user_id)
        prefs = QueuePreferences.parse(preferences)
        if not self.user_exists(user_id):
            raise NotFound(f"user {user_id} not found", user_id=user_id)

        changed = False
        with self.state.lock:
            if not self.state.enabled:
                raise QueueDisabled("Queue is currently disabled")
            try:
                with repo.unit_of_work(self.session_factory) as db:
                    if repo.active_pairing_id_for(db, user_id) is not None:
                        raise AlreadyPaired(f"user {user_id} already has an active pairing", user_id=user_id)
                    entry = repo.get_queue_entry(db, user_id)
                    if entry is None or not entry.in_queue:
                        entry = self._upsert_entry(db, entry, user_id, prefs)
                        changed = True
                        # a pairing may have committed since the first check
                        if repo.active_pairing_id_for(db, user_id) is not None:
                            raise AlreadyPaired(f"user {user_id} already has an active pairing", user_id=user_id)
                    status = self._status_for(db, entry)
            except IntegrityError:
                # another worker inserted this user's first row concurrently
                logger.info("[QUEUE] concurrent first join for %s; returning stored entry", user_id)
                return self.status(user_id)

        if changed:
            logger.info("[QUEUE] %s joined at position %s", user_id, status["queue_position"])
            self.broadcast_queue_update()
        return status

    def _upsert_entry(self, db, entry: QueueEntry | None, user_id: str, prefs: QueuePreferences) -> QueueEntry:
        now = self.clock()
        seq = repo.next_join_seq(db)
        if entry is None:
            entry = QueueEntry(user_id=user_id, **prefs.as_dict(), queued_at=now, join_seq=seq, in_queue=True)
            db.add(entry)
        else:
            entry.age = prefs.age
            entry.gender = prefs.gender
            entry.region = prefs.region
            entry.rank = prefs.rank
            entry.queued_at = now
            entry.join_seq = seq
            entry.in_queue = True
        db.flush()
        return entry

    def leave(self, user_id: str) -> bool:
        user_id = validate_user_id(user_id)
        with repo.unit_of_work(self.session_factory) as db:
            removed = repo.deactivate_queue_entries(db, [user_id])
        if not removed:
            return False
        logger.info("[QUEUE] %s left the queue", user_id)
        self.broadcast_queue_update()
        return True

    def status(self, user_id: str) -> dict[str, Any]:
        user_id = validate_user_id(user_id)
        with repo.unit_of_work(self.session_factory) as db:
            entry = repo.get_queue_entry(db, user_id)
            if entry is None or not entry.in_queue:
                return {
                    "user_id": user_id,
                    "in_queue": False,
                    "queued_at": None,
                    "queue_position": None,
                    "total_queue_size": repo.count_active_entries(db),
                    "estimated_wait_minutes": None,
                    "preferences": None,
                }
            return self._status_for(db, entry)

    def _status_for(self, db, entry: QueueEntry) -> dict[str, Any]:
        position = repo.queue_position(db, entry)
        return {
            "user_id": entry.user_id,
            "in_queue": True,
            "queued_at": entry.queued_at,
            "queue_position": position,
            "total_queue_size": repo.count_active_entries(db),
            "estimated_wait_minutes": estimate_wait_minutes(position),
            "preferences": {"age": entry.age, "gender": entry.gender, "region": entry.region, "rank": entry.rank},
        }

    def set_enabled(self, enabled: bool, actor: str | None = None) -> dict[str, Any]:
        """Flip the admission gate.

        Disabling evicts every active entry; each user is sent QUEUE_REMOVED
        before their entry is flipped out. Re-disabling only sweeps leftovers.
        """
        actor = (actor or "").strip() or SYSTEM_ACTOR
        enabled = bool(enabled)
        evicted: list[str] = []
        with self.state.lock:
            changed = self.state.enabled != enabled
            if changed:
                now = self.clock()
                self.state.enabled = enabled
                self.state.updated_by = actor
                self.state.updated_at = now
                if enabled:
                    self.state.started_at = now
                logger.info("[QUEUE] queue %s by %s", "enabled" if enabled else "disabled", actor)
            if not enabled:
                evicted = self._evict_all()
            config = self.state.as_config()

        if changed:
            safe_publish(self.publisher, BROADCAST, QUEUE_CONFIG_CHANGED, config)
        if changed or evicted:
            self.broadcast_queue_update()
        return {**config, "evicted": len(evicted)}

    def _evict_all(self) -> list[str]:
        evicted: list[str] = []
        for _ in range(MAX_EVICTION_ROUNDS):
            with repo.unit_of_work(self.session_factory) as db:
                user_ids = [e.user_id for e in repo.fetch_active_entries(db)]
            if not user_ids:
                break
            for uid in user_ids:
                safe_publish(self.publisher, uid, QUEUE_REMOVED, {"reason": QUEUE_REMOVED_MESSAGE})
            with repo.unit_of_work(self.session_factory) as db:
                repo.deactivate_queue_entries(db, user_ids)
            evicted.extend(user_ids)
        if evicted:
            logger.info("[QUEUE] evicted %s users from the queue", len(evicted))
        return evicted

    def queue_size(self) -> int:
        with repo.unit_of_work(self.session_factory) as db:
            return repo.count_active_entries(db)

    def broadcast_queue_update(self) -> None:
        try:
            size = self.queue_size()
        except Exception:
            logger.exception("[QUEUE] could not read queue size for broadcast")
            return
        safe_publish(self.publisher, BROADCAST, QUEUE_SIZE_CHANGED, size)
