from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

from sqlalchemy import and_, delete, func, or_, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from .errors import TransientStoreFailure
from .models import BlacklistEntry, Pairing, PairingParticipant, QueueEntry

logger = logging.getLogger(__name__)


def canonical_pair(user_a: str, user_b: str) -> tuple[str, str]:
    return tuple(sorted((user_a, user_b)))


@contextmanager
def unit_of_work(session_factory) -> Iterator[Any]:
    """Session scope that commits on success and rolls back on any error.

    Infrastructure failures are re-raised as ``TransientStoreFailure``;
    everything else (including ``IntegrityError``) propagates unchanged.
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except (OperationalError, InterfaceError, PoolTimeoutError) as exc:
        db.rollback()
        logger.warning("[STORE] transient failure: %s", exc.__class__.__name__)
        raise TransientStoreFailure("Store temporarily unavailable", cause=exc.__class__.__name__) from exc
    except BaseException:
        db.rollback()
        raise
    finally:
        db.close()


# Queue entries


def get_queue_entry(db, user_id: str) -> QueueEntry | None:
    return db.execute(select(QueueEntry).where(QueueEntry.user_id == user_id)).scalars().first()


def fetch_active_entries(db) -> list[QueueEntry]:
    return list(
        db.execute(
            select(QueueEntry)
            .where(QueueEntry.in_queue.is_(True))
            .order_by(QueueEntry.queued_at, QueueEntry.join_seq)
        ).scalars()
    )


def count_active_entries(db) -> int:
    return int(db.execute(select(func.count(QueueEntry.id)).where(QueueEntry.in_queue.is_(True))).scalar_one())


def queue_position(db, entry: QueueEntry) -> int:
    ahead = db.execute(
        select(func.count(QueueEntry.id)).where(
            QueueEntry.in_queue.is_(True),
            or_(
                QueueEntry.queued_at < entry.queued_at,
                and_(QueueEntry.queued_at == entry.queued_at, QueueEntry.join_seq < entry.join_seq),
            ),
        )
    ).scalar_one()
    return int(ahead) + 1


def next_join_seq(db) -> int:
    current = db.execute(select(func.max(QueueEntry.join_seq))).scalar_one()
    return int(current or 0) + 1


def deactivate_queue_entries(db, user_ids: list[str]) -> int:
    if not user_ids:
        return 0
    result = db.execute(
        update(QueueEntry)
        .where(QueueEntry.user_id.in_(user_ids), QueueEntry.in_queue.is_(True))
        .values(in_queue=False)
    )
    return int(result.rowcount or 0)


def age_bucket_counts(db) -> dict[str, int]:
    rows = db.execute(
        text(
            """
            SELECT
              CASE
                WHEN age < 18 THEN 'UNDER_18'
                WHEN age BETWEEN 18 AND 21 THEN '18-21'
                WHEN age BETWEEN 22 AND 25 THEN '22-25'
                WHEN age BETWEEN 26 AND 30 THEN '26-30'
                WHEN age BETWEEN 31 AND 35 THEN '31-35'
                ELSE '36+'
              END AS bucket,
              COUNT(1) AS c
            FROM queue_entry
            WHERE in_queue = :in_queue
            GROUP BY bucket
            """
        ),
        {"in_queue": True},
    ).mappings().all()
    return {str(r["bucket"]): int(r["c"]) for r in rows}


# Pairings


def get_pairing(db, pairing_id: int, *, for_update: bool = False) -> Pairing | None:
    stmt = select(Pairing).where(Pairing.id == pairing_id)
    if for_update:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalars().first()


def active_pairing_id_for(db, user_id: str) -> int | None:
    return db.execute(
        select(PairingParticipant.pairing_id).where(PairingParticipant.user_id == user_id)
    ).scalar_one_or_none()


def active_participant_ids(db) -> set[str]:
    return set(db.execute(select(PairingParticipant.user_id)).scalars())


def fetch_active_pairings(db) -> list[Pairing]:
    return list(db.execute(select(Pairing).where(Pairing.active.is_(True)).order_by(Pairing.matched_at, Pairing.id)).scalars())


def fetch_inactive_pairings(db) -> list[Pairing]:
    return list(
        db.execute(select(Pairing).where(Pairing.active.is_(False)).order_by(Pairing.breakup_at.desc(), Pairing.id.desc())).scalars()
    )


def fetch_pairing_history(db, user_id: str) -> list[Pairing]:
    return list(
        db.execute(
            select(Pairing)
            .where(or_(Pairing.user1_id == user_id, Pairing.user2_id == user_id))
            .order_by(Pairing.matched_at.desc(), Pairing.id.desc())
        ).scalars()
    )


def count_active_pairings(db) -> int:
    return int(db.execute(select(func.count(Pairing.id)).where(Pairing.active.is_(True))).scalar_one())


def pairings_matched_since(db, since: datetime) -> list[Pairing]:
    return list(db.execute(select(Pairing).where(Pairing.matched_at >= since)).scalars())


def release_participants(db, pairing_id: int) -> int:
    result = db.execute(delete(PairingParticipant).where(PairingParticipant.pairing_id == pairing_id))
    return int(result.rowcount or 0)


def increment_activity(db, pairing_id: int, increments: dict[str, int], active_days: int | None) -> int:
    values: dict[str, Any] = {}
    for column_name, delta in increments.items():
        if delta:
            column = getattr(Pairing, column_name)
            values[column_name] = column + delta
    if active_days is not None:
        values["active_days"] = active_days
    if not values:
        return 0
    result = db.execute(
        update(Pairing)
        .where(Pairing.id == pairing_id, Pairing.active.is_(True))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


def end_pairing(
    db,
    pairing_id: int,
    *,
    initiator_id: str,
    reason: str | None,
    mutual: bool,
    now: datetime,
) -> int:
    """Flip a pairing inactive once; returns 0 if another caller already did."""
    result = db.execute(
        update(Pairing)
        .where(Pairing.id == pairing_id, Pairing.active.is_(True))
        .values(
            active=False,
            breakup_initiator_id=initiator_id,
            breakup_reason=reason,
            breakup_at=now,
            mutual_breakup=mutual,
        )
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


# Blacklist


def is_blacklisted(db, user_a: str, user_b: str) -> bool:
    first, second = canonical_pair(user_a, user_b)
    found = db.execute(
        select(BlacklistEntry.id).where(BlacklistEntry.user1_id == first, BlacklistEntry.user2_id == second)
    ).first()
    return found is not None


def get_blacklist_entry(db, user_a: str, user_b: str) -> BlacklistEntry | None:
    first, second = canonical_pair(user_a, user_b)
    return db.execute(
        select(BlacklistEntry).where(BlacklistEntry.user1_id == first, BlacklistEntry.user2_id == second)
    ).scalars().first()


def fetch_blocked_pairs(db) -> set[tuple[str, str]]:
    rows = db.execute(select(BlacklistEntry.user1_id, BlacklistEntry.user2_id)).all()
    return {canonical_pair(r[0], r[1]) for r in rows}


def insert_blacklist(db, user_a: str, user_b: str, reason: str | None, now: datetime) -> None:
    first, second = canonical_pair(user_a, user_b)
    values = {"user1_id": first, "user2_id": second, "reason": reason, "created_at": now}
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        db.execute(postgresql.insert(BlacklistEntry).values(**values).on_conflict_do_nothing())
        return
    if dialect == "sqlite":
        db.execute(sqlite.insert(BlacklistEntry).values(**values).on_conflict_do_nothing())
        return
    if not is_blacklisted(db, first, second):
        db.add(BlacklistEntry(**values))
        db.flush()


def delete_blacklist(db, user_a: str, user_b: str) -> int:
    first, second = canonical_pair(user_a, user_b)
    result = db.execute(
        delete(BlacklistEntry).where(BlacklistEntry.user1_id == first, BlacklistEntry.user2_id == second)
    )
    return int(result.rowcount or 0)
