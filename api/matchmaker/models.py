from datetime import timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator

from .database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend, including SQLite."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class QueueEntry(Base):
    __tablename__ = "queue_entry"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, unique=True)
    age = Column(Integer, nullable=False)
    gender = Column(String(32), nullable=False)
    region = Column(String(32), nullable=False)
    rank = Column(String(32), nullable=False)
    queued_at = Column(UTCDateTime, nullable=False)
    join_seq = Column(Integer, nullable=False, default=0)
    in_queue = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("idx_queue_entry_active_order", "in_queue", "queued_at", "join_seq"),
    )


class Pairing(Base):
    __tablename__ = "pairing"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user1_id = Column(String(64), nullable=False, index=True)
    user2_id = Column(String(64), nullable=False, index=True)
    matched_at = Column(UTCDateTime, nullable=False)
    compatibility_score = Column(Integer, nullable=False)

    user1_message_count = Column(Integer, nullable=False, default=0)
    user2_message_count = Column(Integer, nullable=False, default=0)
    word_count = Column(Integer, nullable=False, default=0)
    emoji_count = Column(Integer, nullable=False, default=0)
    active_days = Column(Integer, nullable=False, default=0)
    voice_time_minutes = Column(Integer, nullable=False, default=0)

    active = Column(Boolean, nullable=False, default=True)
    breakup_initiator_id = Column(String(64), nullable=True)
    breakup_reason = Column(Text, nullable=True)
    breakup_at = Column(UTCDateTime, nullable=True)
    mutual_breakup = Column(Boolean, nullable=False, default=False)
    match_metadata = Column(JSONType, nullable=True)

    __table_args__ = (
        CheckConstraint("user1_id <> user2_id", name="ck_pairing_distinct_users"),
        CheckConstraint(
            "compatibility_score > 0 AND compatibility_score <= 100",
            name="ck_pairing_score_range",
        ),
        Index("idx_pairing_active", "active"),
    )

    @property
    def message_count(self) -> int:
        return int(self.user1_message_count or 0) + int(self.user2_message_count or 0)


class PairingParticipant(Base):
    """One row per user currently inside an active pairing."""

    __tablename__ = "pairing_participant"

    user_id = Column(String(64), primary_key=True)
    pairing_id = Column(Integer, ForeignKey("pairing.id", ondelete="CASCADE"), nullable=False, index=True)


class BlacklistEntry(Base):
    __tablename__ = "blacklist_entry"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user1_id = Column(String(64), nullable=False)
    user2_id = Column(String(64), nullable=False)
    reason = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("user1_id", "user2_id", name="uq_blacklist_pair"),
        CheckConstraint("user1_id < user2_id", name="ck_blacklist_canonical"),
    )
