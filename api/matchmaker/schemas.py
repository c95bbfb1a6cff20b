from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class JoinQueueRequest(BaseModel):
    user_id: str
    age: int
    gender: str
    region: str
    rank: str

    def preferences(self) -> dict[str, Any]:
        return {"age": self.age, "gender": self.gender, "region": self.region, "rank": self.rank}


class LeaveQueueRequest(BaseModel):
    user_id: str


class QueueStatusResponse(BaseModel):
    user_id: str
    in_queue: bool
    queued_at: datetime | None = None
    queue_position: int | None = None
    total_queue_size: int
    estimated_wait_minutes: int | None = None
    preferences: dict[str, Any] | None = None


class QueueConfigUpdate(BaseModel):
    queue_enabled: bool
    updated_by: str | None = None


class CreatePairingRequest(BaseModel):
    user1_id: str
    user2_id: str
    compatibility_score: int
    metadata: dict[str, Any] = Field(default_factory=dict)


class UpdateActivityRequest(BaseModel):
    user1_message_increment: int = Field(default=0, ge=0, le=50)
    user2_message_increment: int = Field(default=0, ge=0, le=50)
    word_increment: int = Field(default=0, ge=0, le=1000)
    emoji_increment: int = Field(default=0, ge=0, le=20)
    voice_minutes_increment: int = Field(default=0, ge=0, le=600)
    active_days: int | None = Field(default=None, ge=0)


class BreakupRequest(BaseModel):
    initiator_id: str
    reason: str | None = Field(default=None, max_length=2000)
    mutual_breakup: bool = False


class UnpairRequest(BaseModel):
    actor: str | None = None
