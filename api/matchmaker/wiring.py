from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from .services.matching import MatchmakingService
from .services.notifications import LoggingPublisher, Publisher
from .services.pairing import PairingService
from .services.queue import QueueService, QueueState
from .services.scheduler import MatchmakingScheduler
from .services.stats import StatsService


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _always_exists(user_id: str) -> bool:
    return True


@dataclass
class EngineServices:
    state: QueueState
    publisher: Publisher
    queue: QueueService
    pairing: PairingService
    matchmaking: MatchmakingService
    stats: StatsService
    scheduler: MatchmakingScheduler


def build_services(
    session_factory,
    *,
    publisher: Publisher | None = None,
    clock: Callable[[], datetime] = _now_utc,
    user_exists: Callable[[str], bool] = _always_exists,
    state: QueueState | None = None,
    interval_seconds: float | None = None,
) -> EngineServices:
    publisher = publisher or LoggingPublisher()
    state = state or QueueState(started_at=clock())
    queue = QueueService(session_factory, publisher, state, clock=clock, user_exists=user_exists)
    pairing = PairingService(session_factory, publisher, clock=clock, user_exists=user_exists, queue_service=queue)
    matchmaking = MatchmakingService(session_factory, pairing, queue, clock=clock)
    stats = StatsService(session_factory, state, clock=clock)
    if interval_seconds is None:
        scheduler = MatchmakingScheduler(matchmaking, queue)
    else:
        scheduler = MatchmakingScheduler(matchmaking, queue, interval_seconds=interval_seconds)
    return EngineServices(
        state=state,
        publisher=publisher,
        queue=queue,
        pairing=pairing,
        matchmaking=matchmaking,
        stats=stats,
        scheduler=scheduler,
    )
