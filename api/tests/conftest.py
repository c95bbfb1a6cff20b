import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest

from matchmaker.database import Base, make_engine, make_session_factory
from matchmaker.services.notifications import InMemoryPublisher
from matchmaker.services.queue import QueueState
from matchmaker.wiring import build_services


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'matchmaker.db'}")
    Base.metadata.create_all(bind=engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def publisher():
    return InMemoryPublisher()


@pytest.fixture
def services(session_factory, publisher, clock):
    return build_services(
        session_factory,
        publisher=publisher,
        clock=clock,
        state=QueueState(enabled=True, started_at=clock()),
    )
