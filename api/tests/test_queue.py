import pytest
from sqlalchemy import func, select

from matchmaker import repo
from matchmaker.errors import AlreadyPaired, NotFound, QueueDisabled, ValidationError
from matchmaker.models import QueueEntry
from matchmaker.services.notifications import (
    BROADCAST,
    QUEUE_CONFIG_CHANGED,
    QUEUE_REMOVED,
    QUEUE_SIZE_CHANGED,
    InMemoryPublisher,
)
from matchmaker.services.queue import QueuePreferences, QueueService, QueueState, estimate_wait_minutes


def _prefs(age=25, gender="FEMALE", region="EU", rank="GOLD"):
    return {"age": age, "gender": gender, "region": region, "rank": rank}


def _active_count(session_factory):
    with session_factory() as db:
        return db.execute(select(func.count(QueueEntry.id)).where(QueueEntry.in_queue.is_(True))).scalar_one()


def test_wait_estimate_heuristic():
    assert [estimate_wait_minutes(p) for p in (1, 2, 3, 4, 5, 9)] == [2, 2, 5, 5, 8, 14]


def test_join_reports_position_and_broadcasts(services, publisher, clock):
    first = services.queue.join("u1", _prefs())
    clock.advance(seconds=5)
    services.queue.join("u2", _prefs(gender="MALE"))
    clock.advance(seconds=5)
    third = services.queue.join("u3", _prefs(rank="IRON"))

    assert first["queue_position"] == 1
    assert first["estimated_wait_minutes"] == 2
    assert third["queue_position"] == 3
    assert third["total_queue_size"] == 3
    assert third["estimated_wait_minutes"] == 5
    assert third["preferences"]["rank"] == "IRON"
    sizes = [e.payload for e in publisher.events_of(QUEUE_SIZE_CHANGED)]
    assert sizes == [1, 2, 3]
    assert all(e.target_user_id == BROADCAST for e in publisher.events_of(QUEUE_SIZE_CHANGED))


def test_equal_timestamps_fall_back_to_insertion_order(services):
    services.queue.join("zed", _prefs())
    services.queue.join("amy", _prefs())
    assert services.queue.status("zed")["queue_position"] == 1
    assert services.queue.status("amy")["queue_position"] == 2


def test_join_normalizes_and_validates_preferences(services):
    status = services.queue.join("u1", {"age": "24", "gender": "female", "region": "eu", "rank": "gold"})
    assert status["preferences"] == {"age": 24, "gender": "FEMALE", "region": "EU", "rank": "GOLD"}

    with pytest.raises(ValidationError):
        services.queue.join("u2", {"age": 24, "gender": "FEMALE", "region": "EU"})
    with pytest.raises(ValidationError):
        services.queue.join("u2", _prefs(region="MARS"))
    with pytest.raises(ValidationError):
        services.queue.join("u2", _prefs(age="old"))
    with pytest.raises(ValidationError):
        services.queue.join("bad id!", _prefs())
    with pytest.raises(ValidationError):
        QueuePreferences.parse(None)


def test_join_unknown_user(session_factory, publisher, clock):
    queue = QueueService(session_factory, publisher, QueueState(enabled=True), clock=clock, user_exists=lambda uid: uid != "ghost")
    with pytest.raises(NotFound):
        queue.join("ghost", _prefs())


def test_rejoin_while_queued_is_unchanged(services, publisher, clock):
    services.queue.join("u1", _prefs())
    clock.advance(minutes=3)
    again = services.queue.join("u1", _prefs(rank="IRON"))
    assert again["queue_position"] == 1
    assert again["preferences"]["rank"] == "GOLD"
    assert len(publisher.events_of(QUEUE_SIZE_CHANGED)) == 1


def test_rejoin_after_leave_reuses_row(services, session_factory, clock):
    services.queue.join("u1", _prefs())
    clock.advance(seconds=1)
    services.queue.join("u2", _prefs(gender="MALE"))
    services.queue.leave("u1")
    clock.advance(seconds=1)
    status = services.queue.join("u1", _prefs(region="KR"))

    assert status["queue_position"] == 2
    assert status["preferences"]["region"] == "KR"
    with session_factory() as db:
        rows = db.execute(select(QueueEntry).where(QueueEntry.user_id == "u1")).scalars().all()
    assert len(rows) == 1


def test_leave_twice_is_a_noop(services, publisher):
    services.queue.join("u1", _prefs())
    assert services.queue.leave("u1") is True
    events_after_first = len(publisher.events)
    assert services.queue.leave("u1") is False
    assert len(publisher.events) == events_after_first
    assert services.queue.leave("never-joined") is False
    assert services.queue.status("u1")["in_queue"] is False


def test_join_rejected_when_disabled(services):
    services.queue.set_enabled(False, "mod")
    with pytest.raises(QueueDisabled):
        services.queue.join("u1", _prefs())
    services.queue.set_enabled(True, "mod")
    assert services.queue.join("u1", _prefs())["in_queue"] is True


def test_join_rejected_when_actively_paired(services):
    services.pairing.create_pairing("u1", "u2", 80)
    with pytest.raises(AlreadyPaired):
        services.queue.join("u1", _prefs())


def test_join_rechecks_pairing_before_commit(services, monkeypatch):
    services.pairing.create_pairing("u1", "u2", 80)
    real_lookup = repo.active_pairing_id_for
    calls = []

    def stale_first_read(db, user_id):
        calls.append(user_id)
        return None if len(calls) == 1 else real_lookup(db, user_id)

    monkeypatch.setattr(repo, "active_pairing_id_for", stale_first_read)
    with pytest.raises(AlreadyPaired):
        services.queue.join("u1", _prefs())
    assert len(calls) == 2
    assert services.queue.status("u1")["in_queue"] is False


def test_disable_evicts_every_user_after_notifying_them(session_factory, clock):
    seen_active: dict[str, int] = {}

    class CheckingPublisher(InMemoryPublisher):
        def publish(self, target_user_id, event_type, payload):
            if event_type == QUEUE_REMOVED:
                seen_active[target_user_id] = _active_count(session_factory)
            super().publish(target_user_id, event_type, payload)

    publisher = CheckingPublisher()
    queue = QueueService(session_factory, publisher, QueueState(enabled=True), clock=clock)
    for uid in ("u1", "u2", "u3"):
        queue.join(uid, _prefs())

    result = queue.set_enabled(False, "admin_jo")

    removed = publisher.events_of(QUEUE_REMOVED)
    assert sorted(e.target_user_id for e in removed) == ["u1", "u2", "u3"]
    assert seen_active == {"u1": 3, "u2": 3, "u3": 3}
    assert _active_count(session_factory) == 0
    assert result["evicted"] == 3
    assert result["queue_enabled"] is False
    assert result["updated_by"] == "admin_jo"
    assert publisher.events_of(QUEUE_CONFIG_CHANGED)[-1].payload["message"] == "Queue is disabled"
    assert publisher.events_of(QUEUE_SIZE_CHANGED)[-1].payload == 0


def test_disabling_twice_sends_nothing_new(services, publisher):
    services.queue.join("u1", _prefs())
    services.queue.set_enabled(False, "mod")
    count = len(publisher.events)
    result = services.queue.set_enabled(False, "mod")
    assert len(publisher.events) == count
    assert result["evicted"] == 0
    assert services.queue.is_enabled() is False


def test_config_reflects_gate(services):
    config = services.queue.get_config()
    assert config["queue_enabled"] is True
    assert config["message"] == "Queue is active"
    assert config["updated_by"] == "SYSTEM"
