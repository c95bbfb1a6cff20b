import random

import pytest
from sqlalchemy import update

from matchmaker.errors import AlreadyPaired, TransientStoreFailure
from matchmaker.models import QueueEntry
from matchmaker.services.matching import MatchCandidate, build_candidate_pairs, greedy_one_to_one_match
from matchmaker.services.notifications import MATCH_FOUND, QUEUE_SIZE_CHANGED


def _user(user_id, age, gender, region="NA_EAST", rank="GOLD"):
    return {"user_id": user_id, "age": age, "gender": gender, "region": region, "rank": rank}


def _prefs(u):
    return {k: u[k] for k in ("age", "gender", "region", "rank")}


A = _user("alice", 22, "FEMALE", "NA_EAST", "GOLD")
B = _user("bob", 23, "MALE", "NA_EAST", "GOLD")
C = _user("carl", 40, "MALE", "EU", "IRON")


def test_candidates_skip_vetoed_and_blacklisted_pairs():
    d = _user("dan", 24, "MALE", "NA_WEST", "SILVER")
    pairs = build_candidate_pairs([A, B, C, d])
    keys = {(p.user_id, p.matched_user_id) for p in pairs}
    assert keys == {("alice", "bob"), ("alice", "dan")}

    pairs = build_candidate_pairs([A, B, C, d], blocked_pairs={("alice", "bob")})
    assert {(p.user_id, p.matched_user_id) for p in pairs} == {("alice", "dan")}


def test_candidates_use_canonical_order():
    pairs = build_candidate_pairs([B, A])
    assert [(p.user_id, p.matched_user_id) for p in pairs] == [("alice", "bob")]
    assert pairs[0].score_total == 100


def test_greedy_is_deterministic_for_a_fixed_snapshot():
    users = [
        _user("u1", 22, "FEMALE", "NA_EAST", "GOLD"),
        _user("u2", 22, "MALE", "NA_EAST", "GOLD"),
        _user("u3", 23, "MALE", "NA_EAST", "GOLD"),
        _user("u4", 23, "FEMALE", "NA_WEST", "GOLD"),
        _user("u5", 24, "MALE", "EU", "IRON"),
        _user("u6", 25, "FEMALE", "EU", "BRONZE"),
    ]
    first = greedy_one_to_one_match(build_candidate_pairs(users))
    second = greedy_one_to_one_match(build_candidate_pairs(users))
    shuffled = list(users)
    random.Random(7).shuffle(shuffled)
    third = greedy_one_to_one_match(build_candidate_pairs(shuffled))

    def key(result):
        return [(p.user_id, p.matched_user_id) for p in result]

    assert key(first) == key(second) == key(third)
    seen = [uid for p in first for uid in (p.user_id, p.matched_user_id)]
    assert len(seen) == len(set(seen))


def test_greedy_is_not_an_optimal_matching():
    # Known limitation: taking the single best pair can block a better total.
    pairs = [
        MatchCandidate("a", "b", 100, {}),
        MatchCandidate("a", "c", 90, {}),
        MatchCandidate("b", "d", 90, {}),
    ]
    result = greedy_one_to_one_match(pairs)
    assert [(p.user_id, p.matched_user_id) for p in result] == [("a", "b")]
    assert sum(p.score_total for p in result) < 180


def test_failed_commit_does_not_consume_users():
    pairs = [
        MatchCandidate("a", "b", 100, {}),
        MatchCandidate("a", "c", 80, {}),
        MatchCandidate("b", "d", 70, {}),
    ]
    result = greedy_one_to_one_match(pairs, commit=lambda p: (p.user_id, p.matched_user_id) != ("a", "b"))
    assert [(p.user_id, p.matched_user_id) for p in result] == [("a", "c"), ("b", "d")]


def test_run_with_empty_or_single_queue(services):
    assert services.matchmaking.run() == []
    services.queue.join("alice", _prefs(A))
    assert services.matchmaking.run() == []
    assert services.state.last_matchmaking_run is not None


def test_run_pairs_example_scenario(services, publisher):
    for u in (A, B, C):
        services.queue.join(u["user_id"], _prefs(u))
    publisher.clear()

    created = services.matchmaking.run()

    assert len(created) == 1
    assert {created[0]["user1_id"], created[0]["user2_id"]} == {"alice", "bob"}
    assert created[0]["compatibility_score"] == 100
    assert created[0]["metadata"]["source"] == "matchmaking"
    assert services.queue.status("carl")["in_queue"] is True
    assert services.queue.status("alice")["in_queue"] is False
    assert {e.target_user_id for e in publisher.events_of(MATCH_FOUND)} == {"alice", "bob"}
    size_events = publisher.events_of(QUEUE_SIZE_CHANGED)
    assert len(size_events) == 1
    assert size_events[0].payload == 1


def test_run_respects_blacklist(services):
    services.queue.join("alice", _prefs(A))
    services.queue.join("bob", _prefs(B))
    pairing = services.matchmaking.run()[0]
    services.pairing.breakup(pairing["id"], "alice", reason="not a fit")

    services.queue.join("alice", _prefs(A))
    services.queue.join("bob", _prefs(B))
    assert services.matchmaking.run() == []
    assert services.queue.status("alice")["in_queue"] is True


def test_run_twice_on_same_snapshot_gives_same_pairs(session_factory, publisher, clock):
    from matchmaker.services.queue import QueueState
    from matchmaker.wiring import build_services

    users = [
        _user("p1", 22, "FEMALE"),
        _user("p2", 22, "MALE"),
        _user("p3", 23, "FEMALE", "NA_WEST"),
        _user("p4", 24, "MALE", "BR", "SILVER"),
    ]
    outcomes = []
    for _ in range(2):
        svc = build_services(session_factory, publisher=publisher, clock=clock, state=QueueState(enabled=True))
        for u in users:
            svc.queue.join(u["user_id"], _prefs(u))
        created = svc.matchmaking.run()
        outcomes.append(sorted((p["user1_id"], p["user2_id"]) for p in created))
        svc.pairing.permanently_delete(created[0]["id"])
        svc.pairing.permanently_delete(created[1]["id"])
    assert outcomes[0] == outcomes[1]
    assert outcomes[0] == [("p1", "p2"), ("p3", "p4")]


@pytest.mark.parametrize(
    "error",
    [AlreadyPaired("paired elsewhere", user_id="alice"), TransientStoreFailure("store unavailable")],
)
def test_one_failing_pair_does_not_abort_the_run(services, monkeypatch, error):
    carol = _user("carol", 30, "FEMALE", "EU", "IRON")
    dave = _user("dave", 30, "MALE", "EU", "IRON")
    for u in (A, _user("bob", 22, "MALE"), carol, dave):
        services.queue.join(u["user_id"], _prefs(u))

    real_create = services.pairing.create_pairing

    def flaky_create(user1_id, user2_id, *args, **kwargs):
        if {user1_id, user2_id} == {"alice", "bob"}:
            raise error
        return real_create(user1_id, user2_id, *args, **kwargs)

    monkeypatch.setattr(services.pairing, "create_pairing", flaky_create)
    created = services.matchmaking.run()

    assert [(p["user1_id"], p["user2_id"]) for p in created] == [("carol", "dave")]
    assert services.queue.status("alice")["in_queue"] is True
    assert services.queue.status("bob")["in_queue"] is True


def test_snapshot_drops_queue_rows_of_paired_users(services, session_factory):
    for u in (A, B, _user("dana", 24, "FEMALE")):
        services.queue.join(u["user_id"], _prefs(u))
    services.pairing.create_pairing("alice", "bob", 90)
    with session_factory() as db:
        db.execute(update(QueueEntry).where(QueueEntry.user_id == "alice").values(in_queue=True))
        db.commit()

    profiles, _ = services.matchmaking.snapshot()

    assert [p["user_id"] for p in profiles] == ["dana"]
    assert services.queue.status("alice")["in_queue"] is False
