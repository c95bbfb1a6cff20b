from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from .. import repo
from ..errors import Conflict, NotFound, TransientStoreFailure, ValidationError
from .compatibility import compute_compatibility
from .queue import entry_profile

logger = logging.getLogger(__name__)


@dataclass
class MatchCandidate:
    user_id: str
    matched_user_id: str
    score_total: int
    score_breakdown: dict[str, Any]


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def build_candidate_pairs(
    profiles: list[dict[str, Any]],
    blocked_pairs: set[tuple[str, str]] | None = None,
) -> list[MatchCandidate]:
    """All unordered, non-blacklisted pairs with a positive score.

    Each candidate is stored in canonical order (``user_id`` sorts first).
    """
    blocked_pairs = blocked_pairs or set()
    candidates: list[MatchCandidate] = []

    for i in range(len(profiles)):
        for j in range(i + 1, len(profiles)):
            u = profiles[i]
            v = profiles[j]
            pair_key = repo.canonical_pair(u["user_id"], v["user_id"])
            if pair_key[0] == pair_key[1]:
                continue
            if pair_key in blocked_pairs:
                continue

            comp = compute_compatibility(u, v)
            if comp["score_total"] <= 0:
                continue
            candidates.append(
                MatchCandidate(
                    user_id=pair_key[0],
                    matched_user_id=pair_key[1],
                    score_total=int(comp["score_total"]),
                    score_breakdown=comp["score_breakdown"],
                )
            )
    return candidates


def greedy_one_to_one_match(
    pairs: list[MatchCandidate],
    commit: Callable[[MatchCandidate], bool] | None = None,
) -> list[MatchCandidate]:
    """Walk candidates best-first, taking each pair whose users are both free.

    ``commit`` persists a pair and returns whether it stuck; users are only
    consumed when it does. This is a greedy approximation, not an optimal
    maximum-weight matching.
    """
    matched: set[str] = set()
    assignments: list[MatchCandidate] = []
    for pair in sorted(pairs, key=lambda p: (-p.score_total, p.user_id, p.matched_user_id)):
        if pair.user_id in matched or pair.matched_user_id in matched:
            continue
        if commit is not None and not commit(pair):
            continue
        matched.add(pair.user_id)
        matched.add(pair.matched_user_id)
        assignments.append(pair)
    return assignments


class MatchmakingService:
    def __init__(self, session_factory, pairing_service, queue_service, *, clock: Callable[[], datetime] = _now_utc) -> None:
        self.session_factory = session_factory
        self.pairing_service = pairing_service
        self.queue_service = queue_service
        self.clock = clock

    def snapshot(self) -> tuple[list[dict[str, Any]], set[tuple[str, str]]]:
        with repo.unit_of_work(self.session_factory) as db:
            profiles = [entry_profile(e) for e in repo.fetch_active_entries(db)]
            paired = repo.active_participant_ids(db)
            stale = [p["user_id"] for p in profiles if p["user_id"] in paired]
            if stale:
                logger.warning("[MATCHMAKING] removing %s paired users from the queue: %s", len(stale), stale)
                repo.deactivate_queue_entries(db, stale)
                profiles = [p for p in profiles if p["user_id"] not in paired]
            blocked = repo.fetch_blocked_pairs(db) if len(profiles) >= 2 else set()
        return profiles, blocked

    def run(self) -> list[dict[str, Any]]:
        profiles, blocked = self.snapshot()
        created: list[dict[str, Any]] = []
        if len(profiles) < 2:
            logger.info("[MATCHMAKING] %s user(s) in queue; nothing to match", len(profiles))
            self.queue_service.state.last_matchmaking_run = self.clock()
            return created

        candidates = build_candidate_pairs(profiles, blocked_pairs=blocked)
        logger.info("[MATCHMAKING] %s queued users, %s viable candidate pairs", len(profiles), len(candidates))

        def _commit(pair: MatchCandidate) -> bool:
            try:
                snapshot = self.pairing_service.create_pairing(
                    pair.user_id,
                    pair.matched_user_id,
                    pair.score_total,
                    {"source": "matchmaking", "score_breakdown": pair.score_breakdown},
                    announce_queue_change=False,
                )
            except (Conflict, NotFound, ValidationError, TransientStoreFailure) as exc:
                logger.warning(
                    "[MATCHMAKING] skipped %s-%s: %s (%s)",
                    pair.user_id,
                    pair.matched_user_id,
                    exc.kind,
                    exc.message,
                )
                return False
            created.append(snapshot)
            return True

        greedy_one_to_one_match(candidates, commit=_commit)
        self.queue_service.state.last_matchmaking_run = self.clock()

        if created:
            self.queue_service.broadcast_queue_update()
        logger.info("[MATCHMAKING] run complete: %s pairing(s) created", len(created))
        return created
