from __future__ import annotations

import math
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from .. import repo
from ..config import RECENTLY_QUEUED_MINUTES
from .compatibility import score
from .queue import QueueState, entry_profile, estimate_wait_minutes


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _percentile(values: list[float], q: float) -> float | None:
    if not values:
        return None
    ordered = sorted(values)
    idx = (len(ordered) - 1) * q
    lo = math.floor(idx)
    hi = math.ceil(idx)
    if lo == hi:
        return round(ordered[int(idx)], 4)
    frac = idx - lo
    return round(ordered[lo] + (ordered[hi] - ordered[lo]) * frac, 4)


def percentile_summary(values: list[float]) -> dict[str, float | None]:
    return {
        "p10": _percentile(values, 0.10),
        "p25": _percentile(values, 0.25),
        "p50": _percentile(values, 0.50),
        "p75": _percentile(values, 0.75),
        "p90": _percentile(values, 0.90),
    }


def _wait_minutes(now: datetime, queued_at: datetime) -> int:
    return max(0, int((now - queued_at).total_seconds() // 60))


def compatibility_rate(profiles: list[dict[str, Any]], blocked_pairs: set[tuple[str, str]]) -> tuple[float, list[int]]:
    """Share of queued users (percent) with at least one viable partner, plus all viable scores."""
    if len(profiles) < 2:
        return 0.0, []
    compatible: set[str] = set()
    scores: list[int] = []
    for i in range(len(profiles)):
        for j in range(i + 1, len(profiles)):
            u = profiles[i]
            v = profiles[j]
            if repo.canonical_pair(u["user_id"], v["user_id"]) in blocked_pairs:
                continue
            s = score(u, v)
            if s > 0:
                compatible.add(u["user_id"])
                compatible.add(v["user_id"])
                scores.append(s)
    return round(100.0 * len(compatible) / len(profiles), 2), scores


class StatsService:
    def __init__(self, session_factory, state: QueueState, *, clock: Callable[[], datetime] = _now_utc) -> None:
        self.session_factory = session_factory
        self.state = state
        self.clock = clock

    def queue_statistics(self) -> dict[str, Any]:
        now = self.clock()
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        with repo.unit_of_work(self.session_factory) as db:
            entries = repo.fetch_active_entries(db)
            profiles = [entry_profile(e) for e in entries]
            waits = [_wait_minutes(now, e.queued_at) for e in entries]
            blocked = repo.fetch_blocked_pairs(db)
            age_buckets = repo.age_bucket_counts(db)
            matched_today = repo.pairings_matched_since(db, day_start)
            active_pairings = repo.count_active_pairings(db)

        rate, scores = compatibility_rate(profiles, blocked)
        users_matched_today = {uid for p in matched_today for uid in (p.user1_id, p.user2_id)}
        return {
            "total_users_in_queue": len(entries),
            "average_wait_time_minutes": round(sum(waits) / len(waits), 2) if waits else 0.0,
            "queue_by_region": dict(Counter(p["region"] for p in profiles)),
            "queue_by_rank": dict(Counter(p["rank"] for p in profiles)),
            "queue_by_gender": dict(Counter(p["gender"] for p in profiles)),
            "queue_by_age_range": age_buckets,
            "match_success_rate": rate,
            "candidate_score_percentiles": percentile_summary([float(s) for s in scores]),
            "total_matches_created_today": len(matched_today),
            "total_users_matched_today": len(users_matched_today),
            "active_pairings": active_pairings,
            "queue_enabled": self.state.enabled,
            "updated_by": self.state.updated_by,
            "queue_started_at": self.state.started_at,
            "last_matchmaking_run": self.state.last_matchmaking_run,
            "last_updated": now,
        }

    def queue_user_details(self) -> list[dict[str, Any]]:
        now = self.clock()
        recent_cutoff = now - timedelta(minutes=RECENTLY_QUEUED_MINUTES)
        with repo.unit_of_work(self.session_factory) as db:
            entries = repo.fetch_active_entries(db)
        out: list[dict[str, Any]] = []
        for position, entry in enumerate(entries, start=1):
            out.append(
                {
                    **entry_profile(entry),
                    "queued_at": entry.queued_at,
                    "wait_time_minutes": _wait_minutes(now, entry.queued_at),
                    "queue_position": position,
                    "estimated_wait_minutes": estimate_wait_minutes(position),
                    "recently_queued": entry.queued_at > recent_cutoff,
                }
            )
        return out
