from __future__ import annotations

import logging
import random
from typing import Any

from ..errors import Conflict
from .compatibility import GENDERS, RANKS, REGIONS

logger = logging.getLogger(__name__)

# Binary genders dominate real queues; keep the open categories rare.
_GENDER_WEIGHTS = {"MALE": 0.45, "FEMALE": 0.45, "NON_BINARY": 0.06, "PREFER_NOT_TO_SAY": 0.04}


def generate_profile(rng: random.Random, idx: int, prefix: str = "seed") -> dict[str, Any]:
    gender = rng.choices(list(GENDERS), weights=[_GENDER_WEIGHTS[g] for g in GENDERS], k=1)[0]
    return {
        "user_id": f"{prefix}_{idx:04d}",
        "age": rng.randint(18, 35),
        "gender": gender,
        "region": rng.choice(REGIONS),
        "rank": rng.choice(RANKS),
    }


def seed_queue(queue_service, n_users: int = 20, seed: int = 42, prefix: str = "seed") -> dict[str, Any]:
    rng = random.Random(seed)
    joined = 0
    skipped = 0
    for idx in range(n_users):
        profile = generate_profile(rng, idx, prefix=prefix)
        user_id = profile.pop("user_id")
        try:
            queue_service.join(user_id, profile)
            joined += 1
        except Conflict as exc:
            logger.info("[SEED] %s not queued: %s", user_id, exc.kind)
            skipped += 1
    return {"requested": n_users, "joined": joined, "skipped": skipped, "queue_size": queue_service.queue_size()}
