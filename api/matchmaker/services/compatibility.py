from __future__ import annotations

from typing import Any

from ..config import MAX_AGE_GAP, MAX_COMPATIBILITY_SCORE, MIN_AGE, MIN_AGE_PARTNER_SPAN

GENDERS = ("MALE", "FEMALE", "NON_BINARY", "PREFER_NOT_TO_SAY")
RANKS = ("IRON", "BRONZE", "SILVER", "GOLD", "PLATINUM", "DIAMOND", "ASCENDANT", "IMMORTAL", "RADIANT")
REGIONS = ("NA_EAST", "NA_WEST", "NA_CENTRAL", "LATAM", "BR", "EU", "KR", "AP")

SUPER_REGIONS: dict[str, frozenset[str]] = {
    "AMERICAS": frozenset({"NA_EAST", "NA_WEST", "NA_CENTRAL", "LATAM", "BR"}),
    "EUROPE": frozenset({"EU"}),
    "ASIA_PACIFIC": frozenset({"KR", "AP"}),
}

_OPEN_GENDERS = frozenset({"NON_BINARY", "PREFER_NOT_TO_SAY"})
_COMPATIBLE_GENDERS: dict[str, frozenset[str]] = {
    "MALE": frozenset({"FEMALE"}),
    "FEMALE": frozenset({"MALE"}),
    "NON_BINARY": _OPEN_GENDERS,
    "PREFER_NOT_TO_SAY": _OPEN_GENDERS,
}

REGION_EXACT_POINTS = 40
REGION_SUPER_POINTS = 25
REGION_OTHER_POINTS = 10

# (max distance, points), checked in order
RANK_BANDS = ((1, 30), (2, 20), (3, 10))
AGE_BANDS = ((2, 30), (5, 20), (10, 10))


def _normalize(value: Any) -> str | None:
    if value is None:
        return None
    v = str(value).strip().upper()
    return v or None


def _to_age(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def super_region(region: Any) -> str | None:
    r = _normalize(region)
    for name, members in SUPER_REGIONS.items():
        if r in members:
            return name
    return None


def rank_index(rank: Any) -> int | None:
    r = _normalize(rank)
    if r not in RANKS:
        return None
    return RANKS.index(r)


def genders_compatible(g1: Any, g2: Any) -> bool:
    a = _normalize(g1)
    b = _normalize(g2)
    if not a or not b:
        return False
    return b in _COMPATIBLE_GENDERS.get(a, frozenset()) and a in _COMPATIBLE_GENDERS.get(b, frozenset())


def ages_compatible(age1: Any, age2: Any) -> bool:
    a = _to_age(age1)
    b = _to_age(age2)
    if a is None or b is None:
        return False
    if a < MIN_AGE or b < MIN_AGE:
        return False
    if abs(a - b) > MAX_AGE_GAP:
        return False
    if a == MIN_AGE and b > MIN_AGE + MIN_AGE_PARTNER_SPAN:
        return False
    if b == MIN_AGE and a > MIN_AGE + MIN_AGE_PARTNER_SPAN:
        return False
    return True


def region_points(r1: Any, r2: Any) -> int:
    a = _normalize(r1)
    b = _normalize(r2)
    if a and a == b:
        return REGION_EXACT_POINTS
    group = super_region(a)
    if group is not None and group == super_region(b):
        return REGION_SUPER_POINTS
    return REGION_OTHER_POINTS


def _banded(distance: int, bands: tuple[tuple[int, int], ...]) -> int:
    for limit, points in bands:
        if distance <= limit:
            return points
    return 0


def rank_points(rank1: Any, rank2: Any) -> int:
    a = rank_index(rank1)
    b = rank_index(rank2)
    if a is None or b is None:
        return 0
    return _banded(abs(a - b), RANK_BANDS)


def age_points(age1: Any, age2: Any) -> int:
    a = _to_age(age1)
    b = _to_age(age2)
    if a is None or b is None:
        return 0
    return _banded(abs(a - b), AGE_BANDS)


def compute_compatibility(a: dict[str, Any], b: dict[str, Any]) -> dict[str, Any]:
    """Score two queue profiles, returning the total and a per-rule breakdown.

    Profiles are mappings with ``age``, ``gender``, ``region`` and ``rank``.
    A failed hard gate short-circuits to a total of 0. Every rule compares
    the two sides with an order-independent operation, so the result is
    symmetric in ``a`` and ``b``.
    """
    gates_triggered: list[str] = []
    if not genders_compatible(a.get("gender"), b.get("gender")):
        gates_triggered.append("gender")
    elif not ages_compatible(a.get("age"), b.get("age")):
        gates_triggered.append("age")

    if gates_triggered:
        return {
            "score_total": 0,
            "score_breakdown": {"gates": gates_triggered, "components": {}},
        }

    components = {
        "region": region_points(a.get("region"), b.get("region")),
        "rank": rank_points(a.get("rank"), b.get("rank")),
        "age": age_points(a.get("age"), b.get("age")),
    }
    total = min(MAX_COMPATIBILITY_SCORE, sum(components.values()))
    return {
        "score_total": total,
        "score_breakdown": {"gates": gates_triggered, "components": components},
    }


def score(a: dict[str, Any], b: dict[str, Any]) -> int:
    return int(compute_compatibility(a, b)["score_total"])
