import itertools

from matchmaker.services.compatibility import (
    age_points,
    ages_compatible,
    compute_compatibility,
    genders_compatible,
    rank_points,
    region_points,
    score,
)


def _p(age, gender, region="NA_EAST", rank="GOLD"):
    return {"age": age, "gender": gender, "region": region, "rank": rank}


def test_example_pair_scores_capped_at_100():
    a = _p(22, "FEMALE", "NA_EAST", "GOLD")
    b = _p(23, "MALE", "NA_EAST", "GOLD")
    comp = compute_compatibility(a, b)
    assert comp["score_total"] == 100
    assert comp["score_breakdown"]["components"] == {"region": 40, "rank": 30, "age": 30}


def test_age_gap_vetoes_regardless_of_soft_score():
    a = _p(22, "FEMALE", "NA_EAST", "GOLD")
    c = _p(40, "MALE", "EU", "IRON")
    comp = compute_compatibility(a, c)
    assert comp["score_total"] == 0
    assert comp["score_breakdown"]["gates"] == ["age"]


def test_super_region_and_rank_bands():
    a = _p(22, "FEMALE", "NA_EAST", "GOLD")
    assert score(a, _p(23, "MALE", "NA_WEST", "PLATINUM")) == 25 + 30 + 30
    assert score(a, _p(26, "MALE", "EU", "DIAMOND")) == 10 + 20 + 20
    assert score(_p(30, "FEMALE", "KR", "IRON"), _p(30, "MALE", "AP", "RADIANT")) == 25 + 0 + 30


def test_gender_table():
    assert genders_compatible("MALE", "FEMALE")
    assert genders_compatible("female", "male")
    assert not genders_compatible("MALE", "MALE")
    assert not genders_compatible("FEMALE", "FEMALE")
    assert genders_compatible("NON_BINARY", "NON_BINARY")
    assert genders_compatible("NON_BINARY", "PREFER_NOT_TO_SAY")
    assert genders_compatible("PREFER_NOT_TO_SAY", "PREFER_NOT_TO_SAY")
    assert not genders_compatible("NON_BINARY", "MALE")
    assert not genders_compatible("PREFER_NOT_TO_SAY", "FEMALE")
    assert not genders_compatible(None, "FEMALE")
    assert not genders_compatible("ROBOT", "FEMALE")


def test_minimum_age_guard():
    assert ages_compatible(18, 20)
    assert not ages_compatible(18, 21)
    assert not ages_compatible(21, 18)
    assert not ages_compatible(17, 18)
    assert ages_compatible(25, 30)
    assert not ages_compatible(25, 31)
    assert not ages_compatible(None, 25)


def test_soft_component_bands():
    assert region_points("EU", "EU") == 40
    assert region_points("BR", "LATAM") == 25
    assert region_points("EU", "KR") == 10
    assert region_points(None, "KR") == 10
    assert rank_points("GOLD", "GOLD") == 30
    assert rank_points("GOLD", "DIAMOND") == 20
    assert rank_points("IRON", "GOLD") == 10
    assert rank_points("IRON", "PLATINUM") == 0
    assert rank_points("IRON", "UNRANKED") == 0
    assert age_points(20, 22) == 30
    assert age_points(20, 25) == 20
    assert age_points(20, 30) == 10
    assert age_points(20, 31) == 0


def test_unknown_gender_is_incompatible():
    assert score(_p(25, None), _p(25, "FEMALE")) == 0
    assert score({"age": 25, "region": "EU", "rank": "GOLD"}, _p(25, "FEMALE")) == 0


def test_score_is_symmetric():
    pool = [
        _p(18, "FEMALE", "NA_EAST", "IRON"),
        _p(20, "MALE", "BR", "SILVER"),
        _p(23, "MALE", "EU", "RADIANT"),
        _p(24, "FEMALE", "KR", "DIAMOND"),
        _p(26, "NON_BINARY", "AP", "GOLD"),
        _p(29, "PREFER_NOT_TO_SAY", "AP", "ASCENDANT"),
        _p(31, "NON_BINARY", "LATAM", "BRONZE"),
        _p(17, "MALE", "NA_WEST", "GOLD"),
    ]
    for a, b in itertools.combinations(pool, 2):
        assert score(a, b) == score(b, a)
        assert 0 <= score(a, b) <= 100


def test_hard_veto_ignores_perfect_soft_fit():
    same_gender = score(_p(25, "MALE"), _p(25, "MALE"))
    under_age = score(_p(17, "FEMALE"), _p(18, "MALE"))
    assert same_gender == 0
    assert under_age == 0
