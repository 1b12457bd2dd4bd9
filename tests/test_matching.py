from types import SimpleNamespace

from rentscout.matching import district_credit, range_credit, score_listing, type_credit
from rentscout.schemas import PropertyType


def make_listing(**fields):
    base = dict(price=900, warm_rent=None, rooms=2.0, size_sqm=60.0, district="Friedrichshain-Kreuzberg",
                property_type="apartment")
    base.update(fields)
    return SimpleNamespace(**base)


def make_pref(**fields):
    base = dict(min_rent=None, max_rent=None, min_rooms=None, max_rooms=None, min_size=None, max_size=None,
                districts=[], property_types=[])
    base.update(fields)
    return SimpleNamespace(**base)


def test_open_preference_scores_full_marks():
    assert score_listing(make_listing(), make_pref()) == 100
    assert score_listing(make_listing(price=None, rooms=None, district=None), make_pref()) == 100


def test_score_falls_as_rent_rises():
    pref = make_pref(max_rent=1000)
    scores = [score_listing(make_listing(price=p), pref) for p in (900, 1000, 1050, 1100, 1150, 1200, 1300)]
    assert scores[0] == scores[1] == 100
    assert all(a >= b for a, b in zip(scores, scores[1:]))
    assert scores[2] > scores[3] > scores[4] > scores[5]
    assert scores[-1] == 65


def test_rent_above_hard_ceiling_is_excluded():
    pref = make_pref(max_rent=1000)
    assert score_listing(make_listing(price=1301), pref) is None
    assert score_listing(make_listing(price=None, warm_rent=1400), pref) is None


def test_warm_rent_used_when_cold_rent_unknown():
    pref = make_pref(max_rent=1000)
    assert score_listing(make_listing(price=None, warm_rent=950), pref) == 100


def test_district_credit():
    assert district_credit("Kreuzberg", ["Friedrichshain"]) == 1.0
    assert district_credit("Moabit", ["Mitte"]) == 1.0
    assert district_credit("Potsdam-West", ["Potsdam"]) == 0.7
    assert district_credit(None, ["Mitte"]) == 0.3
    assert district_credit("Spandau", ["Mitte"]) == 0.0
    assert district_credit("Spandau", []) == 1.0


def test_type_credit():
    assert type_credit("wg_room", ["wg_room"]) == 1.0
    assert type_credit(PropertyType.studio, [PropertyType.apartment]) == 0.0
    assert type_credit(None, ["apartment"]) == 0.5
    assert type_credit("house", []) == 1.0


def test_range_credit():
    assert range_credit(3, 2, 4, 0.5) == 1.0
    assert range_credit(None, 2, 4, 0.5) == 0.5
    assert range_credit(1, 2, None, 0.5) == 0.0
    assert range_credit(6, None, 4, 0.5) == 0.0
    assert range_credit(5, None, 4, 0.5) == 0.5


def test_wrong_district_and_type_lose_their_weight():
    pref = make_pref(districts=["Spandau"], property_types=["wg_room"])
    assert score_listing(make_listing(), pref) == 70
