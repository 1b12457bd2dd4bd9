# rentscout/matching.py
"""Listing vs. saved search preference scoring.

The score is a weighted sum of per-criterion credits in [0, 1], scaled to
0..100. Weights:

    rent 35, rooms 20, size 15, district 20, property type 10

A missing preference bound or an empty set is a wildcard and earns full
credit. A listing value we do not know earns half credit. Rent more than
RENT_HARD_CEILING_PCT above the maximum excludes the listing: the scorer
returns None instead of a low number.
"""
from typing import Iterable, Optional

from .normalize import fold_text, canonical_district_set, normalize_district

WEIGHTS = {
    "rent": 35,
    "rooms": 20,
    "size": 15,
    "district": 20,
    "property_type": 10,
}
UNKNOWN_CREDIT = 0.5
DISTRICT_PARTIAL_CREDIT = 0.7
DISTRICT_UNKNOWN_CREDIT = 0.3
RANGE_DECAY = 0.5


def _num(value) -> Optional[float]:
    return float(value) if value is not None else None


def range_credit(value, low, high, decay) -> float:
    """1 inside [low, high]; outside, falls linearly to 0 at `decay` relative distance."""
    low, high = _num(low), _num(high)
    if low is None and high is None:
        return 1.0
    if value is None:
        return UNKNOWN_CREDIT
    value = float(value)
    if high is not None and value > high:
        excess = (value - high) / high if high > 0 else 1.0
        return max(0.0, 1.0 - excess / decay)
    if low is not None and value < low:
        shortfall = (low - value) / low if low > 0 else 1.0
        return max(0.0, 1.0 - shortfall / decay)
    return 1.0


def exceeds_rent_ceiling(rent, max_rent, hard_ceiling_pct) -> bool:
    if rent is None or max_rent is None:
        return False
    return float(rent) > float(max_rent) * (1 + hard_ceiling_pct)


def district_credit(district, wanted: Iterable[str]) -> float:
    wanted_canonical = canonical_district_set(wanted)
    if not wanted_canonical:
        return 1.0
    if not district:
        return DISTRICT_UNKNOWN_CREDIT
    if normalize_district(district) in wanted_canonical:
        return 1.0
    folded = fold_text(district)
    for name in wanted:
        w = fold_text(name)
        if w and (w in folded or folded in w):
            return DISTRICT_PARTIAL_CREDIT
    return 0.0


def type_credit(property_type, wanted: Iterable[str]) -> float:
    wanted = {getattr(t, "value", t) for t in wanted or []}
    if not wanted:
        return 1.0
    if property_type is None:
        return UNKNOWN_CREDIT
    return 1.0 if getattr(property_type, "value", property_type) in wanted else 0.0


def score_listing(listing, preference, rent_decay_pct: float = 0.20, hard_ceiling_pct: float = 0.30) -> Optional[int]:
    """0..100, or None when the listing fails the rent hard filter."""
    rent = listing.price if listing.price is not None else listing.warm_rent
    if exceeds_rent_ceiling(rent, preference.max_rent, hard_ceiling_pct):
        return None
    credits = {
        "rent": range_credit(rent, preference.min_rent, preference.max_rent, rent_decay_pct),
        "rooms": range_credit(listing.rooms, preference.min_rooms, preference.max_rooms, RANGE_DECAY),
        "size": range_credit(listing.size_sqm, preference.min_size, preference.max_size, RANGE_DECAY),
        "district": district_credit(listing.district, preference.districts or []),
        "property_type": type_credit(listing.property_type, preference.property_types or []),
    }
    score = sum(WEIGHTS[k] * credits[k] for k in WEIGHTS)
    return int(round(min(100.0, max(0.0, score))))
