# rentscout/services.py
from typing import Iterable, Optional, Tuple
from sqlalchemy.orm import Session

from . import crud
from .config import settings as default_settings
from .matching import score_listing
from .models import Listing
from .normalize import normalize_listing, validate_listing
from .schemas import ListingStub, RawListing
from .utils import logger


def ingest_listing(db: Session, raw: RawListing, stub: Optional[ListingStub] = None, max_images: int = 20,
                   observed: bool = True, availability_grace_days: Optional[int] = None) -> Tuple[Listing, bool]:
    """Normalize, validate and upsert one extracted listing."""
    data = normalize_listing(raw, stub, max_images=max_images)
    problems = validate_listing(data)
    if problems:
        raise ValueError(f"listing {raw.external_id} rejected: {'; '.join(problems)}")
    payload = data.model_dump()
    payload["platform"] = data.platform.value
    if payload.get("property_type") is not None:
        payload["property_type"] = payload["property_type"].value
    obj, created = crud.upsert_listing(db, payload, observed=observed, availability_grace_days=availability_grace_days)
    logger.info("Ingested listing %s (%s)", obj.external_id, "new" if created else "updated")
    return obj, created


def match_listing(db: Session, listing: Listing, preferences=None, settings=None) -> int:
    """Create matches for every preference the listing scores high enough on."""
    settings = settings or default_settings
    if preferences is None:
        preferences = crud.list_active_preferences(db)
    created = 0
    for pref in preferences:
        score = score_listing(listing, pref, settings.RENT_DECAY_PCT, settings.RENT_HARD_CEILING_PCT)
        if score is None or score < settings.MATCH_THRESHOLD:
            continue
        if crud.create_match(db, pref.user_id, listing.id, score):
            logger.info("Matched listing %s to user %s (score %d)", listing.external_id, pref.user_id, score)
            created += 1
    return created


def match_listings(db: Session, listing_ids: Iterable[int], settings=None) -> int:
    preferences = crud.list_active_preferences(db)
    if not preferences:
        return 0
    return sum(match_listing(db, listing, preferences, settings) for listing in crud.active_listings(db, listing_ids))
