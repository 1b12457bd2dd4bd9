# rentscout/crud.py
"""Storage operations for listings, search preferences and matches.

Listings are upserted by (platform, external_id) with a field-level merge and
are never deleted; the sweep only flips `is_active`. Match lifecycle
timestamps are written once and never cleared.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, case, func, or_, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from .models import Listing, Match, UserSearchPreference

KEY_COLUMNS = ("platform", "external_id")
MATCH_EVENTS = ("notified", "viewed", "dismissed", "saved")


def utcnow():
    return datetime.now(timezone.utc)


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise NotImplementedError(f"upsert not supported on {dialect}")


def get_listing_by_key(db: Session, platform: str, external_id: str) -> Optional[Listing]:
    return db.query(Listing).filter(Listing.platform == platform, Listing.external_id == external_id).first()


def availability_cutoff(now: datetime, availability_grace_days: int):
    """Listings available before this date are considered gone."""
    return (now - timedelta(days=availability_grace_days)).date()


def upsert_listing(db: Session, data: Dict[str, Any], now: Optional[datetime] = None, observed: bool = True,
                   availability_grace_days: Optional[int] = None) -> Tuple[Listing, bool]:
    """Insert or merge one listing; returns (row, created).

    Merge: non-null incoming fields overwrite, `images` only when non-empty.
    An observed listing gets a fresh `last_seen_at` and is reactivated if it
    was swept, unless its availability date is past the grace period. A
    re-visit that was not observed on a result page (`observed=False`) only
    merges fields.
    """
    now = now or utcnow()
    table = Listing.__table__
    existing = get_listing_by_key(db, data["platform"], data["external_id"])
    expired = False
    if availability_grace_days is not None:
        available = data.get("available_from") or (existing.available_from if existing is not None else None)
        expired = available is not None and available < availability_cutoff(now, availability_grace_days)
    images = list(data.get("images") or [])

    row = dict(data)
    row.update(
        images=images,
        amenities=dict(data.get("amenities") or {}),
        missing_fields=list(data.get("missing_fields") or []),
        needs_image_refetch=not images,
        scraped_at=now,
        last_seen_at=now,
        updated_at=now,
        is_active=True,
        missed_passes=0,
    )
    stmt = _insert_for(db)(table).values(**row)

    set_ = {}
    for name, value in data.items():
        if name in KEY_COLUMNS or name in ("images", "missing_fields", "needs_image_refetch"):
            continue
        if value is None or (name == "amenities" and not value):
            continue
        set_[name] = stmt.excluded[name]
    if images:
        set_["images"] = stmt.excluded.images
        set_["needs_image_refetch"] = False
    elif existing is not None and not existing.images:
        set_["needs_image_refetch"] = True
    if existing is not None:
        # a field is only missing if neither this crawl nor an earlier one found it
        still_missing = [f for f in row["missing_fields"] if getattr(existing, f, None) in (None, "")]
        set_["missing_fields"] = still_missing
    set_.update(scraped_at=now, updated_at=now)
    if observed:
        set_.update(last_seen_at=now, missed_passes=0)
        if not expired:
            set_["is_active"] = True

    stmt = stmt.on_conflict_do_update(index_elements=list(KEY_COLUMNS), set_=set_)
    db.execute(stmt)
    db.commit()
    obj = get_listing_by_key(db, data["platform"], data["external_id"])
    db.refresh(obj)
    return obj, existing is None


def sweep_stale_listings(db: Session, pass_started_at: datetime, missed_pass_threshold: int = 3,
                         availability_grace_days: int = 30, now: Optional[datetime] = None) -> int:
    """Count one more missed pass for every active listing not seen since
    `pass_started_at`, then deactivate those at the threshold or whose
    availability date is older than the grace period. Returns how many
    listings went from active to inactive.
    """
    now = now or utcnow()
    db.execute(
        update(Listing)
        .where(Listing.is_active.is_(True), Listing.last_seen_at < pass_started_at)
        .values(missed_passes=Listing.missed_passes + 1)
        .execution_options(synchronize_session=False)
    )
    cutoff = availability_cutoff(now, availability_grace_days)
    result = db.execute(
        update(Listing)
        .where(
            Listing.is_active.is_(True),
            or_(
                Listing.missed_passes >= missed_pass_threshold,
                and_(Listing.available_from.isnot(None), Listing.available_from < cutoff),
            ),
        )
        .values(is_active=False, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount or 0


def count_active_listings(db: Session, platform: str) -> int:
    return db.query(func.count(Listing.id)).filter(Listing.platform == platform, Listing.is_active.is_(True)).scalar() or 0


def get_listing(db: Session, listing_id: int) -> Optional[Listing]:
    return db.query(Listing).filter(Listing.id == listing_id).first()


def list_listings(db: Session, skip: int = 0, limit: int = 50, filters: Dict = None):
    q = db.query(Listing)
    if filters:
        conds = []
        if filters.get("active_only", True):
            conds.append(Listing.is_active.is_(True))
        if filters.get("min_price") is not None:
            conds.append(Listing.price >= filters["min_price"])
        if filters.get("max_price") is not None:
            conds.append(Listing.price <= filters["max_price"])
        if filters.get("min_rooms") is not None:
            conds.append(Listing.rooms >= filters["min_rooms"])
        if filters.get("max_rooms") is not None:
            conds.append(Listing.rooms <= filters["max_rooms"])
        if filters.get("district"):
            conds.append(Listing.district.ilike(f"%{filters['district']}%"))
        if filters.get("property_type"):
            conds.append(Listing.property_type == filters["property_type"])
        if conds:
            q = q.filter(and_(*conds))
    total = q.count()
    items = q.order_by(Listing.last_seen_at.desc(), Listing.id.desc()).offset(skip).limit(limit).all()
    return {"total": total, "items": items}


def active_listings(db: Session, listing_ids: Iterable[int]) -> List[Listing]:
    ids = list(listing_ids)
    if not ids:
        return []
    return db.query(Listing).filter(Listing.id.in_(ids), Listing.is_active.is_(True)).all()


def create_preference(db: Session, data: Dict[str, Any]) -> UserSearchPreference:
    obj = UserSearchPreference(**data)
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj


def list_active_preferences(db: Session) -> List[UserSearchPreference]:
    return db.query(UserSearchPreference).filter(UserSearchPreference.is_active.is_(True)).all()


def create_match(db: Session, user_id: str, listing_id: int, score: int, now: Optional[datetime] = None) -> bool:
    """Insert a match unless (user_id, listing_id) already exists. True if inserted."""
    table = Match.__table__
    stmt = _insert_for(db)(table).values(
        user_id=user_id, listing_id=listing_id, match_score=score, matched_at=now or utcnow()
    ).on_conflict_do_nothing(index_elements=["user_id", "listing_id"])
    result = db.execute(stmt)
    db.commit()
    return bool(result.rowcount)


def list_matches(db: Session, user_id: str, skip: int = 0, limit: int = 50, include_dismissed: bool = False):
    q = db.query(Match).filter(Match.user_id == user_id)
    if not include_dismissed:
        q = q.filter(Match.dismissed_at.is_(None))
    return q.order_by(Match.match_score.desc(), Match.id.desc()).offset(skip).limit(limit).all()


def mark_match(db: Session, match_id: int, event: str, now: Optional[datetime] = None) -> Optional[Match]:
    """Record a lifecycle event. The first timestamp sticks."""
    if event not in MATCH_EVENTS:
        raise ValueError(f"unknown match event {event!r}")
    obj = db.query(Match).filter(Match.id == match_id).first()
    if not obj:
        return None
    column = f"{event}_at"
    if getattr(obj, column) is None:
        setattr(obj, column, now or utcnow())
        db.commit()
        db.refresh(obj)
    return obj


def touch_listings(db: Session, platform: str, external_ids: Iterable[str], now: Optional[datetime] = None,
                   availability_grace_days: Optional[int] = None) -> int:
    """Mark listings seen on a result page as observed, reactivating swept ones.

    A listing whose availability date is past the grace period keeps its
    current `is_active`, so the sweep retires it once and for good.
    """
    ids = list(external_ids)
    if not ids:
        return 0
    now = now or utcnow()
    is_active = True
    if availability_grace_days is not None:
        expired = and_(Listing.available_from.isnot(None),
                       Listing.available_from < availability_cutoff(now, availability_grace_days))
        is_active = case((expired, Listing.is_active), else_=True)
    result = db.execute(
        update(Listing)
        .where(Listing.platform == platform, Listing.external_id.in_(ids))
        .values(last_seen_at=now, missed_passes=0, is_active=is_active)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount or 0


def listings_needing_refetch(db: Session, platform: str, limit: int, exclude: Iterable[str] = ()) -> List[Listing]:
    """Active listings stored without images or with missing core fields,
    least recently scraped first."""
    if limit <= 0:
        return []
    skip = set(exclude)
    q = (
        db.query(Listing)
        .filter(Listing.platform == platform, Listing.is_active.is_(True))
        .order_by(Listing.scraped_at.asc(), Listing.id.asc())
    )
    out = []
    for row in q:
        if row.external_id in skip:
            continue
        if row.needs_image_refetch or row.missing_fields:
            out.append(row)
            if len(out) >= limit:
                break
    return out
