# rentscout/models.py
"""SQLAlchemy ORM models: listings, saved search preferences and matches."""
from sqlalchemy import (
    Boolean, Column, Date, Float, ForeignKey, Index, Integer, JSON, Numeric, Text,
    TIMESTAMP, UniqueConstraint, func,
)
from sqlalchemy.dialects.postgresql import JSONB
from .db import Base

# JSONB on PostgreSQL, plain JSON everywhere else
JSONType = JSON().with_variant(JSONB, "postgresql")


class Listing(Base):
    __tablename__ = "listings"
    __table_args__ = (
        UniqueConstraint("platform", "external_id", name="uq_listings_platform_external_id"),
    )
    id = Column(Integer, primary_key=True, index=True)
    platform = Column(Text, nullable=False)
    external_id = Column(Text, nullable=False)
    url = Column(Text, nullable=False)
    title = Column(Text)
    description = Column(Text)
    price = Column(Numeric)
    warm_rent = Column(Numeric)
    size_sqm = Column(Float)
    rooms = Column(Float)
    floor = Column(Integer)
    total_floors = Column(Integer)
    district = Column(Text)
    address = Column(Text)
    latitude = Column(Float)
    longitude = Column(Float)
    property_type = Column(Text)
    available_from = Column(Date)
    images = Column(JSONType, nullable=False, default=list)
    amenities = Column(JSONType, nullable=False, default=dict)
    contact_name = Column(Text)
    contact_phone = Column(Text)
    contact_email = Column(Text)
    allows_auto_apply = Column(Boolean, nullable=False, default=False)
    missing_fields = Column(JSONType, nullable=False, default=list)
    needs_image_refetch = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    missed_passes = Column(Integer, nullable=False, default=0)
    scraped_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())
    last_seen_at = Column(TIMESTAMP(timezone=True), server_default=func.now())


class UserSearchPreference(Base):
    __tablename__ = "user_search_preferences"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Text, nullable=False, index=True)
    min_rent = Column(Numeric)
    max_rent = Column(Numeric)
    min_rooms = Column(Float)
    max_rooms = Column(Float)
    min_size = Column(Float)
    max_size = Column(Float)
    districts = Column(JSONType, nullable=False, default=list)
    property_types = Column(JSONType, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())


class Match(Base):
    __tablename__ = "user_matches"
    __table_args__ = (
        UniqueConstraint("user_id", "listing_id", name="uq_user_matches_user_listing"),
    )
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Text, nullable=False)
    listing_id = Column(Integer, ForeignKey("listings.id"), nullable=False)
    match_score = Column(Integer, nullable=False)
    matched_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    notified_at = Column(TIMESTAMP(timezone=True))
    viewed_at = Column(TIMESTAMP(timezone=True))
    dismissed_at = Column(TIMESTAMP(timezone=True))
    saved_at = Column(TIMESTAMP(timezone=True))

Index("idx_listings_price", Listing.price)
Index("idx_listings_active_seen", Listing.is_active, Listing.last_seen_at)
Index("idx_listings_district", Listing.district)
Index("idx_user_matches_user", Match.user_id)
