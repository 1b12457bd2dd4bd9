# rentscout/schemas.py
from enum import Enum
from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import date, datetime

PLATFORM_WG_GESUCHT = "wg_gesucht"


class Platform(str, Enum):
    wg_gesucht = PLATFORM_WG_GESUCHT


class PropertyType(str, Enum):
    wg_room = "wg_room"
    studio = "studio"
    apartment = "apartment"
    house = "house"
    other = "other"


class SearchFilters(BaseModel):
    min_rent: Optional[float] = None
    max_rent: Optional[float] = None
    min_rooms: Optional[float] = None
    max_rooms: Optional[float] = None
    min_size: Optional[float] = None
    max_size: Optional[float] = None
    districts: List[str] = []
    property_types: List[PropertyType] = []
    city: str = "Berlin"
    city_id: int = 8
    page: int = 0


class ListingStub(BaseModel):
    """What a search-result card tells us before the detail page is visited."""
    platform: Platform = Platform.wg_gesucht
    external_id: str
    url: str
    title: Optional[str] = None
    price: Optional[float] = None
    size_sqm: Optional[float] = None
    rooms: Optional[float] = None
    district: Optional[str] = None
    address: Optional[str] = None
    property_type: Optional[PropertyType] = None
    thumbnail: Optional[str] = None


class RawListing(BaseModel):
    """Detail-page extraction output: strings as found on the page."""
    platform: Platform = Platform.wg_gesucht
    external_id: str
    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[str] = None
    warm_rent: Optional[str] = None
    size: Optional[str] = None
    rooms: Optional[str] = None
    floor: Optional[str] = None
    total_floors: Optional[str] = None
    district: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[str] = None
    longitude: Optional[str] = None
    available_from: Optional[str] = None
    property_type: Optional[str] = None
    images: List[str] = []
    amenities: Dict[str, bool] = {}
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    allows_auto_apply: bool = False
    sources: Dict[str, str] = {}
    missing_fields: List[str] = []


class ListingCreate(BaseModel):
    platform: Platform = Platform.wg_gesucht
    external_id: str = Field(..., max_length=255)
    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    warm_rent: Optional[float] = None
    size_sqm: Optional[float] = None
    rooms: Optional[float] = Field(None, gt=0)
    floor: Optional[int] = None
    total_floors: Optional[int] = None
    district: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    property_type: Optional[PropertyType] = None
    available_from: Optional[date] = None
    images: List[str] = []
    amenities: Dict[str, bool] = {}
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    allows_auto_apply: bool = False
    missing_fields: List[str] = []
    needs_image_refetch: bool = False


class ListingOut(BaseModel):
    id: int
    platform: str
    external_id: str
    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    warm_rent: Optional[float] = None
    size_sqm: Optional[float] = None
    rooms: Optional[float] = None
    floor: Optional[int] = None
    total_floors: Optional[int] = None
    district: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    property_type: Optional[str] = None
    available_from: Optional[date] = None
    images: List[str] = []
    amenities: Dict[str, bool] = {}
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    allows_auto_apply: bool = False
    is_active: bool
    needs_image_refetch: bool = False
    missing_fields: List[str] = []
    scraped_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    class Config:
        from_attributes = True


class PreferenceIn(BaseModel):
    user_id: str = Field(..., max_length=255)
    min_rent: Optional[float] = None
    max_rent: Optional[float] = None
    min_rooms: Optional[float] = None
    max_rooms: Optional[float] = None
    min_size: Optional[float] = None
    max_size: Optional[float] = None
    districts: List[str] = []
    property_types: List[PropertyType] = []
    is_active: bool = True


class PreferenceOut(PreferenceIn):
    id: int
    property_types: List[str] = []
    class Config:
        from_attributes = True


class MatchOut(BaseModel):
    id: int
    user_id: str
    listing_id: int
    match_score: int
    matched_at: Optional[datetime] = None
    notified_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None
    saved_at: Optional[datetime] = None
    class Config:
        from_attributes = True


class CrawlSummary(BaseModel):
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    pages: int = 0
    seen: int = 0
    found: int = 0
    refetched: int = 0
    saved: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    deactivated: int = 0
    matches: int = 0
    blocked: bool = False
    structural_change: bool = False
    login_failed: bool = False
    errors: List[str] = []
    warnings: List[str] = []
    retry_later: List[str] = []

    @property
    def healthy(self) -> bool:
        return not (self.blocked or self.structural_change) and self.seen > 0
