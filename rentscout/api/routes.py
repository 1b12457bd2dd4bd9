# rentscout/api/routes.py
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from .. import crud, schemas
from ..db import get_db
from ..scrape import run_crawl
from ..utils import logger

router = APIRouter()

@router.get("/health")
def health():
    return {"status": "ok"}

@router.get("/listings", response_model=List[schemas.ListingOut])
def listings(
    skip: int = 0,
    limit: int = Query(20, le=200),
    min_price: Optional[float] = Query(None),
    max_price: Optional[float] = Query(None),
    min_rooms: Optional[float] = Query(None),
    max_rooms: Optional[float] = Query(None),
    district: Optional[str] = Query(None),
    property_type: Optional[schemas.PropertyType] = Query(None),
    active_only: bool = True,
    db: Session = Depends(get_db)
):
    filters = {
        "min_price": min_price,
        "max_price": max_price,
        "min_rooms": min_rooms,
        "max_rooms": max_rooms,
        "district": district,
        "property_type": property_type.value if property_type else None,
        "active_only": active_only,
    }
    res = crud.list_listings(db, skip=skip, limit=limit, filters=filters)
    return res["items"]


@router.get("/listings/{listing_id}", response_model=schemas.ListingOut)
def get_listing(listing_id: int, db: Session = Depends(get_db)):
    obj = crud.get_listing(db, listing_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Listing not found")
    return obj


@router.post("/preferences", response_model=schemas.PreferenceOut, status_code=201)
def create_preference(payload: schemas.PreferenceIn, db: Session = Depends(get_db)):
    data = payload.model_dump()
    data["property_types"] = [t.value for t in payload.property_types]
    return crud.create_preference(db, data)


@router.get("/users/{user_id}/matches", response_model=List[schemas.MatchOut])
def user_matches(user_id: str, skip: int = 0, limit: int = Query(50, le=200),
                 include_dismissed: bool = False, db: Session = Depends(get_db)):
    return crud.list_matches(db, user_id, skip=skip, limit=limit, include_dismissed=include_dismissed)


@router.post("/matches/{match_id}/{event}", response_model=schemas.MatchOut)
def mark_match(match_id: int, event: str, db: Session = Depends(get_db)):
    if event not in crud.MATCH_EVENTS:
        raise HTTPException(status_code=400, detail=f"event must be one of {', '.join(crud.MATCH_EVENTS)}")
    obj = crud.mark_match(db, match_id, event)
    if not obj:
        raise HTTPException(status_code=404, detail="Match not found")
    return obj


@router.post("/crawl", response_model=schemas.CrawlSummary)
def trigger_crawl():
    try:
        return run_crawl()
    except Exception as e:
        logger.exception("Crawl failed: %s", e)
        raise HTTPException(status_code=500, detail="Crawl failed")
