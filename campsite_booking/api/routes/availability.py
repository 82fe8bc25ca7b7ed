"""
Availability API for querying campsite availability with holds integration.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from datetime import date
from typing import Optional, List
import logging

from ..dependencies import BookingEngine, get_booking_engine, raise_for_failure
from ...outcomes import Conflict
from ...services.quoting import find_available_sites

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Availability"])


class SiteAvailabilityResponse(BaseModel):
    """Response model for a single-site availability query."""
    site_id: str
    arrival: date
    departure: date
    available: bool
    conflicting_entry_id: Optional[str] = None


class BlockRequest(BaseModel):
    """Operator closure of a site for [arrival, departure)."""
    arrival: date
    departure: date
    reason: str = Field(..., min_length=1)


class BlockResponse(BaseModel):
    block_id: str
    site_id: str
    arrival: date
    departure: date
    reason: str


class AvailableSite(BaseModel):
    site_id: str
    name: str


class ClassAvailabilityResponse(BaseModel):
    """Response model for free sites of a class."""
    site_class_id: str
    arrival: date
    departure: date
    sites: List[AvailableSite]


def check_range(arrival: date, departure: date):
    if arrival >= departure:
        raise HTTPException(
            status_code=422,
            detail={"error": "INVALID_RANGE", "message": "Departure must be after arrival"}
        )


@router.get("/campgrounds/{campground_id}/availability", response_model=SiteAvailabilityResponse)
async def get_site_availability(
    campground_id: str,
    siteId: str = Query(..., description="Site to check"),
    arrival: date = Query(..., description="First night (YYYY-MM-DD)"),
    departure: date = Query(..., description="Checkout day (YYYY-MM-DD)"),
    engine: BookingEngine = Depends(get_booking_engine)
):
    """
    Is a site free for [arrival, departure)?

    Advisory only: a hold can still lose the race at commit time.
    """
    check_range(arrival, departure)
    snapshot = engine.snapshot(campground_id)
    if snapshot.site(siteId) is None:
        raise HTTPException(
            status_code=404,
            detail={"error": "SITE_NOT_FOUND", "message": f"Site {siteId} not found"}
        )

    clash = engine.calendar.conflicting_entry(siteId, arrival, departure)
    return SiteAvailabilityResponse(
        site_id=siteId,
        arrival=arrival,
        departure=departure,
        available=clash is None,
        conflicting_entry_id=clash.id if clash else None
    )


@router.get("/campgrounds/{campground_id}/availability/sites", response_model=ClassAvailabilityResponse)
async def get_class_availability(
    campground_id: str,
    siteClassId: str = Query(..., description="Site class to search"),
    arrival: date = Query(...),
    departure: date = Query(...),
    engine: BookingEngine = Depends(get_booking_engine)
):
    """Free sites of a class, ordered by site name."""
    check_range(arrival, departure)
    snapshot = engine.snapshot(campground_id)
    if snapshot.site_class(siteClassId) is None:
        raise HTTPException(
            status_code=404,
            detail={"error": "SITE_CLASS_NOT_FOUND", "message": f"Site class {siteClassId} not found"}
        )

    sites = find_available_sites(snapshot, engine.calendar, siteClassId, arrival, departure)
    return ClassAvailabilityResponse(
        site_class_id=siteClassId,
        arrival=arrival,
        departure=departure,
        sites=[AvailableSite(site_id=s.id, name=s.name) for s in sites]
    )


@router.post("/campgrounds/{campground_id}/sites/{site_id}/blocks", response_model=BlockResponse)
async def block_site(
    campground_id: str,
    site_id: str,
    block_request: BlockRequest,
    engine: BookingEngine = Depends(get_booking_engine)
):
    """
    Close a site for maintenance.

    - **409** the range overlaps a hold, reservation or another block
    """
    check_range(block_request.arrival, block_request.departure)
    snapshot = engine.snapshot(campground_id)
    if snapshot.site(site_id) is None:
        raise HTTPException(
            status_code=404,
            detail={"error": "SITE_NOT_FOUND", "message": f"Site {site_id} not found"}
        )

    result = await engine.allocation.block_site(
        site_id, block_request.arrival, block_request.departure, block_request.reason
    )
    if isinstance(result, Conflict):
        raise_for_failure(result)

    return BlockResponse(
        block_id=result.id,
        site_id=site_id,
        arrival=result.arrival,
        departure=result.departure,
        reason=result.reason
    )
