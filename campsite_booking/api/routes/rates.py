"""
Rates API: read-only nightly rate lookups for reporting.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from datetime import date, timedelta
import logging

from ..dependencies import BookingEngine, get_booking_engine
from ...models import NightlyRate
from ...services.quoting import class_occupancy, price_nights

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Rates"])


@router.get("/campgrounds/{campground_id}/rates/nightly", response_model=NightlyRate)
async def get_nightly_rate(
    campground_id: str,
    siteId: str = Query(..., description="Site to price"),
    night: date = Query(..., description="Night to price (YYYY-MM-DD)"),
    engine: BookingEngine = Depends(get_booking_engine)
):
    """
    Resolved rate for one site and night, with the rules that produced it.
    Ignores availability; priced as a one-night stay.
    """
    snapshot = engine.snapshot(campground_id)
    site = snapshot.site(siteId)
    if site is None:
        raise HTTPException(
            status_code=404,
            detail={"error": "SITE_NOT_FOUND", "message": f"Site {siteId} not found"}
        )

    nightly = price_nights(
        snapshot,
        site,
        night,
        night + timedelta(days=1),
        class_occupancy(snapshot, engine.calendar)
    )
    return nightly[0]
