"""
Quotes API: price a stay without taking the site.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, model_validator
from datetime import date
from typing import List, Optional
import logging

from ..dependencies import BookingEngine, get_booking_engine, raise_for_failure
from ...models import Quote, UpsellSelection
from ...services.quoting import build_quote, quote_for_site_class

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Quotes"])


class QuoteRequest(BaseModel):
    """Quote a specific site, or the first free site of a class."""
    site_id: Optional[str] = None
    site_class_id: Optional[str] = None
    arrival: date
    departure: date
    guest_count: int = Field(..., ge=1)
    upsells: List[UpsellSelection] = []

    @model_validator(mode="after")
    def check_target(self):
        if not self.site_id and not self.site_class_id:
            raise ValueError("site_id or site_class_id is required")
        return self


@router.post("/campgrounds/{campground_id}/quotes", response_model=Quote)
async def create_quote(
    campground_id: str,
    quote_request: QuoteRequest,
    engine: BookingEngine = Depends(get_booking_engine)
):
    """
    Price a stay.

    - **409** when the site (or every site of the class) is unavailable
    - **422** for an invalid range, unknown site, oversize party or unknown add-on
    """
    snapshot = engine.snapshot(campground_id)

    try:
        common = dict(
            arrival=quote_request.arrival,
            departure=quote_request.departure,
            guest_count=quote_request.guest_count,
            selections=quote_request.upsells,
            now=engine.clock.now(),
            max_stay_nights=engine.settings.max_stay_nights,
            currency=engine.settings.currency
        )
        if quote_request.site_id:
            result = build_quote(snapshot, engine.calendar, quote_request.site_id, **common)
        else:
            result = quote_for_site_class(snapshot, engine.calendar, quote_request.site_class_id, **common)
    except Exception as e:
        logger.error(f"Error quoting {quote_request.site_id or quote_request.site_class_id} at {campground_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "QUOTE_FAILED", "message": "Failed to build quote"}
        )

    if not isinstance(result, Quote):
        raise_for_failure(result)

    return result
