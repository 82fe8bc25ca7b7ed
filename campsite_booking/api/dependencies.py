"""
Shared engine wiring for the HTTP layer.
"""

import logging
from typing import Optional

from fastapi import HTTPException, status

from ..catalog import RateCatalog, RateSnapshot
from ..clock import system_clock
from ..config import Settings, settings as default_settings
from ..outcomes import Failure, UnknownCampgroundError
from ..services.allocation import AllocationService, PaymentIntentVerifier, TrustedPaymentVerifier
from ..services.calendar import CalendarIndex

logger = logging.getLogger(__name__)

FAILURE_STATUS = {
    "AVAILABILITY_ERROR": status.HTTP_409_CONFLICT,
    "CONFLICT": status.HTTP_409_CONFLICT,
    "INVALID_RANGE": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "INVALID_REQUEST": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "HOLD_EXPIRED": status.HTTP_410_GONE,
    "HOLD_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "PAYMENT_DECLINED": status.HTTP_402_PAYMENT_REQUIRED,
}


class BookingEngine:
    """Catalog, calendar and allocation service for one process."""

    def __init__(
        self,
        settings: Settings = default_settings,
        clock=system_clock,
        verifier: Optional[PaymentIntentVerifier] = None,
        redis=None,
        repository=None
    ):
        self.settings = settings
        self.clock = clock
        self.catalog = RateCatalog()
        self.calendar = CalendarIndex(clock=clock)
        self.allocation = AllocationService(
            self.catalog,
            self.calendar,
            verifier or TrustedPaymentVerifier(),
            settings=settings,
            clock=clock,
            redis=redis,
            repository=repository
        )

    def snapshot(self, campground_id: str) -> RateSnapshot:
        try:
            return self.catalog.get(campground_id)
        except UnknownCampgroundError:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={
                    "error": "CAMPGROUND_NOT_FOUND",
                    "message": f"Campground {campground_id} not found"
                }
            )


booking_engine: Optional[BookingEngine] = None


def set_booking_engine(engine: BookingEngine) -> BookingEngine:
    global booking_engine
    booking_engine = engine
    return engine


# FastAPI dependency
def get_booking_engine() -> BookingEngine:
    if booking_engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "ENGINE_NOT_READY", "message": "Booking engine is starting up"}
        )
    return booking_engine


def raise_for_failure(outcome: Failure):
    """Translate a typed failure outcome into an HTTP error."""
    raise HTTPException(
        status_code=FAILURE_STATUS.get(outcome.error, status.HTTP_400_BAD_REQUEST),
        detail=outcome.model_dump(mode="json")
    )
