"""
Holds API with idempotency support and concurrency protection.
"""
from fastapi import APIRouter, Depends, HTTPException, Header, status
from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import List, Optional
import logging
import hashlib

from ..dependencies import BookingEngine, get_booking_engine, raise_for_failure
from ...models import Hold, Quote, Reservation, UpsellSelection
from ...redis_service import RedisService, get_redis

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Holds"])


class HoldRequest(BaseModel):
    """Request model for creating holds."""
    site_id: str
    arrival: date
    departure: date
    guest_count: int = Field(..., ge=1)
    upsells: List[UpsellSelection] = []


class HoldResponse(BaseModel):
    """Response model for hold creation."""
    hold_id: str
    site_id: str
    status: str
    expires_at: datetime
    remaining_seconds: int
    quote: Quote
    created_from_idempotency: bool = False


class ConfirmRequest(BaseModel):
    payment_intent_ref: str = Field(..., min_length=1)


def hold_response(hold: Hold, now: datetime) -> HoldResponse:
    return HoldResponse(
        hold_id=hold.id,
        site_id=hold.site_id,
        status=hold.status.value.upper(),
        expires_at=hold.expires_at,
        remaining_seconds=max(int((hold.expires_at - now).total_seconds()), 0),
        quote=hold.quote
    )


@router.post("/campgrounds/{campground_id}/holds", response_model=HoldResponse)
async def create_hold(
    campground_id: str,
    hold_request: HoldRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    engine: BookingEngine = Depends(get_booking_engine),
    redis: Optional[RedisService] = Depends(get_redis)
):
    """
    Hold a site for a stay with idempotency support.

    If an Idempotency-Key header is provided (and Redis is configured), repeated
    requests with the same key return the original hold instead of creating
    another one.

    - **site_id**: Site to hold
    - **arrival** / **departure**: Stay range, departure exclusive
    - **guest_count**: Party size
    - **upsells**: Optional add-ons

    Headers:
    - **Idempotency-Key**: Optional key for request idempotency
    """
    engine.snapshot(campground_id)
    key_hash = hashlib.sha256(f"{campground_id}:{idempotency_key}".encode()).hexdigest() if idempotency_key else None

    try:
        # Check idempotency first
        if key_hash and redis:
            existing_result = await redis.get_idempotency_result(key_hash)
            if existing_result:
                logger.info(f"Returning cached result for idempotency key: {idempotency_key}")
                existing_result["created_from_idempotency"] = True
                return HoldResponse(**existing_result)

        result = await engine.allocation.hold(
            campground_id,
            hold_request.site_id,
            hold_request.arrival,
            hold_request.departure,
            hold_request.guest_count,
            selections=hold_request.upsells
        )
        if not isinstance(result, Hold):
            raise_for_failure(result)

        response = hold_response(result, engine.clock.now())

        # Store result for idempotency if key provided
        if key_hash and redis:
            await redis.store_idempotency_key(key_hash, response.model_dump(mode="json"))

        return response

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating hold: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "HOLD_FAILED", "message": "Failed to create hold"}
        )


@router.get("/holds/{hold_id}", response_model=HoldResponse)
async def get_hold_status(
    hold_id: str,
    engine: BookingEngine = Depends(get_booking_engine),
    redis: Optional[RedisService] = Depends(get_redis)
):
    """
    Current status of a hold.

    Active holds are served from the shared Redis cache when configured, so
    any process can answer; settled holds come from the booking engine.
    """
    if redis:
        hold_info = await redis.get_hold_info(hold_id)
        if hold_info:
            remaining_seconds = hold_info.pop("remaining_seconds", None)
            response = hold_response(Hold.model_validate(hold_info), engine.clock.now())
            if remaining_seconds is not None and remaining_seconds >= 0:
                response.remaining_seconds = remaining_seconds
            return response

    hold = await engine.allocation.get_hold(hold_id)
    if hold is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "HOLD_NOT_FOUND", "message": f"Hold {hold_id} not found"}
        )
    return hold_response(hold, engine.clock.now())


@router.post("/holds/{hold_id}/confirm", response_model=Reservation)
async def confirm_hold(
    hold_id: str,
    confirm_request: ConfirmRequest,
    engine: BookingEngine = Depends(get_booking_engine)
):
    """
    Confirm a hold once the deposit payment intent is authorized.

    - **402** payment declined (the hold is released)
    - **404** unknown hold
    - **410** hold expired
    """
    try:
        result = await engine.allocation.confirm(hold_id, confirm_request.payment_intent_ref)
        if not isinstance(result, Reservation):
            raise_for_failure(result)
        return result

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error confirming hold {hold_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "CONFIRM_FAILED", "message": "Failed to confirm hold"}
        )


@router.delete("/holds/{hold_id}")
async def release_hold(
    hold_id: str,
    engine: BookingEngine = Depends(get_booking_engine)
):
    """
    Release a hold.

    This makes the site available for booking again.
    """
    released = await engine.allocation.release(hold_id)
    if not released:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "HOLD_NOT_FOUND", "message": f"No active hold found with id {hold_id}"}
        )

    return {
        "status": "RELEASED",
        "hold_id": hold_id
    }
