"""
Typed outcomes of pricing and booking operations.

Unavailable dates, hold collisions and expired holds are normal traffic for a
booking engine, so they are returned as values rather than raised. Only truly
unexpected failures (corrupt rule data, unknown tenant, storage errors) are
raised, rooted at BookingEngineError.
"""

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict


class Failure(BaseModel):
    """Base class for recoverable failure outcomes."""

    model_config = ConfigDict(frozen=True)

    error: str
    message: str


class AvailabilityError(Failure):
    """Requested range is unavailable at quote time. Offer other sites or dates."""

    error: Literal["AVAILABILITY_ERROR"] = "AVAILABILITY_ERROR"
    site_id: Optional[str] = None
    arrival: Optional[date] = None
    departure: Optional[date] = None
    reason: str = "site_unavailable"


class Conflict(Failure):
    """A concurrent hold or reservation won the range. Retry elsewhere or re-quote."""

    error: Literal["CONFLICT"] = "CONFLICT"
    site_id: str
    arrival: date
    departure: date
    conflicting_entry_id: Optional[str] = None


class InvalidRangeError(Failure):
    """arrival >= departure, or the stay exceeds the maximum length."""

    error: Literal["INVALID_RANGE"] = "INVALID_RANGE"
    arrival: date
    departure: date
    reason: str


class InvalidRequestError(Failure):
    """Caller input that cannot be priced: unknown site, party too large, unknown add-on."""

    error: Literal["INVALID_REQUEST"] = "INVALID_REQUEST"
    field: str
    reason: str


class HoldExpiredError(Failure):
    error: Literal["HOLD_EXPIRED"] = "HOLD_EXPIRED"
    hold_id: str
    expired_at: datetime


class HoldNotFoundError(Failure):
    error: Literal["HOLD_NOT_FOUND"] = "HOLD_NOT_FOUND"
    hold_id: str


class PaymentDeclinedError(Failure):
    error: Literal["PAYMENT_DECLINED"] = "PAYMENT_DECLINED"
    hold_id: str
    payment_intent_ref: str


class ConfigurationWarning(BaseModel):
    """Non-fatal configuration problem surfaced to operators; the quote still proceeds."""

    model_config = ConfigDict(frozen=True)

    code: str
    subject_id: str
    message: str


# Unrecoverable errors

class BookingEngineError(Exception):
    """Base exception for unrecoverable engine errors"""
    pass


class CorruptRuleDataError(BookingEngineError):
    pass


class UnknownCampgroundError(BookingEngineError):
    pass
