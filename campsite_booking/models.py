"""
Domain models for campground pricing and allocation.

All money is integer cents. Percentages are Decimal percent values (30 == 30%).
Stay ranges are half-open: [arrival, departure).
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .outcomes import ConfigurationWarning

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# Enums
class RuleType(str, Enum):
    SEASON = "season"
    WEEKEND = "weekend"
    HOLIDAY = "holiday"
    EVENT = "event"
    DEMAND = "demand"

class StackMode(str, Enum):
    ADDITIVE = "additive"
    MAX = "max"
    OVERRIDE = "override"

class AdjustmentType(str, Enum):
    FLAT = "flat"
    PERCENT = "percent"

class DepositStrategy(str, Enum):
    FIRST_NIGHT = "first_night"
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    FULL = "full"

class DepositApplyTo(str, Enum):
    LODGING_ONLY = "lodging_only"
    LODGING_PLUS_FEES = "lodging_plus_fees"

class DueTiming(str, Enum):
    AT_BOOKING = "at_booking"
    DAYS_BEFORE_ARRIVAL = "days_before_arrival"
    FIXED_DATE = "fixed_date"

class UpsellPricingType(str, Enum):
    FLAT = "flat"
    PER_NIGHT = "per_night"
    PER_GUEST = "per_guest"
    PER_SITE = "per_site"

class ReservationStatus(str, Enum):
    HELD = "held"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"

class HoldStatus(str, Enum):
    HELD = "held"
    CONFIRMED = "confirmed"
    RELEASED = "released"
    EXPIRED = "expired"


class DomainModel(BaseModel):
    model_config = ConfigDict(frozen=True)


def _sorted_unique(values):
    return tuple(sorted(set(values)))


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# Campground aggregate
class Campground(DomainModel):
    id: str
    name: str
    default_deposit_policy_id: Optional[str] = None
    max_stay_nights: Optional[int] = Field(None, ge=1)

class SiteClass(DomainModel):
    id: str
    campground_id: str
    name: str
    base_rate_cents: int = Field(..., ge=0)
    max_occupancy: int = Field(..., ge=1)
    amenity_tags: Tuple[str, ...] = ()

class Site(DomainModel):
    id: str
    campground_id: str
    site_class_id: str
    name: str
    active: bool = True


# Rule predicates: a closed set of tagged variants
class SeasonPredicate(DomainModel):
    kind: Literal["season"] = "season"
    start_date: date
    end_date: date
    days_of_week: Tuple[int, ...] = ()  # empty == every day

    normalize_days = field_validator("days_of_week")(_sorted_unique)

    @model_validator(mode="after")
    def check_range(self):
        if self.start_date > self.end_date:
            raise ValueError("season start_date must not be after end_date")
        if any(d < 0 or d > 6 for d in self.days_of_week):
            raise ValueError("days_of_week entries must be 0 (Mon) .. 6 (Sun)")
        return self

class WeekendPredicate(DomainModel):
    kind: Literal["weekend"] = "weekend"
    days_of_week: Tuple[int, ...] = (4, 5)  # Friday and Saturday nights

    normalize_days = field_validator("days_of_week")(_sorted_unique)

    @model_validator(mode="after")
    def check_days(self):
        if not self.days_of_week:
            raise ValueError("weekend predicate needs at least one day")
        if any(d < 0 or d > 6 for d in self.days_of_week):
            raise ValueError("days_of_week entries must be 0 (Mon) .. 6 (Sun)")
        return self

class HolidayPredicate(DomainModel):
    kind: Literal["holiday"] = "holiday"
    dates: Tuple[date, ...]

    normalize_dates = field_validator("dates")(_sorted_unique)

class EventPredicate(DomainModel):
    kind: Literal["event"] = "event"
    event_name: str
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def check_range(self):
        if self.start_date > self.end_date:
            raise ValueError("event start_date must not be after end_date")
        return self

class DemandPredicate(DomainModel):
    kind: Literal["demand"] = "demand"
    threshold_pct: Decimal = Field(..., ge=0, le=100)
    start_date: Optional[date] = None
    end_date: Optional[date] = None


RulePredicate = Annotated[
    Union[SeasonPredicate, WeekendPredicate, HolidayPredicate, EventPredicate, DemandPredicate],
    Field(discriminator="kind"),
]


class PricingRule(DomainModel):
    """
    A prioritized, scoped nightly rate adjustment.

    For additive rules the adjustment is a delta (flat cents, or percent of
    the class base rate). For max and override rules it is a target nightly
    rate (flat cents, or base rate plus percent).
    """
    id: str
    campground_id: str
    site_class_id: Optional[str] = None  # None == campground-wide
    name: str
    predicate: RulePredicate
    stack_mode: StackMode
    priority: int = 0
    adjustment_type: AdjustmentType = AdjustmentType.FLAT
    adjustment_value: Decimal = Decimal(0)
    min_rate_cents: Optional[int] = Field(None, ge=0)
    max_rate_cents: Optional[int] = Field(None, ge=0)
    min_nights: Optional[int] = Field(None, ge=1)
    active: bool = True
    created_at: Optional[datetime] = None

    utc_created_at = field_validator("created_at")(_as_utc)

    @property
    def type(self) -> RuleType:
        return RuleType(self.predicate.kind)

    @property
    def sort_key(self):
        # priority first, then creation order, then id
        return (self.priority, self.created_at or EPOCH, self.id)


class DepositPolicy(DomainModel):
    id: str
    campground_id: str
    site_class_id: Optional[str] = None
    name: str
    strategy: DepositStrategy
    value: Decimal = Decimal(0)  # percent for PERCENTAGE, cents for FIXED
    apply_to: DepositApplyTo = DepositApplyTo.LODGING_PLUS_FEES
    min_amount_cents: Optional[int] = Field(None, ge=0)
    max_amount_cents: Optional[int] = Field(None, ge=0)
    due_timing: DueTiming = DueTiming.AT_BOOKING
    due_days: Optional[int] = Field(None, ge=0)
    due_date: Optional[date] = None
    active: bool = True
    version: int = 1
    created_at: Optional[datetime] = None

    utc_created_at = field_validator("created_at")(_as_utc)

    @model_validator(mode="after")
    def check_timing(self):
        if self.due_timing == DueTiming.DAYS_BEFORE_ARRIVAL and self.due_days is None:
            raise ValueError("days_before_arrival timing requires due_days")
        if self.due_timing == DueTiming.FIXED_DATE and self.due_date is None:
            raise ValueError("fixed_date timing requires due_date")
        if (
            self.min_amount_cents is not None
            and self.max_amount_cents is not None
            and self.min_amount_cents > self.max_amount_cents
        ):
            raise ValueError("min_amount_cents must not exceed max_amount_cents")
        return self

    @property
    def version_tag(self) -> str:
        return f"dp:{self.id}:v{self.version}"


class UpsellItem(DomainModel):
    id: str
    campground_id: str
    name: str
    pricing_type: UpsellPricingType
    unit_price_cents: int = Field(..., ge=0)
    inventory_tracked: bool = False
    inventory_qty: Optional[int] = Field(None, ge=0)
    active: bool = True

class UpsellBundle(DomainModel):
    id: str
    campground_id: str
    name: str
    item_ids: Tuple[str, ...] = Field(..., min_length=1)
    discount_type: AdjustmentType = AdjustmentType.FLAT
    discount_value: Decimal = Decimal(0)
    price_cents: Optional[int] = None  # fixed bundle price; overrides the discount
    active: bool = True

class UpsellSelection(DomainModel):
    item_id: str
    quantity: int = Field(1, ge=1)


# Quote breakdown
class NightlyRate(DomainModel):
    night: date
    base_rate_cents: int
    rate_cents: int
    applied_rule_ids: Tuple[str, ...] = ()
    capped_at: Optional[Literal["min", "max"]] = None

class UpsellLine(DomainModel):
    item_id: str
    name: str
    pricing_type: UpsellPricingType
    quantity: int
    unit_price_cents: int
    amount_cents: int
    bundle_id: Optional[str] = None

class BundleLine(DomainModel):
    bundle_id: str
    name: str
    item_ids: Tuple[str, ...]
    list_price_cents: int
    price_cents: int
    savings_cents: int

class UpsellSummary(DomainModel):
    lines: Tuple[UpsellLine, ...] = ()
    bundles: Tuple[BundleLine, ...] = ()
    total_cents: int = 0
    warnings: Tuple[ConfigurationWarning, ...] = ()

class DepositDue(DomainModel):
    amount_cents: int
    due_on: date
    timing: DueTiming = DueTiming.AT_BOOKING
    strategy: Optional[DepositStrategy] = None
    policy_id: Optional[str] = None
    policy_version: Optional[str] = None

class Quote(DomainModel):
    campground_id: str
    site_id: str
    site_class_id: str
    arrival: date
    departure: date
    nights: int
    guest_count: int
    currency: str = 'USD'
    nightly: Tuple[NightlyRate, ...]
    subtotal_cents: int
    upsells: UpsellSummary = UpsellSummary()
    total_cents: int
    deposit: DepositDue
    balance_due_cents: int
    warnings: Tuple[ConfigurationWarning, ...] = ()
    pricing_version: str


# Allocation
class Hold(DomainModel):
    id: str
    campground_id: str
    site_id: str
    arrival: date
    departure: date
    guest_count: int
    status: HoldStatus = HoldStatus.HELD
    created_at: datetime
    expires_at: datetime
    quote: Quote

class Reservation(DomainModel):
    id: str
    campground_id: str
    site_id: str
    arrival: date
    departure: date
    guest_count: int
    status: ReservationStatus = ReservationStatus.CONFIRMED
    quote_snapshot: Quote
    payment_intent_ref: Optional[str] = None
    hold_id: Optional[str] = None
    confirmed_at: Optional[datetime] = None
