"""
Quote Assembler
Builds an itemized, deterministic quote for a site and date range.

build_quote is pure: it reads one rate snapshot and the calendar, takes no
locks and writes nothing, so checkout can re-price optimistically.
"""

import logging
from datetime import date, datetime
from typing import Iterable, List, Optional, Union

from ..catalog import RateSnapshot
from ..models import NightlyRate, Quote, Site, UpsellSelection, UpsellSummary
from ..outcomes import AvailabilityError, CorruptRuleDataError, InvalidRangeError, InvalidRequestError
from .calendar import CalendarIndex, iter_nights
from .deposits import due_now, resolve_policy
from .rules import OccupancyLookup, RuleEvaluator
from .stacking import nightly_rate
from .upsells import UpsellContext, upsell_charges

logger = logging.getLogger(__name__)

QuoteResult = Union[Quote, AvailabilityError, InvalidRangeError, InvalidRequestError]


def class_occupancy(snapshot: RateSnapshot, calendar: CalendarIndex) -> OccupancyLookup:
    """Occupancy of a site's class on a night, as a percentage of its active sites."""
    def lookup(site: Site, night: date):
        site_ids = [s.id for s in snapshot.sites_in_class(site.site_class_id)]
        return calendar.occupancy_pct(site_ids, night)
    return lookup


def price_nights(
    snapshot: RateSnapshot,
    site: Site,
    arrival: date,
    departure: date,
    occupancy: Optional[OccupancyLookup] = None
) -> List[NightlyRate]:
    """Nightly rates for every night of [arrival, departure)."""
    site_class = snapshot.site_class(site.site_class_id)
    if site_class is None:
        raise CorruptRuleDataError(f"Site {site.id} references unknown site class {site.site_class_id}")

    nights = (departure - arrival).days
    evaluator = RuleEvaluator(snapshot.sorted_rules, occupancy=occupancy)
    return [
        nightly_rate(site, night, site_class.base_rate_cents, evaluator.applicable_rules(site, night, nights))
        for night in iter_nights(arrival, departure)
    ]


def validate_range(arrival: date, departure: date, max_stay_nights: Optional[int]) -> Optional[InvalidRangeError]:
    if arrival >= departure:
        return InvalidRangeError(
            message="Departure must be after arrival",
            arrival=arrival,
            departure=departure,
            reason="empty_range"
        )
    nights = (departure - arrival).days
    if max_stay_nights is not None and nights > max_stay_nights:
        return InvalidRangeError(
            message=f"Stays are limited to {max_stay_nights} nights",
            arrival=arrival,
            departure=departure,
            reason="stay_too_long"
        )
    return None


def build_quote(
    snapshot: RateSnapshot,
    calendar: CalendarIndex,
    site_id: str,
    arrival: date,
    departure: date,
    guest_count: int,
    selections: Iterable[UpsellSelection] = (),
    now: Optional[datetime] = None,
    max_stay_nights: Optional[int] = None,
    currency: str = 'USD'
) -> QuoteResult:
    """
    Price a stay at one site

    Args:
        snapshot: Rate snapshot for the campground
        calendar: Inventory index used for availability and demand occupancy
        site_id: Site to quote
        arrival: First night
        departure: Checkout day (not a night)
        guest_count: Party size
        selections: Requested add-ons
        now: Quote time (UTC); drives deposit due dates
        max_stay_nights: Engine-wide stay limit; a campground limit takes precedence

    Returns:
        Quote, or a typed failure describing why the stay cannot be priced
    """
    if now is None:
        raise ValueError("build_quote requires an explicit `now`")

    limit = snapshot.campground.max_stay_nights or max_stay_nights
    invalid = validate_range(arrival, departure, limit)
    if invalid:
        return invalid

    site = snapshot.site(site_id)
    if site is None or not site.active:
        return InvalidRequestError(
            message=f"Site {site_id} is not bookable",
            field="site_id",
            reason="unknown_site"
        )

    site_class = snapshot.site_class(site.site_class_id)
    if site_class is None:
        raise CorruptRuleDataError(f"Site {site.id} references unknown site class {site.site_class_id}")

    if guest_count < 1 or guest_count > site_class.max_occupancy:
        return InvalidRequestError(
            message=f"{site_class.name} sites take 1 to {site_class.max_occupancy} guests",
            field="guest_count",
            reason="exceeds_max_occupancy" if guest_count > site_class.max_occupancy else "invalid_guest_count"
        )

    clash = calendar.conflicting_entry(site_id, arrival, departure)
    if clash is not None:
        return AvailabilityError(
            message=f"Site {site.name} is not available for {arrival}..{departure}",
            site_id=site_id,
            arrival=arrival,
            departure=departure
        )

    nightly = price_nights(snapshot, site, arrival, departure, class_occupancy(snapshot, calendar))
    subtotal = sum(n.rate_cents for n in nightly)

    upsells = upsell_charges(
        {item.id: item for item in snapshot.upsell_items},
        selections,
        snapshot.upsell_bundles,
        UpsellContext(nights=len(nightly), guests=guest_count)
    )
    if not isinstance(upsells, UpsellSummary):
        if isinstance(upsells, AvailabilityError):
            return upsells.model_copy(update={"site_id": site_id, "arrival": arrival, "departure": departure})
        return upsells

    total = subtotal + upsells.total_cents
    deposit = due_now(
        total,
        resolve_policy(snapshot, site.site_class_id),
        arrival,
        now,
        first_night_cents=nightly[0].rate_cents,
        lodging_cents=subtotal
    )

    return Quote(
        campground_id=snapshot.campground_id,
        site_id=site.id,
        site_class_id=site.site_class_id,
        arrival=arrival,
        departure=departure,
        nights=len(nightly),
        guest_count=guest_count,
        currency=currency,
        nightly=tuple(nightly),
        subtotal_cents=subtotal,
        upsells=upsells,
        total_cents=total,
        deposit=deposit,
        balance_due_cents=total - deposit.amount_cents,
        warnings=upsells.warnings,
        pricing_version=snapshot.pricing_version
    )


def find_available_sites(
    snapshot: RateSnapshot,
    calendar: CalendarIndex,
    site_class_id: str,
    arrival: date,
    departure: date
) -> List[Site]:
    """Free active sites of a class, ordered by name then id."""
    return [
        site for site in snapshot.sites_in_class(site_class_id)
        if calendar.is_available(site.id, arrival, departure)
    ]


def quote_for_site_class(
    snapshot: RateSnapshot,
    calendar: CalendarIndex,
    site_class_id: str,
    arrival: date,
    departure: date,
    guest_count: int,
    selections: Iterable[UpsellSelection] = (),
    now: Optional[datetime] = None,
    max_stay_nights: Optional[int] = None,
    currency: str = 'USD'
) -> QuoteResult:
    """Quote the first free site of a class."""
    limit = snapshot.campground.max_stay_nights or max_stay_nights
    invalid = validate_range(arrival, departure, limit)
    if invalid:
        return invalid

    if snapshot.site_class(site_class_id) is None:
        return InvalidRequestError(
            message=f"Site class {site_class_id} is not offered",
            field="site_class_id",
            reason="unknown_site_class"
        )

    available = find_available_sites(snapshot, calendar, site_class_id, arrival, departure)
    if not available:
        return AvailabilityError(
            message=f"No sites free for {arrival}..{departure}",
            arrival=arrival,
            departure=departure,
            reason="class_sold_out"
        )

    return build_quote(
        snapshot,
        calendar,
        available[0].id,
        arrival,
        departure,
        guest_count,
        selections=list(selections),
        now=now,
        max_stay_nights=max_stay_nights,
        currency=currency
    )
