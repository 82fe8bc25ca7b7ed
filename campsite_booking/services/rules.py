"""
Rule Evaluator
Selects the pricing rules that apply to a site on a given night.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, List, Optional

from ..models import (
    DemandPredicate,
    EventPredicate,
    HolidayPredicate,
    PricingRule,
    SeasonPredicate,
    Site,
    WeekendPredicate,
)
from ..outcomes import CorruptRuleDataError

logger = logging.getLogger(__name__)

OccupancyLookup = Callable[[Site, date], Decimal]


def predicate_matches(predicate, night: date, occupancy_pct: Optional[Decimal] = None) -> bool:
    """Evaluate one tagged predicate for one calendar night."""
    if isinstance(predicate, SeasonPredicate):
        if not predicate.start_date <= night <= predicate.end_date:
            return False
        return not predicate.days_of_week or night.weekday() in predicate.days_of_week

    if isinstance(predicate, WeekendPredicate):
        return night.weekday() in predicate.days_of_week

    if isinstance(predicate, HolidayPredicate):
        return night in predicate.dates

    if isinstance(predicate, EventPredicate):
        return predicate.start_date <= night <= predicate.end_date

    if isinstance(predicate, DemandPredicate):
        if predicate.start_date and night < predicate.start_date:
            return False
        if predicate.end_date and night > predicate.end_date:
            return False
        # Unknown occupancy never triggers demand pricing
        return occupancy_pct is not None and occupancy_pct >= predicate.threshold_pct

    raise CorruptRuleDataError(f"Unsupported pricing rule predicate: {predicate!r}")


def rule_in_scope(rule: PricingRule, site: Site) -> bool:
    """Campground-wide rules cover every site; class rules only their own class."""
    if rule.campground_id != site.campground_id:
        return False
    return rule.site_class_id is None or rule.site_class_id == site.site_class_id


def rule_applies(
    rule: PricingRule,
    site: Site,
    night: date,
    nights: Optional[int] = None,
    occupancy_pct: Optional[Decimal] = None
) -> bool:
    if not rule.active or not rule_in_scope(rule, site):
        return False
    if rule.min_nights is not None and nights is not None and nights < rule.min_nights:
        return False
    return predicate_matches(rule.predicate, night, occupancy_pct)


class RuleEvaluator:
    """Matches a rule set against sites and nights."""

    def __init__(self, rules: Iterable[PricingRule], occupancy: Optional[OccupancyLookup] = None):
        self.rules = sorted(rules, key=lambda rule: rule.sort_key)
        self.occupancy = occupancy

    def applicable_rules(self, site: Site, night: date, nights: Optional[int] = None) -> List[PricingRule]:
        """
        Rules that apply to `site` on `night`, ordered by priority ascending
        (then creation time, then id).

        Occupancy is only looked up when a demand rule is in scope.
        """
        occupancy_pct: Optional[Decimal] = None
        occupancy_loaded = False
        matched: List[PricingRule] = []

        for rule in self.rules:
            if isinstance(rule.predicate, DemandPredicate) and not occupancy_loaded:
                if self.occupancy is not None and rule.active and rule_in_scope(rule, site):
                    occupancy_pct = self.occupancy(site, night)
                    occupancy_loaded = True

            if rule_applies(rule, site, night, nights, occupancy_pct):
                matched.append(rule)

        return matched


def applicable_rules(
    site: Site,
    night: date,
    rules: Iterable[PricingRule],
    nights: Optional[int] = None,
    occupancy: Optional[OccupancyLookup] = None
) -> List[PricingRule]:
    """
    Convenience function for selecting the rules that price one night.

    Read-only; safe for reporting and revenue-trend callers.
    """
    return RuleEvaluator(rules, occupancy=occupancy).applicable_rules(site, night, nights=nights)
