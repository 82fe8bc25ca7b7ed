"""
Stacking Resolver
Combines the matching rules for one night into a single nightly rate.

Arithmetic is exact (Decimal over integer cents); the rate is rounded
half-up to the cent once, after caps are applied.
"""
import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Sequence

from ..models import AdjustmentType, NightlyRate, PricingRule, Site, StackMode
from ..outcomes import CorruptRuleDataError

logger = logging.getLogger(__name__)

ONE_CENT = Decimal(1)
HUNDRED = Decimal(100)


def round_cents(amount: Decimal) -> int:
    """Round an exact cent amount half-up to a whole cent."""
    return int(amount.quantize(ONE_CENT, rounding=ROUND_HALF_UP))


def rule_delta(rule: PricingRule, base: Decimal) -> Decimal:
    """Additive contribution: flat cents, or a percent of the base rate."""
    if rule.adjustment_type == AdjustmentType.FLAT:
        return Decimal(rule.adjustment_value)
    if rule.adjustment_type == AdjustmentType.PERCENT:
        return base * Decimal(rule.adjustment_value) / HUNDRED
    raise CorruptRuleDataError(f"Rule {rule.id} has unknown adjustment type {rule.adjustment_type!r}")


def rule_target(rule: PricingRule, base: Decimal) -> Decimal:
    """Absolute nightly rate named by a max/override rule."""
    if rule.adjustment_type == AdjustmentType.FLAT:
        return Decimal(rule.adjustment_value)
    return base + rule_delta(rule, base)


def nightly_rate(
    site: Site,
    night: date,
    base_rate_cents: int,
    rules: Sequence[PricingRule]
) -> NightlyRate:
    """
    Resolve one night's rate.

    Rules must already be filtered to those applying on `night` and sorted by
    priority. The first override wins and stops processing; additive rules
    accumulate; max rules raise the rate to their target if it is higher.
    Caps from every matching rule are intersected (highest floor, lowest
    ceiling; the ceiling wins if they cross), then the rate is floored at zero.
    """
    base = Decimal(base_rate_cents)
    rate = base
    applied: List[str] = []

    for rule in rules:
        if rule.stack_mode == StackMode.OVERRIDE:
            rate = rule_target(rule, base)
            applied.append(rule.id)
            break
        elif rule.stack_mode == StackMode.ADDITIVE:
            rate += rule_delta(rule, base)
            applied.append(rule.id)
        elif rule.stack_mode == StackMode.MAX:
            target = rule_target(rule, base)
            if target > rate:
                rate = target
                applied.append(rule.id)
        else:
            raise CorruptRuleDataError(f"Rule {rule.id} has unknown stack mode {rule.stack_mode!r}")

    capped_at: Optional[str] = None
    floors = [r.min_rate_cents for r in rules if r.min_rate_cents is not None]
    ceilings = [r.max_rate_cents for r in rules if r.max_rate_cents is not None]

    if floors and rate < max(floors):
        rate = Decimal(max(floors))
        capped_at = "min"
    if ceilings and rate > min(ceilings):
        rate = Decimal(min(ceilings))
        capped_at = "max"
    if floors and ceilings and max(floors) > min(ceilings):
        logger.warning(
            f"Crossed rate caps on site {site.id} for {night}: floor {max(floors)} > ceiling {min(ceilings)}"
        )

    if rate < 0:
        rate = Decimal(0)

    return NightlyRate(
        night=night,
        base_rate_cents=base_rate_cents,
        rate_cents=round_cents(rate),
        applied_rule_ids=tuple(applied),
        capped_at=capped_at
    )
