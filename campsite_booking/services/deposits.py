"""
Deposit Calculator
Computes the amount due at booking from a quote total and a deposit policy
"""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

from ..catalog import RateSnapshot
from ..models import DepositApplyTo, DepositDue, DepositPolicy, DepositStrategy, DueTiming, EPOCH
from .stacking import HUNDRED, round_cents

logger = logging.getLogger(__name__)


def _newest(policies):
    return max(policies, key=lambda p: (p.created_at or EPOCH, p.version, p.id), default=None)


def resolve_policy(snapshot: RateSnapshot, site_class_id: Optional[str]) -> Optional[DepositPolicy]:
    """
    Pick the deposit policy for a site class.

    Newest active policy scoped to the class, then the campground default
    (if active), then the newest active campground-wide policy.
    """
    active = [p for p in snapshot.deposit_policies if p.active]

    if site_class_id:
        policy = _newest(p for p in active if p.site_class_id == site_class_id)
        if policy:
            return policy

    default_id = snapshot.campground.default_deposit_policy_id
    if default_id:
        policy = next((p for p in active if p.id == default_id), None)
        if policy:
            return policy

    return _newest(p for p in active if p.site_class_id is None)


def due_date_for(policy: DepositPolicy, arrival: date, today: date) -> date:
    """Timing only affects when the deposit is due, never how much."""
    if policy.due_timing == DueTiming.DAYS_BEFORE_ARRIVAL:
        return max(today, arrival - timedelta(days=policy.due_days or 0))
    if policy.due_timing == DueTiming.FIXED_DATE and policy.due_date:
        return max(today, min(policy.due_date, arrival))
    return today


def due_now(
    quote_total_cents: int,
    policy: Optional[DepositPolicy],
    arrival: date,
    now: datetime,
    first_night_cents: int = 0,
    lodging_cents: Optional[int] = None
) -> DepositDue:
    """
    Calculate the deposit owed for a quote

    Args:
        quote_total_cents: Full stay total including upsells
        policy: Resolved deposit policy, or None for no deposit
        arrival: Arrival date of the stay
        now: Current wall-clock time (UTC)
        first_night_cents: Rate of the first quoted night
        lodging_cents: Nightly subtotal, used by lodging_only percentage policies

    Returns:
        DepositDue with 0 <= amount_cents <= quote_total_cents
    """
    today = now.date()

    if policy is None:
        return DepositDue(amount_cents=0, due_on=today)

    if policy.strategy == DepositStrategy.FIRST_NIGHT:
        amount = first_night_cents
    elif policy.strategy == DepositStrategy.PERCENTAGE:
        if policy.apply_to == DepositApplyTo.LODGING_ONLY and lodging_cents is not None:
            basis = lodging_cents
        else:
            basis = quote_total_cents
        amount = round_cents(Decimal(basis) * policy.value / HUNDRED)
    elif policy.strategy == DepositStrategy.FIXED:
        amount = round_cents(policy.value)
    else:
        amount = quote_total_cents

    if policy.min_amount_cents is not None:
        amount = max(amount, policy.min_amount_cents)
    if policy.max_amount_cents is not None:
        amount = min(amount, policy.max_amount_cents)

    # Never more than the stay costs, never negative
    amount = min(max(amount, 0), max(quote_total_cents, 0))

    return DepositDue(
        amount_cents=amount,
        due_on=due_date_for(policy, arrival, today),
        timing=policy.due_timing,
        strategy=policy.strategy,
        policy_id=policy.id,
        policy_version=policy.version_tag
    )
