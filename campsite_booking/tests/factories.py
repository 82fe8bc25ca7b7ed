"""Builders for test snapshots and a controllable clock."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from ..catalog import RateSnapshot
from ..models import (
    AdjustmentType,
    Campground,
    DepositPolicy,
    DepositStrategy,
    PricingRule,
    Site,
    SiteClass,
    StackMode,
)

CAMPGROUND_ID = "cg-test"
STANDARD = "sc-std"
CABIN = "sc-cabin"
T0 = datetime(2025, 5, 1, tzinfo=timezone.utc)


class FrozenClock:
    """Wall clock and monotonic clock that only move when told to."""

    def __init__(self, now: datetime = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)):
        self._now = now
        self._monotonic = 1000.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, delta: timedelta = None, **kwargs):
        delta = delta or timedelta(**kwargs)
        self._now += delta
        self._monotonic += delta.total_seconds()


def make_rule(rule_id, predicate, stack_mode=StackMode.ADDITIVE, value=0, adjustment_type=AdjustmentType.FLAT,
              priority=10, **kwargs) -> PricingRule:
    return PricingRule(
        id=rule_id,
        campground_id=CAMPGROUND_ID,
        name=rule_id,
        predicate=predicate,
        stack_mode=stack_mode,
        priority=priority,
        adjustment_type=adjustment_type,
        adjustment_value=Decimal(value),
        created_at=kwargs.pop("created_at", T0),
        **kwargs
    )


def make_policy(policy_id, strategy=DepositStrategy.PERCENTAGE, value=0, **kwargs) -> DepositPolicy:
    return DepositPolicy(
        id=policy_id,
        campground_id=CAMPGROUND_ID,
        name=policy_id,
        strategy=strategy,
        value=Decimal(value),
        created_at=kwargs.pop("created_at", T0),
        **kwargs
    )


def make_snapshot(
    rules=(),
    policies=(),
    items=(),
    bundles=(),
    base_rate_cents=5000,
    max_occupancy=6,
    site_count=3,
    default_policy_id=None,
    max_stay_nights=None
) -> RateSnapshot:
    return RateSnapshot(
        campground=Campground(
            id=CAMPGROUND_ID,
            name="Test Campground",
            default_deposit_policy_id=default_policy_id,
            max_stay_nights=max_stay_nights
        ),
        site_classes=(
            SiteClass(id=STANDARD, campground_id=CAMPGROUND_ID, name="Standard",
                      base_rate_cents=base_rate_cents, max_occupancy=max_occupancy),
            SiteClass(id=CABIN, campground_id=CAMPGROUND_ID, name="Cabin",
                      base_rate_cents=12000, max_occupancy=4),
        ),
        sites=tuple(
            Site(id=f"site-{n}", campground_id=CAMPGROUND_ID, site_class_id=STANDARD, name=f"A{n}")
            for n in range(1, site_count + 1)
        ) + (
            Site(id="cabin-1", campground_id=CAMPGROUND_ID, site_class_id=CABIN, name="C1"),
        ),
        rules=tuple(rules),
        deposit_policies=tuple(policies),
        upsell_items=tuple(items),
        upsell_bundles=tuple(bundles),
    )
