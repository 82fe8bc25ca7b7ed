#!/usr/bin/env python3
"""
Campground Database Seeder
Seeds the database with a sample campground, site classes, sites, rules,
deposit policies and add-ons
"""

import asyncio
from datetime import date, datetime, timezone
from decimal import Decimal

from . import database_postgres
from .catalog import RateSnapshot
from .config import settings
from .models import (
    AdjustmentType,
    Campground,
    DepositApplyTo,
    DepositPolicy,
    DepositStrategy,
    DueTiming,
    EventPredicate,
    HolidayPredicate,
    PricingRule,
    SeasonPredicate,
    Site,
    SiteClass,
    StackMode,
    UpsellBundle,
    UpsellItem,
    UpsellPricingType,
    WeekendPredicate,
)
from .repositories import ReservationRepository

CAMPGROUND_ID = "cg-pinecrest"


def demo_snapshot(year: int = 2025) -> RateSnapshot:
    created = datetime(year - 1, 12, 1, tzinfo=timezone.utc)
    return RateSnapshot(
        campground=Campground(
            id=CAMPGROUND_ID,
            name="Pinecrest Lake Campground",
            default_deposit_policy_id="dp-default"
        ),
        site_classes=(
            SiteClass(id="sc-tent", campground_id=CAMPGROUND_ID, name="Tent", base_rate_cents=3500,
                      max_occupancy=6, amenity_tags=("fire_ring",)),
            SiteClass(id="sc-rv", campground_id=CAMPGROUND_ID, name="Full Hookup RV", base_rate_cents=5000,
                      max_occupancy=8, amenity_tags=("50amp", "sewer", "water")),
        ),
        sites=tuple(
            [Site(id=f"site-t{n}", campground_id=CAMPGROUND_ID, site_class_id="sc-tent", name=f"T{n}")
             for n in range(1, 6)]
            + [Site(id=f"site-r{n}", campground_id=CAMPGROUND_ID, site_class_id="sc-rv", name=f"R{n}")
               for n in range(1, 6)]
        ),
        rules=(
            PricingRule(id="rule-weekend", campground_id=CAMPGROUND_ID, name="Weekend",
                        predicate=WeekendPredicate(), stack_mode=StackMode.ADDITIVE, priority=10,
                        adjustment_type=AdjustmentType.FLAT, adjustment_value=Decimal(2000), created_at=created),
            PricingRule(id="rule-summer", campground_id=CAMPGROUND_ID, name="Summer season",
                        predicate=SeasonPredicate(start_date=date(year, 6, 1), end_date=date(year, 8, 31)),
                        stack_mode=StackMode.ADDITIVE, priority=20, adjustment_type=AdjustmentType.PERCENT,
                        adjustment_value=Decimal(15), max_rate_cents=9000, created_at=created),
            PricingRule(id="rule-july4", campground_id=CAMPGROUND_ID, name="Independence Day",
                        predicate=HolidayPredicate(dates=(date(year, 7, 3), date(year, 7, 4))),
                        stack_mode=StackMode.OVERRIDE, priority=1, site_class_id="sc-rv",
                        adjustment_type=AdjustmentType.FLAT, adjustment_value=Decimal(9500), created_at=created),
            PricingRule(id="rule-bluegrass", campground_id=CAMPGROUND_ID, name="Bluegrass festival",
                        predicate=EventPredicate(event_name="Bluegrass on the Lake",
                                                 start_date=date(year, 8, 15), end_date=date(year, 8, 17)),
                        stack_mode=StackMode.MAX, priority=30, adjustment_type=AdjustmentType.FLAT,
                        adjustment_value=Decimal(8000), min_nights=2, created_at=created),
        ),
        deposit_policies=(
            DepositPolicy(id="dp-default", campground_id=CAMPGROUND_ID, name="First night",
                          strategy=DepositStrategy.FIRST_NIGHT, created_at=created),
            DepositPolicy(id="dp-rv", campground_id=CAMPGROUND_ID, site_class_id="sc-rv", name="RV 30%",
                          strategy=DepositStrategy.PERCENTAGE, value=Decimal(30),
                          apply_to=DepositApplyTo.LODGING_ONLY, min_amount_cents=2500,
                          due_timing=DueTiming.AT_BOOKING, created_at=created),
        ),
        upsell_items=(
            UpsellItem(id="up-firewood", campground_id=CAMPGROUND_ID, name="Firewood bundle",
                       pricing_type=UpsellPricingType.PER_NIGHT, unit_price_cents=800),
            UpsellItem(id="up-kayak", campground_id=CAMPGROUND_ID, name="Kayak rental",
                       pricing_type=UpsellPricingType.FLAT, unit_price_cents=4000,
                       inventory_tracked=True, inventory_qty=4),
            UpsellItem(id="up-pet", campground_id=CAMPGROUND_ID, name="Pet fee",
                       pricing_type=UpsellPricingType.PER_SITE, unit_price_cents=1000),
        ),
        upsell_bundles=(
            UpsellBundle(id="bundle-lake-day", campground_id=CAMPGROUND_ID, name="Lake day",
                         item_ids=("up-firewood", "up-kayak"), discount_type=AdjustmentType.PERCENT,
                         discount_value=Decimal(10)),
        ),
    )


async def seed_database():
    """Seed the database with sample data"""
    print("🌱 Seeding campground database...")

    session_factory = database_postgres.configure_database(settings.database_url)
    await database_postgres.init_db()

    snapshot = demo_snapshot(date.today().year)
    await ReservationRepository(session_factory).save_snapshot(snapshot)

    print(f"   ✅ Created campground {snapshot.campground.name}")
    print(f"   ✅ Created {len(snapshot.site_classes)} site classes and {len(snapshot.sites)} sites")
    print(f"   ✅ Created {len(snapshot.rules)} pricing rules")
    print(f"   ✅ Created {len(snapshot.deposit_policies)} deposit policies")
    print(f"   ✅ Created {len(snapshot.upsell_items)} add-ons and {len(snapshot.upsell_bundles)} bundles")

    print("\n🎉 Database seeding completed successfully!")

    await database_postgres.close_db()


if __name__ == "__main__":
    asyncio.run(seed_database())
