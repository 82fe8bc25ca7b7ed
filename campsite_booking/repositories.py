"""
Persistence for campground configuration, holds and reservations.
"""

import logging
from datetime import date, datetime, timezone
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from .catalog import RateSnapshot
from .models import (
    Campground,
    DepositPolicy,
    Hold,
    HoldStatus,
    PricingRule,
    Quote,
    Reservation,
    ReservationStatus,
    Site,
    SiteClass,
    UpsellBundle,
    UpsellItem,
)
from .models_postgres import (
    CampgroundRow,
    DepositPolicyRow,
    HoldRow,
    PricingRuleRow,
    ReservationRow,
    SiteBlockRow,
    SiteClassRow,
    SiteRow,
    UpsellBundleRow,
    UpsellItemRow,
)
from .outcomes import CorruptRuleDataError, UnknownCampgroundError
from .services.calendar import CalendarEntry, EntryKind

logger = logging.getLogger(__name__)

# Reservation states that still occupy the site
OCCUPYING_STATUSES = (ReservationStatus.CONFIRMED, ReservationStatus.CHECKED_IN)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _columns(row, *names):
    return {name: getattr(row, name) for name in names}


class ReservationRepository:
    """Async storage for snapshots, holds and reservations."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    # Configuration
    async def save_snapshot(self, snapshot: RateSnapshot) -> None:
        """Upsert every configuration record in a snapshot."""
        async with self.session_factory() as session:
            async with session.begin():
                cg = snapshot.campground
                await session.merge(CampgroundRow(
                    id=cg.id,
                    name=cg.name,
                    default_deposit_policy_id=cg.default_deposit_policy_id,
                    max_stay_nights=cg.max_stay_nights
                ))
                for site_class in snapshot.site_classes:
                    await session.merge(SiteClassRow(**site_class.model_dump(mode="json")))
                for site in snapshot.sites:
                    await session.merge(SiteRow(**site.model_dump()))
                for rule in snapshot.rules:
                    data = rule.model_dump(exclude={"predicate"})
                    await session.merge(PricingRuleRow(
                        **data,
                        rule_type=rule.type,
                        predicate=rule.predicate.model_dump(mode="json")
                    ))
                for policy in snapshot.deposit_policies:
                    await session.merge(DepositPolicyRow(**policy.model_dump()))
                for item in snapshot.upsell_items:
                    await session.merge(UpsellItemRow(**item.model_dump()))
                for bundle in snapshot.upsell_bundles:
                    data = bundle.model_dump()
                    data["item_ids"] = list(bundle.item_ids)
                    await session.merge(UpsellBundleRow(**data))

        logger.info(f"Saved configuration for campground {snapshot.campground_id}")

    async def load_snapshot(self, campground_id: str) -> RateSnapshot:
        """Build an immutable rate snapshot from stored configuration."""
        async with self.session_factory() as session:
            cg_row = await session.get(CampgroundRow, campground_id)
            if cg_row is None:
                raise UnknownCampgroundError(f"Campground {campground_id} not found")

            class_rows = (await session.execute(
                select(SiteClassRow).where(SiteClassRow.campground_id == campground_id)
            )).scalars().all()
            site_rows = (await session.execute(
                select(SiteRow).where(SiteRow.campground_id == campground_id)
            )).scalars().all()
            rule_rows = (await session.execute(
                select(PricingRuleRow).where(PricingRuleRow.campground_id == campground_id)
            )).scalars().all()
            policy_rows = (await session.execute(
                select(DepositPolicyRow).where(DepositPolicyRow.campground_id == campground_id)
            )).scalars().all()
            item_rows = (await session.execute(
                select(UpsellItemRow).where(UpsellItemRow.campground_id == campground_id)
            )).scalars().all()
            bundle_rows = (await session.execute(
                select(UpsellBundleRow).where(UpsellBundleRow.campground_id == campground_id)
            )).scalars().all()

        try:
            rules = [
                PricingRule(
                    **_columns(
                        row, "id", "campground_id", "site_class_id", "name", "stack_mode", "priority",
                        "adjustment_type", "adjustment_value", "min_rate_cents", "max_rate_cents",
                        "min_nights", "active"
                    ),
                    predicate=row.predicate,
                    created_at=as_utc(row.created_at)
                )
                for row in rule_rows
            ]
        except ValidationError as e:
            raise CorruptRuleDataError(f"Stored pricing rules for campground {campground_id} are invalid: {e}") from e

        return RateSnapshot(
            campground=Campground(
                **_columns(cg_row, "id", "name", "default_deposit_policy_id", "max_stay_nights")
            ),
            site_classes=tuple(
                SiteClass(
                    **_columns(row, "id", "campground_id", "name", "base_rate_cents", "max_occupancy"),
                    amenity_tags=tuple(row.amenity_tags or ())
                )
                for row in class_rows
            ),
            sites=tuple(
                Site(**_columns(row, "id", "campground_id", "site_class_id", "name", "active"))
                for row in site_rows
            ),
            rules=tuple(rules),
            deposit_policies=tuple(
                DepositPolicy(
                    **_columns(
                        row, "id", "campground_id", "site_class_id", "name", "strategy", "value", "apply_to",
                        "min_amount_cents", "max_amount_cents", "due_timing", "due_days", "due_date",
                        "active", "version"
                    ),
                    created_at=as_utc(row.created_at)
                )
                for row in policy_rows
            ),
            upsell_items=tuple(
                UpsellItem(**_columns(
                    row, "id", "campground_id", "name", "pricing_type", "unit_price_cents",
                    "inventory_tracked", "inventory_qty", "active"
                ))
                for row in item_rows
            ),
            upsell_bundles=tuple(
                UpsellBundle(
                    **_columns(
                        row, "id", "campground_id", "name", "discount_type", "discount_value",
                        "price_cents", "active"
                    ),
                    item_ids=tuple(row.item_ids)
                )
                for row in bundle_rows
            ),
        )

    async def campground_ids(self) -> List[str]:
        async with self.session_factory() as session:
            result = await session.execute(select(CampgroundRow.id).order_by(CampgroundRow.id))
            return list(result.scalars().all())

    # Holds
    async def save_hold(self, hold: Hold) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                session.add(HoldRow(
                    id=hold.id,
                    campground_id=hold.campground_id,
                    site_id=hold.site_id,
                    arrival=hold.arrival,
                    departure=hold.departure,
                    guest_count=hold.guest_count,
                    status=hold.status,
                    quote=hold.quote.model_dump(mode="json"),
                    expires_at=hold.expires_at,
                    created_at=hold.created_at
                ))

    async def update_hold_status(self, hold_id: str, status: HoldStatus) -> bool:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(HoldRow).where(HoldRow.id == hold_id).values(status=status)
                )
                return result.rowcount > 0

    async def get_hold(self, hold_id: str) -> Optional[Hold]:
        async with self.session_factory() as session:
            row = await session.get(HoldRow, hold_id)
            return self._hold_from_row(row) if row else None

    async def live_holds(self, now: datetime) -> List[Hold]:
        """Holds still in HELD status whose expiry lies in the future."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(HoldRow)
                .where(and_(HoldRow.status == HoldStatus.HELD, HoldRow.expires_at > now))
                .order_by(HoldRow.created_at, HoldRow.id)
            )
            return [self._hold_from_row(row) for row in result.scalars().all()]

    @staticmethod
    def _hold_from_row(row: HoldRow) -> Hold:
        return Hold(
            **_columns(row, "id", "campground_id", "site_id", "arrival", "departure", "guest_count", "status"),
            created_at=as_utc(row.created_at),
            expires_at=as_utc(row.expires_at),
            quote=Quote.model_validate(row.quote)
        )

    # Reservations
    async def save_reservation(self, reservation: Reservation) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                session.add(ReservationRow(
                    id=reservation.id,
                    campground_id=reservation.campground_id,
                    site_id=reservation.site_id,
                    hold_id=reservation.hold_id,
                    arrival=reservation.arrival,
                    departure=reservation.departure,
                    guest_count=reservation.guest_count,
                    status=reservation.status,
                    quote_snapshot=reservation.quote_snapshot.model_dump(mode="json"),
                    payment_intent_ref=reservation.payment_intent_ref,
                    confirmed_at=reservation.confirmed_at
                ))
                await session.execute(
                    update(HoldRow).where(HoldRow.id == reservation.hold_id).values(status=HoldStatus.CONFIRMED)
                )

    async def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        async with self.session_factory() as session:
            row = await session.get(ReservationRow, reservation_id)
            return self._reservation_from_row(row) if row else None

    async def reservation_for_hold(self, hold_id: str) -> Optional[Reservation]:
        async with self.session_factory() as session:
            result = await session.execute(select(ReservationRow).where(ReservationRow.hold_id == hold_id))
            row = result.scalars().first()
            return self._reservation_from_row(row) if row else None

    @staticmethod
    def _reservation_from_row(row: ReservationRow) -> Reservation:
        return Reservation(
            **_columns(
                row, "id", "campground_id", "site_id", "arrival", "departure", "guest_count",
                "status", "payment_intent_ref", "hold_id"
            ),
            quote_snapshot=Quote.model_validate(row.quote_snapshot),
            confirmed_at=as_utc(row.confirmed_at)
        )

    # Blocks
    async def save_block(self, entry: CalendarEntry) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                session.add(SiteBlockRow(
                    id=entry.id,
                    site_id=entry.site_id,
                    arrival=entry.arrival,
                    departure=entry.departure,
                    reason=entry.reason
                ))

    # Calendar
    async def find_overlap(self, site_id: str, arrival: date, departure: date, now: datetime) -> Optional[str]:
        """
        Id of a stored live hold, occupying reservation or block overlapping
        [arrival, departure) on the site, if any.
        """
        async with self.session_factory() as session:
            hold_id = (await session.execute(
                select(HoldRow.id).where(and_(
                    HoldRow.site_id == site_id,
                    HoldRow.status == HoldStatus.HELD,
                    HoldRow.expires_at > now,
                    HoldRow.arrival < departure,
                    HoldRow.departure > arrival
                )).limit(1)
            )).scalar_one_or_none()
            if hold_id:
                return hold_id

            reservation_id = (await session.execute(
                select(ReservationRow.id).where(and_(
                    ReservationRow.site_id == site_id,
                    ReservationRow.status.in_(OCCUPYING_STATUSES),
                    ReservationRow.arrival < departure,
                    ReservationRow.departure > arrival
                )).limit(1)
            )).scalar_one_or_none()
            if reservation_id:
                return reservation_id

            return (await session.execute(
                select(SiteBlockRow.id).where(and_(
                    SiteBlockRow.site_id == site_id,
                    SiteBlockRow.arrival < departure,
                    SiteBlockRow.departure > arrival
                )).limit(1)
            )).scalar_one_or_none()

    async def calendar_entries(self, now: datetime) -> List[CalendarEntry]:
        """Everything that currently occupies a site, for hydrating the in-memory index."""
        entries: List[CalendarEntry] = []

        async with self.session_factory() as session:
            reservations = (await session.execute(
                select(ReservationRow).where(ReservationRow.status.in_(OCCUPYING_STATUSES))
            )).scalars().all()
            blocks = (await session.execute(select(SiteBlockRow))).scalars().all()

        for row in reservations:
            entries.append(CalendarEntry(
                id=row.hold_id or row.id,
                site_id=row.site_id,
                arrival=row.arrival,
                departure=row.departure,
                kind=EntryKind.RESERVATION
            ))
        for row in blocks:
            entries.append(CalendarEntry(
                id=row.id,
                site_id=row.site_id,
                arrival=row.arrival,
                departure=row.departure,
                kind=EntryKind.BLOCK,
                reason=row.reason
            ))
        for hold in await self.live_holds(now):
            entries.append(CalendarEntry(
                id=hold.id,
                site_id=hold.site_id,
                arrival=hold.arrival,
                departure=hold.departure,
                kind=EntryKind.HOLD,
                expires_at=hold.expires_at
            ))

        return entries
