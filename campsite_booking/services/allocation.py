"""
Allocation Lock / Booking Transaction
Turns a quote into a time-limited hold, then into a confirmed reservation.

Only the check-and-create step is mutually exclusive (per site). Quoting and
availability reads never block.
"""

import asyncio
import logging
import uuid
from collections import OrderedDict
from contextlib import asynccontextmanager
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Protocol, Union

from ..catalog import RateCatalog
from ..clock import system_clock
from ..config import Settings, settings as default_settings
from ..models import Hold, HoldStatus, Quote, Reservation, ReservationStatus, UpsellSelection
from ..outcomes import (
    AvailabilityError,
    Conflict,
    HoldExpiredError,
    HoldNotFoundError,
    InvalidRangeError,
    InvalidRequestError,
    PaymentDeclinedError,
)
from .calendar import CalendarEntry, CalendarIndex, EntryKind
from .quoting import build_quote

logger = logging.getLogger(__name__)

HoldResult = Union[Hold, Conflict, AvailabilityError, InvalidRangeError, InvalidRequestError]
ConfirmResult = Union[Reservation, HoldExpiredError, HoldNotFoundError, PaymentDeclinedError]


class PaymentIntentVerifier(Protocol):
    async def verify(self, payment_intent_ref: str, amount_cents: int, currency: str) -> bool:
        """True if the intent is authorized for at least `amount_cents`."""
        ...


class TrustedPaymentVerifier:
    """
    Accepts any non-empty payment intent reference.
    For deployments where checkout has already verified the intent upstream.
    """

    async def verify(self, payment_intent_ref: str, amount_cents: int, currency: str) -> bool:
        return bool(payment_intent_ref)


class AllocationService:
    """
    Holds and confirmations for one process, backed by the calendar index.

    Only HELD holds live in `_holds`. Settled holds (confirmed, released or
    expired) and their reservations are kept in bounded LRU maps and looked
    up in the repository when evicted.
    """

    def __init__(
        self,
        catalog: RateCatalog,
        calendar: CalendarIndex,
        verifier: PaymentIntentVerifier,
        settings: Settings = default_settings,
        clock=system_clock,
        redis=None,
        repository=None
    ):
        self.catalog = catalog
        self.calendar = calendar
        self.verifier = verifier
        self.settings = settings
        self.clock = clock
        self.redis = redis
        self.repository = repository
        self._holds: Dict[str, Hold] = {}
        self._settled: "OrderedDict[str, Hold]" = OrderedDict()
        # Keyed by hold id
        self._reservations: "OrderedDict[str, Reservation]" = OrderedDict()
        self._confirm_locks: Dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def _site_guard(self, site_id: str):
        """Cross-process site lock when Redis is wired; yields False if it was not obtained."""
        if self.redis is None:
            yield True
            return
        async with self.redis.site_lock(
            site_id,
            timeout=self.settings.site_lock_timeout_seconds,
            wait_seconds=self.settings.site_lock_wait_seconds
        ) as token:
            yield token is not None

    def _remember(self, cache: OrderedDict, key: str, value) -> None:
        cache[key] = value
        cache.move_to_end(key)
        while len(cache) > self.settings.settled_hold_cache_size:
            cache.popitem(last=False)

    async def get_hold(self, hold_id: str) -> Optional[Hold]:
        hold = self._holds.get(hold_id) or self._settled.get(hold_id)
        if hold is None and self.repository is not None:
            hold = await self.repository.get_hold(hold_id)
        return hold

    async def reservation_for_hold(self, hold_id: str) -> Optional[Reservation]:
        reservation = self._reservations.get(hold_id)
        if reservation is None and self.repository is not None:
            reservation = await self.repository.reservation_for_hold(hold_id)
        return reservation

    def _settle(self, hold: Hold, status: HoldStatus) -> Hold:
        settled = hold.model_copy(update={"status": status})
        self._holds.pop(hold.id, None)
        self._remember(self._settled, hold.id, settled)
        return settled

    async def hydrate(self) -> int:
        """Load live holds and reservations from storage into the calendar."""
        if self.repository is None:
            return 0
        now = self.clock.now()
        for hold in await self.repository.live_holds(now):
            self._holds[hold.id] = hold
        loaded = self.calendar.load(await self.repository.calendar_entries(now))
        logger.info(f"Hydrated {loaded} calendar entries from storage")
        return loaded

    async def hold(
        self,
        campground_id: str,
        site_id: str,
        arrival: date,
        departure: date,
        guest_count: int,
        selections: Iterable[UpsellSelection] = (),
        ttl: Optional[timedelta] = None
    ) -> HoldResult:
        """
        Price the stay and atomically take the site for a limited time.

        Returns Conflict if another hold or reservation won the range between
        quote and commit.
        """
        if ttl is None:
            ttl = timedelta(minutes=self.settings.hold_ttl_minutes)
        elif ttl <= timedelta(0):
            raise ValueError(f"Hold TTL must be positive, got {ttl}")

        snapshot = self.catalog.get(campground_id)
        now = self.clock.now()
        quote = build_quote(
            snapshot,
            self.calendar,
            site_id,
            arrival,
            departure,
            guest_count,
            selections=list(selections),
            now=now,
            max_stay_nights=self.settings.max_stay_nights,
            currency=self.settings.currency
        )
        if isinstance(quote, AvailabilityError) and quote.reason == "site_unavailable":
            # Another hold or reservation already owns part of the range
            clash = self.calendar.conflicting_entry(site_id, arrival, departure)
            return Conflict(
                message=quote.message,
                site_id=site_id,
                arrival=arrival,
                departure=departure,
                conflicting_entry_id=clash.id if clash else None
            )
        if not isinstance(quote, Quote):
            return quote

        hold_id = str(uuid.uuid4())

        async with self._site_guard(site_id) as locked:
            if not locked:
                logger.warning(f"Could not lock site {site_id} for {arrival}..{departure}")
                return Conflict(
                    message=f"Site {site_id} is busy, please retry",
                    site_id=site_id,
                    arrival=arrival,
                    departure=departure
                )

            if self.repository is not None:
                stored_clash = await self.repository.find_overlap(site_id, arrival, departure, now)
                if stored_clash:
                    return Conflict(
                        message=f"Site {site_id} is already taken for part of {arrival}..{departure}",
                        site_id=site_id,
                        arrival=arrival,
                        departure=departure,
                        conflicting_entry_id=stored_clash
                    )

            entry = self.calendar.reserve(site_id, arrival, departure, kind=EntryKind.HOLD, ttl=ttl, entry_id=hold_id)
            if isinstance(entry, Conflict):
                return entry

            hold = Hold(
                id=entry.id,
                campground_id=campground_id,
                site_id=site_id,
                arrival=arrival,
                departure=departure,
                guest_count=guest_count,
                created_at=now,
                expires_at=entry.expires_at,
                quote=quote
            )

            if self.repository is not None:
                try:
                    await self.repository.save_hold(hold)
                except Exception:
                    self.calendar.release(entry.id)
                    raise

        self._holds[hold.id] = hold
        if self.redis is not None:
            await self.redis.cache_hold(hold.id, hold.model_dump(mode="json"), ttl.total_seconds())

        logger.info(
            f"Hold {hold.id} on site {site_id} for {arrival}..{departure}, "
            f"total {quote.total_cents} deposit {quote.deposit.amount_cents}, expires {hold.expires_at.isoformat()}"
        )
        return hold

    async def confirm(self, hold_id: str, payment_intent_ref: str) -> ConfirmResult:
        """
        Convert an unexpired hold into a reservation once the deposit payment
        intent verifies. A declined payment releases the hold.

        Confirmations of the same hold run one at a time; a repeated confirm
        returns the reservation the first one created.
        """
        lock = self._confirm_locks.setdefault(hold_id, asyncio.Lock())
        try:
            async with lock:
                return await self._confirm(hold_id, payment_intent_ref)
        finally:
            if hold_id not in self._holds:
                self._confirm_locks.pop(hold_id, None)

    def _expired_error(self, hold: Hold) -> HoldExpiredError:
        return HoldExpiredError(
            message=f"Hold {hold.id} expired at {hold.expires_at.isoformat()}",
            hold_id=hold.id,
            expired_at=hold.expires_at
        )

    async def _confirm(self, hold_id: str, payment_intent_ref: str) -> ConfirmResult:
        hold = await self.get_hold(hold_id)
        if hold is None or hold.status == HoldStatus.RELEASED:
            return HoldNotFoundError(message=f"Hold {hold_id} not found", hold_id=hold_id)

        if hold.status == HoldStatus.CONFIRMED:
            existing = await self.reservation_for_hold(hold_id)
            if existing is not None:
                return existing

        entry = self.calendar.get(hold_id)
        if (
            hold.status != HoldStatus.HELD
            or entry is None
            or entry.kind != EntryKind.HOLD
            or not entry.is_live(self.clock.monotonic())
        ):
            await self._expire(hold_id)
            return self._expired_error(hold)

        deposit = hold.quote.deposit.amount_cents
        approved = await self.verifier.verify(payment_intent_ref, deposit, hold.quote.currency)
        if not approved:
            logger.info(f"Payment intent {payment_intent_ref} declined for hold {hold_id}; releasing")
            await self.release(hold_id)
            return PaymentDeclinedError(
                message=f"Payment intent {payment_intent_ref} was not authorized for {deposit} cents",
                hold_id=hold_id,
                payment_intent_ref=payment_intent_ref
            )

        confirmed = self.calendar.confirm(hold_id)
        if confirmed is None:
            current = await self.get_hold(hold_id)
            if current is not None and current.status == HoldStatus.RELEASED:
                return HoldNotFoundError(message=f"Hold {hold_id} was released", hold_id=hold_id)
            # TTL ran out while the payment was being verified
            logger.warning(f"Hold {hold_id} expired during payment verification of {payment_intent_ref}")
            await self._expire(hold_id)
            return self._expired_error(hold)

        reservation = Reservation(
            id=str(uuid.uuid4()),
            campground_id=hold.campground_id,
            site_id=hold.site_id,
            arrival=hold.arrival,
            departure=hold.departure,
            guest_count=hold.guest_count,
            status=ReservationStatus.CONFIRMED,
            quote_snapshot=hold.quote,
            payment_intent_ref=payment_intent_ref,
            hold_id=hold_id,
            confirmed_at=self.clock.now()
        )

        if self.repository is not None:
            try:
                await self.repository.save_reservation(reservation)
            except Exception:
                self.calendar.release(hold_id)
                self._settle(hold, HoldStatus.RELEASED)
                raise

        self._settle(hold, HoldStatus.CONFIRMED)
        self._remember(self._reservations, hold_id, reservation)
        if self.redis is not None:
            await self.redis.forget_hold(hold_id)

        logger.info(f"Confirmed reservation {reservation.id} from hold {hold_id} (payment {payment_intent_ref})")
        return reservation

    async def release(self, hold_id: str) -> bool:
        """Cancel a hold; its range is immediately available again."""
        hold = self._holds.get(hold_id)
        if hold is None:
            return False

        self.calendar.release(hold_id)
        self._settle(hold, HoldStatus.RELEASED)
        if self.repository is not None:
            await self.repository.update_hold_status(hold_id, HoldStatus.RELEASED)
        if self.redis is not None:
            await self.redis.forget_hold(hold_id)

        logger.info(f"Released hold {hold_id} on site {hold.site_id}")
        return True

    async def _expire(self, hold_id: str) -> None:
        hold = self._holds.get(hold_id)
        if hold is None:
            return
        entry = self.calendar.get(hold_id)
        if entry is not None and entry.kind == EntryKind.HOLD:
            self.calendar.release(hold_id)
        self._settle(hold, HoldStatus.EXPIRED)
        if self.repository is not None:
            await self.repository.update_hold_status(hold_id, HoldStatus.EXPIRED)
        if self.redis is not None:
            await self.redis.forget_hold(hold_id)

    async def expire_holds(self) -> List[str]:
        """TTL sweep over live holds. Returns the ids of holds that expired."""
        self.calendar.purge_expired()

        expired: List[str] = []
        monotonic_now = self.clock.monotonic()
        for hold_id in list(self._holds):
            entry: Optional[CalendarEntry] = self.calendar.get(hold_id)
            if entry is None or not entry.is_live(monotonic_now):
                await self._expire(hold_id)
                expired.append(hold_id)

        if expired:
            logger.info(f"Expired {len(expired)} holds: {', '.join(sorted(expired))}")
        return sorted(expired)

    async def block_site(self, site_id: str, arrival: date, departure: date, reason: str) -> Union[CalendarEntry, Conflict]:
        """Close a site for maintenance. Blocks conflict with holds and reservations like any stay."""
        async with self._site_guard(site_id) as locked:
            if not locked:
                return Conflict(
                    message=f"Site {site_id} is busy, please retry",
                    site_id=site_id,
                    arrival=arrival,
                    departure=departure
                )

            if self.repository is not None:
                stored_clash = await self.repository.find_overlap(site_id, arrival, departure, self.clock.now())
                if stored_clash:
                    return Conflict(
                        message=f"Site {site_id} is already taken for part of {arrival}..{departure}",
                        site_id=site_id,
                        arrival=arrival,
                        departure=departure,
                        conflicting_entry_id=stored_clash
                    )

            entry = self.calendar.block(site_id, arrival, departure, reason)
            if isinstance(entry, Conflict):
                return entry

            if self.repository is not None:
                try:
                    await self.repository.save_block(entry)
                except Exception:
                    self.calendar.release(entry.id)
                    raise

        logger.info(f"Blocked site {site_id} for {arrival}..{departure}: {reason}")
        return entry
