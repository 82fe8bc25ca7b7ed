"""
Tests for holds, confirmations and the exclusivity guarantee.
"""
import asyncio
from datetime import date, timedelta

import pytest

from ..catalog import RateCatalog
from ..config import Settings
from ..models import Hold, HoldStatus, Quote, Reservation, WeekendPredicate
from ..outcomes import Conflict, HoldExpiredError, HoldNotFoundError, PaymentDeclinedError
from ..services.allocation import AllocationService
from ..services.calendar import CalendarIndex, EntryKind
from ..services.quoting import build_quote
from .factories import CAMPGROUND_ID, make_policy, make_rule, make_snapshot

FRIDAY = date(2025, 6, 6)
MONDAY = date(2025, 6, 9)


class RecordingVerifier:
    """Approves every intent except those listed as declined."""

    def __init__(self, declined=()):
        self.declined = set(declined)
        self.calls = []

    async def verify(self, payment_intent_ref, amount_cents, currency):
        self.calls.append((payment_intent_ref, amount_cents, currency))
        return payment_intent_ref not in self.declined


class SlowVerifier:
    """Approves after a short delay, long enough for a competing request to interleave."""

    async def verify(self, payment_intent_ref, amount_cents, currency):
        await asyncio.sleep(0.01)
        return True


def make_service(calendar, clock, verifier, **settings):
    catalog = RateCatalog()
    catalog.publish(make_snapshot(
        rules=[make_rule("weekend", WeekendPredicate(days_of_week=[5, 6]), value=2000)],
        policies=[make_policy("dp", value=30, min_amount_cents=2500, max_amount_cents=20000)],
        default_policy_id="dp"
    ))
    settings.setdefault("hold_ttl_minutes", 15)
    return AllocationService(catalog, calendar, verifier, settings=Settings(**settings), clock=clock)


@pytest.fixture
def verifier():
    return RecordingVerifier(declined={"pi_declined"})


@pytest.fixture
def service(calendar, clock, verifier):
    return make_service(calendar, clock, verifier)


class TestHolds:

    @pytest.mark.asyncio
    async def test_hold_carries_quote_and_ttl(self, service, clock):
        hold = await service.hold(CAMPGROUND_ID, "site-1", FRIDAY, MONDAY, 2)

        assert isinstance(hold, Hold)
        assert hold.quote.total_cents == 19000
        assert hold.expires_at == clock.now() + timedelta(minutes=15)
        assert not service.calendar.is_available("site-1", FRIDAY, MONDAY)

    @pytest.mark.asyncio
    async def test_quote_failures_pass_through(self, service):
        result = await service.hold(CAMPGROUND_ID, "site-1", MONDAY, FRIDAY, 2)
        assert result.error == "INVALID_RANGE"

    @pytest.mark.asyncio
    async def test_release_frees_site(self, service):
        hold = await service.hold(CAMPGROUND_ID, "site-1", FRIDAY, MONDAY, 2)

        assert await service.release(hold.id)
        assert (await service.get_hold(hold.id)).status == HoldStatus.RELEASED
        assert service.calendar.is_available("site-1", FRIDAY, MONDAY)
        assert not await service.release(hold.id)

    @pytest.mark.asyncio
    async def test_expire_holds_sweep(self, service, clock):
        hold = await service.hold(CAMPGROUND_ID, "site-1", FRIDAY, MONDAY, 2)
        clock.advance(minutes=15)

        assert await service.expire_holds() == [hold.id]
        assert (await service.get_hold(hold.id)).status == HoldStatus.EXPIRED
        assert await service.expire_holds() == []


class TestConfirm:

    @pytest.mark.asyncio
    async def test_confirm_snapshots_hold_quote(self, service, verifier, clock):
        hold = await service.hold(CAMPGROUND_ID, "site-1", FRIDAY, MONDAY, 2)
        clock.advance(minutes=5)

        reservation = await service.confirm(hold.id, "pi_ok")

        assert isinstance(reservation, Reservation)
        assert reservation.quote_snapshot == hold.quote
        assert reservation.hold_id == hold.id
        assert verifier.calls == [("pi_ok", 5700, "USD")]
        assert (await service.get_hold(hold.id)).status == HoldStatus.CONFIRMED

        # Confirmed stays survive past the hold TTL
        clock.advance(hours=1)
        assert not service.calendar.is_available("site-1", FRIDAY, MONDAY)

    @pytest.mark.asyncio
    async def test_confirm_after_ttl_is_expired(self, service, clock):
        hold = await service.hold(CAMPGROUND_ID, "site-1", FRIDAY, MONDAY, 2)
        clock.advance(minutes=16)

        result = await service.confirm(hold.id, "pi_ok")

        assert isinstance(result, HoldExpiredError)
        assert result.expired_at == hold.expires_at
        assert service.calendar.is_available("site-1", FRIDAY, MONDAY)

    @pytest.mark.asyncio
    async def test_declined_payment_releases_hold(self, service):
        hold = await service.hold(CAMPGROUND_ID, "site-1", FRIDAY, MONDAY, 2)

        result = await service.confirm(hold.id, "pi_declined")

        assert isinstance(result, PaymentDeclinedError)
        assert service.calendar.is_available("site-1", FRIDAY, MONDAY)

    @pytest.mark.asyncio
    async def test_unknown_hold(self, service):
        assert isinstance(await service.confirm("missing", "pi_ok"), HoldNotFoundError)

    @pytest.mark.asyncio
    async def test_quote_snapshot_survives_rule_changes(self, service):
        hold = await service.hold(CAMPGROUND_ID, "site-1", FRIDAY, MONDAY, 2)
        reservation = await service.confirm(hold.id, "pi_ok")

        # Weekend surcharge doubled after the booking was made
        service.catalog.publish(make_snapshot(
            rules=[make_rule("weekend", WeekendPredicate(days_of_week=[5, 6]), value=4000)],
            policies=[make_policy("dp", value=30, min_amount_cents=2500, max_amount_cents=20000)],
            default_policy_id="dp"
        ))
        fresh = build_quote(service.catalog.get(CAMPGROUND_ID), CalendarIndex(clock=service.clock),
                            "site-1", FRIDAY, MONDAY, 2, now=service.clock.now())

        assert reservation.quote_snapshot.total_cents == 19000
        assert reservation.quote_snapshot == hold.quote
        assert fresh.total_cents == 23000
        assert fresh.pricing_version != reservation.quote_snapshot.pricing_version
        assert Quote.model_validate_json(reservation.quote_snapshot.model_dump_json()) == hold.quote

    @pytest.mark.asyncio
    async def test_concurrent_confirms_share_one_reservation(self, calendar, clock):
        service = make_service(calendar, clock, SlowVerifier())
        hold = await service.hold(CAMPGROUND_ID, "site-1", FRIDAY, MONDAY, 2)

        first, second = await asyncio.gather(
            service.confirm(hold.id, "pi_1"),
            service.confirm(hold.id, "pi_1")
        )

        assert isinstance(first, Reservation)
        assert second == first
        assert (await service.get_hold(hold.id)).status == HoldStatus.CONFIRMED
        assert await service.confirm(hold.id, "pi_1") == first
        assert not service.calendar.is_available("site-1", FRIDAY, MONDAY)

    @pytest.mark.asyncio
    async def test_release_during_payment_verification(self, calendar, clock):
        service = make_service(calendar, clock, SlowVerifier())
        hold = await service.hold(CAMPGROUND_ID, "site-1", FRIDAY, MONDAY, 2)

        confirming = asyncio.ensure_future(service.confirm(hold.id, "pi_1"))
        await asyncio.sleep(0)
        assert await service.release(hold.id)
        result = await confirming

        assert isinstance(result, HoldNotFoundError)
        assert (await service.get_hold(hold.id)).status == HoldStatus.RELEASED


class TestHoldBookkeeping:

    @pytest.mark.asyncio
    async def test_explicit_ttl_is_honoured(self, service, clock):
        hold = await service.hold(CAMPGROUND_ID, "site-1", FRIDAY, MONDAY, 2, ttl=timedelta(minutes=2))

        assert hold.expires_at == clock.now() + timedelta(minutes=2)
        clock.advance(minutes=3)
        assert await service.expire_holds() == [hold.id]

    @pytest.mark.asyncio
    async def test_non_positive_ttl_rejected(self, service):
        with pytest.raises(ValueError):
            await service.hold(CAMPGROUND_ID, "site-1", FRIDAY, MONDAY, 2, ttl=timedelta(0))

    @pytest.mark.asyncio
    async def test_settled_holds_are_bounded(self, calendar, clock, verifier):
        service = make_service(calendar, clock, verifier, settled_hold_cache_size=2)
        holds = [
            await service.hold(CAMPGROUND_ID, f"site-{i}", FRIDAY, MONDAY, 2)
            for i in (1, 2, 3)
        ]
        for hold in holds:
            await service.release(hold.id)

        # Oldest settled hold has been evicted; nothing is left for the sweep
        assert await service.get_hold(holds[0].id) is None
        assert (await service.get_hold(holds[2].id)).status == HoldStatus.RELEASED
        assert await service.expire_holds() == []

    @pytest.mark.asyncio
    async def test_sweep_leaves_settled_holds_alone(self, service, clock):
        confirmed = await service.hold(CAMPGROUND_ID, "site-1", FRIDAY, MONDAY, 2)
        await service.confirm(confirmed.id, "pi_ok")
        pending = await service.hold(CAMPGROUND_ID, "site-2", FRIDAY, MONDAY, 2)
        clock.advance(minutes=20)

        assert await service.expire_holds() == [pending.id]
        assert (await service.get_hold(confirmed.id)).status == HoldStatus.CONFIRMED


class TestBlocks:

    @pytest.mark.asyncio
    async def test_block_site_closes_range(self, service):
        block = await service.block_site("site-1", FRIDAY, MONDAY, "septic repair")

        assert block.kind == EntryKind.BLOCK
        assert block.reason == "septic repair"
        result = await service.hold(CAMPGROUND_ID, "site-1", FRIDAY, MONDAY, 2)
        assert isinstance(result, Conflict)
        assert result.conflicting_entry_id == block.id

    @pytest.mark.asyncio
    async def test_block_conflicts_with_hold(self, service):
        hold = await service.hold(CAMPGROUND_ID, "site-1", FRIDAY, MONDAY, 2)

        result = await service.block_site("site-1", MONDAY - timedelta(days=1), MONDAY, "tree removal")

        assert isinstance(result, Conflict)
        assert result.conflicting_entry_id == hold.id


class TestExclusivity:

    @pytest.mark.asyncio
    async def test_concurrent_overlapping_holds_one_winner(self, service):
        attempts = [
            service.hold(CAMPGROUND_ID, "site-1", FRIDAY + timedelta(days=i % 2), MONDAY, 2)
            for i in range(100)
        ]
        results = await asyncio.gather(*attempts)

        assert sum(isinstance(r, Hold) for r in results) == 1
        assert sum(isinstance(r, Conflict) for r in results) == 99

    @pytest.mark.asyncio
    async def test_concurrent_disjoint_holds_all_win(self, service):
        start = date(2025, 7, 1)
        attempts = [
            service.hold(CAMPGROUND_ID, "site-1", start + timedelta(days=i), start + timedelta(days=i + 1), 2)
            for i in range(20)
        ]
        results = await asyncio.gather(*attempts)

        assert all(isinstance(r, Hold) for r in results)
