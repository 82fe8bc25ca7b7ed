"""
HTTP layer tests: status mapping, idempotent holds and confirmation flow.
"""
import asyncio
from datetime import date, timedelta

import httpx
import pytest

from ..api.dependencies import BookingEngine, get_booking_engine
from ..config import Settings
from ..models import WeekendPredicate
from ..redis_service import get_redis
from ..server import app
from .factories import CAMPGROUND_ID, make_policy, make_rule, make_snapshot

STAY = {"arrival": "2025-06-06", "departure": "2025-06-09", "guest_count": 2}


class DecliningVerifier:
    async def verify(self, payment_intent_ref, amount_cents, currency):
        return payment_intent_ref != "pi_declined"


class InMemoryIdempotencyStore:
    """Stands in for the Redis idempotency helpers."""

    def __init__(self):
        self.results = {}

    async def get_idempotency_result(self, key_hash):
        result = self.results.get(key_hash)
        return dict(result) if result else None

    async def store_idempotency_key(self, key_hash, result, expire=None):
        self.results[key_hash] = result
        return True


class SharedHoldCache:
    """Hold cache as written by another process."""

    def __init__(self, holds):
        self.holds = holds

    async def get_hold_info(self, hold_id):
        hold = self.holds.get(hold_id)
        return {**hold, "remaining_seconds": 600} if hold else None


@pytest.fixture
def engine(clock):
    engine = BookingEngine(settings=Settings(), clock=clock, verifier=DecliningVerifier())
    engine.catalog.publish(make_snapshot(
        rules=[make_rule("weekend", WeekendPredicate(days_of_week=[5, 6]), value=2000)],
        policies=[make_policy("dp", value=30, min_amount_cents=2500, max_amount_cents=20000)],
        default_policy_id="dp"
    ))
    app.dependency_overrides[get_booking_engine] = lambda: engine
    app.dependency_overrides[get_redis] = lambda: None
    yield engine
    app.dependency_overrides.clear()


def client():
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


async def create_hold(http, site_id="site-1", headers=None, **overrides):
    body = {"site_id": site_id, **STAY, **overrides}
    return await http.post(f"/api/campgrounds/{CAMPGROUND_ID}/holds", json=body, headers=headers or {})


class TestQuotesAndAvailability:

    @pytest.mark.asyncio
    async def test_quote_ok(self, engine):
        async with client() as http:
            response = await http.post(f"/api/campgrounds/{CAMPGROUND_ID}/quotes", json={"site_id": "site-1", **STAY})

        assert response.status_code == 200
        data = response.json()
        assert data["subtotal_cents"] == 19000
        assert data["deposit"]["amount_cents"] == 5700

    @pytest.mark.asyncio
    async def test_quote_invalid_range_is_422(self, engine):
        body = {"site_id": "site-1", **STAY, "departure": "2025-06-06"}
        async with client() as http:
            response = await http.post(f"/api/campgrounds/{CAMPGROUND_ID}/quotes", json=body)

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "INVALID_RANGE"

    @pytest.mark.asyncio
    async def test_quote_for_held_site_is_409(self, engine):
        async with client() as http:
            await create_hold(http)
            response = await http.post(f"/api/campgrounds/{CAMPGROUND_ID}/quotes", json={"site_id": "site-1", **STAY})

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "AVAILABILITY_ERROR"

    @pytest.mark.asyncio
    async def test_quote_by_site_class(self, engine):
        async with client() as http:
            await create_hold(http)
            response = await http.post(
                f"/api/campgrounds/{CAMPGROUND_ID}/quotes", json={"site_class_id": "sc-std", **STAY}
            )

        assert response.status_code == 200
        assert response.json()["site_id"] == "site-2"

    @pytest.mark.asyncio
    async def test_unknown_campground_is_404(self, engine):
        async with client() as http:
            response = await http.post("/api/campgrounds/nope/quotes", json={"site_id": "site-1", **STAY})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_availability_endpoints(self, engine):
        params = {"arrival": STAY["arrival"], "departure": STAY["departure"]}
        async with client() as http:
            await create_hold(http)
            site = await http.get(f"/api/campgrounds/{CAMPGROUND_ID}/availability", params={"siteId": "site-1", **params})
            sites = await http.get(
                f"/api/campgrounds/{CAMPGROUND_ID}/availability/sites", params={"siteClassId": "sc-std", **params}
            )

        assert site.json()["available"] is False
        assert [s["site_id"] for s in sites.json()["sites"]] == ["site-2", "site-3"]

    @pytest.mark.asyncio
    async def test_nightly_rate_report(self, engine):
        async with client() as http:
            response = await http.get(
                f"/api/campgrounds/{CAMPGROUND_ID}/rates/nightly", params={"siteId": "site-1", "night": "2025-06-07"}
            )

        assert response.status_code == 200
        assert response.json()["rate_cents"] == 7000
        assert response.json()["applied_rule_ids"] == ["weekend"]


class TestHoldsApi:

    @pytest.mark.asyncio
    async def test_second_hold_conflicts(self, engine):
        async with client() as http:
            first = await create_hold(http)
            second = await create_hold(http, departure="2025-06-10")

        assert first.status_code == 200
        assert first.json()["remaining_seconds"] == 15 * 60
        assert second.status_code == 409
        assert second.json()["detail"]["error"] == "CONFLICT"

    @pytest.mark.asyncio
    async def test_idempotent_replay(self, engine):
        store = InMemoryIdempotencyStore()
        app.dependency_overrides[get_redis] = lambda: store
        headers = {"Idempotency-Key": "checkout-42"}

        async with client() as http:
            first = await create_hold(http, headers=headers)
            replay = await create_hold(http, headers=headers)

        assert replay.status_code == 200
        assert replay.json()["hold_id"] == first.json()["hold_id"]
        assert replay.json()["created_from_idempotency"] is True

    @pytest.mark.asyncio
    async def test_parallel_requests_single_winner(self, engine):
        async with client() as http:
            responses = await asyncio.gather(*[create_hold(http) for _ in range(20)])

        codes = sorted(r.status_code for r in responses)
        assert codes.count(200) == 1
        assert codes.count(409) == 19

    @pytest.mark.asyncio
    async def test_confirm_flow(self, engine):
        async with client() as http:
            hold_id = (await create_hold(http)).json()["hold_id"]
            confirmed = await http.post(f"/api/holds/{hold_id}/confirm", json={"payment_intent_ref": "pi_ok"})
            status = await http.get(f"/api/holds/{hold_id}")

        assert confirmed.status_code == 200
        assert confirmed.json()["quote_snapshot"]["total_cents"] == 19000
        assert status.json()["status"] == "CONFIRMED"

    @pytest.mark.asyncio
    async def test_confirm_errors(self, engine, clock):
        async with client() as http:
            missing = await http.post("/api/holds/missing/confirm", json={"payment_intent_ref": "pi_ok"})

            declined_id = (await create_hold(http)).json()["hold_id"]
            declined = await http.post(f"/api/holds/{declined_id}/confirm", json={"payment_intent_ref": "pi_declined"})

            expired_id = (await create_hold(http, site_id="site-2")).json()["hold_id"]
            clock.advance(timedelta(minutes=16))
            expired = await http.post(f"/api/holds/{expired_id}/confirm", json={"payment_intent_ref": "pi_ok"})

        assert missing.status_code == 404
        assert declined.status_code == 402
        assert expired.status_code == 410
        assert expired.json()["detail"]["error"] == "HOLD_EXPIRED"

    @pytest.mark.asyncio
    async def test_release(self, engine):
        async with client() as http:
            hold_id = (await create_hold(http)).json()["hold_id"]
            released = await http.delete(f"/api/holds/{hold_id}")
            again = await http.delete(f"/api/holds/{hold_id}")

        assert released.status_code == 200
        assert released.json()["status"] == "RELEASED"
        assert again.status_code == 404
        assert engine.calendar.is_available("site-1", date(2025, 6, 6), date(2025, 6, 9))


    @pytest.mark.asyncio
    async def test_hold_status_from_shared_cache(self, engine, clock):
        other = BookingEngine(settings=Settings(), clock=clock)
        other.catalog.publish(make_snapshot())
        hold = await other.allocation.hold(CAMPGROUND_ID, "site-3", date(2025, 6, 6), date(2025, 6, 9), 2)
        app.dependency_overrides[get_redis] = lambda: SharedHoldCache({hold.id: hold.model_dump(mode="json")})

        async with client() as http:
            cached = await http.get(f"/api/holds/{hold.id}")
            missing = await http.get("/api/holds/unknown")

        assert cached.status_code == 200
        assert cached.json()["site_id"] == "site-3"
        assert cached.json()["status"] == "HELD"
        assert cached.json()["remaining_seconds"] == 600
        assert missing.status_code == 404


class TestBlocksApi:

    @pytest.mark.asyncio
    async def test_block_then_hold_conflicts(self, engine):
        body = {"arrival": "2025-06-05", "departure": "2025-06-07", "reason": "septic repair"}
        async with client() as http:
            blocked = await http.post(f"/api/campgrounds/{CAMPGROUND_ID}/sites/site-1/blocks", json=body)
            again = await http.post(f"/api/campgrounds/{CAMPGROUND_ID}/sites/site-1/blocks", json=body)
            hold = await create_hold(http)
            unknown = await http.post(f"/api/campgrounds/{CAMPGROUND_ID}/sites/nope/blocks", json=body)

        assert blocked.status_code == 200
        assert blocked.json()["reason"] == "septic repair"
        assert again.status_code == 409
        assert hold.status_code == 409
        assert hold.json()["detail"]["conflicting_entry_id"] == blocked.json()["block_id"]
        assert unknown.status_code == 404

@pytest.mark.asyncio
async def test_health_reports_components(engine):
    async with client() as http:
        response = await http.get("/api/health")

    assert response.status_code == 200
    assert {"status", "database", "redis", "timestamp"} <= set(response.json())
