"""
Tests for add-on pricing and bundle substitution.
"""
from decimal import Decimal

from ..models import AdjustmentType, UpsellBundle, UpsellItem, UpsellPricingType, UpsellSelection
from ..outcomes import AvailabilityError, InvalidRequestError
from ..services.upsells import UpsellContext, upsell_charges, validate_bundle
from .factories import CAMPGROUND_ID

CONTEXT = UpsellContext(nights=3, guests=4)


def item(item_id, pricing_type=UpsellPricingType.FLAT, price=1000, **kwargs):
    return UpsellItem(id=item_id, campground_id=CAMPGROUND_ID, name=item_id, pricing_type=pricing_type,
                      unit_price_cents=price, **kwargs)


def bundle(bundle_id, item_ids, **kwargs):
    return UpsellBundle(id=bundle_id, campground_id=CAMPGROUND_ID, name=bundle_id, item_ids=item_ids, **kwargs)


ITEMS = [
    item("firewood", UpsellPricingType.PER_NIGHT, 800),
    item("kayak", UpsellPricingType.FLAT, 4000, inventory_tracked=True, inventory_qty=2),
    item("breakfast", UpsellPricingType.PER_GUEST, 1200),
    item("pet", UpsellPricingType.PER_SITE, 1000),
]


class TestUpsellCharges:

    def test_pricing_types(self):
        summary = upsell_charges(ITEMS, [
            UpsellSelection(item_id="firewood"),
            UpsellSelection(item_id="kayak", quantity=2),
            UpsellSelection(item_id="breakfast"),
            UpsellSelection(item_id="pet"),
        ], [], CONTEXT)

        amounts = {line.item_id: line.amount_cents for line in summary.lines}
        assert amounts == {"firewood": 2400, "kayak": 8000, "breakfast": 4800, "pet": 1000}
        assert summary.total_cents == 16200

    def test_repeated_selections_are_merged(self):
        summary = upsell_charges(ITEMS, [
            UpsellSelection(item_id="kayak"),
            UpsellSelection(item_id="kayak"),
        ], [], CONTEXT)
        assert [(l.item_id, l.quantity) for l in summary.lines] == [("kayak", 2)]

    def test_bundle_discount_substituted(self):
        lake_day = bundle("lake-day", ("firewood", "kayak"), discount_type=AdjustmentType.PERCENT,
                          discount_value=Decimal(10))
        summary = upsell_charges(ITEMS, [
            UpsellSelection(item_id="firewood"),
            UpsellSelection(item_id="kayak"),
            UpsellSelection(item_id="pet"),
        ], [lake_day], CONTEXT)

        # (2400 + 4000) * 0.9 + 1000
        assert summary.total_cents == 5760 + 1000
        assert summary.bundles[0].savings_cents == 640
        assert {l.item_id for l in summary.lines if l.bundle_id == "lake-day"} == {"firewood", "kayak"}

    def test_bundle_needs_every_item(self):
        lake_day = bundle("lake-day", ("firewood", "kayak"), price_cents=100)
        summary = upsell_charges(ITEMS, [UpsellSelection(item_id="firewood")], [lake_day], CONTEXT)
        assert summary.bundles == ()
        assert summary.total_cents == 2400

    def test_item_joins_only_best_bundle(self):
        small = bundle("small", ("firewood", "kayak"), price_cents=6000)  # saves 400
        big = bundle("big", ("kayak", "breakfast"), price_cents=7000)  # saves 1800
        summary = upsell_charges(ITEMS, [
            UpsellSelection(item_id="firewood"),
            UpsellSelection(item_id="kayak"),
            UpsellSelection(item_id="breakfast"),
        ], [small, big], CONTEXT)

        assert [b.bundle_id for b in summary.bundles] == ["big"]
        assert summary.total_cents == 7000 + 2400

    def test_overpriced_bundle_falls_back_with_warning(self):
        pricey = bundle("pricey", ("firewood", "kayak"), price_cents=99999)
        summary = upsell_charges(ITEMS, [
            UpsellSelection(item_id="firewood"),
            UpsellSelection(item_id="kayak"),
        ], [pricey], CONTEXT)

        assert summary.total_cents == 6400
        assert summary.bundles == ()
        assert [w.code for w in summary.warnings] == ["bundle_price_exceeds_items"]

    def test_out_of_stock(self):
        result = upsell_charges(ITEMS, [UpsellSelection(item_id="kayak", quantity=3)], [], CONTEXT)
        assert isinstance(result, AvailabilityError)
        assert result.reason == "upsell_out_of_stock"

    def test_unknown_or_inactive_item(self):
        items = ITEMS + [item("retired", active=False)]
        assert isinstance(upsell_charges(items, [UpsellSelection(item_id="nope")], [], CONTEXT), InvalidRequestError)
        assert isinstance(upsell_charges(items, [UpsellSelection(item_id="retired")], [], CONTEXT), InvalidRequestError)

    def test_no_selections(self):
        summary = upsell_charges(ITEMS, [], [], CONTEXT)
        assert summary.total_cents == 0
        assert summary.lines == ()


class TestValidateBundle:

    def test_flags_configuration_problems(self):
        items = {i.id: i for i in ITEMS}
        assert validate_bundle(bundle("ok", ("firewood", "pet"), price_cents=1500), items) == []
        assert validate_bundle(bundle("missing", ("firewood", "ghost")), items)[0].code == "bundle_unknown_item"
        assert validate_bundle(bundle("neg", ("pet",), price_cents=-1), items)[0].code == "bundle_price_negative"
