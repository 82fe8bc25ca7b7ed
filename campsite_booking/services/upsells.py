"""
Upsell Aggregator
Prices add-ons for a stay and substitutes bundle pricing where every item
of a bundle was selected.
"""

import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Union

from ..models import (
    AdjustmentType,
    BundleLine,
    UpsellBundle,
    UpsellItem,
    UpsellLine,
    UpsellPricingType,
    UpsellSelection,
    UpsellSummary,
)
from ..outcomes import AvailabilityError, ConfigurationWarning, InvalidRequestError
from .stacking import HUNDRED, round_cents

logger = logging.getLogger(__name__)


class UpsellContext(NamedTuple):
    nights: int
    guests: int
    sites: int = 1


def unit_multiplier(pricing_type: UpsellPricingType, context: UpsellContext) -> int:
    if pricing_type == UpsellPricingType.PER_NIGHT:
        return context.nights
    if pricing_type == UpsellPricingType.PER_GUEST:
        return context.guests
    if pricing_type == UpsellPricingType.PER_SITE:
        return context.sites
    return 1


def bundle_price(bundle: UpsellBundle, list_price_cents: int) -> int:
    """Price of a bundle given the summed price of its items."""
    if bundle.price_cents is not None:
        return bundle.price_cents
    if bundle.discount_type == AdjustmentType.PERCENT:
        return list_price_cents - round_cents(Decimal(list_price_cents) * bundle.discount_value / HUNDRED)
    return list_price_cents - round_cents(bundle.discount_value)


def _bundle_warning(bundle: UpsellBundle, price: int, list_price: int) -> Optional[ConfigurationWarning]:
    if price < 0:
        return ConfigurationWarning(
            code="bundle_price_negative",
            subject_id=bundle.id,
            message=f"Bundle {bundle.name} prices to {price} cents; charging items individually"
        )
    if price > list_price:
        return ConfigurationWarning(
            code="bundle_price_exceeds_items",
            subject_id=bundle.id,
            message=(
                f"Bundle {bundle.name} costs {price} cents but its items sum to {list_price} cents; "
                "charging items individually"
            )
        )
    return None


def validate_bundle(bundle: UpsellBundle, items: Mapping[str, UpsellItem]) -> List[ConfigurationWarning]:
    """
    Configuration-time checks for a bundle. Prices are compared against one
    unit of each item.
    """
    warnings: List[ConfigurationWarning] = []

    missing = [item_id for item_id in bundle.item_ids if item_id not in items]
    if missing:
        warnings.append(ConfigurationWarning(
            code="bundle_unknown_item",
            subject_id=bundle.id,
            message=f"Bundle {bundle.name} references unknown items: {', '.join(missing)}"
        ))
        return warnings

    if len(set(bundle.item_ids)) != len(bundle.item_ids):
        warnings.append(ConfigurationWarning(
            code="bundle_duplicate_item",
            subject_id=bundle.id,
            message=f"Bundle {bundle.name} lists the same item more than once"
        ))

    list_price = sum(items[item_id].unit_price_cents for item_id in set(bundle.item_ids))
    warning = _bundle_warning(bundle, bundle_price(bundle, list_price), list_price)
    if warning:
        warnings.append(warning)

    return warnings


def upsell_charges(
    items: Union[Mapping[str, UpsellItem], Iterable[UpsellItem]],
    selections: Iterable[UpsellSelection],
    bundles: Iterable[UpsellBundle],
    context: UpsellContext
) -> Union[UpsellSummary, AvailabilityError, InvalidRequestError]:
    """
    Total the selected add-ons for a stay.

    Each selected item belongs to at most one applied bundle; bundles with the
    largest saving are applied first (ties broken by bundle id). A bundle whose
    price is negative or above the sum of its items is skipped with a warning.
    """
    if not isinstance(items, Mapping):
        items = {item.id: item for item in items}

    quantities: Dict[str, int] = OrderedDict()
    for selection in sorted(selections, key=lambda s: s.item_id):
        quantities[selection.item_id] = quantities.get(selection.item_id, 0) + selection.quantity

    lines: Dict[str, UpsellLine] = OrderedDict()
    for item_id, quantity in quantities.items():
        item = items.get(item_id)
        if item is None or not item.active:
            return InvalidRequestError(
                message=f"Add-on {item_id} is not offered",
                field="upsells",
                reason="unknown_item"
            )
        if item.inventory_tracked and quantity > (item.inventory_qty or 0):
            logger.info(f"Add-on {item_id} short: requested {quantity}, in stock {item.inventory_qty or 0}")
            return AvailabilityError(
                message=f"Only {item.inventory_qty or 0} of {item.name} left",
                reason="upsell_out_of_stock"
            )

        lines[item_id] = UpsellLine(
            item_id=item.id,
            name=item.name,
            pricing_type=item.pricing_type,
            quantity=quantity,
            unit_price_cents=item.unit_price_cents,
            amount_cents=item.unit_price_cents * quantity * unit_multiplier(item.pricing_type, context)
        )

    warnings: List[ConfigurationWarning] = []
    candidates = []
    for bundle in sorted(bundles, key=lambda b: b.id):
        members = set(bundle.item_ids)
        if not bundle.active or not members.issubset(lines):
            continue
        list_price = sum(lines[item_id].amount_cents for item_id in members)
        price = bundle_price(bundle, list_price)
        warning = _bundle_warning(bundle, price, list_price)
        if warning:
            logger.warning(f"Configuration warning {warning.code} on bundle {bundle.id}: {warning.message}")
            warnings.append(warning)
            continue
        candidates.append((list_price - price, bundle, members, list_price, price))

    applied: List[BundleLine] = []
    used = set()
    for savings, bundle, members, list_price, price in sorted(candidates, key=lambda c: (-c[0], c[1].id)):
        if members & used:
            continue
        used |= members
        for item_id in members:
            lines[item_id] = lines[item_id].model_copy(update={"bundle_id": bundle.id})
        applied.append(BundleLine(
            bundle_id=bundle.id,
            name=bundle.name,
            item_ids=tuple(sorted(members)),
            list_price_cents=list_price,
            price_cents=price,
            savings_cents=savings
        ))

    total = sum(line.amount_cents for line in lines.values() if line.bundle_id is None)
    total += sum(b.price_cents for b in applied)

    return UpsellSummary(
        lines=tuple(lines.values()),
        bundles=tuple(sorted(applied, key=lambda b: b.bundle_id)),
        total_cents=total,
        warnings=tuple(warnings)
    )
