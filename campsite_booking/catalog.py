"""
Rate catalog: immutable per-campground configuration snapshots.

The settings surface publishes a new RateSnapshot whenever configuration
changes; quoting reads one snapshot per computation and never mutates it.
"""

import hashlib
import logging
import threading
from typing import Dict, List, Optional, Tuple

from pydantic import PrivateAttr

from .models import (
    Campground,
    DepositPolicy,
    DomainModel,
    PricingRule,
    Site,
    SiteClass,
    UpsellBundle,
    UpsellItem,
)
from .outcomes import UnknownCampgroundError

logger = logging.getLogger(__name__)


class RateSnapshot(DomainModel):
    """Everything needed to price stays at one campground, frozen at a point in time."""

    campground: Campground
    site_classes: Tuple[SiteClass, ...] = ()
    sites: Tuple[Site, ...] = ()
    rules: Tuple[PricingRule, ...] = ()
    deposit_policies: Tuple[DepositPolicy, ...] = ()
    upsell_items: Tuple[UpsellItem, ...] = ()
    upsell_bundles: Tuple[UpsellBundle, ...] = ()

    _sites: Dict[str, Site] = PrivateAttr(default_factory=dict)
    _classes: Dict[str, SiteClass] = PrivateAttr(default_factory=dict)
    _items: Dict[str, UpsellItem] = PrivateAttr(default_factory=dict)
    _sorted_rules: Tuple[PricingRule, ...] = PrivateAttr(default=())
    _version: str = PrivateAttr(default="")

    def model_post_init(self, __context) -> None:
        self._sites = {site.id: site for site in self.sites}
        self._classes = {site_class.id: site_class for site_class in self.site_classes}
        self._items = {item.id: item for item in self.upsell_items}
        self._sorted_rules = tuple(sorted(self.rules, key=lambda rule: rule.sort_key))
        digest = hashlib.sha256(self.model_dump_json().encode("utf-8")).hexdigest()
        self._version = f"v2:{digest[:16]}"

    @property
    def campground_id(self) -> str:
        return self.campground.id

    @property
    def pricing_version(self) -> str:
        """Stable digest of this snapshot; equal configuration gives an equal version."""
        return self._version

    @property
    def sorted_rules(self) -> Tuple[PricingRule, ...]:
        return self._sorted_rules

    def site(self, site_id: str) -> Optional[Site]:
        return self._sites.get(site_id)

    def site_class(self, site_class_id: str) -> Optional[SiteClass]:
        return self._classes.get(site_class_id)

    def upsell_item(self, item_id: str) -> Optional[UpsellItem]:
        return self._items.get(item_id)

    def sites_in_class(self, site_class_id: str) -> List[Site]:
        """Active sites of a class, ordered by name then id."""
        return sorted(
            (s for s in self.sites if s.site_class_id == site_class_id and s.active),
            key=lambda s: (s.name, s.id),
        )


class RateCatalog:
    """Thread-safe registry of the current snapshot for each campground."""

    def __init__(self):
        self._lock = threading.Lock()
        self._snapshots: Dict[str, RateSnapshot] = {}

    def publish(self, snapshot: RateSnapshot) -> None:
        with self._lock:
            self._snapshots[snapshot.campground_id] = snapshot
        logger.info(
            f"Published rate snapshot {snapshot.pricing_version} for campground {snapshot.campground_id} "
            f"({len(snapshot.rules)} rules, {len(snapshot.sites)} sites)"
        )

    def get(self, campground_id: str) -> RateSnapshot:
        snapshot = self._snapshots.get(campground_id)
        if snapshot is None:
            raise UnknownCampgroundError(f"No rate snapshot published for campground {campground_id}")
        return snapshot

    def campground_ids(self) -> List[str]:
        return sorted(self._snapshots)
