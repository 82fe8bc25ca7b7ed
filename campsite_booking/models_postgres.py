"""
SQLAlchemy Models
Campground configuration, holds, reservations and operator blocks
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)

from .database_postgres import Base
from .models import (
    AdjustmentType,
    DepositApplyTo,
    DepositStrategy,
    DueTiming,
    HoldStatus,
    ReservationStatus,
    RuleType,
    StackMode,
    UpsellPricingType,
)


def utcnow():
    return datetime.now(timezone.utc)


class CampgroundRow(Base):
    __tablename__ = "campgrounds"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    default_deposit_policy_id = Column(String(36), nullable=True)
    max_stay_nights = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

class SiteClassRow(Base):
    __tablename__ = "site_classes"

    id = Column(String(36), primary_key=True)
    campground_id = Column(String(36), ForeignKey("campgrounds.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    base_rate_cents = Column(Integer, nullable=False)
    max_occupancy = Column(Integer, nullable=False)
    amenity_tags = Column(JSON, default=list)

class SiteRow(Base):
    __tablename__ = "sites"

    id = Column(String(36), primary_key=True)
    campground_id = Column(String(36), ForeignKey("campgrounds.id"), nullable=False)
    site_class_id = Column(String(36), ForeignKey("site_classes.id"), nullable=False)
    name = Column(String(255), nullable=False)
    active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index("idx_sites_campground_class", "campground_id", "site_class_id"),
    )

class PricingRuleRow(Base):
    __tablename__ = "pricing_rules"

    id = Column(String(36), primary_key=True)
    campground_id = Column(String(36), ForeignKey("campgrounds.id"), nullable=False)
    site_class_id = Column(String(36), ForeignKey("site_classes.id"), nullable=True)  # NULL == campground-wide
    name = Column(String(255), nullable=False)

    rule_type = Column(SQLEnum(RuleType), nullable=False)
    predicate = Column(JSON, nullable=False)

    stack_mode = Column(SQLEnum(StackMode), nullable=False)
    priority = Column(Integer, default=0, nullable=False)
    adjustment_type = Column(SQLEnum(AdjustmentType), default=AdjustmentType.FLAT, nullable=False)
    adjustment_value = Column(Numeric(12, 4), default=0, nullable=False)

    # Constraints
    min_rate_cents = Column(Integer, nullable=True)
    max_rate_cents = Column(Integer, nullable=True)
    min_nights = Column(Integer, nullable=True)

    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_pricing_rules_campground_active", "campground_id", "active"),
    )

class DepositPolicyRow(Base):
    __tablename__ = "deposit_policies"

    id = Column(String(36), primary_key=True)
    campground_id = Column(String(36), ForeignKey("campgrounds.id"), nullable=False)
    site_class_id = Column(String(36), ForeignKey("site_classes.id"), nullable=True)
    name = Column(String(255), nullable=False)

    strategy = Column(SQLEnum(DepositStrategy), nullable=False)
    value = Column(Numeric(12, 4), default=0, nullable=False)
    apply_to = Column(SQLEnum(DepositApplyTo), default=DepositApplyTo.LODGING_PLUS_FEES, nullable=False)
    min_amount_cents = Column(Integer, nullable=True)
    max_amount_cents = Column(Integer, nullable=True)

    due_timing = Column(SQLEnum(DueTiming), default=DueTiming.AT_BOOKING, nullable=False)
    due_days = Column(Integer, nullable=True)
    due_date = Column(Date, nullable=True)

    active = Column(Boolean, default=True, nullable=False)
    version = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

class UpsellItemRow(Base):
    __tablename__ = "upsell_items"

    id = Column(String(36), primary_key=True)
    campground_id = Column(String(36), ForeignKey("campgrounds.id"), nullable=False)
    name = Column(String(255), nullable=False)
    pricing_type = Column(SQLEnum(UpsellPricingType), nullable=False)
    unit_price_cents = Column(Integer, nullable=False)

    inventory_tracked = Column(Boolean, default=False, nullable=False)
    inventory_qty = Column(Integer, nullable=True)
    active = Column(Boolean, default=True, nullable=False)

class UpsellBundleRow(Base):
    __tablename__ = "upsell_bundles"

    id = Column(String(36), primary_key=True)
    campground_id = Column(String(36), ForeignKey("campgrounds.id"), nullable=False)
    name = Column(String(255), nullable=False)
    item_ids = Column(JSON, nullable=False)

    discount_type = Column(SQLEnum(AdjustmentType), default=AdjustmentType.FLAT, nullable=False)
    discount_value = Column(Numeric(12, 4), default=0, nullable=False)
    price_cents = Column(Integer, nullable=True)
    active = Column(Boolean, default=True, nullable=False)

class HoldRow(Base):
    __tablename__ = "holds"

    id = Column(String(36), primary_key=True)
    campground_id = Column(String(36), ForeignKey("campgrounds.id"), nullable=False)
    site_id = Column(String(36), ForeignKey("sites.id"), nullable=False)

    # Stay
    arrival = Column(Date, nullable=False)
    departure = Column(Date, nullable=False)
    guest_count = Column(Integer, nullable=False)

    status = Column(SQLEnum(HoldStatus), default=HoldStatus.HELD, nullable=False)
    quote = Column(JSON, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_holds_status_expires", "status", "expires_at"),
        Index("idx_holds_site_range", "site_id", "arrival", "departure"),
    )

class ReservationRow(Base):
    __tablename__ = "reservations"

    id = Column(String(36), primary_key=True)
    campground_id = Column(String(36), ForeignKey("campgrounds.id"), nullable=False)
    site_id = Column(String(36), ForeignKey("sites.id"), nullable=False)
    hold_id = Column(String(36), ForeignKey("holds.id"), nullable=True)

    arrival = Column(Date, nullable=False)
    departure = Column(Date, nullable=False)
    guest_count = Column(Integer, nullable=False)

    status = Column(SQLEnum(ReservationStatus), default=ReservationStatus.CONFIRMED, nullable=False)
    quote_snapshot = Column(JSON, nullable=False)
    payment_intent_ref = Column(String(255), nullable=True)

    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_reservations_site_range", "site_id", "arrival", "departure"),
    )

class SiteBlockRow(Base):
    """Operator maintenance or closure block on a site."""
    __tablename__ = "site_blocks"

    id = Column(String(36), primary_key=True)
    site_id = Column(String(36), ForeignKey("sites.id"), nullable=False, index=True)
    arrival = Column(Date, nullable=False)
    departure = Column(Date, nullable=False)
    reason = Column(String(500), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
