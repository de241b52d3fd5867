# src/models.py
from enum import Enum
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    ForeignKey,
    Boolean,
    Text,
    CheckConstraint,
    Index,
    UniqueConstraint,
    text,
    Enum as SAEnum,
)
from sqlalchemy.orm import relationship, validates

# Use a single, shared Base for all models
# This ensures all models use the same SQLAlchemy metadata, preventing conflicts.
from src.database import Base
from src.errors import ValidationError
from src.timeutils import as_utc


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def _enum_type(enum_cls, name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        validate_strings=True,
        values_callable=_enum_values,
    )


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class FestivalStatus(str, Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"


class PreBookingType(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class TierStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"


class ParticipantStatus(str, Enum):
    REGISTERED = "registered"
    WON = "won"
    LOST = "lost"


class TierEntryStatus(str, Enum):
    ENTERED = "entered"
    WON = "won"
    LOST = "lost"


class OrderType(str, Enum):
    WIN_CLAIM = "win_claim"
    MYSTERY_GIFT = "mystery_gift"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class ShippingStatus(str, Enum):
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


class User(Base):
    __tablename__ = 'User'
    userID = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(255), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone_number = Column(String(20))
    role = Column(String(50), default='customer', nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    subscriptions = relationship("Subscription", back_populates="user", cascade="all, delete-orphan")

    @property
    def is_admin(self) -> bool:
        return self.role == 'admin'


class Product(Base):
    __tablename__ = 'Product'
    productID = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    variants = relationship(
        "ProductVariant",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductVariant.variantID",
    )


class ProductVariant(Base):
    __tablename__ = 'ProductVariant'
    variantID = Column(Integer, primary_key=True, autoincrement=True)
    productID = Column(Integer, ForeignKey('Product.productID', ondelete='CASCADE'), nullable=False)
    sku = Column(String(100), unique=True, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    stock_quantity = Column(Integer, default=0, nullable=False)

    product = relationship("Product", back_populates="variants")


class Subscription(Base):
    __tablename__ = 'Subscription'
    subscriptionID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('User.userID', ondelete='CASCADE'), nullable=False, index=True)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    status = Column(
        _enum_type(SubscriptionStatus, "subscription_status"),
        default=SubscriptionStatus.ACTIVE,
        nullable=False,
    )
    payment_reference = Column(String(120))

    user = relationship("User", back_populates="subscriptions")


class Festival(Base):
    __tablename__ = 'MegaOfferFestival'

    festivalID = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(150), nullable=False)
    description = Column(Text)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    pre_booking_start_time = Column(DateTime, nullable=False)
    pre_booking_end_time = Column(DateTime, nullable=False)
    pre_booking_amount = Column(Numeric(10, 2), nullable=False)
    pre_booking_type = Column(
        _enum_type(PreBookingType, "pre_booking_type"),
        default=PreBookingType.FIXED,
        nullable=False,
    )
    status = Column(
        _enum_type(FestivalStatus, "festival_status"),
        default=FestivalStatus.SCHEDULED,
        nullable=False,
    )
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    tiers = relationship(
        "Tier",
        back_populates="festival",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Tier.tier_order",
    )
    participants = relationship(
        "Participant",
        back_populates="festival",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    orders = relationship(
        "MegaOfferOrder",
        back_populates="festival",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def is_pre_booking_open(self, now: datetime) -> bool:
        return as_utc(self.pre_booking_start_time) <= now <= as_utc(self.pre_booking_end_time)

    def all_tiers_completed(self) -> bool:
        return all(tier.status == TierStatus.COMPLETED for tier in self.tiers)


class Tier(Base):
    __tablename__ = 'MegaOfferTier'
    __table_args__ = (
        CheckConstraint('discount_percent >= 1 AND discount_percent <= 100', name='ck_tier_discount_percent'),
    )

    tierID = Column(Integer, primary_key=True, autoincrement=True)
    festivalID = Column(
        Integer,
        ForeignKey('MegaOfferFestival.festivalID', ondelete='CASCADE'),
        nullable=False,
        index=True,
    )
    tier_name = Column(String(100), nullable=False)
    tier_order = Column(Integer, nullable=False)
    entry_fee = Column(Numeric(10, 2), nullable=False)
    discount_percent = Column(Integer, nullable=False)
    max_winners = Column(Integer)  # null: fall back to a fraction of the entries
    start_time = Column(DateTime)
    end_time = Column(DateTime)
    status = Column(
        _enum_type(TierStatus, "tier_status"),
        default=TierStatus.PENDING,
        nullable=False,
    )
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    festival = relationship("Festival", back_populates="tiers")
    entries = relationship(
        "TierEntry",
        back_populates="tier",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @validates('discount_percent')
    def _validate_discount_percent(self, key, value):
        try:
            percent = Decimal(str(value))
        except InvalidOperation:
            raise ValidationError("discount_percent must be an integer between 1 and 100") from None
        if percent != percent.to_integral_value() or not 1 <= percent <= 100:
            raise ValidationError("discount_percent must be an integer between 1 and 100")
        return int(percent)

    @property
    def requires_payment(self) -> bool:
        return Decimal(self.entry_fee or 0) > 0


class Participant(Base):
    __tablename__ = 'MegaOfferParticipant'
    __table_args__ = (
        UniqueConstraint('festivalID', 'userID', 'productID', name='uq_participant_festival_user_product'),
        # NULL product ids never collide in a plain unique constraint
        Index(
            'uq_participant_festival_user_no_product',
            'festivalID',
            'userID',
            unique=True,
            sqlite_where=text('"productID" IS NULL'),
            postgresql_where=text('"productID" IS NULL'),
        ),
    )

    participantID = Column(Integer, primary_key=True, autoincrement=True)
    festivalID = Column(
        Integer,
        ForeignKey('MegaOfferFestival.festivalID', ondelete='CASCADE'),
        nullable=False,
    )
    userID = Column(Integer, ForeignKey('User.userID'), nullable=False, index=True)
    productID = Column(Integer, ForeignKey('Product.productID'))
    has_pre_booked = Column(Boolean, default=False, nullable=False)
    pre_booking_amount_paid = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    status = Column(
        _enum_type(ParticipantStatus, "participant_status"),
        default=ParticipantStatus.REGISTERED,
        nullable=False,
    )
    wonTierID = Column(Integer, ForeignKey('MegaOfferTier.tierID', ondelete='SET NULL'))
    mystery_gift_claimed = Column(Boolean, default=False, nullable=False)
    payment_reference = Column(String(120))
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    festival = relationship("Festival", back_populates="participants")
    user = relationship("User")
    product = relationship("Product")
    won_tier = relationship("Tier", foreign_keys=[wonTierID])

    def mark_won(self, tier_id: int) -> None:
        self.status = ParticipantStatus.WON
        self.wonTierID = tier_id

    def revert_win(self) -> None:
        self.status = ParticipantStatus.REGISTERED
        self.wonTierID = None


class TierEntry(Base):
    __tablename__ = 'MegaOfferTierEntry'
    __table_args__ = (
        UniqueConstraint('tierID', 'userID', name='uq_tier_entry_tier_user'),
    )

    entryID = Column(Integer, primary_key=True, autoincrement=True)
    tierID = Column(
        Integer,
        ForeignKey('MegaOfferTier.tierID', ondelete='CASCADE'),
        nullable=False,
    )
    userID = Column(Integer, ForeignKey('User.userID'), nullable=False, index=True)
    entry_fee_paid = Column(Numeric(10, 2), nullable=False)
    status = Column(
        _enum_type(TierEntryStatus, "tier_entry_status"),
        default=TierEntryStatus.ENTERED,
        nullable=False,
    )
    payment_reference = Column(String(120))
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    tier = relationship("Tier", back_populates="entries")
    user = relationship("User")


class MegaOfferOrder(Base):
    __tablename__ = 'MegaOfferOrder'
    __table_args__ = (
        # At most one paid sale order per (user, festival)
        Index(
            'uq_mega_offer_order_paid',
            'userID',
            'festivalID',
            unique=True,
            sqlite_where=text("payment_status = 'paid'"),
            postgresql_where=text("payment_status = 'paid'"),
        ),
    )

    orderID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('User.userID'), nullable=False, index=True)
    festivalID = Column(
        Integer,
        ForeignKey('MegaOfferFestival.festivalID', ondelete='CASCADE'),
        nullable=False,
    )
    productID = Column(Integer, ForeignKey('Product.productID'), nullable=False)
    order_type = Column(_enum_type(OrderType, "mega_offer_order_type"), nullable=False)
    original_price = Column(Numeric(10, 2), nullable=False)
    pre_booking_amount = Column(Numeric(10, 2), nullable=False)
    discount_amount = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    final_amount_paid = Column(Numeric(10, 2), nullable=False)
    payment_status = Column(
        _enum_type(PaymentStatus, "mega_offer_payment_status"),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    payment_reference = Column(String(120))
    shipping_status = Column(
        _enum_type(ShippingStatus, "mega_offer_shipping_status"),
        default=ShippingStatus.PROCESSING,
        nullable=False,
    )
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    festival = relationship("Festival", back_populates="orders")
    user = relationship("User")
    product = relationship("Product")
