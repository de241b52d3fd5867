# tests/conftest.py
"""
Pytest configuration and fixtures for the festival engine.

Service tests run against a private in-memory SQLite engine per test; API
tests go through the Flask app, whose engine points at a throwaway SQLite
file configured below before anything under src is imported.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

_TEST_DB_DIR = tempfile.mkdtemp(prefix="mega_offer_tests_")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TEST_DB_DIR, 'app.db')}")
os.environ.setdefault("STRUCTURED_LOGS_ENABLED", "false")
os.environ.setdefault("PAYMENT_KEY_SECRET", "test_secret")
os.environ.setdefault("PAYMENT_KEY_ID", "rzp_test_key")
os.environ.setdefault("SUPER_ADMIN_TOKEN", "test-admin-token")

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.config import Config
from src.database import Base
from src.models import (
    Festival,
    FestivalStatus,
    Participant,
    ParticipantStatus,
    PreBookingType,
    Product,
    ProductVariant,
    Subscription,
    SubscriptionStatus,
    Tier,
    TierEntry,
    TierEntryStatus,
    TierStatus,
    User,
)
from src.errors import PaymentGatewayError
from src.observability.metrics import reset_metrics
from src.services.payment_service import PaymentProof, PaymentService, compute_signature


class StubConfig(Config):
    PAYMENT_KEY_ID = "rzp_test_key"
    PAYMENT_KEY_SECRET = "test_secret"
    ADMIN_ORDERS_PAGE_SIZE = 2


class StubPaymentService(PaymentService):
    """Records payment intents instead of calling the gateway; signatures verify for real."""

    def __init__(self, config=StubConfig, fail=False):
        super().__init__(config=config)
        self.fail = fail
        self.intents = []

    def create_payment_intent(self, amount, receipt, currency=None):
        if self.fail:
            raise PaymentGatewayError("Failed to create payment order")
        order = {
            "id": f"order_{len(self.intents) + 1}",
            "amount": int(Decimal(str(amount)) * 100),
            "currency": currency or self.config.PAYMENT_CURRENCY,
            "receipt": receipt,
        }
        self.intents.append(order)
        return order


def make_proof(order_reference="order_1", payment_reference="pay_1", secret="test_secret", signature=None):
    return PaymentProof(
        order_reference=order_reference,
        payment_reference=payment_reference,
        signature=signature or compute_signature(order_reference, payment_reference, secret),
    )


def naive_utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class Factory:
    """Builds committed festival fixtures with sensible defaults."""

    def __init__(self, session):
        self.session = session
        self._counter = 0

    def _next(self):
        self._counter += 1
        return self._counter

    def _save(self, obj):
        self.session.add(obj)
        self.session.commit()
        return obj

    def user(self, role="customer", subscribed=True):
        n = self._next()
        user = self._save(User(username=f"test_user_{n}", email=f"user{n}@example.com", role=role))
        if subscribed:
            self.subscription(user)
        return user

    def subscription(self, user, status=SubscriptionStatus.ACTIVE, days_left=30):
        now = datetime.now(timezone.utc)
        return self._save(
            Subscription(
                userID=user.userID,
                start_date=naive_utc(now - timedelta(days=1)),
                end_date=naive_utc(now + timedelta(days=days_left)),
                status=status,
            )
        )

    def product(self, *prices):
        n = self._next()
        product = Product(name=f"Product {n}", description="Festival item")
        for index, price in enumerate(prices or ("500.00",)):
            product.variants.append(
                ProductVariant(sku=f"SKU-{n}-{index}", price=Decimal(str(price)), stock_quantity=10)
            )
        return self._save(product)

    def festival(
        self,
        pre_booking_amount="50.00",
        pre_booking_type=PreBookingType.FIXED,
        pre_booking_open=True,
        status=FestivalStatus.ACTIVE,
    ):
        now = datetime.now(timezone.utc)
        if pre_booking_open:
            window = (now - timedelta(days=1), now + timedelta(days=1))
        else:
            window = (now - timedelta(days=3), now - timedelta(days=2))
        return self._save(
            Festival(
                name=f"Festival {self._next()}",
                description="Big sale",
                start_time=naive_utc(now - timedelta(hours=1)),
                end_time=naive_utc(now + timedelta(days=5)),
                pre_booking_start_time=naive_utc(window[0]),
                pre_booking_end_time=naive_utc(window[1]),
                pre_booking_amount=Decimal(str(pre_booking_amount)),
                pre_booking_type=pre_booking_type,
                status=status,
            )
        )

    def tier(
        self,
        festival,
        entry_fee="20.00",
        discount_percent=10,
        status=TierStatus.ACTIVE,
        max_winners=None,
        tier_order=None,
        start_time=None,
        end_time=None,
    ):
        n = self._next()
        return self._save(
            Tier(
                festivalID=festival.festivalID,
                tier_name=f"Tier {n}",
                tier_order=tier_order if tier_order is not None else n,
                entry_fee=Decimal(str(entry_fee)),
                discount_percent=discount_percent,
                max_winners=max_winners,
                status=status,
                start_time=start_time,
                end_time=end_time,
            )
        )

    def participant(self, festival, user, product=None, amount="50.00", status=ParticipantStatus.REGISTERED):
        return self._save(
            Participant(
                festivalID=festival.festivalID,
                userID=user.userID,
                productID=product.productID if product else None,
                has_pre_booked=True,
                pre_booking_amount_paid=Decimal(str(amount)),
                status=status,
            )
        )

    def entry(self, tier, user, status=TierEntryStatus.ENTERED):
        return self._save(
            TierEntry(
                tierID=tier.tierID,
                userID=user.userID,
                entry_fee_paid=tier.entry_fee,
                status=status,
            )
        )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def db_session(engine):
    """Create a fresh database session for each test"""
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def factory(db_session):
    return Factory(db_session)


@pytest.fixture
def payments():
    return StubPaymentService()


@pytest.fixture(autouse=True)
def clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def proof():
    return make_proof
