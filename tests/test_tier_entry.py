from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from src.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PaymentVerificationError,
    ValidationError,
)
from src.models import ParticipantStatus, TierEntry, TierEntryStatus, TierStatus
from src.observability.metrics import get_counter_value
from src.services.participation_service import ParticipationService
from src.services.winner_selection_service import WinnerSelectionService
from conftest import StubConfig, make_proof


@pytest.fixture
def service(db_session, payments):
    return ParticipationService(db_session, payment_service=payments, config=StubConfig)


@pytest.fixture
def festival(factory):
    return factory.festival()


def test_tier_join_order_requires_active_tier(service, payments, factory, festival):
    user = factory.user()
    active = factory.tier(festival, entry_fee="20")
    pending = factory.tier(festival, status=TierStatus.PENDING)

    result = service.create_tier_join_order(user.userID, active.tierID)

    assert result["amount"] == 20.0
    assert result["tierId"] == active.tierID
    assert payments.intents[0]["receipt"].startswith(f"tier_{active.tierID}_{user.userID}_")
    with pytest.raises(ValidationError, match="not active"):
        service.create_tier_join_order(user.userID, pending.tierID)
    with pytest.raises(NotFoundError):
        service.create_tier_join_order(user.userID, 9999)


def test_join_paid_tier_with_valid_proof(service, db_session, factory, festival):
    user = factory.user()
    tier = factory.tier(festival, entry_fee="20")
    participant = factory.participant(festival, user)

    entry = service.join_tier(user.userID, tier.tierID, make_proof(payment_reference="pay_tier"))

    assert entry.status == TierEntryStatus.ENTERED
    assert entry.entry_fee_paid == Decimal("20.00")
    assert entry.payment_reference == "pay_tier"
    db_session.refresh(participant)
    assert participant.status == ParticipantStatus.REGISTERED
    assert get_counter_value("mega_offer_tier_entries_total") == 1


def test_free_tier_needs_no_proof(service, factory, festival):
    user = factory.user()
    tier = factory.tier(festival, entry_fee="0")
    factory.participant(festival, user)

    entry = service.join_tier(user.userID, tier.tierID)

    assert entry.entry_fee_paid == Decimal("0.00")
    assert entry.payment_reference is None


def test_join_requires_pre_booking(service, factory, festival):
    user = factory.user()
    tier = factory.tier(festival, entry_fee="0")

    with pytest.raises(AuthorizationError, match="must pre-book"):
        service.join_tier(user.userID, tier.tierID)


def test_winner_cannot_join_more_tiers(service, factory, festival):
    user = factory.user()
    tier = factory.tier(festival, entry_fee="0")
    factory.participant(festival, user, status=ParticipantStatus.WON)

    with pytest.raises(AuthorizationError, match="already won"):
        service.join_tier(user.userID, tier.tierID)


def test_paid_tier_rejects_missing_or_forged_proof(service, db_session, factory, festival):
    user = factory.user()
    tier = factory.tier(festival, entry_fee="20")
    factory.participant(festival, user)

    with pytest.raises(ValidationError, match="Payment required"):
        service.join_tier(user.userID, tier.tierID)
    with pytest.raises(PaymentVerificationError):
        service.join_tier(user.userID, tier.tierID, make_proof(signature="forged"))
    assert db_session.query(TierEntry).count() == 0


def test_one_entry_per_tier(service, db_session, factory, festival):
    user = factory.user()
    tier = factory.tier(festival, entry_fee="0")
    factory.participant(festival, user)

    service.join_tier(user.userID, tier.tierID)
    with pytest.raises(ConflictError, match="already joined"):
        service.join_tier(user.userID, tier.tierID)
    assert db_session.query(TierEntry).count() == 1


def test_unknown_tier(service, factory):
    with pytest.raises(NotFoundError):
        service.join_tier(factory.user().userID, 9999)


def test_admin_entry_listings(service, factory, festival):
    first, second = factory.user(), factory.user()
    tier = factory.tier(festival)
    other_tier = factory.tier(factory.festival())
    factory.entry(tier, first, status=TierEntryStatus.WON)
    factory.entry(tier, second, status=TierEntryStatus.LOST)
    factory.entry(other_tier, first)

    assert len(service.list_entries()) == 3
    assert len(service.list_entries(festival_id=festival.festivalID)) == 2
    assert len(service.list_entries(tier_id=other_tier.tierID, status="entered")) == 1
    with pytest.raises(ValidationError):
        service.list_entries(status="disqualified")

    view = service.get_tier_entries(tier.tierID)
    assert view["stats"] == {"total_entries": 2, "winners": 1, "losers": 1, "pending": 0}


def test_completed_tier_takes_no_late_entries(service, db_session, factory, festival):
    early, late = factory.user(), factory.user()
    tier = factory.tier(festival, entry_fee="20", max_winners=1)
    factory.participant(festival, early)
    factory.participant(festival, late)
    service.join_tier(early.userID, tier.tierID, make_proof(payment_reference="pay_early"))
    WinnerSelectionService(db_session).announce_winners(tier.tierID)

    with pytest.raises(ValidationError, match="not active"):
        service.join_tier(late.userID, tier.tierID, make_proof(payment_reference="pay_late"))
    with pytest.raises(ValidationError, match="No entries"):
        WinnerSelectionService(db_session).announce_winners(tier.tierID)

    db_session.expire_all()
    assert db_session.query(TierEntry).count() == 1
    assert db_session.query(TierEntry).filter_by(status=TierEntryStatus.WON).count() == 1


def test_tier_past_its_end_time_is_closed_before_any_refresh(service, factory, festival):
    user = factory.user()
    factory.participant(festival, user)
    ended = (datetime.now(timezone.utc) - timedelta(minutes=1)).replace(tzinfo=None)
    tier = factory.tier(festival, entry_fee="0", status=TierStatus.ACTIVE, end_time=ended)

    with pytest.raises(ValidationError, match="not active"):
        service.create_tier_join_order(user.userID, tier.tierID)
    with pytest.raises(ValidationError, match="not active"):
        service.join_tier(user.userID, tier.tierID)
