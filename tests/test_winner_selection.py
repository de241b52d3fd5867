import random
from collections import Counter

import pytest

from src.errors import NotFoundError, ValidationError
from src.models import Participant, ParticipantStatus, Tier, TierEntry, TierEntryStatus, TierStatus
from src.observability.metrics import get_counter_value
from src.services.winner_selection_service import (
    DrawResult,
    WinnerPolicy,
    WinnerSelectionService,
    partition_entries,
    resolve_winner_count,
)


@pytest.mark.parametrize(
    "requested, max_winners, entries, expected",
    [
        (None, None, 25, 3),   # ceil(25 * 0.1)
        (None, None, 1, 1),
        (None, 4, 25, 4),
        (2, 4, 25, 2),
        (None, 40, 25, 25),
        (0, 4, 25, 0),
        (None, None, 0, 0),
    ],
)
def test_user_policy_counts(requested, max_winners, entries, expected):
    assert resolve_winner_count(requested, max_winners, entries, WinnerPolicy.USER) == expected


@pytest.mark.parametrize(
    "requested, max_winners, entries, expected",
    [
        (None, None, 25, 8),   # ceil(25 * 0.3)
        (None, 0, 10, 3),
        (0, None, 10, 3),
        (0, 5, 10, 5),      # zero means unset, so max_winners applies
        (None, 5, 10, 5),
        (50, None, 10, 10),
        (7, 2, 10, 7),
    ],
)
def test_admin_policy_counts(requested, max_winners, entries, expected):
    assert resolve_winner_count(requested, max_winners, entries, WinnerPolicy.ADMIN) == expected


def test_partition_is_a_permutation_split():
    entries = list(range(10))
    winners, losers = partition_entries(entries, 3, rng=random.Random(7))

    assert len(winners) == 3
    assert sorted(winners + losers) == entries
    assert entries == list(range(10))


def test_partition_is_unbiased_across_positions():
    rng = random.Random(2024)
    first_place = Counter()
    for _ in range(6000):
        winners, _ = partition_entries(["a", "b", "c"], 1, rng=rng)
        first_place[winners[0]] += 1

    for name in ("a", "b", "c"):
        assert 1700 < first_place[name] < 2300


def _setup_tier(factory, entrants=5, **tier_kwargs):
    festival = factory.festival()
    tier = factory.tier(festival, **tier_kwargs)
    users = []
    for _ in range(entrants):
        user = factory.user()
        factory.participant(festival, user)
        factory.entry(tier, user)
        users.append(user)
    return festival, tier, users


def test_announce_marks_winners_losers_and_completes_tier(db_session, factory):
    festival, tier, users = _setup_tier(factory, entrants=5, max_winners=2)

    result = WinnerSelectionService(db_session).announce_winners(tier.tierID, rng=random.Random(1))

    assert result.winner_count == 2
    assert result.loser_count == 3
    db_session.expire_all()
    statuses = Counter(entry.status for entry in db_session.query(TierEntry).all())
    assert statuses == {TierEntryStatus.WON: 2, TierEntryStatus.LOST: 3}
    assert db_session.get(Tier, tier.tierID).status == TierStatus.COMPLETED

    winners = db_session.query(Participant).filter_by(status=ParticipantStatus.WON).all()
    assert sorted(p.userID for p in winners) == sorted(result.winner_user_ids)
    assert all(p.wonTierID == tier.tierID for p in winners)
    losers = db_session.query(Participant).filter_by(status=ParticipantStatus.REGISTERED).count()
    assert losers == 3
    assert get_counter_value("mega_offer_winners_total") == 2


def test_admin_call_site_uses_thirty_percent_fallback(db_session, factory):
    _, tier, _ = _setup_tier(factory, entrants=10)

    result = WinnerSelectionService(db_session).announce_winners(tier.tierID, policy=WinnerPolicy.ADMIN)

    assert result.winner_count == 3


def test_user_call_site_uses_ten_percent_fallback(db_session, factory):
    _, tier, _ = _setup_tier(factory, entrants=10)

    result = WinnerSelectionService(db_session).announce_winners(tier.tierID)

    assert result.winner_count == 1


def test_second_announcement_finds_nothing_to_draw(db_session, factory):
    _, tier, _ = _setup_tier(factory, entrants=3)
    service = WinnerSelectionService(db_session)
    service.announce_winners(tier.tierID, winner_count=1)

    with pytest.raises(ValidationError, match="No entries"):
        service.announce_winners(tier.tierID)

    db_session.expire_all()
    assert db_session.query(Participant).filter_by(status=ParticipantStatus.WON).count() == 1


def test_empty_tier_is_left_untouched(db_session, factory):
    tier = factory.tier(factory.festival(), status=TierStatus.ACTIVE)

    with pytest.raises(ValidationError):
        WinnerSelectionService(db_session).announce_winners(tier.tierID)
    db_session.expire_all()
    assert db_session.get(Tier, tier.tierID).status == TierStatus.ACTIVE


def test_announce_unknown_tier(db_session):
    with pytest.raises(NotFoundError):
        WinnerSelectionService(db_session).announce_winners(404)


def test_manual_override_and_undo(db_session, factory):
    festival, tier, users = _setup_tier(factory, entrants=1)
    other_tier = factory.tier(festival)
    entry = db_session.query(TierEntry).filter_by(tierID=tier.tierID).one()
    service = WinnerSelectionService(db_session)

    service.set_entry_status(tier.tierID, entry.entryID, "won")
    participant = db_session.query(Participant).filter_by(userID=users[0].userID).one()
    assert participant.status == ParticipantStatus.WON
    assert participant.wonTierID == tier.tierID

    service.set_entry_status(tier.tierID, entry.entryID, "lost")
    db_session.refresh(participant)
    assert participant.status == ParticipantStatus.REGISTERED
    assert participant.wonTierID is None

    # a win held in another tier is not undone by this tier's override
    participant.mark_won(other_tier.tierID)
    db_session.commit()
    service.set_entry_status(tier.tierID, entry.entryID, "entered")
    db_session.refresh(participant)
    assert participant.wonTierID == other_tier.tierID

    with pytest.raises(ValidationError):
        service.set_entry_status(tier.tierID, entry.entryID, "disqualified")
    with pytest.raises(NotFoundError):
        service.set_entry_status(other_tier.tierID, entry.entryID, "won")


def test_draw_result_payload():
    result = DrawResult(winner_count=2, loser_count=1, winner_user_ids=[4, 9])
    assert result.as_dict() == {"winnersCount": 2, "losersCount": 1, "winnerUserIds": [4, 9]}
