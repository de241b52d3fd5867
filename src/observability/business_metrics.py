from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from src.models import (
    Festival,
    MegaOfferOrder,
    Participant,
    ParticipantStatus,
    PaymentStatus,
    TierEntry,
    TierEntryStatus,
)


@dataclass(frozen=True)
class FestivalStatistics:
    festival_id: int
    total_participants: int
    total_tiers: int
    total_winners: int
    total_paid_orders: int

    def as_dict(self) -> Dict[str, int]:
        return {
            "total_participants": self.total_participants,
            "total_tiers": self.total_tiers,
            "total_winners": self.total_winners,
            "total_paid_orders": self.total_paid_orders,
        }


def compute_festival_statistics(session: Session, festival: Festival) -> FestivalStatistics:
    """Participant, tier, winner and paid-order counts for one festival."""
    participants = (
        session.query(func.count(Participant.participantID))
        .filter(Participant.festivalID == festival.festivalID)
        .scalar()
    )
    winners = (
        session.query(func.count(Participant.participantID))
        .filter(
            Participant.festivalID == festival.festivalID,
            Participant.status == ParticipantStatus.WON,
        )
        .scalar()
    )
    paid_orders = (
        session.query(func.count(MegaOfferOrder.orderID))
        .filter(
            MegaOfferOrder.festivalID == festival.festivalID,
            MegaOfferOrder.payment_status == PaymentStatus.PAID,
        )
        .scalar()
    )
    return FestivalStatistics(
        festival_id=festival.festivalID,
        total_participants=participants or 0,
        total_tiers=len(festival.tiers),
        total_winners=winners or 0,
        total_paid_orders=paid_orders or 0,
    )


def summarize_entries(entries: Iterable[TierEntry]) -> Dict[str, int]:
    """Aggregate counts shown next to a tier's entry list."""
    entries = list(entries)
    return {
        "total_entries": len(entries),
        "winners": sum(1 for entry in entries if entry.status == TierEntryStatus.WON),
        "losers": sum(1 for entry in entries if entry.status == TierEntryStatus.LOST),
        "pending": sum(1 for entry in entries if entry.status == TierEntryStatus.ENTERED),
    }


def count_entries_by_tier(session: Session, tier_ids: List[int]) -> Dict[int, int]:
    if not tier_ids:
        return {}
    rows = (
        session.query(TierEntry.tierID, func.count(TierEntry.entryID))
        .filter(TierEntry.tierID.in_(tier_ids))
        .group_by(TierEntry.tierID)
        .all()
    )
    counts = {tier_id: 0 for tier_id in tier_ids}
    counts.update({tier_id: count for tier_id, count in rows})
    return counts


__all__ = [
    "FestivalStatistics",
    "compute_festival_statistics",
    "summarize_entries",
    "count_entries_by_tier",
]
