from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from src.config import Config
from src.errors import NotFoundError, ValidationError
from src.models import (
    Participant,
    Tier,
    TierEntry,
    TierEntryStatus,
    TierStatus,
)
from src.observability import increment_counter, record_event
from src.services.transactions import atomic


class WinnerPolicy(str, Enum):
    """Which fallback applies when neither a count nor tier.max_winners is given."""

    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class DrawResult:
    winner_count: int
    loser_count: int
    winner_user_ids: List[int] = field(default_factory=list)

    def as_dict(self):
        return {
            "winnersCount": self.winner_count,
            "losersCount": self.loser_count,
            "winnerUserIds": list(self.winner_user_ids),
        }


def _fallback_count(entry_count: int, ratio: float) -> int:
    # Decimal keeps 10 * 0.3 at exactly 3
    return math.ceil(Decimal(entry_count) * Decimal(str(ratio)))


def resolve_winner_count(
    requested: Optional[int],
    max_winners: Optional[int],
    entry_count: int,
    policy: WinnerPolicy = WinnerPolicy.USER,
    config: type[Config] = Config,
) -> int:
    """
    Number of winners to draw from ``entry_count`` entries.

    USER: the requested count, else max_winners, else ceil(entries * 10%).
    ADMIN: a zero or missing request counts as unset and max_winners is
    used; when that is unset too, ceil(entries * 30%). Anything above the
    entry count is clamped down to it.
    """
    if entry_count <= 0:
        return 0

    if policy == WinnerPolicy.ADMIN:
        count = requested or max_winners
        if not count:
            count = _fallback_count(entry_count, config.ADMIN_WINNER_FALLBACK_RATIO)
        return max(0, min(int(count), entry_count))

    count = requested if requested is not None else max_winners
    if count is None:
        count = _fallback_count(entry_count, config.USER_WINNER_FALLBACK_RATIO)
    return max(0, min(int(count), entry_count))


def partition_entries(
    entries: Sequence[TierEntry],
    count: int,
    rng: Optional[random.Random] = None,
) -> Tuple[List[TierEntry], List[TierEntry]]:
    """Uniformly shuffle the entries and split them into (winners, losers)."""
    shuffled = list(entries)
    (rng or random.SystemRandom()).shuffle(shuffled)
    count = max(0, min(count, len(shuffled)))
    return shuffled[:count], shuffled[count:]


class WinnerSelectionService:
    """Random winner draws per tier and manual per-entry overrides."""

    def __init__(self, db_session: Session, config: type[Config] = Config) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)

    def announce_winners(
        self,
        tier_id: int,
        winner_count: Optional[int] = None,
        policy: WinnerPolicy = WinnerPolicy.USER,
        rng: Optional[random.Random] = None,
    ) -> DrawResult:
        if winner_count is not None and winner_count < 0:
            raise ValidationError("winnerCount must not be negative")

        with atomic(self.db, self.logger, "announcing winners"):
            tier = self.db.query(Tier).filter_by(tierID=tier_id).with_for_update().first()
            if not tier:
                raise NotFoundError("Tier", tier_id)

            entries = (
                self.db.query(TierEntry)
                .filter(TierEntry.tierID == tier_id, TierEntry.status == TierEntryStatus.ENTERED)
                .order_by(TierEntry.entryID)
                .with_for_update()
                .all()
            )
            if not entries:
                raise ValidationError("No entries in this tier.")

            count = resolve_winner_count(winner_count, tier.max_winners, len(entries), policy, self.config)
            winners, losers = partition_entries(entries, count, rng)

            for entry in winners:
                entry.status = TierEntryStatus.WON
                self._mark_participant_won(tier, entry.userID)
            for entry in losers:
                entry.status = TierEntryStatus.LOST
            tier.status = TierStatus.COMPLETED

            result = DrawResult(
                winner_count=len(winners),
                loser_count=len(losers),
                winner_user_ids=[entry.userID for entry in winners],
            )

        increment_counter("mega_offer_winners_total", amount=result.winner_count, labels={"policy": policy.value})
        record_event(
            "winners_announced",
            {"tier_id": tier_id, "winners": result.winner_count, "losers": result.loser_count},
        )
        self.logger.info(
            "Announced %d winner(s) for tier %s",
            result.winner_count,
            tier_id,
            extra={"tier_id": tier_id, "winners": result.winner_count, "losers": result.loser_count},
        )
        return result

    def set_entry_status(self, tier_id: int, entry_id: int, status: str) -> TierEntry:
        """
        Manual override of one entry.

        won promotes the user's participation to won for this tier; lost or
        entered undoes a win only when it was this tier's.
        """
        try:
            new_status = TierEntryStatus(status)
        except ValueError:
            raise ValidationError("Invalid status") from None

        with atomic(self.db, self.logger, "updating entry status"):
            tier = self.db.query(Tier).filter_by(tierID=tier_id).first()
            if not tier:
                raise NotFoundError("Tier", tier_id)
            entry = self.db.query(TierEntry).filter_by(entryID=entry_id, tierID=tier_id).first()
            if not entry:
                raise NotFoundError("Entry", entry_id)

            entry.status = new_status
            if new_status == TierEntryStatus.WON:
                self._mark_participant_won(tier, entry.userID)
            else:
                participants = self._participants_for(tier.festivalID, entry.userID)
                for participant in participants:
                    if participant.wonTierID == tier.tierID:
                        participant.revert_win()

        self.logger.info(
            "Entry %s of tier %s set to %s",
            entry_id,
            tier_id,
            new_status.value,
            extra={"tier_id": tier_id, "entry_id": entry_id, "user_id": entry.userID},
        )
        return entry

    # ------------------------------------------------------------------
    # Helper methods
    # ------------------------------------------------------------------
    def _participants_for(self, festival_id: int, user_id: int) -> List[Participant]:
        return (
            self.db.query(Participant)
            .filter(Participant.festivalID == festival_id, Participant.userID == user_id)
            .all()
        )

    def _mark_participant_won(self, tier: Tier, user_id: int) -> None:
        participants = self._participants_for(tier.festivalID, user_id)
        if not participants:
            self.logger.warning(
                "Winner %s of tier %s has no participation row",
                user_id,
                tier.tierID,
                extra={"tier_id": tier.tierID, "user_id": user_id},
            )
        for participant in participants:
            participant.mark_won(tier.tierID)


__all__ = [
    "DrawResult",
    "WinnerPolicy",
    "WinnerSelectionService",
    "partition_entries",
    "resolve_winner_count",
]
