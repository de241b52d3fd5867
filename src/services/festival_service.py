from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import bleach
from sqlalchemy.orm import Session, selectinload

from src.config import Config
from src.errors import NotFoundError, ValidationError
from src.models import (
    Festival,
    FestivalStatus,
    Participant,
    ParticipantStatus,
    PreBookingType,
    Tier,
    TierStatus,
)
from src.observability import increment_counter, record_event
from src.observability.business_metrics import compute_festival_statistics, count_entries_by_tier
from src.services.transactions import atomic
from src.timeutils import as_utc, parse_local_datetime, to_storage, utcnow

_FESTIVAL_REQUIRED = (
    "name",
    "start_time",
    "end_time",
    "pre_booking_start_time",
    "pre_booking_end_time",
    "pre_booking_amount",
)
_FESTIVAL_TIME_FIELDS = ("start_time", "end_time", "pre_booking_start_time", "pre_booking_end_time")
_TIER_REQUIRED = ("tier_name", "tier_order", "entry_fee", "discount_percent")


# ----------------------------------------------------------------------
# Tier status state machine
# ----------------------------------------------------------------------
def derive_tier_status(
    status: TierStatus | str,
    start_time: Optional[datetime],
    end_time: Optional[datetime],
    now: datetime,
) -> TierStatus:
    """
    Time-derived tier status.

    completed is terminal. A tier past its end time completes (even straight
    from pending); a pending tier whose start time has arrived activates
    unless it has already ended.
    """
    current = TierStatus(status)
    if current == TierStatus.COMPLETED:
        return current

    start = as_utc(start_time)
    end = as_utc(end_time)
    if end is not None and now > end:
        return TierStatus.COMPLETED
    if current == TierStatus.PENDING and start is not None and now >= start:
        if end is None or now < end:
            return TierStatus.ACTIVE
    return current


def refresh_tier_statuses(tiers: Iterable[Tier], now: datetime) -> List[Tier]:
    """Apply derive_tier_status to each tier; returns the tiers whose status changed."""
    changed: List[Tier] = []
    for tier in tiers:
        derived = derive_tier_status(tier.status, tier.start_time, tier.end_time, now)
        if derived != tier.status:
            tier.status = derived
            changed.append(tier)
    return changed


# ----------------------------------------------------------------------
# Input coercion
# ----------------------------------------------------------------------
def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return bleach.clean(str(value), tags=[], strip=True).strip()


def _parse_decimal(value: Any, field: str, minimum: Decimal = Decimal("0")) -> Decimal:
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number") from None
    if not amount.is_finite() or amount < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    return amount


def _parse_int(value: Any, field: str, minimum: Optional[int] = None) -> int:
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer") from None
    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    return number


def _parse_optional_int(value: Any, field: str, minimum: Optional[int] = None) -> Optional[int]:
    if value is None or value == "":
        return None
    return _parse_int(value, field, minimum)


def _parse_enum(enum_cls, value: Any, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {field}. Allowed values: {allowed}") from None


def _missing(fields: Mapping[str, Any], required: Tuple[str, ...]) -> List[str]:
    return [name for name in required if fields.get(name) in (None, "")]


class FestivalService:
    """Admin-authored festival configuration: festivals, their tiers, and tier status upkeep."""

    def __init__(self, db_session: Session, config: type[Config] = Config) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Festival registry
    # ------------------------------------------------------------------
    def create_festival(self, fields: Mapping[str, Any]) -> Festival:
        missing = _missing(fields, _FESTIVAL_REQUIRED)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        festival = Festival(status=FestivalStatus.SCHEDULED)
        self._apply_festival_fields(festival, fields)
        if not festival.name:
            raise ValidationError("name must not be empty")
        festival.pre_booking_type = festival.pre_booking_type or PreBookingType.FIXED

        with atomic(self.db, self.logger, "creating festival"):
            self.db.add(festival)

        self.logger.info("Festival %s created", festival.festivalID, extra={"festival_id": festival.festivalID})
        record_event("festival_created", {"festival_id": festival.festivalID, "name": festival.name})
        return festival

    def update_festival(self, festival_id: int, fields: Mapping[str, Any]) -> Festival:
        festival = self.get_festival(festival_id)
        with atomic(self.db, self.logger, "updating festival"):
            self._apply_festival_fields(festival, fields)
            if fields.get("status"):
                festival.status = _parse_enum(FestivalStatus, fields["status"], "status")

        self.logger.info("Festival %s updated", festival_id, extra={"festival_id": festival_id})
        return festival

    def set_festival_status(self, festival_id: int, status: str) -> Festival:
        new_status = _parse_enum(FestivalStatus, status, "status")
        festival = self.get_festival(festival_id)
        with atomic(self.db, self.logger, "updating festival status"):
            festival.status = new_status
        self.logger.info(
            "Festival %s status set to %s",
            festival_id,
            new_status.value,
            extra={"festival_id": festival_id},
        )
        return festival

    def delete_festival(self, festival_id: int) -> None:
        festival = self.get_festival(festival_id)
        with atomic(self.db, self.logger, "deleting festival"):
            self.db.delete(festival)
        self.logger.info("Festival %s deleted", festival_id, extra={"festival_id": festival_id})

    def get_festival(self, festival_id: int) -> Festival:
        festival = self.db.query(Festival).filter_by(festivalID=festival_id).first()
        if not festival:
            raise NotFoundError("Festival", festival_id)
        return festival

    def get_active_festivals(self, now: Optional[datetime] = None) -> List[Festival]:
        now = now or utcnow()
        return (
            self.db.query(Festival)
            .filter(
                Festival.status.in_([FestivalStatus.SCHEDULED, FestivalStatus.ACTIVE]),
                Festival.end_time > to_storage(now),
            )
            .order_by(Festival.start_time.asc())
            .all()
        )

    def get_festival_details(self, festival_id: int, now: Optional[datetime] = None) -> Festival:
        """Festival with tiers in tier_order; tier statuses are brought up to date first."""
        festival = (
            self.db.query(Festival)
            .options(selectinload(Festival.tiers))
            .filter_by(festivalID=festival_id)
            .first()
        )
        if not festival:
            raise NotFoundError("Festival", festival_id)

        with atomic(self.db, self.logger, "refreshing tier statuses"):
            changed = refresh_tier_statuses(festival.tiers, now or utcnow())
        if changed:
            for tier in changed:
                increment_counter("mega_offer_tier_transitions_total", labels={"status": tier.status.value})
            self.logger.info(
                "Refreshed %d tier status(es) for festival %s",
                len(changed),
                festival_id,
                extra={"festival_id": festival_id, "tier_ids": [tier.tierID for tier in changed]},
            )
        return festival

    def list_festivals_with_statistics(self) -> List[Dict[str, Any]]:
        festivals = (
            self.db.query(Festival)
            .options(selectinload(Festival.tiers))
            .order_by(Festival.created_at.desc(), Festival.festivalID.desc())
            .all()
        )
        overview = []
        for festival in festivals:
            stats = compute_festival_statistics(self.db, festival)
            entry_counts = count_entries_by_tier(self.db, [tier.tierID for tier in festival.tiers])
            overview.append({
                "festival": festival,
                "statistics": stats.as_dict(),
                "entry_counts": entry_counts,
            })
        return overview

    def sweep_tier_statuses(self, now: Optional[datetime] = None) -> int:
        """Refresh every open tier at once; reads refresh lazily even without this sweep."""
        with atomic(self.db, self.logger, "sweeping tier statuses"):
            tiers = self.db.query(Tier).filter(Tier.status != TierStatus.COMPLETED).all()
            changed = refresh_tier_statuses(tiers, now or utcnow())
        self.logger.info("Tier sweep changed %d tier(s)", len(changed))
        return len(changed)

    # ------------------------------------------------------------------
    # Tier ladder
    # ------------------------------------------------------------------
    def add_tier(self, festival_id: int, fields: Mapping[str, Any]) -> Tier:
        self.get_festival(festival_id)
        missing = _missing(fields, _TIER_REQUIRED)
        if missing:
            raise ValidationError(f"Missing required tier fields: {', '.join(missing)}")

        with atomic(self.db, self.logger, "adding tier"):
            tier = Tier(festivalID=festival_id, status=TierStatus.PENDING)
            self._apply_tier_fields(tier, fields)
            self.db.add(tier)

        self.logger.info(
            "Tier %s added to festival %s",
            tier.tierID,
            festival_id,
            extra={"festival_id": festival_id, "tier_id": tier.tierID},
        )
        return tier

    def update_tier(self, tier_id: int, fields: Mapping[str, Any]) -> Tier:
        tier = self.get_tier(tier_id)
        with atomic(self.db, self.logger, "updating tier"):
            self._apply_tier_fields(tier, fields)
        self.logger.info("Tier %s updated", tier_id, extra={"tier_id": tier_id})
        return tier

    def delete_tier(self, tier_id: int) -> None:
        tier = self.get_tier(tier_id)
        with atomic(self.db, self.logger, "deleting tier"):
            winners = (
                self.db.query(Participant)
                .filter(Participant.wonTierID == tier_id, Participant.status == ParticipantStatus.WON)
                .all()
            )
            for participant in winners:
                participant.revert_win()
            self.db.delete(tier)
        self.logger.info("Tier %s deleted", tier_id, extra={"tier_id": tier_id})

    def get_tier(self, tier_id: int) -> Tier:
        tier = self.db.query(Tier).filter_by(tierID=tier_id).first()
        if not tier:
            raise NotFoundError("Tier", tier_id)
        return tier

    # ------------------------------------------------------------------
    # Helper methods
    # ------------------------------------------------------------------
    def _apply_festival_fields(self, festival: Festival, fields: Mapping[str, Any]) -> None:
        if "name" in fields and fields["name"] is not None:
            festival.name = _clean_text(fields["name"])
        if "description" in fields:
            festival.description = _clean_text(fields["description"])
        for name in _FESTIVAL_TIME_FIELDS:
            if name in fields and fields[name] not in (None, ""):
                setattr(festival, name, parse_local_datetime(fields[name], name))
        if "pre_booking_amount" in fields and fields["pre_booking_amount"] not in (None, ""):
            festival.pre_booking_amount = _parse_decimal(fields["pre_booking_amount"], "pre_booking_amount")
        if fields.get("pre_booking_type"):
            festival.pre_booking_type = _parse_enum(PreBookingType, fields["pre_booking_type"], "pre_booking_type")

        if festival.start_time and festival.end_time and festival.start_time >= festival.end_time:
            raise ValidationError("start_time must be before end_time")
        if (
            festival.pre_booking_start_time
            and festival.pre_booking_end_time
            and festival.pre_booking_start_time > festival.pre_booking_end_time
        ):
            raise ValidationError("pre_booking_start_time must not be after pre_booking_end_time")
        if festival.pre_booking_type == PreBookingType.PERCENTAGE and festival.pre_booking_amount is not None:
            if Decimal(festival.pre_booking_amount) > 100:
                raise ValidationError("A percentage pre_booking_amount cannot exceed 100")

    def _apply_tier_fields(self, tier: Tier, fields: Mapping[str, Any]) -> None:
        if "tier_name" in fields and fields["tier_name"] not in (None, ""):
            tier.tier_name = _clean_text(fields["tier_name"])
        if "tier_order" in fields and fields["tier_order"] not in (None, ""):
            tier.tier_order = _parse_int(fields["tier_order"], "tier_order")
        if "entry_fee" in fields and fields["entry_fee"] not in (None, ""):
            tier.entry_fee = _parse_decimal(fields["entry_fee"], "entry_fee")
        if "discount_percent" in fields:
            tier.discount_percent = fields["discount_percent"]
        if "max_winners" in fields:
            tier.max_winners = _parse_optional_int(fields["max_winners"], "max_winners", minimum=1)
        if "start_time" in fields:
            tier.start_time = parse_local_datetime(fields["start_time"], "start_time")
        if "end_time" in fields:
            tier.end_time = parse_local_datetime(fields["end_time"], "end_time")
        if fields.get("status"):
            tier.status = _parse_enum(TierStatus, fields["status"], "status")

        if tier.start_time and tier.end_time and tier.start_time >= tier.end_time:
            raise ValidationError("Tier start_time must be before end_time")
