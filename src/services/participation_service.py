from __future__ import annotations

import logging
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session, joinedload

from src.config import Config
from src.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from src.models import (
    Festival,
    MegaOfferOrder,
    Participant,
    ParticipantStatus,
    PaymentStatus,
    PreBookingType,
    Tier,
    TierEntry,
    TierEntryStatus,
    TierStatus,
)
from src.observability import increment_counter, record_event
from src.observability.business_metrics import summarize_entries
from src.services.catalog_service import CatalogService
from src.services.festival_service import derive_tier_status
from src.services.payment_service import PaymentProof, PaymentService
from src.services.settlement import to_money
from src.services.subscription_service import SubscriptionService
from src.services.transactions import atomic
from src.timeutils import utcnow


def _receipt(prefix: str, *parts: Any) -> str:
    return "_".join([prefix, *(str(part) for part in parts), str(int(time.time() * 1000))])


class ParticipationService:
    """
    User-facing festival flows: pre-booking, joining tiers and claiming the
    mystery gift, plus the read models for a user's participation.
    """

    def __init__(
        self,
        db_session: Session,
        payment_service: Optional[PaymentService] = None,
        subscription_service: Optional[SubscriptionService] = None,
        catalog_service: Optional[CatalogService] = None,
        config: type[Config] = Config,
    ) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.payment_service = payment_service or PaymentService(config=config)
        self.subscription_service = subscription_service or SubscriptionService(db_session)
        self.catalog_service = catalog_service or CatalogService(db_session)

    # ------------------------------------------------------------------
    # Pre-booking
    # ------------------------------------------------------------------
    def compute_pre_booking_amount(self, festival: Festival, product_id: Optional[int]) -> Decimal:
        """Fixed festivals charge pre_booking_amount; percentage festivals charge a share of the product price."""
        if festival.pre_booking_type == PreBookingType.PERCENTAGE:
            if not product_id:
                raise ValidationError("Product ID required")
            price = self.catalog_service.get_cheapest_variant_price(product_id)
            if price is None:
                raise ValidationError("Product has no price/variants available for calculation.")
            return to_money(price * Decimal(festival.pre_booking_amount) / Decimal(100))

        if product_id:
            # Fixed pre-bookings may name a product, but it has to exist
            self.catalog_service.get_product(product_id)
        return to_money(festival.pre_booking_amount)

    def create_pre_booking_order(
        self,
        user_id: int,
        festival_id: int,
        product_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        now = now or utcnow()
        if not self.subscription_service.has_active_subscription(user_id, now):
            raise AuthorizationError("Only Prime members can pre-book.")

        festival = self._get_festival(festival_id)
        if not festival.is_pre_booking_open(now):
            raise ValidationError("Pre-booking is not active.")

        amount = self.compute_pre_booking_amount(festival, product_id)
        order = self.payment_service.create_payment_intent(
            amount,
            receipt=_receipt("prebook", festival_id, user_id),
        )
        return {"order": order, "key": self.payment_service.key_id, "amount": float(amount)}

    def pre_book(
        self,
        user_id: int,
        festival_id: int,
        proof: Optional[PaymentProof],
        product_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Participant:
        now = now or utcnow()
        with atomic(self.db, self.logger, "pre-booking", conflict_message="Already pre-booked for this item."):
            proof = self.payment_service.require_valid_proof(proof)

            if not self.subscription_service.has_active_subscription(user_id, now):
                raise AuthorizationError("Membership expired")

            festival = self._get_festival(festival_id)

            existing = (
                self.db.query(Participant.participantID)
                .filter(
                    Participant.festivalID == festival_id,
                    Participant.userID == user_id,
                    Participant.productID.is_(None) if product_id is None else Participant.productID == product_id,
                )
                .first()
            )
            if existing:
                raise ConflictError("Already pre-booked for this item.")

            amount = self.compute_pre_booking_amount(festival, product_id)
            participant = Participant(
                festivalID=festival_id,
                userID=user_id,
                productID=product_id,
                has_pre_booked=True,
                pre_booking_amount_paid=amount,
                status=ParticipantStatus.REGISTERED,
                payment_reference=proof.payment_reference,
            )
            self.db.add(participant)

        increment_counter("mega_offer_prebookings_total")
        record_event(
            "prebooking_confirmed",
            {"festival_id": festival_id, "user_id": user_id, "amount": float(amount)},
        )
        self.logger.info(
            "User %s pre-booked festival %s",
            user_id,
            festival_id,
            extra={"festival_id": festival_id, "user_id": user_id, "product_id": product_id, "amount": float(amount)},
        )
        return participant

    # ------------------------------------------------------------------
    # Tier entries
    # ------------------------------------------------------------------
    def create_tier_join_order(self, user_id: int, tier_id: int) -> Dict[str, Any]:
        tier = self._get_tier(tier_id)
        if derive_tier_status(tier.status, tier.start_time, tier.end_time, utcnow()) != TierStatus.ACTIVE:
            raise ValidationError("Tier is not active")

        amount = to_money(tier.entry_fee)
        order = self.payment_service.create_payment_intent(
            amount,
            receipt=_receipt("tier", tier_id, user_id),
        )
        return {"order": order, "key": self.payment_service.key_id, "amount": float(amount), "tierId": tier_id}

    def join_tier(self, user_id: int, tier_id: int, proof: Optional[PaymentProof] = None) -> TierEntry:
        with atomic(self.db, self.logger, "joining tier", conflict_message="You have already joined this tier."):
            tier = self._get_tier(tier_id)
            # Completed tiers are closed to new entries even before a read has refreshed them
            if derive_tier_status(tier.status, tier.start_time, tier.end_time, utcnow()) == TierStatus.COMPLETED:
                raise ValidationError("Tier is not active")

            participants = (
                self.db.query(Participant)
                .filter(
                    Participant.festivalID == tier.festivalID,
                    Participant.userID == user_id,
                    Participant.has_pre_booked.is_(True),
                )
                .all()
            )
            if not participants:
                raise AuthorizationError("You must pre-book to join tiers.")
            if any(participant.status == ParticipantStatus.WON for participant in participants):
                raise AuthorizationError("You have already won a tier! You cannot join more tiers.")

            # Fee-free tiers skip proof verification entirely
            if tier.requires_payment:
                if proof is None:
                    raise ValidationError("Payment required for this tier.")
                self.payment_service.require_valid_proof(proof)

            existing = (
                self.db.query(TierEntry.entryID)
                .filter(TierEntry.tierID == tier_id, TierEntry.userID == user_id)
                .first()
            )
            if existing:
                raise ConflictError("You have already joined this tier.")

            entry = TierEntry(
                tierID=tier_id,
                userID=user_id,
                entry_fee_paid=to_money(tier.entry_fee),
                status=TierEntryStatus.ENTERED,
                payment_reference=proof.payment_reference if proof and tier.requires_payment else None,
            )
            self.db.add(entry)

        increment_counter("mega_offer_tier_entries_total")
        self.logger.info(
            "User %s joined tier %s",
            user_id,
            tier_id,
            extra={"tier_id": tier_id, "user_id": user_id},
        )
        return entry

    # ------------------------------------------------------------------
    # Mystery gift
    # ------------------------------------------------------------------
    def claim_mystery_gift(self, user_id: int, festival_id: int) -> Participant:
        """
        Guards run in order and the first failure is reported; nothing is
        written until every guard has passed.
        """
        participant = self._find_participant(user_id, festival_id)
        if not participant:
            raise NotFoundError("Participation")

        if self.has_paid_order(user_id, festival_id):
            raise ConflictError("You have already placed an order for this offer.")

        if participant.status == ParticipantStatus.WON:
            raise ValidationError("You won a tier! No mystery gift for you.")

        if not participant.mystery_gift_claimed and self._count_festival_entries(user_id, festival_id) == 0:
            raise ValidationError("You must participate in at least one tier to be eligible.")

        if not self._get_festival(festival_id).all_tiers_completed():
            raise ValidationError("Wait for all tiers to finish.")

        if participant.mystery_gift_claimed:
            raise ConflictError("Already claimed.")

        with atomic(self.db, self.logger, "claiming mystery gift"):
            participant.mystery_gift_claimed = True

        increment_counter("mega_offer_mystery_gifts_total", labels={"source": "claim"})
        self.logger.info(
            "User %s claimed mystery gift for festival %s",
            user_id,
            festival_id,
            extra={"festival_id": festival_id, "user_id": user_id},
        )
        return participant

    def award_mystery_gift(self, participant_id: int) -> Participant:
        participant = self.db.query(Participant).filter_by(participantID=participant_id).first()
        if not participant:
            raise NotFoundError("Participant", participant_id)
        with atomic(self.db, self.logger, "awarding mystery gift"):
            participant.mystery_gift_claimed = True
        increment_counter("mega_offer_mystery_gifts_total", labels={"source": "admin"})
        self.logger.info(
            "Mystery gift awarded to participant %s",
            participant_id,
            extra={"festival_id": participant.festivalID, "user_id": participant.userID},
        )
        return participant

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------
    def get_participation(self, user_id: int, festival_id: int) -> Optional[Dict[str, Any]]:
        participant = (
            self.db.query(Participant)
            .options(joinedload(Participant.product))
            .filter(Participant.festivalID == festival_id, Participant.userID == user_id)
            .order_by(Participant.participantID)
            .first()
        )
        if not participant:
            return None

        entries = (
            self.db.query(TierEntry)
            .join(Tier, TierEntry.tierID == Tier.tierID)
            .filter(Tier.festivalID == festival_id, TierEntry.userID == user_id)
            .order_by(Tier.tier_order)
            .all()
        )
        orders = (
            self.db.query(MegaOfferOrder)
            .filter(
                MegaOfferOrder.userID == user_id,
                MegaOfferOrder.festivalID == festival_id,
                MegaOfferOrder.payment_status == PaymentStatus.PAID,
            )
            .all()
        )
        return {"participant": participant, "tier_entries": entries, "orders": orders}

    def get_my_participations(self, user_id: int) -> List[int]:
        rows = (
            self.db.query(Participant.festivalID)
            .filter(Participant.userID == user_id, Participant.has_pre_booked.is_(True))
            .distinct()
            .all()
        )
        return [row[0] for row in rows]

    def list_pre_bookings(self, festival_id: Optional[int] = None) -> List[Participant]:
        query = self.db.query(Participant).filter(Participant.has_pre_booked.is_(True))
        if festival_id:
            query = query.filter(Participant.festivalID == festival_id)
        return query.order_by(Participant.created_at.desc(), Participant.participantID.desc()).all()

    def list_entries(
        self,
        festival_id: Optional[int] = None,
        tier_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> List[TierEntry]:
        query = self.db.query(TierEntry).join(Tier, TierEntry.tierID == Tier.tierID)
        if status:
            try:
                query = query.filter(TierEntry.status == TierEntryStatus(status))
            except ValueError:
                raise ValidationError("Invalid status") from None
        if tier_id:
            query = query.filter(TierEntry.tierID == tier_id)
        if festival_id:
            query = query.filter(Tier.festivalID == festival_id)
        return query.order_by(TierEntry.created_at.desc(), TierEntry.entryID.desc()).all()

    def get_tier_entries(self, tier_id: int) -> Dict[str, Any]:
        """Admin view of one tier: its entries (newest first) and the won/lost/pending tallies."""
        tier = self._get_tier(tier_id)
        entries = (
            self.db.query(TierEntry)
            .options(joinedload(TierEntry.user))
            .filter(TierEntry.tierID == tier_id)
            .order_by(TierEntry.created_at.desc(), TierEntry.entryID.desc())
            .all()
        )
        return {"tier": tier, "entries": entries, "stats": summarize_entries(entries)}

    def has_paid_order(self, user_id: int, festival_id: int) -> bool:
        return (
            self.db.query(MegaOfferOrder.orderID)
            .filter(
                MegaOfferOrder.userID == user_id,
                MegaOfferOrder.festivalID == festival_id,
                MegaOfferOrder.payment_status == PaymentStatus.PAID,
            )
            .first()
            is not None
        )

    # ------------------------------------------------------------------
    # Helper methods
    # ------------------------------------------------------------------
    def _get_festival(self, festival_id: int) -> Festival:
        festival = self.db.query(Festival).filter_by(festivalID=festival_id).first()
        if not festival:
            raise NotFoundError("Festival", festival_id)
        return festival

    def _get_tier(self, tier_id: int) -> Tier:
        tier = self.db.query(Tier).filter_by(tierID=tier_id).first()
        if not tier:
            raise NotFoundError("Tier", tier_id)
        return tier

    def _find_participant(self, user_id: int, festival_id: int) -> Optional[Participant]:
        return (
            self.db.query(Participant)
            .filter(Participant.festivalID == festival_id, Participant.userID == user_id)
            .order_by(Participant.participantID)
            .first()
        )

    def _count_festival_entries(self, user_id: int, festival_id: int) -> int:
        return (
            self.db.query(TierEntry)
            .join(Tier, TierEntry.tierID == Tier.tierID)
            .filter(Tier.festivalID == festival_id, TierEntry.userID == user_id)
            .count()
        )
