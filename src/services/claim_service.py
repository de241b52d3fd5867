from __future__ import annotations

import logging
import time
from typing import Any, Dict, Mapping, Optional, Tuple

import bleach
from sqlalchemy.orm import Session, joinedload

from src.config import Config
from src.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from src.models import (
    MegaOfferOrder,
    OrderType,
    Participant,
    ParticipantStatus,
    PaymentStatus,
    ShippingStatus,
    Tier,
    User,
)
from src.observability import increment_counter, record_event
from src.services.catalog_service import CatalogService
from src.services.payment_service import PaymentProof, PaymentService
from src.services.settlement import Settlement, settlement_for_participant
from src.services.transactions import atomic


class ClaimService:
    """
    Final sale for festival winners and mystery-gift holders.

    The remaining balance is always computed here from stored figures; the
    client never tells us how much it owes.
    """

    def __init__(
        self,
        db_session: Session,
        payment_service: Optional[PaymentService] = None,
        catalog_service: Optional[CatalogService] = None,
        config: type[Config] = Config,
    ) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.payment_service = payment_service or PaymentService(config=config)
        self.catalog_service = catalog_service or CatalogService(db_session)

    # ------------------------------------------------------------------
    # Pay remaining
    # ------------------------------------------------------------------
    def quote(self, user_id: int, festival_id: int, product_id: Optional[int] = None) -> Tuple[Participant, int, Settlement]:
        """Eligible participation, the product being bought and its settlement."""
        participant = self._eligible_participant(user_id, festival_id)
        resolved_product_id = participant.productID or product_id
        if not resolved_product_id:
            raise ValidationError("Product ID required")

        price = self.catalog_service.get_cheapest_variant_price(resolved_product_id)
        if price is None:
            raise ValidationError("Product has no price/variants available for calculation.")

        tiers = self.db.query(Tier).filter(Tier.festivalID == festival_id).all()
        return participant, resolved_product_id, settlement_for_participant(participant, tiers, price)

    def create_pay_remaining_order(
        self,
        user_id: int,
        festival_id: int,
        product_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        if self._has_paid_order(user_id, festival_id):
            raise ConflictError("Order already placed for this offer.")

        _, _, settlement = self.quote(user_id, festival_id, product_id)
        if not settlement.requires_payment:
            return {"amount": 0, "message": "No payment needed", "details": settlement.as_dict()}

        order = self.payment_service.create_payment_intent(
            settlement.remaining_amount,
            receipt="claim_{}_{}_{}".format(festival_id, user_id, int(time.time() * 1000)),
        )
        return {
            "order": order,
            "key": self.payment_service.key_id,
            "amount": float(settlement.remaining_amount),
            "details": settlement.as_dict(),
        }

    def confirm_pay_remaining(
        self,
        user_id: int,
        festival_id: int,
        proof: Optional[PaymentProof] = None,
        phone_number: Optional[str] = None,
        product_id: Optional[int] = None,
    ) -> MegaOfferOrder:
        with atomic(self.db, self.logger, "confirming festival order", conflict_message="Order already placed for this offer."):
            if self._has_paid_order(user_id, festival_id):
                raise ConflictError("Order already placed for this offer.")

            participant, resolved_product_id, settlement = self.quote(user_id, festival_id, product_id)
            if settlement.requires_payment:
                proof = self.payment_service.require_valid_proof(proof)

            if phone_number:
                user = self.db.query(User).filter_by(userID=user_id).first()
                if user:
                    user.phone_number = bleach.clean(str(phone_number), tags=[], strip=True).strip()[:20]

            order = MegaOfferOrder(
                userID=user_id,
                festivalID=festival_id,
                productID=resolved_product_id,
                order_type=(
                    OrderType.WIN_CLAIM
                    if participant.status == ParticipantStatus.WON
                    else OrderType.MYSTERY_GIFT
                ),
                original_price=settlement.original_price,
                pre_booking_amount=settlement.pre_booking_amount,
                discount_amount=settlement.discount_amount,
                final_amount_paid=settlement.remaining_amount,
                payment_status=PaymentStatus.PAID,
                shipping_status=ShippingStatus.PROCESSING,
                payment_reference=proof.payment_reference if proof and settlement.requires_payment else None,
            )
            self.db.add(order)

        increment_counter("mega_offer_orders_total", labels={"order_type": order.order_type.value})
        record_event(
            "sale_order_created",
            {
                "order_id": order.orderID,
                "festival_id": festival_id,
                "user_id": user_id,
                "amount": float(order.final_amount_paid),
            },
        )
        self.logger.info(
            "Festival order %s placed by user %s",
            order.orderID,
            user_id,
            extra={
                "order_id": order.orderID,
                "festival_id": festival_id,
                "user_id": user_id,
                "amount": float(order.final_amount_paid),
            },
        )
        return order

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------
    def list_orders(self, filters: Optional[Mapping[str, Any]] = None, page: int = 1) -> Dict[str, Any]:
        filters = filters or {}
        query = self.db.query(MegaOfferOrder).options(
            joinedload(MegaOfferOrder.user),
            joinedload(MegaOfferOrder.product),
            joinedload(MegaOfferOrder.festival),
        )
        if filters.get("festival_id"):
            try:
                festival_id = int(filters["festival_id"])
            except (TypeError, ValueError):
                raise ValidationError("Invalid festival_id") from None
            query = query.filter(MegaOfferOrder.festivalID == festival_id)
        if filters.get("order_type"):
            query = query.filter(MegaOfferOrder.order_type == self._parse(OrderType, filters["order_type"], "order_type"))
        if filters.get("payment_status"):
            query = query.filter(
                MegaOfferOrder.payment_status == self._parse(PaymentStatus, filters["payment_status"], "payment_status")
            )
        if filters.get("shipping_status"):
            query = query.filter(
                MegaOfferOrder.shipping_status == self._parse(ShippingStatus, filters["shipping_status"], "shipping_status")
            )

        page = max(1, page or 1)
        page_size = self.config.ADMIN_ORDERS_PAGE_SIZE
        total = query.count()
        orders = (
            query.order_by(MegaOfferOrder.created_at.desc(), MegaOfferOrder.orderID.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return {
            "orders": orders,
            "page": page,
            "page_size": page_size,
            "total": total,
            "total_pages": (total + page_size - 1) // page_size,
        }

    def update_order_status(
        self,
        order_id: int,
        shipping_status: Optional[str] = None,
        payment_status: Optional[str] = None,
    ) -> MegaOfferOrder:
        if not shipping_status and not payment_status:
            raise ValidationError("Nothing to update")

        with atomic(self.db, self.logger, "updating festival order", conflict_message="Order already placed for this offer."):
            order = self.db.query(MegaOfferOrder).filter_by(orderID=order_id).first()
            if not order:
                raise NotFoundError("Order", order_id)
            if shipping_status:
                order.shipping_status = self._parse(ShippingStatus, shipping_status, "shipping_status")
            if payment_status:
                order.payment_status = self._parse(PaymentStatus, payment_status, "payment_status")

        self.logger.info(
            "Festival order %s updated",
            order_id,
            extra={
                "order_id": order_id,
                "shipping_status": order.shipping_status.value,
                "payment_status": order.payment_status.value,
            },
        )
        return order

    # ------------------------------------------------------------------
    # Helper methods
    # ------------------------------------------------------------------
    def _eligible_participant(self, user_id: int, festival_id: int) -> Participant:
        participants = (
            self.db.query(Participant)
            .filter(Participant.festivalID == festival_id, Participant.userID == user_id)
            .order_by(Participant.participantID)
            .all()
        )
        if not participants:
            raise NotFoundError("Participation")
        for participant in participants:
            if participant.status == ParticipantStatus.WON:
                return participant
        for participant in participants:
            if participant.mystery_gift_claimed:
                return participant
        raise AuthorizationError("Not eligible to claim this offer.")

    def _has_paid_order(self, user_id: int, festival_id: int) -> bool:
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

    @staticmethod
    def _parse(enum_cls, value: Any, field: str):
        try:
            return enum_cls(value)
        except ValueError:
            raise ValidationError(f"Invalid {field}") from None


__all__ = ["ClaimService"]
