from __future__ import annotations

from flask import Blueprint

from src.blueprints.helpers import (
    get_payment_service,
    int_field,
    json_payload,
    ok,
    pick,
    register_error_handlers,
    require_user_id,
    serialize_entry,
    serialize_festival,
    serialize_many,
    serialize_order,
    serialize_participant,
)
from src.database import get_db
from src.services.claim_service import ClaimService
from src.services.festival_service import FestivalService
from src.services.participation_service import ParticipationService
from src.services.payment_service import PaymentProof

mega_offer_bp = Blueprint("mega_offer", __name__, url_prefix="/api/mega-offer")
register_error_handlers(mega_offer_bp)


def _festival_service() -> FestivalService:
    return FestivalService(get_db())


def _participation_service() -> ParticipationService:
    return ParticipationService(get_db(), payment_service=get_payment_service())


def _claim_service() -> ClaimService:
    return ClaimService(get_db(), payment_service=get_payment_service())


# ---------------------------
# Public
# ---------------------------


@mega_offer_bp.route("/active", methods=["GET"])
def list_active_festivals():
    festivals = _festival_service().get_active_festivals()
    return ok(serialize_many(serialize_festival, festivals))


@mega_offer_bp.route("/<int:festival_id>", methods=["GET"])
def festival_details(festival_id: int):
    festival = _festival_service().get_festival_details(festival_id)
    return ok(serialize_festival(festival, include_tiers=True))


# ---------------------------
# Pre-booking
# ---------------------------


@mega_offer_bp.route("/pre-book/create-order", methods=["POST"])
def create_pre_booking_order():
    user_id = require_user_id()
    payload = json_payload()
    result = _participation_service().create_pre_booking_order(
        user_id,
        int_field(payload, "festivalId", "festival_id"),
        product_id=int_field(payload, "productId", "product_id", required=False),
    )
    return ok(result)


@mega_offer_bp.route("/pre-book", methods=["POST"])
def confirm_pre_booking():
    user_id = require_user_id()
    payload = json_payload()
    participant = _participation_service().pre_book(
        user_id,
        int_field(payload, "festivalId", "festival_id"),
        PaymentProof.from_payload(payload),
        product_id=int_field(payload, "productId", "product_id", required=False),
    )
    return ok(serialize_participant(participant), message="Pre-booking successful!", status=201)


# ---------------------------
# Tiers
# ---------------------------


@mega_offer_bp.route("/tier/create-order", methods=["POST"])
def create_tier_join_order():
    user_id = require_user_id()
    payload = json_payload()
    result = _participation_service().create_tier_join_order(
        user_id,
        int_field(payload, "tierId", "tier_id"),
    )
    return ok(result)


@mega_offer_bp.route("/join-tier", methods=["POST"])
def join_tier():
    user_id = require_user_id()
    payload = json_payload()
    entry = _participation_service().join_tier(
        user_id,
        int_field(payload, "tierId", "tier_id"),
        PaymentProof.from_payload(payload),
    )
    return ok(serialize_entry(entry), message="Joined tier successfully!", status=201)


@mega_offer_bp.route("/claim-gift", methods=["POST"])
def claim_mystery_gift():
    user_id = require_user_id()
    payload = json_payload()
    participant = _participation_service().claim_mystery_gift(
        user_id,
        int_field(payload, "festivalId", "festival_id"),
    )
    return ok(serialize_participant(participant), message="Mystery gift claimed!")


# ---------------------------
# My participation
# ---------------------------


@mega_offer_bp.route("/my-participations", methods=["GET"])
def my_participations():
    user_id = require_user_id()
    return ok(_participation_service().get_my_participations(user_id))


@mega_offer_bp.route("/<int:festival_id>/participation", methods=["GET"])
def my_participation(festival_id: int):
    user_id = require_user_id()
    view = _participation_service().get_participation(user_id, festival_id)
    if view is None:
        return ok({"participation": None, "tierEntries": [], "orders": []})
    return ok({
        "participation": serialize_participant(view["participant"]),
        "tierEntries": serialize_many(serialize_entry, view["tier_entries"]),
        "orders": serialize_many(serialize_order, view["orders"]),
    })


# ---------------------------
# Pay remaining
# ---------------------------


@mega_offer_bp.route("/pay-remaining/create-order", methods=["POST"])
def create_pay_remaining_order():
    user_id = require_user_id()
    payload = json_payload()
    result = _claim_service().create_pay_remaining_order(
        user_id,
        int_field(payload, "festivalId", "festival_id"),
        product_id=int_field(payload, "productId", "product_id", required=False),
    )
    return ok(result)


@mega_offer_bp.route("/pay-remaining/confirm", methods=["POST"])
def confirm_pay_remaining():
    user_id = require_user_id()
    payload = json_payload()
    order = _claim_service().confirm_pay_remaining(
        user_id,
        int_field(payload, "festivalId", "festival_id"),
        proof=PaymentProof.from_payload(payload),
        phone_number=pick(payload, "phoneNumber", "phone_number"),
        product_id=int_field(payload, "productId", "product_id", required=False),
    )
    return ok(serialize_order(order), message="Order placed successfully!", status=201)
