from __future__ import annotations

from flask import Blueprint, request

from src.blueprints.helpers import (
    get_payment_service,
    int_field,
    json_payload,
    ok,
    pick,
    register_error_handlers,
    require_admin,
    serialize_entry,
    serialize_festival,
    serialize_many,
    serialize_order,
    serialize_participant,
    serialize_tier,
)
from src.database import get_db
from src.errors import ValidationError
from src.services.claim_service import ClaimService
from src.services.festival_service import FestivalService
from src.services.participation_service import ParticipationService
from src.services.winner_selection_service import WinnerPolicy, WinnerSelectionService

mega_offer_admin_bp = Blueprint("mega_offer_admin", __name__, url_prefix="/api/admin/mega-offer")
register_error_handlers(mega_offer_admin_bp)


@mega_offer_admin_bp.before_request
def _admin_only():
    require_admin()


def _festival_service() -> FestivalService:
    return FestivalService(get_db())


def _participation_service() -> ParticipationService:
    return ParticipationService(get_db(), payment_service=get_payment_service())


def _winner_service() -> WinnerSelectionService:
    return WinnerSelectionService(get_db())


def _claim_service() -> ClaimService:
    return ClaimService(get_db(), payment_service=get_payment_service())


def _query_int(name: str):
    value = request.args.get(name)
    if value in (None, ""):
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"{name} must be an integer") from None


# ---------------------------
# Festivals
# ---------------------------


@mega_offer_admin_bp.route("/festivals", methods=["GET"])
def list_festivals():
    overview = _festival_service().list_festivals_with_statistics()
    return ok([
        {
            **serialize_festival(item["festival"], include_tiers=True, entry_counts=item["entry_counts"]),
            "stats": item["statistics"],
        }
        for item in overview
    ])


@mega_offer_admin_bp.route("/festivals", methods=["POST"])
def create_festival():
    festival = _festival_service().create_festival(json_payload())
    return ok(serialize_festival(festival, include_tiers=True), message="Festival created", status=201)


@mega_offer_admin_bp.route("/festivals/<int:festival_id>", methods=["PUT"])
def update_festival(festival_id: int):
    festival = _festival_service().update_festival(festival_id, json_payload())
    return ok(serialize_festival(festival, include_tiers=True), message="Festival updated")


@mega_offer_admin_bp.route("/festivals/<int:festival_id>/status", methods=["POST"])
def set_festival_status(festival_id: int):
    status = pick(json_payload(), "status")
    if not status:
        raise ValidationError("status is required")
    festival = _festival_service().set_festival_status(festival_id, status)
    return ok(serialize_festival(festival), message="Festival status updated")


@mega_offer_admin_bp.route("/festivals/<int:festival_id>", methods=["DELETE"])
def delete_festival(festival_id: int):
    _festival_service().delete_festival(festival_id)
    return ok(message="Festival deleted")


# ---------------------------
# Tiers
# ---------------------------


@mega_offer_admin_bp.route("/festivals/<int:festival_id>/tiers", methods=["POST"])
def add_tier(festival_id: int):
    tier = _festival_service().add_tier(festival_id, json_payload())
    return ok(serialize_tier(tier), message="Tier added", status=201)


@mega_offer_admin_bp.route("/tiers/<int:tier_id>", methods=["PUT"])
def update_tier(tier_id: int):
    tier = _festival_service().update_tier(tier_id, json_payload())
    return ok(serialize_tier(tier), message="Tier updated")


@mega_offer_admin_bp.route("/tiers/<int:tier_id>", methods=["DELETE"])
def delete_tier(tier_id: int):
    _festival_service().delete_tier(tier_id)
    return ok(message="Tier deleted")


@mega_offer_admin_bp.route("/tiers/sweep", methods=["POST"])
def sweep_tiers():
    changed = _festival_service().sweep_tier_statuses()
    return ok({"changed": changed})


@mega_offer_admin_bp.route("/tiers/<int:tier_id>/entries", methods=["GET"])
def tier_entries(tier_id: int):
    view = _participation_service().get_tier_entries(tier_id)
    return ok({
        "tier": serialize_tier(view["tier"]),
        "entries": serialize_many(serialize_entry, view["entries"]),
        "stats": view["stats"],
    })


# ---------------------------
# Winners
# ---------------------------


@mega_offer_admin_bp.route("/tiers/<int:tier_id>/announce-winners", methods=["POST"])
def announce_tier_winners(tier_id: int):
    payload = json_payload()
    result = _winner_service().announce_winners(
        tier_id,
        winner_count=int_field(payload, "winnerCount", "winner_count", required=False),
        policy=WinnerPolicy.ADMIN,
    )
    return ok(result.as_dict(), message=f"{result.winner_count} winners selected")


@mega_offer_admin_bp.route("/announce-winners", methods=["POST"])
def announce_winners():
    payload = json_payload()
    result = _winner_service().announce_winners(
        int_field(payload, "tierId", "tier_id"),
        winner_count=int_field(payload, "winnerCount", "winner_count", required=False),
        policy=WinnerPolicy.USER,
    )
    return ok(result.as_dict(), message=f"{result.winner_count} winners selected")


@mega_offer_admin_bp.route("/tiers/<int:tier_id>/entries/<int:entry_id>/status", methods=["POST"])
def set_entry_status(tier_id: int, entry_id: int):
    status = pick(json_payload(), "status")
    if not status:
        raise ValidationError("status is required")
    entry = _winner_service().set_entry_status(tier_id, entry_id, status)
    return ok(serialize_entry(entry), message="Entry updated")


@mega_offer_admin_bp.route("/entries", methods=["GET"])
def list_entries():
    entries = _participation_service().list_entries(
        festival_id=_query_int("festival_id"),
        tier_id=_query_int("tier_id"),
        status=request.args.get("status") or None,
    )
    return ok(serialize_many(serialize_entry, entries))


# ---------------------------
# Orders
# ---------------------------


@mega_offer_admin_bp.route("/orders", methods=["GET"])
def list_orders():
    filters = {
        "festival_id": _query_int("festival_id"),
        "order_type": request.args.get("order_type"),
        "payment_status": request.args.get("payment_status"),
        "shipping_status": request.args.get("shipping_status"),
    }
    listing = _claim_service().list_orders(filters, page=_query_int("page") or 1)
    return ok({
        "orders": serialize_many(serialize_order, listing["orders"]),
        "pagination": {
            "page": listing["page"],
            "page_size": listing["page_size"],
            "total": listing["total"],
            "total_pages": listing["total_pages"],
        },
    })


@mega_offer_admin_bp.route("/orders/<int:order_id>/status", methods=["POST"])
def update_order_status(order_id: int):
    payload = json_payload()
    order = _claim_service().update_order_status(
        order_id,
        shipping_status=pick(payload, "shipping_status", "shippingStatus"),
        payment_status=pick(payload, "payment_status", "paymentStatus"),
    )
    return ok(serialize_order(order), message="Order updated")


# ---------------------------
# Pre-bookings and gifts
# ---------------------------


@mega_offer_admin_bp.route("/pre-bookings", methods=["GET"])
def list_pre_bookings():
    participants = _participation_service().list_pre_bookings(festival_id=_query_int("festival_id"))
    return ok(serialize_many(serialize_participant, participants))


@mega_offer_admin_bp.route("/pre-bookings/<int:participant_id>/gift", methods=["POST"])
def award_mystery_gift(participant_id: int):
    participant = _participation_service().award_mystery_gift(participant_id)
    return ok(serialize_participant(participant), message="Mystery gift awarded")
