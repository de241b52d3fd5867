"""Request plumbing and JSON serializers shared by the festival blueprints."""
from __future__ import annotations

import hmac
import logging
from typing import Any, Dict, Iterable, Mapping, Optional

from flask import Blueprint, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from src.config import Config
from src.errors import AuthenticationError, AuthorizationError, MegaOfferError, ValidationError
from src.models import Festival, MegaOfferOrder, Participant, Tier, TierEntry
from src.services.payment_service import PaymentService
from src.timeutils import serialize_dt

logger = logging.getLogger(__name__)

PAYMENT_SERVICE_EXTENSION = "mega_offer.payment_service"


# ---------------------------
# Identity
# ---------------------------


def current_user_id() -> Optional[int]:
    user = getattr(g, "current_user", None)
    return user.userID if user else None


def require_user_id() -> int:
    user_id = current_user_id()
    if user_id is None:
        raise AuthenticationError()
    return user_id


def is_admin_request() -> bool:
    user = getattr(g, "current_user", None)
    if user is not None and user.is_admin:
        return True
    token = request.headers.get(Config.ADMIN_TOKEN_HEADER)
    if not token or not Config.SUPER_ADMIN_TOKEN:
        return False
    return hmac.compare_digest(token.encode("utf-8"), Config.SUPER_ADMIN_TOKEN.encode("utf-8"))


def require_admin() -> None:
    if not is_admin_request():
        raise AuthorizationError("Admin access required")


def get_payment_service() -> PaymentService:
    # Deployments and tests may install their own gateway client on the app
    service = current_app.extensions.get(PAYMENT_SERVICE_EXTENSION)
    if service is None:
        service = PaymentService()
        current_app.extensions[PAYMENT_SERVICE_EXTENSION] = service
    return service


# ---------------------------
# Request / response helpers
# ---------------------------


def json_payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def pick(payload: Mapping[str, Any], *names: str) -> Any:
    """First non-empty value among the accepted spellings of a field."""
    for name in names:
        value = payload.get(name)
        if value not in (None, ""):
            return value
    return None


def int_field(payload: Mapping[str, Any], *names: str, required: bool = True) -> Optional[int]:
    value = pick(payload, *names)
    if value is None:
        if required:
            raise ValidationError(f"{names[0]} is required")
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{names[0]} must be an integer") from None


def ok(data: Any = None, message: Optional[str] = None, status: int = 200):
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return jsonify(body), status


def register_error_handlers(blueprint: Blueprint) -> None:
    @blueprint.errorhandler(MegaOfferError)
    def _handle_domain_error(exc: MegaOfferError):
        if exc.status_code >= 500:
            logger.error("Festival request failed: %s", exc.message)
        else:
            logger.info(
                "Festival request rejected: %s",
                exc.message,
                extra={"status_code": exc.status_code},
            )
        return jsonify({"success": False, "message": exc.message}), exc.status_code

    @blueprint.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc
        logger.exception("Unhandled error in festival endpoint")
        db = g.get("db")
        if db is not None:
            db.rollback()
        return jsonify({"success": False, "message": "Server error"}), 500


# ---------------------------
# Serializers
# ---------------------------


def _money(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def _enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def serialize_tier(tier: Tier, entry_count: Optional[int] = None) -> Dict[str, Any]:
    data = {
        "id": tier.tierID,
        "festival_id": tier.festivalID,
        "tier_name": tier.tier_name,
        "tier_order": tier.tier_order,
        "entry_fee": _money(tier.entry_fee),
        "discount_percent": tier.discount_percent,
        "max_winners": tier.max_winners,
        "start_time": serialize_dt(tier.start_time),
        "end_time": serialize_dt(tier.end_time),
        "status": _enum_value(tier.status),
    }
    if entry_count is not None:
        data["entry_count"] = entry_count
    return data


def serialize_festival(
    festival: Festival,
    include_tiers: bool = False,
    entry_counts: Optional[Mapping[int, int]] = None,
) -> Dict[str, Any]:
    data = {
        "id": festival.festivalID,
        "name": festival.name,
        "description": festival.description,
        "start_time": serialize_dt(festival.start_time),
        "end_time": serialize_dt(festival.end_time),
        "pre_booking_start_time": serialize_dt(festival.pre_booking_start_time),
        "pre_booking_end_time": serialize_dt(festival.pre_booking_end_time),
        "pre_booking_amount": _money(festival.pre_booking_amount),
        "pre_booking_type": _enum_value(festival.pre_booking_type),
        "status": _enum_value(festival.status),
        "created_at": serialize_dt(festival.created_at),
    }
    if include_tiers:
        data["tiers"] = [
            serialize_tier(tier, entry_counts.get(tier.tierID) if entry_counts is not None else None)
            for tier in festival.tiers
        ]
    return data


def serialize_participant(participant: Participant) -> Dict[str, Any]:
    product = participant.product
    return {
        "id": participant.participantID,
        "festival_id": participant.festivalID,
        "user_id": participant.userID,
        "username": participant.user.username if participant.user else None,
        "product_id": participant.productID,
        "product_name": product.name if product else None,
        "has_pre_booked": participant.has_pre_booked,
        "pre_booking_amount_paid": _money(participant.pre_booking_amount_paid),
        "status": _enum_value(participant.status),
        "won_tier_id": participant.wonTierID,
        "mystery_gift_claimed": participant.mystery_gift_claimed,
        "created_at": serialize_dt(participant.created_at),
    }


def serialize_entry(entry: TierEntry) -> Dict[str, Any]:
    return {
        "id": entry.entryID,
        "tier_id": entry.tierID,
        "user_id": entry.userID,
        "username": entry.user.username if entry.user else None,
        "entry_fee_paid": _money(entry.entry_fee_paid),
        "status": _enum_value(entry.status),
        "created_at": serialize_dt(entry.created_at),
    }


def serialize_order(order: MegaOfferOrder) -> Dict[str, Any]:
    return {
        "id": order.orderID,
        "user_id": order.userID,
        "festival_id": order.festivalID,
        "product_id": order.productID,
        "product_name": order.product.name if order.product else None,
        "order_type": _enum_value(order.order_type),
        "original_price": _money(order.original_price),
        "pre_booking_amount": _money(order.pre_booking_amount),
        "discount_amount": _money(order.discount_amount),
        "final_amount_paid": _money(order.final_amount_paid),
        "payment_status": _enum_value(order.payment_status),
        "payment_reference": order.payment_reference,
        "shipping_status": _enum_value(order.shipping_status),
        "created_at": serialize_dt(order.created_at),
    }


def serialize_many(serializer, items: Iterable[Any]):
    return [serializer(item) for item in items]
