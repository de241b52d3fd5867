"""
Final-balance computation for festival claims.

Shared by the pay-remaining order creation and confirmation flows so that
both always arrive at the same figures:

    discount_amount = product_price * discount_percent / 100
    remaining       = max(0, product_price - pre_paid - discount_amount)
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, Optional

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Settlement:
    original_price: Decimal
    pre_booking_amount: Decimal
    discount_percent: Decimal
    discount_amount: Decimal
    remaining_amount: Decimal

    @property
    def requires_payment(self) -> bool:
        return self.remaining_amount > ZERO

    def as_dict(self) -> Dict[str, float]:
        return {
            "original_price": float(self.original_price),
            "pre_booking": float(self.pre_booking_amount),
            "discount_percent": float(self.discount_percent),
            "discount": float(self.discount_amount),
            "final_to_pay": float(self.remaining_amount),
        }


def calculate_settlement(product_price: Any, pre_paid: Any, discount_percent: Any = 0) -> Settlement:
    price = to_money(product_price)
    prepaid = to_money(pre_paid)
    percent = Decimal(str(discount_percent or 0))
    discount = to_money(price * percent / Decimal(100))
    remaining = max(ZERO, to_money(price - prepaid - discount))
    return Settlement(
        original_price=price,
        pre_booking_amount=prepaid,
        discount_percent=percent,
        discount_amount=discount,
        remaining_amount=remaining,
    )


def settlement_for_participant(participant, tiers: Iterable, product_price: Any) -> Settlement:
    """Settle a participant against the festival's tiers; only the won tier grants a discount."""
    won_tier: Optional[Any] = None
    if participant.wonTierID is not None:
        won_tier = next((tier for tier in tiers if tier.tierID == participant.wonTierID), None)
    discount_percent = won_tier.discount_percent if won_tier is not None else 0
    return calculate_settlement(product_price, participant.pre_booking_amount_paid, discount_percent)


__all__ = [
    "Settlement",
    "calculate_settlement",
    "settlement_for_participant",
    "to_money",
]
