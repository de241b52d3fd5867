from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Mapping, Optional

import requests

from src.config import Config
from src.errors import PaymentGatewayError, PaymentVerificationError


@dataclass(frozen=True)
class PaymentProof:
    """What the client hands back after paying: gateway order id, payment id and signature."""

    order_reference: str
    payment_reference: str
    signature: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Optional["PaymentProof"]:
        """Build a proof from request JSON; returns None when no payment fields are present."""
        order_reference = payload.get("razorpay_order_id") or payload.get("order_reference")
        payment_reference = payload.get("razorpay_payment_id") or payload.get("payment_reference")
        signature = payload.get("razorpay_signature") or payload.get("signature")
        if not (order_reference or payment_reference or signature):
            return None
        return cls(
            order_reference=str(order_reference or ""),
            payment_reference=str(payment_reference or ""),
            signature=str(signature or ""),
        )


def compute_signature(order_reference: str, payment_reference: str, secret: str) -> str:
    body = f"{order_reference}|{payment_reference}"
    return hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()


def to_minor_units(amount: Decimal | float | int) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentService:
    """
    Wrapper around the payment gateway.
    Creates payment intents (gateway orders) and verifies payment proofs
    signed with the shared key secret.
    """

    def __init__(
        self,
        config: type[Config] = Config,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.config = config
        self.http = http or requests.Session()
        self.logger = logging.getLogger(__name__)

    @property
    def key_id(self) -> str:
        return self.config.PAYMENT_KEY_ID

    def create_payment_intent(
        self,
        amount: Decimal | float,
        receipt: str,
        currency: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Ask the gateway for an order covering ``amount``.
        Returns the gateway's order payload (its ``id`` is the order reference).
        """
        payload = {
            "amount": to_minor_units(amount),
            "currency": currency or self.config.PAYMENT_CURRENCY,
            "receipt": receipt,
        }
        try:
            response = self.http.post(
                f"{self.config.PAYMENT_API_BASE_URL.rstrip('/')}/orders",
                json=payload,
                auth=(self.config.PAYMENT_KEY_ID, self.config.PAYMENT_KEY_SECRET),
                timeout=self.config.PAYMENT_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            self.logger.error("Payment gateway unreachable: %s", exc, extra={"receipt": receipt})
            raise PaymentGatewayError("Failed to create payment order") from exc

        if response.status_code >= 300:
            self.logger.error(
                "Payment gateway rejected order with status %s",
                response.status_code,
                extra={"receipt": receipt},
            )
            raise PaymentGatewayError("Failed to create payment order")

        order = response.json()
        self.logger.info(
            "Payment order created",
            extra={"receipt": receipt, "amount_minor": payload["amount"], "order_reference": order.get("id")},
        )
        return order

    def verify_signature(
        self,
        order_reference: str,
        payment_reference: str,
        signature: str,
        secret: Optional[str] = None,
    ) -> bool:
        if not order_reference or not payment_reference or not signature:
            return False
        expected = compute_signature(
            order_reference,
            payment_reference,
            secret if secret is not None else self.config.PAYMENT_KEY_SECRET,
        )
        return hmac.compare_digest(expected, signature)

    def require_valid_proof(self, proof: Optional[PaymentProof]) -> PaymentProof:
        if proof is None:
            raise PaymentVerificationError("Payment details missing")
        if not self.verify_signature(proof.order_reference, proof.payment_reference, proof.signature):
            self.logger.warning(
                "Payment signature mismatch",
                extra={"order_reference": proof.order_reference, "payment_reference": proof.payment_reference},
            )
            raise PaymentVerificationError("Payment verification failed")
        return proof
