import hashlib
import hmac
from decimal import Decimal

import pytest
import requests

from src.errors import PaymentGatewayError, PaymentVerificationError
from src.services.payment_service import PaymentProof, PaymentService, compute_signature, to_minor_units


class SecretConfig:
    PAYMENT_API_BASE_URL = "https://gateway.example/v1/"
    PAYMENT_KEY_ID = "key_live"
    PAYMENT_KEY_SECRET = "s3cret"
    PAYMENT_CURRENCY = "INR"
    PAYMENT_TIMEOUT_SECONDS = 5


class FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body

    def json(self):
        return self._body


class FakeHttp:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error:
            raise self.error
        return self.response


def test_signature_is_hmac_sha256_over_order_and_payment_reference():
    expected = hmac.new(b"s3cret", b"order_9|pay_7", hashlib.sha256).hexdigest()
    assert compute_signature("order_9", "pay_7", "s3cret") == expected


def test_verify_signature_accepts_matching_and_rejects_tampered_proofs():
    service = PaymentService(config=SecretConfig, http=FakeHttp())
    good = compute_signature("order_1", "pay_1", "s3cret")

    assert service.verify_signature("order_1", "pay_1", good) is True
    assert service.verify_signature("order_1", "pay_2", good) is False
    assert service.verify_signature("order_1", "pay_1", good, secret="other") is False
    assert service.verify_signature("", "pay_1", good) is False


def test_verify_signature_rejects_every_single_character_flip():
    service = PaymentService(config=SecretConfig, http=FakeHttp())
    good = compute_signature("order_1", "pay_1", "s3cret")

    for index, char in enumerate(good):
        flipped = "0" if char != "0" else "1"
        mutated = good[:index] + flipped + good[index + 1:]
        assert service.verify_signature("order_1", "pay_1", mutated) is False, index


def test_require_valid_proof_raises_for_missing_or_bad_proof():
    service = PaymentService(config=SecretConfig, http=FakeHttp())

    with pytest.raises(PaymentVerificationError, match="Payment details missing"):
        service.require_valid_proof(None)
    with pytest.raises(PaymentVerificationError, match="Payment verification failed"):
        service.require_valid_proof(PaymentProof("order_1", "pay_1", "deadbeef"))


def test_proof_parses_gateway_field_names():
    proof = PaymentProof.from_payload(
        {"razorpay_order_id": "order_1", "razorpay_payment_id": "pay_1", "razorpay_signature": "abc"}
    )
    assert proof == PaymentProof("order_1", "pay_1", "abc")
    assert PaymentProof.from_payload({"festivalId": 3}) is None


def test_create_payment_intent_posts_minor_units_with_basic_auth():
    http = FakeHttp(response=FakeResponse(200, {"id": "order_abc", "amount": 40000}))
    service = PaymentService(config=SecretConfig, http=http)

    order = service.create_payment_intent(Decimal("400.00"), receipt="claim_1_2_3")

    assert order["id"] == "order_abc"
    url, kwargs = http.calls[0]
    assert url == "https://gateway.example/v1/orders"
    assert kwargs["json"] == {"amount": 40000, "currency": "INR", "receipt": "claim_1_2_3"}
    assert kwargs["auth"] == ("key_live", "s3cret")


def test_gateway_failures_surface_as_gateway_errors():
    unreachable = PaymentService(config=SecretConfig, http=FakeHttp(error=requests.ConnectionError("down")))
    rejected = PaymentService(config=SecretConfig, http=FakeHttp(response=FakeResponse(401, {})))

    with pytest.raises(PaymentGatewayError):
        unreachable.create_payment_intent(10, receipt="r")
    with pytest.raises(PaymentGatewayError):
        rejected.create_payment_intent(10, receipt="r")


def test_minor_units_round_half_up():
    assert to_minor_units(Decimal("12.345")) == 1235
    assert to_minor_units(50) == 5000
