import json
from datetime import timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from standing.errors import InvalidSignature
from standing.payments import signature
from standing.payments.schemas import PaymentEvent

SECRET = "whsec_unit"
BODY = json.dumps({"id": "evt_1", "amount": 2500, "status": "completed"}).encode()
TS = 1_700_000_000


def test_signed_body_verifies():
    header = signature.sign(SECRET, BODY, timestamp=TS)
    assert header.startswith(f"t={TS},v1=")
    signature.verify(SECRET, header, BODY, now=TS + 10)


def test_tampered_body_is_rejected():
    header = signature.sign(SECRET, BODY, timestamp=TS)
    with pytest.raises(InvalidSignature) as excinfo:
        signature.verify(SECRET, header, BODY.replace(b"2500", b"9999"), now=TS)
    assert excinfo.value.detail == "invalid_signature"
    assert excinfo.value.status_code == 400


def test_wrong_secret_is_rejected():
    header = signature.sign("other-secret", BODY, timestamp=TS)
    with pytest.raises(InvalidSignature):
        signature.verify(SECRET, header, BODY, now=TS)


def test_old_signatures_expire():
    header = signature.sign(SECRET, BODY, timestamp=TS)
    with pytest.raises(InvalidSignature) as excinfo:
        signature.verify(SECRET, header, BODY, tolerance_seconds=300, now=TS + 301)
    assert excinfo.value.detail == "signature_expired"


@pytest.mark.parametrize("header", [None, "", "garbage", f"t={TS}", "t=soon,v1=abc", "v1=abc"])
def test_malformed_headers_are_rejected(header):
    with pytest.raises(InvalidSignature):
        signature.verify(SECRET, header, BODY, now=TS)


def test_unconfigured_secret_rejects_everything():
    header = signature.sign("", BODY, timestamp=TS)
    with pytest.raises(InvalidSignature):
        signature.verify("", header, BODY, now=TS)


def test_any_listed_signature_may_match_during_rotation():
    good = signature.compute(SECRET, BODY, TS)
    header = f"t={TS},v1={'0' * 64},v1={good}"
    signature.verify(SECRET, header, BODY, now=TS)


def test_payment_event_accepts_provider_field_names():
    event = PaymentEvent.model_validate_json(
        json.dumps(
            {
                "externalRef": "pi_123",
                "amountCents": 2500,
                "currency": "eur",
                "status": "COMPLETED",
                "occurredAt": "2024-02-01T10:00:00",
                "memberId": "5b1f2f5e-1f7a-4c1e-9a55-2f2b3c4d5e6f",
                "unexpected": "ignored",
            }
        )
    )
    assert event.external_ref == "pi_123"
    assert event.currency == "EUR"
    assert event.status.value == "completed"
    assert event.occurred_at.tzinfo == timezone.utc


@pytest.mark.parametrize("amount", [25.0, "2500", -1])
def test_payment_event_requires_integer_minor_units(amount):
    payload = {"id": "pi_1", "amount": amount, "status": "completed", "created": "2024-02-01T10:00:00Z"}
    with pytest.raises(PydanticValidationError):
        PaymentEvent.model_validate_json(json.dumps(payload))


def test_payment_event_rejects_unknown_status():
    payload = {"id": "pi_1", "amount": 1, "status": "chargeback", "created": "2024-02-01T10:00:00Z"}
    with pytest.raises(PydanticValidationError):
        PaymentEvent.model_validate_json(json.dumps(payload))
