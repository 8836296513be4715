import hashlib
import json
import time
from urllib.parse import urlencode

import pytest

from skybook.errors import ForbiddenError, InvalidStateError
from skybook.models.domain import TransactionStatus
from skybook.models.events import PaymentOutcome
from skybook.payments.webhooks import ClickWebhookAdapter, StripeWebhookAdapter

STRIPE_SECRET = "whsec_test"
CLICK_SERVICE_ID = "777"
CLICK_SECRET = "click-secret"


def _stripe_event(event_type: str, transaction_id: str) -> bytes:
    return json.dumps(
        {
            "id": "evt_1",
            "type": event_type,
            "data": {"object": {"id": "pi_123", "metadata": {"transaction_id": transaction_id}}},
        }
    ).encode("utf-8")


def _stripe_headers(adapter: StripeWebhookAdapter, body: bytes) -> dict[str, str]:
    timestamp = int(time.time())
    return {"Stripe-Signature": f"t={timestamp},v1={adapter.sign(body, timestamp)}"}


def _click_body(transaction_id: str, action: int = 1, error: int = 0) -> bytes:
    fields = {
        "click_trans_id": "9001",
        "service_id": CLICK_SERVICE_ID,
        "merchant_trans_id": transaction_id,
        "merchant_prepare_id": "1",
        "amount": "896.00",
        "action": str(action),
        "error": str(error),
        "sign_time": "2026-01-01 10:00:00",
    }
    fields["sign_string"] = ClickWebhookAdapter(CLICK_SERVICE_ID, CLICK_SECRET).sign(fields)
    return urlencode(fields).encode("utf-8")


def test_stripe_parse_maps_event_types() -> None:
    adapter = StripeWebhookAdapter(STRIPE_SECRET)

    succeeded = adapter.parse(_stripe_event("payment_intent.succeeded", "tx-1"))
    failed = adapter.parse(_stripe_event("payment_intent.payment_failed", "tx-2"))
    ignored = adapter.parse(_stripe_event("charge.refunded", "tx-3"))

    assert [(event.transaction_id, event.outcome) for event in succeeded] == [("tx-1", PaymentOutcome.SUCCEEDED)]
    assert [(event.transaction_id, event.outcome) for event in failed] == [("tx-2", PaymentOutcome.FAILED)]
    assert succeeded[0].external_id == "pi_123"
    assert ignored == []


def test_stripe_signature_verification() -> None:
    adapter = StripeWebhookAdapter(STRIPE_SECRET)
    body = _stripe_event("payment_intent.succeeded", "tx-1")

    adapter.verify(body, _stripe_headers(adapter, body))
    with pytest.raises(ForbiddenError):
        adapter.verify(body + b" ", _stripe_headers(adapter, body))
    with pytest.raises(ForbiddenError):
        adapter.verify(body, {})


def test_stripe_signature_outside_tolerance() -> None:
    adapter = StripeWebhookAdapter(STRIPE_SECRET, clock=lambda: 10_000.0)
    body = _stripe_event("payment_intent.succeeded", "tx-1")
    headers = {"stripe-signature": f"t=1000,v1={adapter.sign(body, 1000)}"}

    with pytest.raises(ForbiddenError, match="tolerance"):
        adapter.verify(body, headers)


def test_stripe_malformed_payload() -> None:
    with pytest.raises(InvalidStateError):
        StripeWebhookAdapter(STRIPE_SECRET).parse(b"{not json")


def test_click_complete_and_cancel_callbacks() -> None:
    adapter = ClickWebhookAdapter(CLICK_SERVICE_ID, CLICK_SECRET)

    completed = adapter.parse(_click_body("tx-1"))
    cancelled = adapter.parse(_click_body("tx-2", error=-5017))
    prepare = adapter.parse(_click_body("tx-3", action=0))

    assert [(event.transaction_id, event.outcome) for event in completed] == [("tx-1", PaymentOutcome.SUCCEEDED)]
    assert [(event.transaction_id, event.outcome) for event in cancelled] == [("tx-2", PaymentOutcome.FAILED)]
    assert prepare == []


def test_click_signature_verification() -> None:
    adapter = ClickWebhookAdapter(CLICK_SERVICE_ID, CLICK_SECRET)
    body = _click_body("tx-1")

    adapter.verify(body, {})
    tampered = body.replace(b"amount=896.00", b"amount=1.00")
    with pytest.raises(ForbiddenError):
        adapter.verify(tampered, {})
    with pytest.raises(ForbiddenError):
        ClickWebhookAdapter("other-service", CLICK_SECRET).verify(body, {})


def test_md5_matches_click_documentation_layout() -> None:
    adapter = ClickWebhookAdapter(CLICK_SERVICE_ID, CLICK_SECRET)
    fields = {
        "click_trans_id": "1",
        "service_id": CLICK_SERVICE_ID,
        "merchant_trans_id": "tx",
        "amount": "10",
        "action": "0",
        "sign_time": "t",
    }
    expected = hashlib.md5(f"1{CLICK_SERVICE_ID}{CLICK_SECRET}tx100t".encode("utf-8")).hexdigest()

    assert adapter.sign(fields) == expected


def test_handle_webhook_applies_outcome_once(world) -> None:
    booking = world.booking.create_booking(1, 1, 1, [1], 1)
    adapter = world.reconciler.webhook_adapters["stripe"]
    body = _stripe_event("payment_intent.succeeded", booking.transaction_id)

    first = world.reconciler.handle_webhook("stripe", body, _stripe_headers(adapter, body))
    second = world.reconciler.handle_webhook("stripe", body, _stripe_headers(adapter, body))

    assert [result.applied for result in first] == [True]
    assert [result.applied for result in second] == [False]
    assert world.booking.get_booking(booking.reference).payment.status == TransactionStatus.COMPLETED
    assert len(world.bus.topics["payment.completed"]) == 1


def test_handle_webhook_rejects_bad_signature_before_touching_state(world) -> None:
    booking = world.booking.create_booking(1, 1, 1, [1], 1)
    body = _stripe_event("payment_intent.succeeded", booking.transaction_id)

    with pytest.raises(ForbiddenError):
        world.reconciler.handle_webhook("stripe", body, {"Stripe-Signature": "t=1,v1=deadbeef"})

    assert world.booking.get_booking(booking.reference).payment.status == TransactionStatus.PENDING


def test_handle_webhook_unknown_gateway(world) -> None:
    with pytest.raises(InvalidStateError, match="Unsupported payment gateway"):
        world.reconciler.handle_webhook("paypal", b"{}", {})


def test_click_webhook_failure_marks_payment_failed(world) -> None:
    booking = world.booking.create_booking(1, 1, 1, [1], 1)

    results = world.reconciler.handle_webhook("click", _click_body(booking.transaction_id, error=-9), {})

    assert [result.status for result in results] == [TransactionStatus.FAILED]
    assert len(world.bus.topics["payment.failed"]) == 1


def test_click_webhook_with_undecodable_body_is_rejected(world) -> None:
    with pytest.raises(InvalidStateError, match="Malformed Click webhook payload"):
        world.reconciler.handle_webhook("click", b"\xff\xfe", {})
