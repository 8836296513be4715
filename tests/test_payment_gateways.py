import base64
import hashlib
import json
from decimal import Decimal
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from skybook.config import ClickConfig, PaymeConfig, StripeConfig
from skybook.errors import GatewayError, InvalidStateError, NotFoundError
from skybook.models.domain import TicketStatus, TransactionStatus
from skybook.payments.gateways import ClickGateway, PaymeGateway, StripeGateway
from skybook.payments.service import PaymentService


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_stripe_creates_payment_intent_in_cents() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["form"] = parse_qs(request.content.decode("utf-8"))
        return httpx.Response(200, json={"id": "pi_1", "client_secret": "pi_1_secret"})

    gateway = StripeGateway(StripeConfig(secret_key="sk_test", webhook_secret=""), client=_client(handler))
    intent = gateway.create_payment(Decimal("896.00"), "tx-1", "Flight booking BK1")

    assert captured["url"] == "https://api.stripe.com/v1/payment_intents"
    form = captured["form"]
    assert form["amount"] == ["89600"]
    assert form["currency"] == ["usd"]
    assert form["metadata[transaction_id]"] == ["tx-1"]
    assert intent.external_id == "pi_1"
    assert intent.client_secret == "pi_1_secret"


def test_stripe_http_error_becomes_gateway_error() -> None:
    gateway = StripeGateway(
        StripeConfig(secret_key="sk_test", webhook_secret=""),
        client=_client(lambda request: httpx.Response(402, json={"error": {"message": "card_declined"}})),
    )

    with pytest.raises(GatewayError, match="Stripe API error: 402"):
        gateway.create_payment(Decimal("10.00"), "tx-1", "test")


def test_payme_link_encodes_tiyin_amount() -> None:
    gateway = PaymeGateway(PaymeConfig(merchant_id="m-1", secret_key="k"))
    intent = gateway.create_payment(Decimal("12.34"), "tx-9", "Flight booking")

    url = urlparse(intent.payment_url)
    params = json.loads(base64.b64decode(url.query))
    assert url.path == "/m-1"
    assert params["a"] == 1234
    assert params["ac"] == {"order_id": "tx-9"}
    assert params["cr"] == "UZS"


def test_click_link_carries_transaction_param() -> None:
    gateway = ClickGateway(
        ClickConfig(merchant_id="m-1", service_id="s-1", secret_key="k", return_url="http://app/payment/success")
    )
    intent = gateway.create_payment(Decimal("50.00"), "tx-5", "Flight booking")

    query = parse_qs(urlparse(intent.payment_url).query)
    assert query["service_id"] == ["s-1"]
    assert query["merchant_id"] == ["m-1"]
    assert query["transaction_param"] == ["tx-5"]
    assert query["amount"] == ["50.00"]
    assert query["return_url"] == ["http://app/payment/success"]


def test_unconfigured_gateway_raises() -> None:
    with pytest.raises(GatewayError):
        PaymeGateway(PaymeConfig(merchant_id="", secret_key="")).create_payment(Decimal("1"), "tx", "d")


def test_initiate_payment_records_gateway_response(world) -> None:
    booking = world.booking.create_booking(1, 1, 1, [1], 1)
    service = PaymentService(
        gateways={"payme": PaymeGateway(PaymeConfig(merchant_id="m-1", secret_key="k"))},
        reconciler=world.reconciler,
        audit_store=world.audit,
    )

    initiation = service.initiate_payment(booking.reference, 1, "payme")

    payment = world.booking.get_booking(booking.reference).payment
    assert initiation.transaction_id == booking.transaction_id
    assert initiation.payment_url.startswith("https://checkout.paycom.uz/m-1?")
    assert payment.gateway == "payme"
    assert payment.status == TransactionStatus.PENDING


def test_gateway_error_marks_transaction_failed(world) -> None:
    booking = world.booking.create_booking(1, 1, 1, [1], 1)
    failing = StripeGateway(
        StripeConfig(secret_key="sk_test", webhook_secret=""),
        client=_client(lambda request: httpx.Response(500, text="upstream down")),
    )
    service = PaymentService(gateways={"stripe": failing}, reconciler=world.reconciler, audit_store=world.audit)

    with pytest.raises(GatewayError):
        service.initiate_payment(booking.reference, 1, "stripe")

    payment = world.booking.get_booking(booking.reference).payment
    assert payment.status == TransactionStatus.FAILED
    assert "Stripe API error" in payment.gateway_response["error"]
    assert len(world.bus.topics["payment.failed"]) == 1


def test_initiate_payment_requires_pending_payment(world) -> None:
    booking = world.booking.create_booking(1, 1, 1, [1], 1)
    world.reconciler.apply_payment_outcome(booking.transaction_id, "succeeded")
    service = PaymentService(
        gateways={"payme": PaymeGateway(PaymeConfig(merchant_id="m-1", secret_key="k"))},
        reconciler=world.reconciler,
    )

    with pytest.raises(NotFoundError, match="No pending payment"):
        service.initiate_payment(booking.reference, 1, "payme")
    with pytest.raises(InvalidStateError, match="Unsupported payment gateway"):
        service.initiate_payment(booking.reference, 1, "paypal")


def test_cancelled_booking_cannot_be_paid(world) -> None:
    booking = world.booking.create_booking(1, 1, 1, [1], 1)
    world.cancellation.cancel_booking(booking.reference, 1)
    service = PaymentService(
        gateways={"payme": PaymeGateway(PaymeConfig(merchant_id="m-1", secret_key="k"))},
        reconciler=world.reconciler,
    )

    with pytest.raises(InvalidStateError, match="Booking has no active tickets"):
        service.initiate_payment(booking.reference, 1, "payme")
    with pytest.raises(NotFoundError, match="Booking not found"):
        service.initiate_payment("BKMISSING0000", 1, "payme")


def test_sync_payment_completes_stripe_payment(world) -> None:
    booking = world.booking.create_booking(1, 1, 1, [1], 1)
    requests: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request.method, request.url.path))
        if request.method == "POST":
            return httpx.Response(200, json={"id": "pi_42", "client_secret": "pi_42_secret"})
        return httpx.Response(200, json={"id": "pi_42", "status": "succeeded"})

    stripe = StripeGateway(StripeConfig(secret_key="sk_test", webhook_secret=""), client=_client(handler))
    service = PaymentService(gateways={"stripe": stripe}, reconciler=world.reconciler)
    service.initiate_payment(booking.reference, 1, "stripe")

    result = service.sync_payment(booking.reference, 1)

    assert requests[-1] == ("GET", "/v1/payment_intents/pi_42")
    assert result.applied is True
    assert result.status == TransactionStatus.COMPLETED
    stored = world.booking.get_booking(booking.reference)
    assert stored.tickets[0].status == TicketStatus.CONFIRMED
    assert len(world.bus.topics["payment.completed"]) == 1

    again = service.sync_payment(booking.reference, 1)
    assert again.reason == "already_settled"
    assert len(requests) == 2


def test_sync_payment_leaves_open_payme_payment_pending(world) -> None:
    booking = world.booking.create_booking(1, 1, 1, [1], 1)
    states = iter([1, 2])
    sent: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={"result": {"state": next(states)}})

    payme = PaymeGateway(PaymeConfig(merchant_id="m-1", secret_key="k"), client=_client(handler))
    service = PaymentService(gateways={"payme": payme}, reconciler=world.reconciler)
    service.initiate_payment(booking.reference, 1, "payme")

    first = service.sync_payment(booking.reference, 1)
    second = service.sync_payment(booking.reference, 1)

    assert sent[0] == {"method": "CheckTransaction", "params": {"id": booking.transaction_id}}
    assert (first.applied, first.reason) == (False, "pending_at_gateway")
    assert (second.applied, second.status) == (True, TransactionStatus.COMPLETED)


def test_sync_payment_fails_rejected_click_payment(world) -> None:
    booking = world.booking.create_booking(1, 1, 1, [1], 1)
    captured: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["auth"] = request.headers["Auth"]
        return httpx.Response(200, json={"error_code": 0, "payment_status": -9})

    click = ClickGateway(
        ClickConfig(merchant_id="m-1", service_id="s-1", secret_key="k", merchant_user_id="mu-1"),
        client=_client(handler),
    )
    service = PaymentService(gateways={"click": click}, reconciler=world.reconciler)
    service.initiate_payment(booking.reference, 1, "click")

    result = service.sync_payment(booking.reference, 1)

    assert captured["path"].startswith(f"/v2/merchant/payment/status_by_mti/s-1/{booking.transaction_id}/")
    assert captured["auth"].startswith("mu-1:")
    assert result.status == TransactionStatus.FAILED
    assert world.booking.get_booking(booking.reference).tickets[0].status == TicketStatus.BOOKED


def test_click_auth_header_digest() -> None:
    click = ClickGateway(ClickConfig(merchant_id="m-1", service_id="s-1", secret_key="k", merchant_user_id="mu-1"))

    digest = hashlib.sha1(b"1700000000k").hexdigest()
    assert click.auth_header(1700000000) == f"mu-1:{digest}:1700000000"


def test_sync_payment_requires_gateway_attempt(world) -> None:
    booking = world.booking.create_booking(1, 1, 1, [1], 1)
    service = PaymentService(gateways={}, reconciler=world.reconciler)

    with pytest.raises(InvalidStateError, match="Payment has not been handed to a gateway"):
        service.sync_payment(booking.reference, 1)
    with pytest.raises(NotFoundError, match="Payment not found"):
        service.sync_payment(booking.reference, 2)
