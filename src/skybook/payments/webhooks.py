from __future__ import annotations

import hashlib
import hmac
import json
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Mapping
from urllib.parse import parse_qsl

from skybook.errors import ForbiddenError, InvalidStateError
from skybook.models.events import PaymentOutcome, PaymentOutcomeEvent


def _lower_keys(headers: Mapping[str, str]) -> dict[str, str]:
    return {key.lower(): value for key, value in headers.items()}


class WebhookAdapter(ABC):
    gateway: str

    @abstractmethod
    def verify(self, body: bytes, headers: Mapping[str, str]) -> None:
        """Raise ForbiddenError unless the callback is signed by the provider."""

    @abstractmethod
    def parse(self, body: bytes) -> list[PaymentOutcomeEvent]:
        """Normalize a provider callback to payment outcomes."""


class StripeWebhookAdapter(WebhookAdapter):
    gateway = "stripe"
    OUTCOMES = {
        "payment_intent.succeeded": PaymentOutcome.SUCCEEDED,
        "payment_intent.payment_failed": PaymentOutcome.FAILED,
    }

    def __init__(self, webhook_secret: str, tolerance_seconds: int = 300, clock: Callable[[], float] = time.time) -> None:
        self.webhook_secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds
        self.clock = clock

    def sign(self, body: bytes, timestamp: int) -> str:
        signed_payload = f"{timestamp}.".encode("utf-8") + body
        return hmac.new(self.webhook_secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()

    def verify(self, body: bytes, headers: Mapping[str, str]) -> None:
        if not self.webhook_secret:
            raise ForbiddenError("Stripe webhook secret is not configured")
        header = _lower_keys(headers).get("stripe-signature", "")
        timestamp: int | None = None
        signatures: list[str] = []
        for part in header.split(","):
            key, _, value = part.strip().partition("=")
            if key == "t" and value.isdigit():
                timestamp = int(value)
            elif key == "v1":
                signatures.append(value)
        if timestamp is None or not signatures:
            raise ForbiddenError("Invalid webhook signature")
        if abs(self.clock() - timestamp) > self.tolerance_seconds:
            raise ForbiddenError("Webhook timestamp outside tolerance")
        expected = self.sign(body, timestamp)
        if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
            raise ForbiddenError("Invalid webhook signature")

    def parse(self, body: bytes) -> list[PaymentOutcomeEvent]:
        try:
            event = json.loads(body)
        except ValueError as exc:
            raise InvalidStateError("Malformed Stripe webhook payload") from exc
        outcome = self.OUTCOMES.get(event.get("type", ""))
        if outcome is None:
            return []
        intent = (event.get("data") or {}).get("object") or {}
        transaction_id = (intent.get("metadata") or {}).get("transaction_id")
        if not transaction_id:
            return []
        return [
            PaymentOutcomeEvent(
                gateway=self.gateway,
                transaction_id=str(transaction_id),
                outcome=outcome,
                external_id=intent.get("id"),
                raw_payload=intent,
            )
        ]


class ClickWebhookAdapter(WebhookAdapter):
    """Click prepare/complete callbacks (``action`` 0/1), form or JSON encoded."""

    gateway = "click"

    def __init__(self, service_id: str, secret_key: str) -> None:
        self.service_id = service_id
        self.secret_key = secret_key

    @staticmethod
    def _fields(body: bytes) -> dict[str, Any]:
        try:
            text = body.decode("utf-8").strip()
        except UnicodeDecodeError as exc:
            raise InvalidStateError("Malformed Click webhook payload") from exc
        if text.startswith("{"):
            try:
                return json.loads(text)
            except ValueError as exc:
                raise InvalidStateError("Malformed Click webhook payload") from exc
        return dict(parse_qsl(text))

    def sign(self, fields: Mapping[str, Any]) -> str:
        prepare_id = str(fields.get("merchant_prepare_id", "")) if str(fields.get("action")) == "1" else ""
        sign_string = "".join(
            [
                str(fields.get("click_trans_id", "")),
                str(fields.get("service_id", "")),
                self.secret_key,
                str(fields.get("merchant_trans_id", "")),
                prepare_id,
                str(fields.get("amount", "")),
                str(fields.get("action", "")),
                str(fields.get("sign_time", "")),
            ]
        )
        return hashlib.md5(sign_string.encode("utf-8")).hexdigest()

    def verify(self, body: bytes, headers: Mapping[str, str]) -> None:
        if not self.secret_key:
            raise ForbiddenError("Click secret key is not configured")
        fields = self._fields(body)
        if str(fields.get("service_id", "")) != str(self.service_id):
            raise ForbiddenError("Unknown Click service id")
        if not hmac.compare_digest(self.sign(fields), str(fields.get("sign_string", ""))):
            raise ForbiddenError("Invalid webhook signature")

    def parse(self, body: bytes) -> list[PaymentOutcomeEvent]:
        fields = self._fields(body)
        transaction_id = fields.get("merchant_trans_id")
        if not transaction_id:
            return []
        try:
            error = int(fields.get("error", 0))
        except (TypeError, ValueError):
            error = -1
        if error < 0:
            outcome = PaymentOutcome.FAILED
        elif str(fields.get("action")) == "1":
            outcome = PaymentOutcome.SUCCEEDED
        else:
            # prepare step carries no outcome
            return []
        return [
            PaymentOutcomeEvent(
                gateway=self.gateway,
                transaction_id=str(transaction_id),
                outcome=outcome,
                external_id=str(fields.get("click_trans_id") or "") or None,
                raw_payload=fields,
            )
        ]
