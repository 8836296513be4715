from __future__ import annotations

from decimal import Decimal
from typing import Any

import httpx

from skybook.config import StripeConfig
from skybook.errors import GatewayError
from skybook.models.events import PaymentOutcome
from skybook.payments.gateways.base import PaymentGateway, PaymentIntent, to_minor_units


class StripeGateway(PaymentGateway):
    name = "stripe"

    def __init__(self, config: StripeConfig, currency: str = "USD", client: httpx.Client | None = None) -> None:
        super().__init__(client=client, timeout=config.timeout)
        self.config = config
        self.currency = currency

    def create_payment(self, amount: Decimal, order_id: str, description: str) -> PaymentIntent:
        if not self.config.secret_key:
            raise GatewayError("Stripe API error: secret key is not configured")
        body = self._post(
            f"{self.config.base_url}/v1/payment_intents",
            auth=(self.config.secret_key, ""),
            data={
                "amount": to_minor_units(amount),
                "currency": self.currency.lower(),
                "description": description,
                "metadata[transaction_id]": order_id,
                "automatic_payment_methods[enabled]": "true",
            },
        )
        return PaymentIntent(
            gateway=self.name,
            order_id=order_id,
            amount=amount,
            external_id=body.get("id"),
            client_secret=body.get("client_secret"),
            raw=body,
        )

    def check_payment(self, payment_id: str) -> dict[str, Any]:
        return self._request(
            "GET",
            f"{self.config.base_url}/v1/payment_intents/{payment_id}",
            auth=(self.config.secret_key, ""),
        )

    def outcome_of(self, status: dict[str, Any]) -> PaymentOutcome | None:
        state = status.get("status")
        if state == "succeeded":
            return PaymentOutcome.SUCCEEDED
        if state == "canceled":
            return PaymentOutcome.FAILED
        return None
