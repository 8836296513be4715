from __future__ import annotations

import base64
import json
from decimal import Decimal
from typing import Any

import httpx

from skybook.config import PaymeConfig
from skybook.errors import GatewayError
from skybook.models.events import PaymentOutcome
from skybook.payments.gateways.base import PaymentGateway, PaymentIntent, to_minor_units


class PaymeGateway(PaymentGateway):
    """Payme checkout links; amounts travel in tiyin."""

    name = "payme"

    def __init__(self, config: PaymeConfig, client: httpx.Client | None = None) -> None:
        super().__init__(client=client, timeout=config.timeout)
        self.config = config

    def create_payment(self, amount: Decimal, order_id: str, description: str) -> PaymentIntent:
        if not self.config.merchant_id:
            raise GatewayError("Payme API error: merchant id is not configured")
        params = {
            "m": self.config.merchant_id,
            "ac": {"order_id": order_id},
            "a": to_minor_units(amount),
            "c": description,
            "cr": self.config.currency,
            "l": self.config.language,
        }
        encoded = base64.b64encode(json.dumps(params, separators=(",", ":")).encode("utf-8")).decode("ascii")
        payment_url = f"{self.config.base_url}/{self.config.merchant_id}?{encoded}"
        return PaymentIntent(
            gateway=self.name,
            order_id=order_id,
            amount=amount,
            payment_url=payment_url,
            raw={"payment_url": payment_url, "order_id": order_id, "amount": str(amount)},
        )

    def check_payment(self, payment_id: str) -> dict[str, Any]:
        return self._post(
            f"{self.config.base_url}/api",
            json={"method": "CheckTransaction", "params": {"id": payment_id}},
            headers={"Authorization": f"Basic {self.basic_token()}"},
        )

    def basic_token(self) -> str:
        credentials = f"{self.config.merchant_id}:{self.config.secret_key}"
        return base64.b64encode(credentials.encode("utf-8")).decode("ascii")

    def outcome_of(self, status: dict[str, Any]) -> PaymentOutcome | None:
        # CheckTransaction states: 1 created, 2 performed, negative cancelled
        state = (status.get("result") or {}).get("state")
        if state == 2:
            return PaymentOutcome.SUCCEEDED
        if isinstance(state, int) and state < 0:
            return PaymentOutcome.FAILED
        return None
