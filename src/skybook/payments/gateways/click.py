from __future__ import annotations

import hashlib
import time
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from urllib.parse import urlencode

import httpx

from skybook.config import ClickConfig
from skybook.errors import GatewayError
from skybook.models.events import PaymentOutcome
from skybook.payments.gateways.base import PaymentGateway, PaymentIntent


class ClickGateway(PaymentGateway):
    name = "click"

    def __init__(self, config: ClickConfig, client: httpx.Client | None = None) -> None:
        super().__init__(client=client, timeout=config.timeout)
        self.config = config

    def create_payment(self, amount: Decimal, order_id: str, description: str) -> PaymentIntent:
        if not self.config.service_id or not self.config.merchant_id:
            raise GatewayError("Click API error: service or merchant id is not configured")
        params = {
            "service_id": self.config.service_id,
            "merchant_id": self.config.merchant_id,
            "amount": str(amount),
            "transaction_param": order_id,
            "return_url": self.config.return_url,
            "cancel_url": self.config.cancel_url,
        }
        payment_url = f"{self.config.pay_url}?{urlencode(params)}"
        return PaymentIntent(
            gateway=self.name,
            order_id=order_id,
            amount=amount,
            payment_url=payment_url,
            raw={"payment_url": payment_url, "order_id": order_id, "amount": str(amount)},
        )

    def check_payment(self, payment_id: str, payment_date: date | None = None) -> dict[str, Any]:
        """Look a payment up by our transaction id (Click's merchant_trans_id)."""
        payment_date = payment_date or datetime.now(timezone.utc).date()
        return self._request(
            "GET",
            f"{self.config.base_url}/v2/merchant/payment/status_by_mti/"
            f"{self.config.service_id}/{payment_id}/{payment_date.isoformat()}",
            headers={"Accept": "application/json", "Auth": self.auth_header()},
        )

    def outcome_of(self, status: dict[str, Any]) -> PaymentOutcome | None:
        # payment_status 2 is a confirmed payment, negative values are cancelled or rejected
        state = status.get("payment_status")
        if state == 2:
            return PaymentOutcome.SUCCEEDED
        if isinstance(state, int) and state < 0:
            return PaymentOutcome.FAILED
        return None

    def auth_header(self, timestamp: int | None = None) -> str:
        timestamp = int(time.time()) if timestamp is None else timestamp
        digest = hashlib.sha1(f"{timestamp}{self.config.secret_key}".encode("utf-8")).hexdigest()
        return f"{self.config.merchant_user_id}:{digest}:{timestamp}"
