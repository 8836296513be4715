from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import httpx

from skybook.errors import GatewayError
from skybook.models.events import PaymentOutcome


@dataclass
class PaymentIntent:
    gateway: str
    order_id: str
    amount: Decimal
    external_id: str | None = None
    payment_url: str | None = None
    client_secret: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


def to_minor_units(amount: Decimal) -> int:
    """Cents/tiyin as the providers expect them."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentGateway(ABC):
    name: str

    def __init__(self, client: httpx.Client | None = None, timeout: float = 10.0) -> None:
        self._client = client or httpx.Client(timeout=timeout)

    @abstractmethod
    def create_payment(self, amount: Decimal, order_id: str, description: str) -> PaymentIntent:
        """Start a provider-side payment for ``order_id`` (our transaction id)."""

    @abstractmethod
    def check_payment(self, payment_id: str) -> dict[str, Any]:
        """Ask the provider for the current state of a payment."""

    @abstractmethod
    def outcome_of(self, status: dict[str, Any]) -> PaymentOutcome | None:
        """Map a ``check_payment`` response to an outcome; None while the payment is still open."""

    def _post(self, url: str, **kwargs: Any) -> dict[str, Any]:
        return self._request("POST", url, **kwargs)

    def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise GatewayError(
                f"{self.name.capitalize()} API error: {exc.response.status_code} {exc.response.text[:200]}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise GatewayError(f"{self.name.capitalize()} API error: {exc}") from exc

    def close(self) -> None:
        self._client.close()
