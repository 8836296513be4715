from __future__ import annotations

import httpx

from skybook.config import Settings

from .base import PaymentGateway, PaymentIntent, to_minor_units
from .click import ClickGateway
from .payme import PaymeGateway
from .stripe import StripeGateway


def build_gateways(settings: Settings, client: httpx.Client | None = None) -> dict[str, PaymentGateway]:
    gateways: list[PaymentGateway] = [
        StripeGateway(settings.stripe_config(), currency=settings.currency, client=client),
        PaymeGateway(settings.payme_config(), client=client),
        ClickGateway(settings.click_config(), client=client),
    ]
    return {gateway.name: gateway for gateway in gateways}


__all__ = [
    "ClickGateway",
    "PaymeGateway",
    "PaymentGateway",
    "PaymentIntent",
    "StripeGateway",
    "build_gateways",
    "to_minor_units",
]
