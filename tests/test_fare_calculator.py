from decimal import Decimal

import pytest

from skybook.errors import InvalidStateError
from skybook.fares.calculator import FareCalculator, allocate_evenly
from skybook.models.domain import FareClass

ECONOMY = FareClass(id=1, name="Economy", price_multiplier=Decimal("1"))
BUSINESS = FareClass(id=2, name="Business", price_multiplier=Decimal("1.5"))


def test_two_economy_passengers() -> None:
    quote = FareCalculator().quote(Decimal("800.00"), ECONOMY, 2)

    assert quote.price_per_passenger == Decimal("800.00")
    assert quote.subtotal == Decimal("1600.00")
    assert quote.taxes == Decimal("192.00")
    assert quote.grand_total == Decimal("1792.00")
    assert [ticket.total_price for ticket in quote.tickets] == [Decimal("896.00"), Decimal("896.00")]


def test_business_multiplier() -> None:
    quote = FareCalculator().quote(Decimal("800.00"), BUSINESS, 1)

    assert quote.price_per_passenger == Decimal("1200.00")
    assert quote.taxes == Decimal("144.00")
    assert quote.grand_total == Decimal("1344.00")


def test_ticket_totals_sum_to_grand_total_when_tax_does_not_split_evenly() -> None:
    quote = FareCalculator().quote(Decimal("10.03"), ECONOMY, 2)

    assert quote.taxes == Decimal("2.41")
    assert [ticket.taxes_fees for ticket in quote.tickets] == [Decimal("1.21"), Decimal("1.20")]
    assert sum(ticket.taxes_fees for ticket in quote.tickets) == quote.taxes
    assert sum(ticket.total_price for ticket in quote.tickets) == quote.grand_total


def test_allocate_evenly_hands_leftover_cents_to_first_shares() -> None:
    assert allocate_evenly(Decimal("100.00"), 3) == [Decimal("33.34"), Decimal("33.33"), Decimal("33.33")]
    assert allocate_evenly(Decimal("0.02"), 3) == [Decimal("0.01"), Decimal("0.01"), Decimal("0.00")]


def test_rounding_is_half_up_to_cents() -> None:
    quote = FareCalculator().quote_multiplier(Decimal("10.005"), Decimal("1"), 1)

    assert quote.price_per_passenger == Decimal("10.01")


def test_rejects_zero_passengers_and_negative_prices() -> None:
    calculator = FareCalculator()
    with pytest.raises(InvalidStateError):
        calculator.quote(Decimal("800.00"), ECONOMY, 0)
    with pytest.raises(InvalidStateError):
        calculator.quote(Decimal("-1.00"), ECONOMY, 1)


def test_custom_tax_rate() -> None:
    quote = FareCalculator(tax_rate=Decimal("0.20")).quote(Decimal("50.00"), ECONOMY, 2)

    assert quote.taxes == Decimal("20.00")
    assert quote.grand_total == Decimal("120.00")
