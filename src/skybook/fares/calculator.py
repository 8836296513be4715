from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

from skybook.errors import InvalidStateError
from skybook.models.domain import FareClass

DEFAULT_TAX_RATE = Decimal("0.12")
MINOR_UNIT = Decimal("0.01")


@dataclass(frozen=True)
class TicketFare:
    price: Decimal
    taxes_fees: Decimal
    total_price: Decimal


@dataclass(frozen=True)
class FareQuote:
    base_price: Decimal
    price_multiplier: Decimal
    passengers: int
    price_per_passenger: Decimal
    subtotal: Decimal
    taxes: Decimal
    grand_total: Decimal
    tickets: tuple[TicketFare, ...]


def quantize(amount: Decimal, minor_unit: Decimal = MINOR_UNIT) -> Decimal:
    return amount.quantize(minor_unit, rounding=ROUND_HALF_UP)


def allocate_evenly(total: Decimal, parts: int, minor_unit: Decimal = MINOR_UNIT) -> list[Decimal]:
    """Split ``total`` into ``parts`` shares that sum back to ``total`` exactly.

    Every share gets the floor of the even split; the leftover minor units go
    one each to the first shares (largest remainder with equal remainders).
    """
    if parts < 1:
        raise InvalidStateError("Cannot allocate across fewer than one part")
    floor_share = (total / parts).quantize(minor_unit, rounding=ROUND_DOWN)
    leftover_units = int((total - floor_share * parts) / minor_unit)
    return [floor_share + minor_unit if index < leftover_units else floor_share for index in range(parts)]


class FareCalculator:
    def __init__(self, tax_rate: Decimal = DEFAULT_TAX_RATE, minor_unit: Decimal = MINOR_UNIT) -> None:
        self.tax_rate = tax_rate
        self.minor_unit = minor_unit

    def quote(self, base_price: Decimal, fare_class: FareClass, passengers: int) -> FareQuote:
        return self.quote_multiplier(base_price, fare_class.price_multiplier, passengers)

    def quote_multiplier(self, base_price: Decimal, multiplier: Decimal, passengers: int) -> FareQuote:
        if passengers < 1:
            raise InvalidStateError("At least one passenger is required")
        if base_price < 0 or multiplier < 0:
            raise InvalidStateError("Fares cannot be negative")

        price_per_passenger = quantize(base_price * multiplier, self.minor_unit)
        subtotal = price_per_passenger * passengers
        taxes = quantize(subtotal * self.tax_rate, self.minor_unit)
        grand_total = subtotal + taxes

        tickets = tuple(
            TicketFare(price=price_per_passenger, taxes_fees=share, total_price=price_per_passenger + share)
            for share in allocate_evenly(taxes, passengers, self.minor_unit)
        )
        return FareQuote(
            base_price=base_price,
            price_multiplier=multiplier,
            passengers=passengers,
            price_per_passenger=price_per_passenger,
            subtotal=subtotal,
            taxes=taxes,
            grand_total=grand_total,
            tickets=tickets,
        )
