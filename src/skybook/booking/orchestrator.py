from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable
from uuid import uuid4

from loguru import logger

from skybook.audit.lineage import AuditStore
from skybook.db.repositories import BookingLedgerRepository, TicketRepository, TransactionRepository
from skybook.errors import ConflictError, DuplicateReferenceError, InvalidStateError, NotFoundError
from skybook.fares.calculator import FareCalculator, FareQuote
from skybook.models.domain import (
    Ticket,
    TicketStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
    ticket_from_row,
    transaction_from_row,
)
from skybook.models.events import DomainEvent, DomainEventType
from skybook.stores.inventory import InventoryStore

_REFERENCE_ALPHABET = string.digits + string.ascii_uppercase


def _base36(value: int) -> str:
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_REFERENCE_ALPHABET[remainder])
    return "".join(reversed(digits)) or "0"


def generate_booking_reference() -> str:
    """``BK`` + 6 random base-36 characters + the low 4 base-36 digits of the nanosecond clock."""
    random_part = "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(6))
    clock_part = _base36(time.time_ns())[-4:].rjust(4, "0")
    return f"BK{random_part}{clock_part}"


@dataclass
class PassengerDetails:
    name: str | None = None
    passport: str | None = None
    special_requests: dict[str, Any] = field(default_factory=dict)


@dataclass
class BookingResult:
    reference: str
    tickets: list[Ticket]
    grand_total: Decimal
    transaction_id: str
    quote: FareQuote


@dataclass
class Booking:
    reference: str
    user_id: int
    flight_id: int
    tickets: list[Ticket]
    transactions: list[Transaction]

    @property
    def total_price(self) -> Decimal:
        return sum((ticket.total_price for ticket in self.tickets), Decimal("0"))

    @property
    def payment(self) -> Transaction | None:
        payments = [item for item in self.transactions if item.type == TransactionType.PAYMENT]
        return payments[-1] if payments else None


@dataclass
class BookingPage:
    items: list[Ticket]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.total else 1


class BookingOrchestrator:
    def __init__(
        self,
        inventory: InventoryStore,
        fare_calculator: FareCalculator,
        ledger: BookingLedgerRepository | None = None,
        tickets: TicketRepository | None = None,
        transactions: TransactionRepository | None = None,
        bus: Any | None = None,
        audit_store: AuditStore | None = None,
        reference_attempts: int = 5,
        reference_factory: Callable[[], str] = generate_booking_reference,
        currency: str = "USD",
    ) -> None:
        self.inventory = inventory
        self.fare_calculator = fare_calculator
        self.ledger = ledger or BookingLedgerRepository()
        self.tickets = tickets or TicketRepository()
        self.transactions = transactions or TransactionRepository()
        self.bus = bus
        self.audit_store = audit_store
        self.reference_attempts = reference_attempts
        self.reference_factory = reference_factory
        self.currency = currency

    def create_booking(
        self,
        user_id: int,
        flight_id: int,
        class_id: int,
        seat_ids: list[int],
        passengers: int,
        passenger_details: list[PassengerDetails] | None = None,
    ) -> BookingResult:
        self.inventory.get_user(user_id)
        flight = self.inventory.get_flight(flight_id)
        if not flight.is_bookable:
            raise InvalidStateError("Flight is not available for booking")

        seats = self.inventory.get_seats(seat_ids)
        on_plane = {seat.id for seat in seats if seat.plane_id == flight.plane_id}
        if any(seat_id not in on_plane for seat_id in seat_ids):
            raise InvalidStateError("Some seats do not belong to this flight")
        available = self.inventory.available_seats(flight, seat_ids)
        if len(set(seat_ids)) != len(seat_ids) or len(available) != len(seat_ids) or len(seat_ids) != passengers:
            raise InvalidStateError("Not enough available seats")

        fare_class = self.inventory.get_fare_class(class_id)
        quote = self.fare_calculator.quote(flight.base_price, fare_class, passengers)
        details = self._expand_details(passenger_details, passengers)

        for attempt in range(1, self.reference_attempts + 1):
            reference = self.reference_factory()
            if self.tickets.reference_exists(reference):
                logger.warning("Booking reference {} already taken (attempt {})", reference, attempt)
                continue
            tickets, payment = self._build_rows(reference, user_id, flight_id, class_id, seat_ids, quote, details)
            try:
                committed = self.ledger.commit_booking(flight_id, seat_ids, tickets, payment)
            except DuplicateReferenceError:
                logger.warning("Booking reference {} collided at commit (attempt {})", reference, attempt)
                continue
            except ConflictError:
                logger.info("Seat race lost on flight {} for seats {}", flight_id, seat_ids)
                raise
            return self._finish(reference, user_id, flight_id, seat_ids, quote, committed)
        raise ConflictError("Could not allocate a unique booking reference")

    def get_booking(self, reference: str) -> Booking:
        rows = self.tickets.get_by_reference(reference)
        if not rows:
            raise NotFoundError("Booking not found")
        tickets = [ticket_from_row(row) for row in rows]
        transactions = [transaction_from_row(row) for row in self.transactions.get_by_reference(reference)]
        return Booking(
            reference=reference,
            user_id=tickets[0].user_id,
            flight_id=tickets[0].flight_id,
            tickets=tickets,
            transactions=transactions,
        )

    def list_user_bookings(self, user_id: int, page: int = 1, limit: int = 10) -> BookingPage:
        if page < 1 or not 1 <= limit <= 100:
            raise InvalidStateError("page must be >= 1 and limit between 1 and 100")
        rows, total = self.tickets.get_by_user(user_id, offset=(page - 1) * limit, limit=limit)
        return BookingPage(items=[ticket_from_row(row) for row in rows], page=page, limit=limit, total=total)

    def check_in(self, reference: str, user_id: int) -> list[Ticket]:
        rows = [
            row
            for row in self.tickets.get_by_reference(reference)
            if row["user_id"] == user_id and row["status"] == TicketStatus.CONFIRMED.value
        ]
        if not rows:
            raise NotFoundError("Ticket not found or already checked in")
        updated = self.ledger.transition_tickets(
            [row["id"] for row in rows], [TicketStatus.CONFIRMED], TicketStatus.CHECKED_IN
        )
        if self.audit_store:
            self.audit_store.log(
                action="booking_checked_in",
                component="booking_orchestrator",
                reference=reference,
                user_id=user_id,
                detail={"ticket_ids": [row["id"] for row in updated]},
            )
        return [ticket_from_row(row) for row in updated]

    @staticmethod
    def _expand_details(details: list[PassengerDetails] | None, passengers: int) -> list[PassengerDetails]:
        details = details or []
        if len(details) == 1 and passengers > 1:
            details = details * passengers
        if len(details) > passengers:
            raise InvalidStateError("More passenger details than passengers")
        expanded: list[PassengerDetails] = []
        for index in range(passengers):
            entry = details[index] if index < len(details) else PassengerDetails()
            expanded.append(
                PassengerDetails(
                    name=entry.name or f"Passenger {index + 1}",
                    passport=entry.passport,
                    special_requests=dict(entry.special_requests),
                )
            )
        return expanded

    def _build_rows(
        self,
        reference: str,
        user_id: int,
        flight_id: int,
        class_id: int,
        seat_ids: list[int],
        quote: FareQuote,
        details: list[PassengerDetails],
    ) -> tuple[list[dict[str, Any]], dict[str, Any]]:
        now = datetime.now(timezone.utc).isoformat()
        tickets = [
            {
                "id": str(uuid4()),
                "booking_reference": reference,
                "flight_id": flight_id,
                "user_id": user_id,
                "seat_id": seat_id,
                "class_id": class_id,
                "passenger_name": passenger.name,
                "passenger_passport": passenger.passport,
                "special_requests": passenger.special_requests,
                "price": str(fare.price),
                "taxes_fees": str(fare.taxes_fees),
                "total_price": str(fare.total_price),
                "status": TicketStatus.BOOKED.value,
                "created_at": now,
                "updated_at": now,
            }
            for seat_id, passenger, fare in zip(seat_ids, details, quote.tickets)
        ]
        payment = {
            "id": str(uuid4()),
            "user_id": user_id,
            "amount": str(quote.grand_total),
            "type": TransactionType.PAYMENT.value,
            "status": TransactionStatus.PENDING.value,
            "reference_id": reference,
            "description": f"Flight booking {reference}",
            "gateway": None,
            "gateway_response": None,
            "created_at": now,
            "updated_at": now,
        }
        return tickets, payment

    def _finish(
        self,
        reference: str,
        user_id: int,
        flight_id: int,
        seat_ids: list[int],
        quote: FareQuote,
        committed: dict[str, Any],
    ) -> BookingResult:
        tickets = [ticket_from_row(row) for row in committed["tickets"]]
        transaction_id = str(committed["transaction"]["id"])
        logger.info(
            "Booking {} created: flight={} seats={} total={}", reference, flight_id, seat_ids, quote.grand_total
        )
        if self.audit_store:
            self.audit_store.log(
                action="booking_created",
                component="booking_orchestrator",
                reference=reference,
                user_id=user_id,
                detail={
                    "flight_id": flight_id,
                    "seat_ids": seat_ids,
                    "grand_total": str(quote.grand_total),
                    "transaction_id": transaction_id,
                },
            )
        if self.bus:
            self.bus.publish(
                DomainEvent(
                    event_type=DomainEventType.BOOKING_CREATED,
                    booking_reference=reference,
                    transaction_id=transaction_id,
                    flight_id=flight_id,
                    user_id=user_id,
                    amount=quote.grand_total,
                    currency=self.currency,
                    metadata={"seat_ids": seat_ids, "ticket_ids": [ticket.id for ticket in tickets]},
                )
            )
        return BookingResult(
            reference=reference,
            tickets=tickets,
            grand_total=quote.grand_total,
            transaction_id=transaction_id,
            quote=quote,
        )
