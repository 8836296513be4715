from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from skybook.errors import InvalidStateError


class FlightStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    DELAYED = "DELAYED"
    BOARDING = "BOARDING"
    DEPARTED = "DEPARTED"
    ARRIVED = "ARRIVED"
    CANCELLED = "CANCELLED"


class TicketStatus(str, Enum):
    BOOKED = "BOOKED"
    CONFIRMED = "CONFIRMED"
    CHECKED_IN = "CHECKED_IN"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class TransactionType(str, Enum):
    PAYMENT = "PAYMENT"
    REFUND = "REFUND"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


ACTIVE_TICKET_STATUSES = frozenset({TicketStatus.BOOKED, TicketStatus.CONFIRMED})
TERMINAL_TICKET_STATUSES = frozenset({TicketStatus.CANCELLED, TicketStatus.COMPLETED})

TICKET_TRANSITIONS: dict[TicketStatus, frozenset[TicketStatus]] = {
    TicketStatus.BOOKED: frozenset({TicketStatus.CONFIRMED, TicketStatus.CANCELLED}),
    TicketStatus.CONFIRMED: frozenset({TicketStatus.CHECKED_IN, TicketStatus.CANCELLED}),
    TicketStatus.CHECKED_IN: frozenset({TicketStatus.COMPLETED}),
    TicketStatus.CANCELLED: frozenset(),
    TicketStatus.COMPLETED: frozenset(),
}

FLIGHT_TRANSITIONS: dict[FlightStatus, frozenset[FlightStatus]] = {
    FlightStatus.SCHEDULED: frozenset(
        {FlightStatus.DELAYED, FlightStatus.BOARDING, FlightStatus.DEPARTED, FlightStatus.CANCELLED}
    ),
    FlightStatus.DELAYED: frozenset({FlightStatus.SCHEDULED, FlightStatus.BOARDING, FlightStatus.CANCELLED}),
    FlightStatus.BOARDING: frozenset({FlightStatus.DEPARTED, FlightStatus.CANCELLED}),
    FlightStatus.DEPARTED: frozenset({FlightStatus.ARRIVED}),
    FlightStatus.ARRIVED: frozenset(),
    FlightStatus.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({TransactionStatus.COMPLETED, TransactionStatus.FAILED}),
    TransactionStatus.COMPLETED: frozenset(),
    TransactionStatus.FAILED: frozenset(),
}


def ensure_ticket_transition(current: TicketStatus, target: TicketStatus) -> None:
    if target not in TICKET_TRANSITIONS[current]:
        raise InvalidStateError(f"Invalid ticket transition: {current.value} -> {target.value}")


def ensure_flight_transition(current: FlightStatus, target: FlightStatus) -> None:
    if target not in FLIGHT_TRANSITIONS[current]:
        raise InvalidStateError(f"Invalid flight transition: {current.value} -> {target.value}")


def ensure_payment_transition(current: TransactionStatus, target: TransactionStatus) -> None:
    if target not in PAYMENT_TRANSITIONS[current]:
        raise InvalidStateError(f"Invalid payment transition: {current.value} -> {target.value}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_datetime(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def to_decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass
class User:
    id: int
    full_name: str
    email: str
    is_active: bool = True


@dataclass
class FareClass:
    id: int
    name: str
    price_multiplier: Decimal
    baggage_allowance_kg: int = 0
    cabin_baggage_kg: int = 0
    meal_service: bool = False
    priority_boarding: bool = False


@dataclass
class Seat:
    id: int
    plane_id: int
    seat_number: str
    class_id: int
    is_available: bool = True
    is_window: bool = False
    is_aisle: bool = False


@dataclass
class Flight:
    id: int
    flight_number: str
    plane_id: int
    departure_airport: str
    arrival_airport: str
    departure_time: datetime
    arrival_time: datetime
    base_price: Decimal
    status: FlightStatus = FlightStatus.SCHEDULED
    is_active: bool = True
    gate: str | None = None
    terminal: str | None = None

    @property
    def is_bookable(self) -> bool:
        return self.is_active and self.status == FlightStatus.SCHEDULED


@dataclass
class Ticket:
    id: str
    booking_reference: str
    flight_id: int
    user_id: int
    seat_id: int
    class_id: int
    passenger_name: str
    price: Decimal
    taxes_fees: Decimal
    total_price: Decimal
    status: TicketStatus
    created_at: datetime
    updated_at: datetime
    passenger_passport: str | None = None
    special_requests: dict[str, Any] = field(default_factory=dict)


@dataclass
class Transaction:
    id: str
    user_id: int
    amount: Decimal
    type: TransactionType
    status: TransactionStatus
    reference_id: str
    description: str
    created_at: datetime
    updated_at: datetime
    gateway: str | None = None
    gateway_response: dict[str, Any] | None = None


@dataclass
class ReversalFailure:
    id: str
    flight_id: int
    ticket_id: str
    reason: str
    error: str
    resolved: bool
    created_at: datetime


def user_from_row(row: dict[str, Any]) -> User:
    return User(
        id=int(row["id"]),
        full_name=row.get("full_name", ""),
        email=row.get("email", ""),
        is_active=bool(row.get("is_active", True)),
    )


def fare_class_from_row(row: dict[str, Any]) -> FareClass:
    return FareClass(
        id=int(row["id"]),
        name=row["name"],
        price_multiplier=to_decimal(row["price_multiplier"]),
        baggage_allowance_kg=int(row.get("baggage_allowance_kg") or 0),
        cabin_baggage_kg=int(row.get("cabin_baggage_kg") or 0),
        meal_service=bool(row.get("meal_service", False)),
        priority_boarding=bool(row.get("priority_boarding", False)),
    )


def seat_from_row(row: dict[str, Any]) -> Seat:
    return Seat(
        id=int(row["id"]),
        plane_id=int(row["plane_id"]),
        seat_number=row["seat_number"],
        class_id=int(row["class_id"]),
        is_available=bool(row["is_available"]),
        is_window=bool(row.get("is_window", False)),
        is_aisle=bool(row.get("is_aisle", False)),
    )


def flight_from_row(row: dict[str, Any]) -> Flight:
    return Flight(
        id=int(row["id"]),
        flight_number=row["flight_number"],
        plane_id=int(row["plane_id"]),
        departure_airport=row["departure_airport"],
        arrival_airport=row["arrival_airport"],
        departure_time=to_datetime(row["departure_time"]),
        arrival_time=to_datetime(row["arrival_time"]),
        base_price=to_decimal(row["base_price"]),
        status=FlightStatus(row.get("status", FlightStatus.SCHEDULED.value)),
        is_active=bool(row.get("is_active", True)),
        gate=row.get("gate"),
        terminal=row.get("terminal"),
    )


def ticket_from_row(row: dict[str, Any]) -> Ticket:
    return Ticket(
        id=str(row["id"]),
        booking_reference=row["booking_reference"],
        flight_id=int(row["flight_id"]),
        user_id=int(row["user_id"]),
        seat_id=int(row["seat_id"]),
        class_id=int(row["class_id"]),
        passenger_name=row["passenger_name"],
        passenger_passport=row.get("passenger_passport"),
        special_requests=row.get("special_requests") or {},
        price=to_decimal(row["price"]),
        taxes_fees=to_decimal(row["taxes_fees"]),
        total_price=to_decimal(row["total_price"]),
        status=TicketStatus(row["status"]),
        created_at=to_datetime(row["created_at"]),
        updated_at=to_datetime(row["updated_at"]),
    )


def transaction_from_row(row: dict[str, Any]) -> Transaction:
    return Transaction(
        id=str(row["id"]),
        user_id=int(row["user_id"]),
        amount=to_decimal(row["amount"]),
        type=TransactionType(row["type"]),
        status=TransactionStatus(row["status"]),
        reference_id=row["reference_id"],
        description=row.get("description") or "",
        gateway=row.get("gateway"),
        gateway_response=row.get("gateway_response"),
        created_at=to_datetime(row["created_at"]),
        updated_at=to_datetime(row["updated_at"]),
    )


def reversal_failure_from_row(row: dict[str, Any]) -> ReversalFailure:
    return ReversalFailure(
        id=str(row["id"]),
        flight_id=int(row["flight_id"]),
        ticket_id=str(row["ticket_id"]),
        reason=row.get("reason") or "",
        error=row.get("error") or "",
        resolved=bool(row.get("resolved", False)),
        created_at=to_datetime(row["created_at"]),
    )
