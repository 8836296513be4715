from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from loguru import logger

from skybook.db.repositories import FareClassRepository, FlightRepository, SeatRepository, UserRepository
from skybook.errors import NotFoundError
from skybook.models.domain import (
    FareClass,
    Flight,
    FlightStatus,
    Seat,
    User,
    fare_class_from_row,
    flight_from_row,
    seat_from_row,
    user_from_row,
)


@dataclass
class FlightSeats:
    flight: Flight
    seats: list[Seat]


class InventoryStore:
    def __init__(
        self,
        flight_repository: FlightRepository | None = None,
        seat_repository: SeatRepository | None = None,
        fare_class_repository: FareClassRepository | None = None,
        user_repository: UserRepository | None = None,
    ) -> None:
        self.flights = flight_repository or FlightRepository()
        self.seats = seat_repository or SeatRepository()
        self.fare_classes = fare_class_repository or FareClassRepository()
        self.users = user_repository or UserRepository()

    def reset(self) -> None:
        self.seats.reset()
        self.flights.reset()
        self.fare_classes.reset()
        self.users.reset()

    def get_flight(self, flight_id: int) -> Flight:
        row = self.flights.get(flight_id)
        if not row:
            raise NotFoundError("Flight not found")
        return flight_from_row(row)

    def get_fare_class(self, class_id: int) -> FareClass:
        row = self.fare_classes.get(class_id)
        if not row:
            raise NotFoundError("Class not found")
        return fare_class_from_row(row)

    def get_user(self, user_id: int) -> User:
        row = self.users.get(user_id)
        if not row:
            raise NotFoundError("User not found")
        return user_from_row(row)

    def get_flight_with_seats(
        self,
        flight_id: int,
        class_id: int | None = None,
        available_only: bool = True,
        limit: int | None = None,
    ) -> FlightSeats:
        flight = self.get_flight(flight_id)
        rows = self.seats.list_for_plane(flight.plane_id, class_id=class_id, available_only=available_only, limit=limit)
        return FlightSeats(flight=flight, seats=[seat_from_row(row) for row in rows])

    def get_seats(self, seat_ids: list[int]) -> list[Seat]:
        return [seat_from_row(row) for row in self.seats.get_many(seat_ids)]

    def available_seats(self, flight: Flight, seat_ids: list[int]) -> list[Seat]:
        return [seat for seat in self.get_seats(seat_ids) if seat.plane_id == flight.plane_id and seat.is_available]

    def flip_seats(self, seat_ids: list[int], available: bool) -> list[Seat]:
        """Flip every seat or none; raises ConflictError if any seat is not in the opposite state."""
        rows = self.seats.flip(seat_ids, available)
        logger.debug("Flipped seats {} to available={}", seat_ids, available)
        return [seat_from_row(row) for row in rows]

    def add_user(self, user: User) -> User:
        return user_from_row(self.users.upsert(asdict(user)))

    def add_fare_class(self, fare_class: FareClass) -> FareClass:
        row = asdict(fare_class)
        row["price_multiplier"] = str(fare_class.price_multiplier)
        return fare_class_from_row(self.fare_classes.upsert(row))

    def add_seats(self, seats: list[Seat]) -> list[Seat]:
        rows = self.seats.insert_many([asdict(seat) for seat in seats])
        return [seat_from_row(row) for row in rows]

    def add_flight(
        self,
        flight_id: int,
        flight_number: str,
        plane_id: int,
        departure_airport: str,
        arrival_airport: str,
        departure_time: datetime,
        arrival_time: datetime,
        base_price: Decimal,
        status: FlightStatus = FlightStatus.SCHEDULED,
        gate: str | None = None,
        terminal: str | None = None,
    ) -> Flight:
        now = datetime.now(timezone.utc).isoformat()
        row: dict[str, Any] = {
            "id": flight_id,
            "flight_number": flight_number,
            "plane_id": plane_id,
            "departure_airport": departure_airport,
            "arrival_airport": arrival_airport,
            "departure_time": departure_time.isoformat(),
            "arrival_time": arrival_time.isoformat(),
            "base_price": str(base_price),
            "status": status.value,
            "is_active": True,
            "gate": gate,
            "terminal": terminal,
            "created_at": now,
            "updated_at": now,
        }
        stored = self.flights.insert(row)
        logger.info("Flight {} ({}) scheduled for {}", flight_number, flight_id, departure_time.isoformat())
        return flight_from_row(stored)
