from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import RLock
from typing import Any, Iterable
from uuid import uuid4

from skybook.config import get_settings
from skybook.db.supabase_client import get_client
from skybook.errors import (
    ConflictError,
    DuplicateReferenceError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
)
from skybook.models.domain import (
    ACTIVE_TICKET_STATUSES,
    TERMINAL_TICKET_STATUSES,
    FlightStatus,
    TicketStatus,
    TransactionStatus,
    TransactionType,
    ensure_flight_transition,
    ensure_payment_transition,
    ensure_ticket_transition,
    to_datetime,
)


class StorageBackend(str, Enum):
    MEMORY = "memory"
    SUPABASE = "supabase"


def get_storage_backend() -> StorageBackend:
    raw = get_settings().storage_backend.strip().lower()
    if raw == StorageBackend.SUPABASE.value:
        return StorageBackend.SUPABASE
    return StorageBackend.MEMORY


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class _MemoryState:
    users: dict[int, dict[str, Any]] = field(default_factory=dict)
    fare_classes: dict[int, dict[str, Any]] = field(default_factory=dict)
    seats: dict[int, dict[str, Any]] = field(default_factory=dict)
    flights: dict[int, dict[str, Any]] = field(default_factory=dict)
    tickets: dict[str, dict[str, Any]] = field(default_factory=dict)
    transactions: dict[str, dict[str, Any]] = field(default_factory=dict)
    reversal_failures: dict[str, dict[str, Any]] = field(default_factory=dict)
    audit_log: list[dict[str, Any]] = field(default_factory=list)
    lock: RLock = field(default_factory=RLock)

    def reset(self) -> None:
        with self.lock:
            self.users.clear()
            self.fare_classes.clear()
            self.seats.clear()
            self.flights.clear()
            self.tickets.clear()
            self.transactions.clear()
            self.reversal_failures.clear()
            self.audit_log.clear()


_MEMORY_STATE = _MemoryState()

# SQLSTATE codes raised by the functions in supabase/migrations.
_RPC_ERRORS: dict[str, type[Exception]] = {
    "SB400": InvalidStateError,
    "SB403": ForbiddenError,
    "SB404": NotFoundError,
    "SB409": ConflictError,
    "SB410": DuplicateReferenceError,
    "23505": ConflictError,
}


class _BaseRepository:
    def __init__(self) -> None:
        self.backend = get_storage_backend()
        self.client = get_client() if self.backend == StorageBackend.SUPABASE else None

    def _rpc(self, function: str, params: dict[str, Any]) -> Any:
        from postgrest.exceptions import APIError

        try:
            return self.client.rpc(function, params).execute().data
        except APIError as exc:
            error_cls = _RPC_ERRORS.get(exc.code or "")
            if error_cls is None:
                raise
            raise error_cls(exc.message or str(exc)) from exc


def _copy(row: dict[str, Any] | None) -> dict[str, Any] | None:
    return dict(row) if row is not None else None


def _require_seats(seat_ids: Iterable[int], expect_available: bool, plane_id: int | None = None) -> None:
    """Check every seat is present (on ``plane_id`` if given) and in the expected prior state."""
    seat_ids = list(seat_ids)
    if len(set(seat_ids)) != len(seat_ids):
        raise ConflictError("Duplicate seat ids")
    blocked: list[int] = []
    for seat_id in seat_ids:
        seat = _MEMORY_STATE.seats.get(seat_id)
        if seat is None or seat["is_available"] != expect_available:
            blocked.append(seat_id)
        elif plane_id is not None and seat["plane_id"] != plane_id:
            blocked.append(seat_id)
    if blocked:
        raise ConflictError(f"Seats changed state concurrently: {sorted(blocked)}")


def _set_seats(seat_ids: Iterable[int], available: bool) -> None:
    for seat_id in seat_ids:
        _MEMORY_STATE.seats[seat_id]["is_available"] = available


class UserRepository(_BaseRepository):
    def reset(self) -> None:
        if self.backend == StorageBackend.MEMORY:
            _MEMORY_STATE.users.clear()
            return
        self.client.table("users").delete().neq("id", 0).execute()

    def upsert(self, row: dict[str, Any]) -> dict[str, Any]:
        if self.backend == StorageBackend.MEMORY:
            with _MEMORY_STATE.lock:
                _MEMORY_STATE.users[int(row["id"])] = dict(row)
            return dict(row)
        response = self.client.table("users").upsert(row, on_conflict="id").execute()
        return (response.data or [row])[0]

    def get(self, user_id: int) -> dict[str, Any] | None:
        if self.backend == StorageBackend.MEMORY:
            return _copy(_MEMORY_STATE.users.get(user_id))
        response = self.client.table("users").select("*").eq("id", user_id).limit(1).execute()
        rows = response.data or []
        return rows[0] if rows else None


class FareClassRepository(_BaseRepository):
    def reset(self) -> None:
        if self.backend == StorageBackend.MEMORY:
            _MEMORY_STATE.fare_classes.clear()
            return
        self.client.table("classes").delete().neq("id", 0).execute()

    def upsert(self, row: dict[str, Any]) -> dict[str, Any]:
        if self.backend == StorageBackend.MEMORY:
            with _MEMORY_STATE.lock:
                _MEMORY_STATE.fare_classes[int(row["id"])] = dict(row)
            return dict(row)
        response = self.client.table("classes").upsert(row, on_conflict="id").execute()
        return (response.data or [row])[0]

    def get(self, class_id: int) -> dict[str, Any] | None:
        if self.backend == StorageBackend.MEMORY:
            return _copy(_MEMORY_STATE.fare_classes.get(class_id))
        response = self.client.table("classes").select("*").eq("id", class_id).limit(1).execute()
        rows = response.data or []
        return rows[0] if rows else None


class SeatRepository(_BaseRepository):
    def reset(self) -> None:
        if self.backend == StorageBackend.MEMORY:
            _MEMORY_STATE.seats.clear()
            return
        self.client.table("seats").delete().neq("id", 0).execute()

    def insert_many(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if self.backend == StorageBackend.MEMORY:
            with _MEMORY_STATE.lock:
                taken = {(seat["plane_id"], seat["seat_number"]) for seat in _MEMORY_STATE.seats.values()}
                for row in rows:
                    key = (row["plane_id"], row["seat_number"])
                    if row["id"] in _MEMORY_STATE.seats or key in taken:
                        raise ConflictError(f"Seat {row['seat_number']} already exists on plane {row['plane_id']}")
                    taken.add(key)
                for row in rows:
                    _MEMORY_STATE.seats[int(row["id"])] = dict(row)
            return [dict(row) for row in rows]
        response = self.client.table("seats").insert(rows).execute()
        return response.data or rows

    def get_many(self, seat_ids: list[int]) -> list[dict[str, Any]]:
        if self.backend == StorageBackend.MEMORY:
            return [dict(_MEMORY_STATE.seats[seat_id]) for seat_id in seat_ids if seat_id in _MEMORY_STATE.seats]
        if not seat_ids:
            return []
        response = self.client.table("seats").select("*").in_("id", seat_ids).execute()
        return response.data or []

    def list_for_plane(
        self,
        plane_id: int,
        class_id: int | None = None,
        available_only: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        if self.backend == StorageBackend.MEMORY:
            rows = [
                dict(seat)
                for seat in _MEMORY_STATE.seats.values()
                if seat["plane_id"] == plane_id
                and (class_id is None or seat["class_id"] == class_id)
                and (not available_only or seat["is_available"])
            ]
            rows.sort(key=lambda item: item["id"])
            return rows[:limit] if limit is not None else rows
        query = self.client.table("seats").select("*").eq("plane_id", plane_id)
        if class_id is not None:
            query = query.eq("class_id", class_id)
        if available_only:
            query = query.eq("is_available", True)
        query = query.order("id")
        if limit is not None:
            query = query.limit(limit)
        return query.execute().data or []

    def flip(self, seat_ids: list[int], available: bool) -> list[dict[str, Any]]:
        if self.backend == StorageBackend.MEMORY:
            with _MEMORY_STATE.lock:
                _require_seats(seat_ids, expect_available=not available)
                _set_seats(seat_ids, available)
                return [dict(_MEMORY_STATE.seats[seat_id]) for seat_id in seat_ids]
        return self._rpc("skybook_flip_seats", {"p_seat_ids": seat_ids, "p_available": available}) or []


class FlightRepository(_BaseRepository):
    def reset(self) -> None:
        if self.backend == StorageBackend.MEMORY:
            _MEMORY_STATE.flights.clear()
            return
        self.client.table("flights").delete().neq("id", 0).execute()

    def insert(self, row: dict[str, Any]) -> dict[str, Any]:
        if self.backend == StorageBackend.MEMORY:
            with _MEMORY_STATE.lock:
                departure = to_datetime(row["departure_time"])
                for existing in _MEMORY_STATE.flights.values():
                    if (
                        existing["flight_number"] == row["flight_number"]
                        and to_datetime(existing["departure_time"]) == departure
                    ):
                        raise ConflictError(f"Flight {row['flight_number']} already departs at {departure.isoformat()}")
                if row["id"] in _MEMORY_STATE.flights:
                    raise ConflictError(f"Flight id {row['id']} already exists")
                _MEMORY_STATE.flights[int(row["id"])] = dict(row)
            return dict(row)
        response = self.client.table("flights").insert(row).execute()
        return (response.data or [row])[0]

    def get(self, flight_id: int) -> dict[str, Any] | None:
        if self.backend == StorageBackend.MEMORY:
            return _copy(_MEMORY_STATE.flights.get(flight_id))
        response = self.client.table("flights").select("*").eq("id", flight_id).limit(1).execute()
        rows = response.data or []
        return rows[0] if rows else None

    def transition_status(
        self,
        flight_id: int,
        from_statuses: Iterable[FlightStatus],
        to_status: FlightStatus,
    ) -> dict[str, Any]:
        from_statuses = list(from_statuses)
        for status in from_statuses:
            ensure_flight_transition(status, to_status)
        allowed = [status.value for status in from_statuses]
        if self.backend == StorageBackend.MEMORY:
            with _MEMORY_STATE.lock:
                flight = _MEMORY_STATE.flights.get(flight_id)
                if flight is None:
                    raise NotFoundError("Flight not found")
                if flight["status"] not in allowed:
                    raise InvalidStateError(f"Flight is {flight['status']}, expected one of {allowed}")
                flight["status"] = to_status.value
                flight["updated_at"] = _now_iso()
                return dict(flight)
        return self._rpc(
            "skybook_transition_flight",
            {"p_flight_id": flight_id, "p_from": allowed, "p_to": to_status.value},
        )

    def deactivate(self, flight_id: int) -> dict[str, Any]:
        if self.backend == StorageBackend.MEMORY:
            with _MEMORY_STATE.lock:
                flight = _MEMORY_STATE.flights.get(flight_id)
                if flight is None:
                    raise NotFoundError("Flight not found")
                terminal = {status.value for status in TERMINAL_TICKET_STATUSES}
                if any(
                    ticket["flight_id"] == flight_id and ticket["status"] not in terminal
                    for ticket in _MEMORY_STATE.tickets.values()
                ):
                    raise ForbiddenError("Cannot delete flight with active bookings. Cancel all bookings first.")
                flight["is_active"] = False
                flight["updated_at"] = _now_iso()
                return dict(flight)
        return self._rpc("skybook_deactivate_flight", {"p_flight_id": flight_id})


class TicketRepository(_BaseRepository):
    def reset(self) -> None:
        if self.backend == StorageBackend.MEMORY:
            _MEMORY_STATE.tickets.clear()
            return
        self.client.table("tickets").delete().neq("booking_reference", "").execute()

    def get(self, ticket_id: str) -> dict[str, Any] | None:
        if self.backend == StorageBackend.MEMORY:
            return _copy(_MEMORY_STATE.tickets.get(ticket_id))
        response = self.client.table("tickets").select("*").eq("id", ticket_id).limit(1).execute()
        rows = response.data or []
        return rows[0] if rows else None

    def get_by_reference(self, booking_reference: str) -> list[dict[str, Any]]:
        if self.backend == StorageBackend.MEMORY:
            rows = [dict(row) for row in _MEMORY_STATE.tickets.values() if row["booking_reference"] == booking_reference]
            rows.sort(key=lambda item: (item["created_at"], item["seat_id"]))
            return rows
        response = (
            self.client.table("tickets")
            .select("*")
            .eq("booking_reference", booking_reference)
            .order("created_at")
            .order("seat_id")
            .execute()
        )
        return response.data or []

    def reference_exists(self, booking_reference: str) -> bool:
        if self.backend == StorageBackend.MEMORY:
            return any(row["booking_reference"] == booking_reference for row in _MEMORY_STATE.tickets.values())
        response = (
            self.client.table("tickets").select("id").eq("booking_reference", booking_reference).limit(1).execute()
        )
        return bool(response.data)

    def get_by_flight(
        self,
        flight_id: int,
        statuses: Iterable[TicketStatus] | None = None,
    ) -> list[dict[str, Any]]:
        wanted = [status.value for status in statuses] if statuses is not None else None
        if self.backend == StorageBackend.MEMORY:
            rows = [
                dict(row)
                for row in _MEMORY_STATE.tickets.values()
                if row["flight_id"] == flight_id and (wanted is None or row["status"] in wanted)
            ]
            rows.sort(key=lambda item: (item["created_at"], item["seat_id"]))
            return rows
        query = self.client.table("tickets").select("*").eq("flight_id", flight_id)
        if wanted is not None:
            query = query.in_("status", wanted)
        return query.order("created_at").execute().data or []

    def get_by_user(self, user_id: int, offset: int = 0, limit: int = 10) -> tuple[list[dict[str, Any]], int]:
        if self.backend == StorageBackend.MEMORY:
            rows = [dict(row) for row in _MEMORY_STATE.tickets.values() if row["user_id"] == user_id]
            rows.sort(key=lambda item: item["created_at"], reverse=True)
            return rows[offset : offset + limit], len(rows)
        response = (
            self.client.table("tickets")
            .select("*", count="exact")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )
        return response.data or [], int(response.count or 0)


class TransactionRepository(_BaseRepository):
    def reset(self) -> None:
        if self.backend == StorageBackend.MEMORY:
            _MEMORY_STATE.transactions.clear()
            return
        self.client.table("transactions").delete().neq("reference_id", "").execute()

    def get(self, transaction_id: str) -> dict[str, Any] | None:
        if self.backend == StorageBackend.MEMORY:
            return _copy(_MEMORY_STATE.transactions.get(transaction_id))
        response = self.client.table("transactions").select("*").eq("id", transaction_id).limit(1).execute()
        rows = response.data or []
        return rows[0] if rows else None

    def get_by_reference(self, reference_id: str) -> list[dict[str, Any]]:
        if self.backend == StorageBackend.MEMORY:
            rows = [dict(row) for row in _MEMORY_STATE.transactions.values() if row["reference_id"] == reference_id]
            rows.sort(key=lambda item: item["created_at"])
            return rows
        response = (
            self.client.table("transactions").select("*").eq("reference_id", reference_id).order("created_at").execute()
        )
        return response.data or []

    def get_by_user(self, user_id: int) -> list[dict[str, Any]]:
        if self.backend == StorageBackend.MEMORY:
            rows = [dict(row) for row in _MEMORY_STATE.transactions.values() if row["user_id"] == user_id]
            rows.sort(key=lambda item: item["created_at"])
            return rows
        response = self.client.table("transactions").select("*").eq("user_id", user_id).order("created_at").execute()
        return response.data or []

    def record_gateway_attempt(self, transaction_id: str, gateway: str, response: dict[str, Any]) -> dict[str, Any]:
        values = {"gateway": gateway, "gateway_response": response, "updated_at": _now_iso()}
        if self.backend == StorageBackend.MEMORY:
            with _MEMORY_STATE.lock:
                row = _MEMORY_STATE.transactions.get(transaction_id)
                if row is None:
                    raise NotFoundError("Transaction not found")
                if row["status"] != TransactionStatus.PENDING.value:
                    raise InvalidStateError(f"Transaction is already {row['status']}")
                row.update(values)
                return dict(row)
        updated = (
            self.client.table("transactions")
            .update(values)
            .eq("id", transaction_id)
            .eq("status", TransactionStatus.PENDING.value)
            .execute()
        )
        rows = updated.data or []
        if not rows:
            raise InvalidStateError("Transaction is no longer pending")
        return rows[0]


class ReversalFailureRepository(_BaseRepository):
    def reset(self) -> None:
        if self.backend == StorageBackend.MEMORY:
            _MEMORY_STATE.reversal_failures.clear()
            return
        self.client.table("reversal_failures").delete().neq("ticket_id", "").execute()

    def insert(self, row: dict[str, Any]) -> dict[str, Any]:
        if self.backend == StorageBackend.MEMORY:
            if "id" not in row:
                row = {**row, "id": str(uuid4())}
            with _MEMORY_STATE.lock:
                _MEMORY_STATE.reversal_failures[row["id"]] = dict(row)
            return dict(row)
        response = self.client.table("reversal_failures").insert(row).execute()
        return (response.data or [row])[0]

    def get_by_flight(self, flight_id: int, unresolved_only: bool = True) -> list[dict[str, Any]]:
        if self.backend == StorageBackend.MEMORY:
            rows = [
                dict(row)
                for row in _MEMORY_STATE.reversal_failures.values()
                if row["flight_id"] == flight_id and (not unresolved_only or not row["resolved"])
            ]
            rows.sort(key=lambda item: item["created_at"])
            return rows
        query = self.client.table("reversal_failures").select("*").eq("flight_id", flight_id)
        if unresolved_only:
            query = query.eq("resolved", False)
        return query.order("created_at").execute().data or []

    def resolve_ticket(self, ticket_id: str) -> None:
        values = {"resolved": True, "resolved_at": _now_iso()}
        if self.backend == StorageBackend.MEMORY:
            with _MEMORY_STATE.lock:
                for row in _MEMORY_STATE.reversal_failures.values():
                    if row["ticket_id"] == ticket_id and not row["resolved"]:
                        row.update(values)
            return
        self.client.table("reversal_failures").update(values).eq("ticket_id", ticket_id).eq("resolved", False).execute()


class AuditRepository(_BaseRepository):
    def reset(self) -> None:
        if self.backend == StorageBackend.MEMORY:
            _MEMORY_STATE.audit_log.clear()
            return
        self.client.table("audit_log").delete().neq("action", "").execute()

    def insert(self, row: dict[str, Any]) -> dict[str, Any]:
        if self.backend == StorageBackend.MEMORY:
            if "id" not in row:
                row = {**row, "id": str(uuid4())}
            with _MEMORY_STATE.lock:
                _MEMORY_STATE.audit_log.append(row)
                _MEMORY_STATE.audit_log.sort(key=lambda item: item["timestamp"])
            return row
        response = self.client.table("audit_log").insert(row).execute()
        return (response.data or [row])[0]

    def get_by_reference(self, reference: str) -> list[dict[str, Any]]:
        if self.backend == StorageBackend.MEMORY:
            return [dict(row) for row in _MEMORY_STATE.audit_log if row.get("reference") == reference]
        response = self.client.table("audit_log").select("*").eq("reference", reference).order("timestamp").execute()
        return response.data or []

    def get_by_action(self, action: str) -> list[dict[str, Any]]:
        if self.backend == StorageBackend.MEMORY:
            return [dict(row) for row in _MEMORY_STATE.audit_log if row.get("action") == action]
        response = self.client.table("audit_log").select("*").eq("action", action).order("timestamp").execute()
        return response.data or []


class BookingLedgerRepository(_BaseRepository):
    """Multi-row units that must commit or fail as a whole.

    The memory backend validates every precondition under the state lock
    before touching anything; the supabase backend delegates each unit to one
    Postgres function so it runs inside a single database transaction.
    """

    def commit_booking(
        self,
        flight_id: int,
        seat_ids: list[int],
        tickets: list[dict[str, Any]],
        payment: dict[str, Any],
    ) -> dict[str, Any]:
        if self.backend == StorageBackend.MEMORY:
            with _MEMORY_STATE.lock:
                flight = _MEMORY_STATE.flights.get(flight_id)
                if flight is None:
                    raise NotFoundError("Flight not found")
                if flight["status"] != FlightStatus.SCHEDULED.value or not flight.get("is_active", True):
                    raise InvalidStateError("Flight is not available for booking")
                reference = payment["reference_id"]
                if any(row["booking_reference"] == reference for row in _MEMORY_STATE.tickets.values()):
                    raise DuplicateReferenceError(f"Booking reference {reference} already exists")
                _require_seats(seat_ids, expect_available=True, plane_id=flight["plane_id"])

                _set_seats(seat_ids, False)
                for row in tickets:
                    _MEMORY_STATE.tickets[row["id"]] = dict(row)
                _MEMORY_STATE.transactions[payment["id"]] = dict(payment)
                return {"tickets": [dict(row) for row in tickets], "transaction": dict(payment)}
        return self._rpc(
            "skybook_commit_booking",
            {"p_flight_id": flight_id, "p_seat_ids": seat_ids, "p_tickets": tickets, "p_payment": payment},
        )

    def commit_cancellation(
        self,
        booking_reference: str,
        user_id: int,
        ticket_ids: list[str],
        refund: dict[str, Any],
        now: datetime,
    ) -> dict[str, Any]:
        if self.backend == StorageBackend.MEMORY:
            with _MEMORY_STATE.lock:
                rows = self._require_active_tickets(ticket_ids)
                if any(row["booking_reference"] != booking_reference or row["user_id"] != user_id for row in rows):
                    raise ConflictError("Tickets do not belong to this booking")
                flight = _MEMORY_STATE.flights[rows[0]["flight_id"]]
                if to_datetime(flight["departure_time"]) < now:
                    raise InvalidStateError("Cannot cancel booking after flight departure")
                seat_ids = [row["seat_id"] for row in rows]
                _require_seats(seat_ids, expect_available=False)

                cancelled = self._cancel_tickets(rows)
                _set_seats(seat_ids, True)
                _MEMORY_STATE.transactions[refund["id"]] = dict(refund)
                voided = self._void_pending_payments(booking_reference)
                return {"tickets": cancelled, "transaction": dict(refund), "voided_payments": voided}
        return self._rpc(
            "skybook_commit_cancellation",
            {
                "p_reference": booking_reference,
                "p_user_id": user_id,
                "p_ticket_ids": ticket_ids,
                "p_refund": refund,
                "p_now": now.isoformat(),
            },
        )

    def commit_ticket_reversal(self, ticket_id: str, refund: dict[str, Any]) -> dict[str, Any]:
        if self.backend == StorageBackend.MEMORY:
            with _MEMORY_STATE.lock:
                rows = self._require_active_tickets([ticket_id])
                seat_ids = [rows[0]["seat_id"]]
                _require_seats(seat_ids, expect_available=False)

                cancelled = self._cancel_tickets(rows)
                _set_seats(seat_ids, True)
                _MEMORY_STATE.transactions[refund["id"]] = dict(refund)
                voided: list[str] = []
                if not self._has_active_tickets(rows[0]["booking_reference"]):
                    voided = self._void_pending_payments(rows[0]["booking_reference"])
                return {"tickets": cancelled, "transaction": dict(refund), "voided_payments": voided}
        return self._rpc("skybook_reverse_ticket", {"p_ticket_id": ticket_id, "p_refund": refund})

    def apply_payment_outcome(
        self,
        transaction_id: str,
        status: TransactionStatus,
        gateway_response: dict[str, Any],
    ) -> dict[str, Any]:
        """Move a PENDING payment to ``status``; returns whether anything changed."""
        ensure_payment_transition(TransactionStatus.PENDING, status)
        if self.backend == StorageBackend.MEMORY:
            with _MEMORY_STATE.lock:
                row = _MEMORY_STATE.transactions.get(transaction_id)
                if row is None:
                    return {"transaction": None, "applied": False, "confirmed_tickets": 0}
                if row["type"] != TransactionType.PAYMENT.value or row["status"] != TransactionStatus.PENDING.value:
                    return {"transaction": dict(row), "applied": False, "confirmed_tickets": 0}
                now = _now_iso()
                row.update({"status": status.value, "gateway_response": gateway_response, "updated_at": now})
                confirmed = 0
                if status == TransactionStatus.COMPLETED:
                    for ticket in _MEMORY_STATE.tickets.values():
                        if (
                            ticket["booking_reference"] == row["reference_id"]
                            and ticket["status"] == TicketStatus.BOOKED.value
                        ):
                            ticket.update({"status": TicketStatus.CONFIRMED.value, "updated_at": now})
                            confirmed += 1
                return {"transaction": dict(row), "applied": True, "confirmed_tickets": confirmed}
        return self._rpc(
            "skybook_apply_payment_outcome",
            {"p_transaction_id": transaction_id, "p_status": status.value, "p_gateway_response": gateway_response},
        )

    def transition_tickets(
        self,
        ticket_ids: list[str],
        from_statuses: Iterable[TicketStatus],
        to_status: TicketStatus,
    ) -> list[dict[str, Any]]:
        from_statuses = list(from_statuses)
        for status in from_statuses:
            ensure_ticket_transition(status, to_status)
        allowed = [status.value for status in from_statuses]
        if self.backend == StorageBackend.MEMORY:
            with _MEMORY_STATE.lock:
                rows = [_MEMORY_STATE.tickets.get(ticket_id) for ticket_id in ticket_ids]
                if any(row is None or row["status"] not in allowed for row in rows):
                    raise ConflictError("Tickets changed state concurrently")
                now = _now_iso()
                for row in rows:
                    row.update({"status": to_status.value, "updated_at": now})
                return [dict(row) for row in rows]
        return self._rpc(
            "skybook_transition_tickets",
            {"p_ticket_ids": ticket_ids, "p_from": allowed, "p_to": to_status.value},
        ) or []

    @staticmethod
    def _require_active_tickets(ticket_ids: list[str]) -> list[dict[str, Any]]:
        active = {status.value for status in ACTIVE_TICKET_STATUSES}
        rows = [_MEMORY_STATE.tickets.get(ticket_id) for ticket_id in ticket_ids]
        if not rows or any(row is None or row["status"] not in active for row in rows):
            raise ConflictError("Tickets are no longer active")
        return rows

    @staticmethod
    def _cancel_tickets(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        now = _now_iso()
        for row in rows:
            ensure_ticket_transition(TicketStatus(row["status"]), TicketStatus.CANCELLED)
            row.update({"status": TicketStatus.CANCELLED.value, "updated_at": now})
        return [dict(row) for row in rows]

    @staticmethod
    def _has_active_tickets(booking_reference: str) -> bool:
        active = {status.value for status in ACTIVE_TICKET_STATUSES}
        return any(
            row["booking_reference"] == booking_reference and row["status"] in active
            for row in _MEMORY_STATE.tickets.values()
        )

    @staticmethod
    def _void_pending_payments(booking_reference: str) -> list[str]:
        """Fail the booking's PENDING payments so a cancelled booking cannot be paid."""
        now = _now_iso()
        voided: list[str] = []
        for row in _MEMORY_STATE.transactions.values():
            if (
                row["reference_id"] == booking_reference
                and row["type"] == TransactionType.PAYMENT.value
                and row["status"] == TransactionStatus.PENDING.value
            ):
                row.update(
                    {
                        "status": TransactionStatus.FAILED.value,
                        "gateway_response": {"reason": "booking_cancelled"},
                        "updated_at": now,
                    }
                )
                voided.append(row["id"])
        return voided


def reset_memory_backend() -> None:
    _MEMORY_STATE.reset()
