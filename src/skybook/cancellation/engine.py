from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from loguru import logger

from skybook.audit.lineage import AuditStore
from skybook.db.repositories import (
    BookingLedgerRepository,
    FlightRepository,
    ReversalFailureRepository,
    TicketRepository,
)
from skybook.errors import InvalidStateError, NotFoundError
from skybook.models.domain import (
    ACTIVE_TICKET_STATUSES,
    FLIGHT_TRANSITIONS,
    Flight,
    FlightStatus,
    ReversalFailure,
    Ticket,
    TicketStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
    flight_from_row,
    reversal_failure_from_row,
    ticket_from_row,
    to_decimal,
    transaction_from_row,
    utcnow,
)
from skybook.models.events import DomainEvent, DomainEventType

DEFAULT_FLIGHT_CANCELLATION_REASON = "Administrative cancellation"

# every status that may still move to CANCELLED
_CANCELLABLE_FLIGHT_STATUSES = [
    status for status, targets in FLIGHT_TRANSITIONS.items() if FlightStatus.CANCELLED in targets
]


@dataclass
class CancellationResult:
    reference: str
    tickets: list[Ticket]
    refund: Transaction

    @property
    def refund_amount(self) -> Decimal:
        return self.refund.amount


@dataclass
class CancelFlightResult:
    flight_id: int
    cancelled_ticket_count: int
    failures: list[ReversalFailure] = field(default_factory=list)
    refund_total: Decimal = Decimal("0")


class CancellationEngine:
    def __init__(
        self,
        ledger: BookingLedgerRepository | None = None,
        flights: FlightRepository | None = None,
        tickets: TicketRepository | None = None,
        reversal_failures: ReversalFailureRepository | None = None,
        bus: Any | None = None,
        audit_store: AuditStore | None = None,
        currency: str = "USD",
    ) -> None:
        self.ledger = ledger or BookingLedgerRepository()
        self.flights = flights or FlightRepository()
        self.tickets = tickets or TicketRepository()
        self.reversal_failures = reversal_failures or ReversalFailureRepository()
        self.bus = bus
        self.audit_store = audit_store
        self.currency = currency

    def cancel_booking(self, reference: str, user_id: int, now: datetime | None = None) -> CancellationResult:
        active = {status.value for status in ACTIVE_TICKET_STATUSES}
        owned = [row for row in self.tickets.get_by_reference(reference) if row["user_id"] == user_id]
        if not owned:
            raise NotFoundError("Booking not found")
        rows = [row for row in owned if row["status"] in active]
        if not rows:
            if all(row["status"] == TicketStatus.CANCELLED.value for row in owned):
                raise InvalidStateError("Booking is already cancelled")
            raise InvalidStateError("Booking is already processed")

        total = sum((to_decimal(row["total_price"]) for row in rows), Decimal("0"))
        refund = self._refund_row(user_id, -total, reference, f"Refund for cancelled booking {reference}")
        committed = self.ledger.commit_cancellation(
            reference, user_id, [row["id"] for row in rows], refund, now or utcnow()
        )
        tickets = [ticket_from_row(row) for row in committed["tickets"]]
        refund_txn = transaction_from_row(committed["transaction"])
        voided = committed.get("voided_payments") or []
        flight_id = tickets[0].flight_id

        logger.info("Booking {} cancelled: {} tickets, refund {}", reference, len(tickets), refund_txn.amount)
        self._audit(
            "booking_cancelled",
            reference,
            user_id,
            {
                "flight_id": flight_id,
                "ticket_ids": [ticket.id for ticket in tickets],
                "refund": str(refund_txn.amount),
                "voided_payments": voided,
            },
        )
        self._publish(
            DomainEvent(
                event_type=DomainEventType.BOOKING_CANCELLED,
                booking_reference=reference,
                transaction_id=refund_txn.id,
                flight_id=flight_id,
                user_id=user_id,
                amount=refund_txn.amount,
                currency=self.currency,
                metadata={"seat_ids": [ticket.seat_id for ticket in tickets], "voided_payments": voided},
            )
        )
        return CancellationResult(reference=reference, tickets=tickets, refund=refund_txn)

    def cancel_flight(self, flight_id: int, reason: str | None = None) -> CancelFlightResult:
        """Cancel the flight, then reverse each active ticket in its own unit.

        Reversal failures do not stop the loop; they are stored and reported so
        ``retry_flight_reversals`` can finish the job.
        """
        flight = self._get_flight(flight_id)
        if flight.status == FlightStatus.CANCELLED:
            raise InvalidStateError("Flight is already cancelled")
        reason = reason or DEFAULT_FLIGHT_CANCELLATION_REASON
        self.flights.transition_status(flight_id, _CANCELLABLE_FLIGHT_STATUSES, FlightStatus.CANCELLED)
        logger.info("Flight {} ({}) cancelled: {}", flight.flight_number, flight_id, reason)

        result = self._reverse_active_tickets(flight, reason)
        self._audit(
            "flight_cancelled",
            None,
            None,
            {
                "flight_id": flight_id,
                "flight_number": flight.flight_number,
                "reason": reason,
                "cancelled_ticket_count": result.cancelled_ticket_count,
                "failed_ticket_ids": [failure.ticket_id for failure in result.failures],
            },
        )
        self._publish(
            DomainEvent(
                event_type=DomainEventType.FLIGHT_CANCELLED,
                flight_id=flight_id,
                amount=result.refund_total,
                currency=self.currency,
                metadata={
                    "reason": reason,
                    "cancelled_ticket_count": result.cancelled_ticket_count,
                    "failed_ticket_ids": [failure.ticket_id for failure in result.failures],
                },
            )
        )
        return result

    def retry_flight_reversals(self, flight_id: int) -> CancelFlightResult:
        flight = self._get_flight(flight_id)
        if flight.status != FlightStatus.CANCELLED:
            raise InvalidStateError("Flight is not cancelled")
        earlier = [reversal_failure_from_row(row) for row in self.reversal_failures.get_by_flight(flight_id)]
        reason = earlier[0].reason if earlier else DEFAULT_FLIGHT_CANCELLATION_REASON

        result = self._reverse_active_tickets(flight, reason)
        still_failing = {failure.ticket_id for failure in result.failures}
        for failure in earlier:
            if failure.ticket_id not in still_failing:
                self.reversal_failures.resolve_ticket(failure.ticket_id)
        logger.info(
            "Retried reversals on flight {}: {} reversed, {} still failing",
            flight_id,
            result.cancelled_ticket_count,
            len(result.failures),
        )
        self._audit(
            "flight_reversals_retried",
            None,
            None,
            {
                "flight_id": flight_id,
                "cancelled_ticket_count": result.cancelled_ticket_count,
                "failed_ticket_ids": sorted(still_failing),
            },
        )
        return result

    def list_reversal_failures(self, flight_id: int, unresolved_only: bool = True) -> list[ReversalFailure]:
        rows = self.reversal_failures.get_by_flight(flight_id, unresolved_only=unresolved_only)
        return [reversal_failure_from_row(row) for row in rows]

    def delete_flight(self, flight_id: int) -> Flight:
        flight = flight_from_row(self.flights.deactivate(flight_id))
        logger.info("Flight {} ({}) deactivated", flight.flight_number, flight_id)
        self._audit("flight_deleted", None, None, {"flight_id": flight_id, "flight_number": flight.flight_number})
        return flight

    def _get_flight(self, flight_id: int) -> Flight:
        row = self.flights.get(flight_id)
        if not row:
            raise NotFoundError("Flight not found")
        return flight_from_row(row)

    def _reverse_active_tickets(self, flight: Flight, reason: str) -> CancelFlightResult:
        result = CancelFlightResult(flight_id=flight.id, cancelled_ticket_count=0)
        for row in self.tickets.get_by_flight(flight.id, ACTIVE_TICKET_STATUSES):
            refund = self._refund_row(
                row["user_id"],
                -to_decimal(row["total_price"]),
                row["booking_reference"],
                f"Flight cancellation refund - {reason}",
            )
            try:
                committed = self.ledger.commit_ticket_reversal(row["id"], refund)
            except Exception as exc:
                logger.error("Reversal of ticket {} on flight {} failed: {}", row["id"], flight.id, exc)
                result.failures.append(self._record_failure(flight.id, row["id"], reason, exc))
                continue
            result.cancelled_ticket_count += 1
            result.refund_total += to_decimal(committed["transaction"]["amount"])
            self._audit(
                "ticket_reversed",
                row["booking_reference"],
                row["user_id"],
                {
                    "flight_id": flight.id,
                    "ticket_id": row["id"],
                    "refund": refund["amount"],
                    "voided_payments": committed.get("voided_payments") or [],
                },
            )
        return result

    def _record_failure(self, flight_id: int, ticket_id: str, reason: str, exc: Exception) -> ReversalFailure:
        row = self.reversal_failures.insert(
            {
                "id": str(uuid4()),
                "flight_id": flight_id,
                "ticket_id": ticket_id,
                "reason": reason,
                "error": str(exc) or type(exc).__name__,
                "resolved": False,
                "created_at": utcnow().isoformat(),
            }
        )
        return reversal_failure_from_row(row)

    @staticmethod
    def _refund_row(user_id: int, amount: Decimal, reference: str, description: str) -> dict[str, Any]:
        now = utcnow().isoformat()
        return {
            "id": str(uuid4()),
            "user_id": user_id,
            "amount": str(amount),
            "type": TransactionType.REFUND.value,
            "status": TransactionStatus.COMPLETED.value,
            "reference_id": reference,
            "description": description,
            "gateway": None,
            "gateway_response": None,
            "created_at": now,
            "updated_at": now,
        }

    def _audit(self, action: str, reference: str | None, user_id: int | None, detail: dict[str, Any]) -> None:
        if self.audit_store:
            self.audit_store.log(
                action=action,
                component="cancellation_engine",
                reference=reference,
                user_id=user_id,
                detail=detail,
            )

    def _publish(self, event: DomainEvent) -> None:
        if self.bus:
            self.bus.publish(event)
