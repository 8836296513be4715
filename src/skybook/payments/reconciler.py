from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping
from uuid import UUID

from loguru import logger

from skybook.audit.lineage import AuditStore
from skybook.db.repositories import BookingLedgerRepository
from skybook.errors import InvalidStateError
from skybook.models.domain import TransactionStatus, TransactionType, to_decimal
from skybook.models.events import DomainEvent, DomainEventType, PaymentOutcome
from skybook.payments.webhooks import WebhookAdapter

_OUTCOME_STATUS = {
    PaymentOutcome.SUCCEEDED: TransactionStatus.COMPLETED,
    PaymentOutcome.FAILED: TransactionStatus.FAILED,
    TransactionStatus.COMPLETED: TransactionStatus.COMPLETED,
    TransactionStatus.FAILED: TransactionStatus.FAILED,
}


@dataclass
class ReconcileResult:
    applied: bool
    status: TransactionStatus | None
    reason: str | None = None


def _target_status(outcome: PaymentOutcome | TransactionStatus | str) -> TransactionStatus:
    if isinstance(outcome, str) and not isinstance(outcome, (PaymentOutcome, TransactionStatus)):
        raw = outcome.strip()
        for candidate in (*PaymentOutcome, *TransactionStatus):
            if raw.lower() == candidate.value.lower():
                outcome = candidate
                break
    status = _OUTCOME_STATUS.get(outcome)
    if status is None:
        raise InvalidStateError(f"Unsupported payment outcome: {outcome}")
    return status


class PaymentReconciler:
    """Applies gateway outcomes to PENDING payments exactly once."""

    def __init__(
        self,
        ledger: BookingLedgerRepository | None = None,
        bus: Any | None = None,
        audit_store: AuditStore | None = None,
        webhook_adapters: Mapping[str, WebhookAdapter] | None = None,
        currency: str = "USD",
    ) -> None:
        self.ledger = ledger or BookingLedgerRepository()
        self.bus = bus
        self.audit_store = audit_store
        self.webhook_adapters = dict(webhook_adapters or {})
        self.currency = currency

    def apply_payment_outcome(
        self,
        transaction_id: str,
        outcome: PaymentOutcome | TransactionStatus | str,
        raw_payload: dict[str, Any] | None = None,
    ) -> ReconcileResult:
        target = _target_status(outcome)
        try:
            transaction_id = str(UUID(str(transaction_id)))
        except ValueError:
            logger.warning("Dropping payment outcome for malformed transaction id {!r}", transaction_id)
            return ReconcileResult(applied=False, status=None, reason="malformed_transaction_id")

        result = self.ledger.apply_payment_outcome(transaction_id, target, raw_payload or {})
        row = result.get("transaction")
        if row is None:
            logger.warning("Dropping payment outcome for unknown transaction {}", transaction_id)
            return ReconcileResult(applied=False, status=None, reason="unknown_transaction")
        current = TransactionStatus(row["status"])
        if row["type"] != TransactionType.PAYMENT.value:
            logger.warning("Dropping payment outcome for non-payment transaction {}", transaction_id)
            return ReconcileResult(applied=False, status=current, reason="not_a_payment")

        if not result.get("applied"):
            if current == target:
                logger.debug("Payment outcome replay for {} ignored", transaction_id)
                return ReconcileResult(applied=False, status=current, reason="duplicate")
            logger.warning(
                "Rejecting {} outcome for transaction {}: already {}", target.value, transaction_id, current.value
            )
            self._audit(
                "payment_outcome_rejected",
                row,
                {"requested": target.value, "current": current.value, "payload": raw_payload or {}},
            )
            return ReconcileResult(applied=False, status=current, reason="conflicting_outcome")

        confirmed = int(result.get("confirmed_tickets") or 0)
        logger.info(
            "Payment {} for {} is now {} ({} tickets confirmed)",
            transaction_id,
            row["reference_id"],
            target.value,
            confirmed,
        )
        action = "payment_completed" if target == TransactionStatus.COMPLETED else "payment_failed"
        self._audit(action, row, {"confirmed_tickets": confirmed})
        if self.bus:
            self.bus.publish(
                DomainEvent(
                    event_type=(
                        DomainEventType.PAYMENT_COMPLETED
                        if target == TransactionStatus.COMPLETED
                        else DomainEventType.PAYMENT_FAILED
                    ),
                    booking_reference=row["reference_id"],
                    transaction_id=transaction_id,
                    user_id=row["user_id"],
                    amount=to_decimal(row["amount"]),
                    currency=self.currency,
                    metadata={"confirmed_tickets": confirmed, "gateway": row.get("gateway")},
                )
            )
        return ReconcileResult(applied=True, status=target)

    def handle_webhook(self, gateway: str, body: bytes, headers: Mapping[str, str]) -> list[ReconcileResult]:
        adapter = self.webhook_adapters.get(gateway)
        if adapter is None:
            raise InvalidStateError("Unsupported payment gateway")
        adapter.verify(body, headers)
        outcomes = adapter.parse(body)
        if not outcomes:
            logger.debug("{} webhook carried no payment outcome", gateway)
        return [
            self.apply_payment_outcome(event.transaction_id, event.outcome, event.raw_payload) for event in outcomes
        ]

    def _audit(self, action: str, row: dict[str, Any], detail: dict[str, Any]) -> None:
        if not self.audit_store:
            return
        self.audit_store.log(
            action=action,
            component="payment_reconciler",
            reference=row["reference_id"],
            user_id=row["user_id"],
            detail={"transaction_id": str(row["id"]), **detail},
        )
