from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping

from loguru import logger

from skybook.audit.lineage import AuditStore
from skybook.db.repositories import TicketRepository, TransactionRepository
from skybook.errors import GatewayError, InvalidStateError, NotFoundError
from skybook.models.domain import (
    ACTIVE_TICKET_STATUSES,
    Transaction,
    TransactionStatus,
    TransactionType,
    transaction_from_row,
)
from skybook.models.events import PaymentOutcome
from skybook.payments.gateways import PaymentGateway
from skybook.payments.reconciler import PaymentReconciler, ReconcileResult


@dataclass
class PaymentInitiation:
    transaction_id: str
    gateway: str
    amount: Decimal
    payment_url: str | None = None
    client_secret: str | None = None
    gateway_response: dict[str, Any] = field(default_factory=dict)


class PaymentService:
    def __init__(
        self,
        gateways: Mapping[str, PaymentGateway],
        reconciler: PaymentReconciler,
        transactions: TransactionRepository | None = None,
        audit_store: AuditStore | None = None,
        tickets: TicketRepository | None = None,
    ) -> None:
        self.gateways = dict(gateways)
        self.reconciler = reconciler
        self.transactions = transactions or TransactionRepository()
        self.tickets = tickets or TicketRepository()
        self.audit_store = audit_store

    def initiate_payment(self, reference: str, user_id: int, gateway: str) -> PaymentInitiation:
        """Hand the booking's pending payment to ``gateway``.

        A gateway error marks the transaction FAILED before the error is raised,
        so the client has to create a new booking to retry.
        """
        adapter = self.gateways.get(gateway)
        if adapter is None:
            raise InvalidStateError("Unsupported payment gateway")
        active = {status.value for status in ACTIVE_TICKET_STATUSES}
        owned = [row for row in self.tickets.get_by_reference(reference) if row["user_id"] == user_id]
        if not owned:
            raise NotFoundError("Booking not found")
        if not any(row["status"] in active for row in owned):
            raise InvalidStateError("Booking has no active tickets")
        pending = [
            payment for payment in self._payments(reference, user_id) if payment.status == TransactionStatus.PENDING
        ]
        if not pending:
            raise NotFoundError("No pending payment for this booking")
        transaction = pending[-1]

        try:
            intent = adapter.create_payment(transaction.amount, transaction.id, transaction.description)
        except GatewayError as exc:
            logger.error("{} rejected payment {} for {}: {}", gateway, transaction.id, reference, exc)
            self.reconciler.apply_payment_outcome(
                transaction.id, PaymentOutcome.FAILED, {"gateway": gateway, "error": str(exc)}
            )
            raise

        response = {**intent.raw, "external_id": intent.external_id or transaction.id}
        self.transactions.record_gateway_attempt(transaction.id, gateway, response)
        logger.info("Payment {} for {} handed to {}", transaction.id, reference, gateway)
        if self.audit_store:
            self.audit_store.log(
                action="payment_initiated",
                component="payment_service",
                reference=reference,
                user_id=user_id,
                detail={"transaction_id": transaction.id, "gateway": gateway, "external_id": intent.external_id},
            )
        return PaymentInitiation(
            transaction_id=transaction.id,
            gateway=gateway,
            amount=transaction.amount,
            payment_url=intent.payment_url,
            client_secret=intent.client_secret,
            gateway_response=intent.raw,
        )

    def sync_payment(self, reference: str, user_id: int) -> ReconcileResult:
        """Poll the gateway holding the booking's payment and apply a settled status.

        Covers gateways without a callback (Payme) and missed callbacks.
        """
        payments = self._payments(reference, user_id)
        if not payments:
            raise NotFoundError("Payment not found")
        transaction = payments[-1]
        if transaction.status != TransactionStatus.PENDING:
            return ReconcileResult(applied=False, status=transaction.status, reason="already_settled")
        if not transaction.gateway:
            raise InvalidStateError("Payment has not been handed to a gateway")
        adapter = self.gateways.get(transaction.gateway)
        if adapter is None:
            raise InvalidStateError("Unsupported payment gateway")

        payment_id = (transaction.gateway_response or {}).get("external_id") or transaction.id
        status = adapter.check_payment(payment_id)
        outcome = adapter.outcome_of(status)
        if outcome is None:
            logger.debug("{} still reports payment {} as open", transaction.gateway, transaction.id)
            return ReconcileResult(applied=False, status=TransactionStatus.PENDING, reason="pending_at_gateway")
        return self.reconciler.apply_payment_outcome(
            transaction.id, outcome, {"gateway": transaction.gateway, "status": status}
        )

    def _payments(self, reference: str, user_id: int) -> list[Transaction]:
        return [
            transaction_from_row(row)
            for row in self.transactions.get_by_reference(reference)
            if row["user_id"] == user_id and row["type"] == TransactionType.PAYMENT.value
        ]
