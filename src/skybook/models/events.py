from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class DomainEventType(str, Enum):
    BOOKING_CREATED = "booking_created"
    BOOKING_CANCELLED = "booking_cancelled"
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_FAILED = "payment_failed"
    FLIGHT_CANCELLED = "flight_cancelled"


class PaymentOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class DomainEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event_type: DomainEventType
    booking_reference: str | None = None
    transaction_id: str | None = None
    flight_id: int | None = None
    user_id: int | None = None
    amount: Decimal | None = None
    currency: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def partition_key(self) -> str:
        if self.booking_reference:
            return self.booking_reference
        if self.transaction_id:
            return self.transaction_id
        return str(self.flight_id or self.event_id)


class PaymentOutcomeEvent(BaseModel):
    """A gateway callback normalized to the transaction it settles."""

    gateway: str
    transaction_id: str
    outcome: PaymentOutcome
    external_id: str | None = None
    raw_payload: dict[str, Any] = Field(default_factory=dict)
