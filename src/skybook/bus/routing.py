from __future__ import annotations

from skybook.models.events import DomainEventType


EVENT_TOPIC_MAP = {
    DomainEventType.BOOKING_CREATED: "booking.created",
    DomainEventType.BOOKING_CANCELLED: "booking.cancelled",
    DomainEventType.PAYMENT_COMPLETED: "payment.completed",
    DomainEventType.PAYMENT_FAILED: "payment.failed",
    DomainEventType.FLIGHT_CANCELLED: "flight.cancelled",
}
