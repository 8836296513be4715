from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Any, Mapping

from loguru import logger

from skybook.audit.lineage import AuditStore
from skybook.booking.orchestrator import BookingOrchestrator, PassengerDetails
from skybook.bus import FanoutBus, InMemoryBus, build_transport_bus
from skybook.cancellation.engine import CancellationEngine
from skybook.config import Settings, get_settings
from skybook.db.repositories import (
    BookingLedgerRepository,
    StorageBackend,
    get_storage_backend,
    reset_memory_backend,
)
from skybook.errors import NotFoundError
from skybook.fares.calculator import FareCalculator
from skybook.logger_config import configure_logging
from skybook.models.domain import FareClass, Seat, User
from skybook.payments.gateways import PaymentGateway, build_gateways
from skybook.payments.reconciler import PaymentReconciler
from skybook.payments.service import PaymentService
from skybook.payments.webhooks import ClickWebhookAdapter, StripeWebhookAdapter
from skybook.stores.inventory import InventoryStore


def default_seed_dir() -> Path:
    return Path(__file__).resolve().parents[2] / "data" / "seed"


def to_payload(value: Any) -> Any:
    """Dataclasses and enums to JSON-safe structures; money stays exact as strings."""
    if is_dataclass(value) and not isinstance(value, type):
        return {key: to_payload(item) for key, item in asdict(value).items()}
    if isinstance(value, dict):
        return {key: to_payload(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_payload(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


class SkybookRuntime:
    def __init__(
        self,
        settings: Settings | None = None,
        seed_dir: Path | None = None,
        gateways: Mapping[str, PaymentGateway] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        configure_logging(self.settings.log_level)
        self.seed_dir = seed_dir or default_seed_dir()
        self.audit = AuditStore()
        self.events = InMemoryBus()
        transport = build_transport_bus(self.settings)
        self.bus = FanoutBus([self.events, transport]) if transport else self.events

        ledger = BookingLedgerRepository()
        self.inventory = InventoryStore()
        self.fares = FareCalculator(tax_rate=self.settings.tax_rate)
        self.booking = BookingOrchestrator(
            inventory=self.inventory,
            fare_calculator=self.fares,
            ledger=ledger,
            bus=self.bus,
            audit_store=self.audit,
            reference_attempts=self.settings.booking_reference_attempts,
            currency=self.settings.currency,
        )
        self.reconciler = PaymentReconciler(
            ledger=ledger,
            bus=self.bus,
            audit_store=self.audit,
            webhook_adapters={
                "stripe": StripeWebhookAdapter(self.settings.stripe_webhook_secret or ""),
                "click": ClickWebhookAdapter(self.settings.click_service_id or "", self.settings.click_secret_key or ""),
            },
            currency=self.settings.currency,
        )
        self.payments = PaymentService(
            gateways=gateways if gateways is not None else build_gateways(self.settings),
            reconciler=self.reconciler,
            audit_store=self.audit,
        )
        self.cancellation = CancellationEngine(
            ledger=ledger,
            bus=self.bus,
            audit_store=self.audit,
            currency=self.settings.currency,
        )
        self._seeded = False
        self._seed_lock = Lock()

    def refresh(self, force: bool = True) -> None:
        with self._seed_lock:
            if self._seeded and not force:
                return
            if get_storage_backend() == StorageBackend.MEMORY:
                reset_memory_backend()
                self.events.reset()
                if self.settings.seed_demo_data:
                    self._seed_reference_data()
            self._seeded = True

    def ensure_seeded(self) -> None:
        if not self._seeded:
            self.refresh(force=False)

    def flight_seats(
        self,
        flight_id: int,
        class_id: int | None = None,
        available_only: bool = True,
        limit: int | None = None,
    ) -> dict[str, Any]:
        self.ensure_seeded()
        result = self.inventory.get_flight_with_seats(flight_id, class_id, available_only, limit)
        return {"flight": to_payload(result.flight), "seats": to_payload(result.seats)}

    def create_booking(
        self,
        user_id: int,
        flight_id: int,
        class_id: int,
        seat_ids: list[int],
        passengers: int,
        passenger_details: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        self.ensure_seeded()
        details = [PassengerDetails(**entry) for entry in passenger_details or []]
        result = self.booking.create_booking(user_id, flight_id, class_id, seat_ids, passengers, details)
        return {
            "booking_reference": result.reference,
            "transaction_id": result.transaction_id,
            "grand_total": str(result.grand_total),
            "currency": self.settings.currency,
            "fare": to_payload(result.quote),
            "tickets": to_payload(result.tickets),
        }

    def get_booking(self, reference: str, user_id: int) -> dict[str, Any]:
        self.ensure_seeded()
        booking = self.booking.get_booking(reference)
        if booking.user_id != user_id:
            raise NotFoundError("Booking not found")
        return {
            "booking_reference": booking.reference,
            "flight_id": booking.flight_id,
            "total_price": str(booking.total_price),
            "tickets": to_payload(booking.tickets),
            "transactions": to_payload(booking.transactions),
        }

    def list_bookings(self, user_id: int, page: int = 1, limit: int = 10) -> dict[str, Any]:
        self.ensure_seeded()
        result = self.booking.list_user_bookings(user_id, page, limit)
        return {
            "data": to_payload(result.items),
            "meta": {"page": result.page, "limit": result.limit, "total": result.total, "pages": result.pages},
        }

    def cancel_booking(self, reference: str, user_id: int) -> dict[str, Any]:
        self.ensure_seeded()
        result = self.cancellation.cancel_booking(reference, user_id)
        return {
            "booking_reference": result.reference,
            "cancelled_tickets": len(result.tickets),
            "refund_amount": str(result.refund_amount),
            "refund": to_payload(result.refund),
        }

    def check_in(self, reference: str, user_id: int) -> dict[str, Any]:
        self.ensure_seeded()
        tickets = self.booking.check_in(reference, user_id)
        return {"booking_reference": reference, "tickets": to_payload(tickets)}

    def initiate_payment(self, reference: str, user_id: int, gateway: str) -> dict[str, Any]:
        self.ensure_seeded()
        return to_payload(self.payments.initiate_payment(reference, user_id, gateway))

    def sync_payment(self, reference: str, user_id: int) -> dict[str, Any]:
        self.ensure_seeded()
        return to_payload(self.payments.sync_payment(reference, user_id))

    def handle_webhook(self, gateway: str, body: bytes, headers: Mapping[str, str]) -> dict[str, Any]:
        self.ensure_seeded()
        results = self.reconciler.handle_webhook(gateway, body, headers)
        return {"received": True, "results": to_payload(results)}

    def cancel_flight(self, flight_id: int, reason: str | None = None) -> dict[str, Any]:
        self.ensure_seeded()
        return to_payload(self.cancellation.cancel_flight(flight_id, reason))

    def retry_flight_reversals(self, flight_id: int) -> dict[str, Any]:
        self.ensure_seeded()
        return to_payload(self.cancellation.retry_flight_reversals(flight_id))

    def delete_flight(self, flight_id: int) -> dict[str, Any]:
        self.ensure_seeded()
        flight = self.cancellation.delete_flight(flight_id)
        return {"message": "Flight deleted successfully", "flight": to_payload(flight)}

    def audit_history(self, reference: str) -> list[dict[str, Any]]:
        self.ensure_seeded()
        return [asdict(record) for record in self.audit.get_history(reference)]

    def _seed_reference_data(self) -> None:
        seed = json.loads((self.seed_dir / "reference.json").read_text(encoding="utf-8"))
        for row in seed["users"]:
            self.inventory.add_user(User(**row))
        for row in seed["fare_classes"]:
            self.inventory.add_fare_class(FareClass(**{**row, "price_multiplier": Decimal(row["price_multiplier"])}))
        for block in seed["seat_blocks"]:
            self.inventory.add_seats(
                [
                    Seat(
                        id=block["first_id"] + offset,
                        plane_id=block["plane_id"],
                        seat_number=f"{block['row_prefix']}{offset + 1:02d}",
                        class_id=block["class_id"],
                        is_window=(offset + 1) % 3 == 0,
                        is_aisle=(offset + 1) % 3 == 1,
                    )
                    for offset in range(block["count"])
                ]
            )
        today = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)
        for row in seed["flights"]:
            departure = today + timedelta(days=row["departure_in_days"])
            self.inventory.add_flight(
                flight_id=row["id"],
                flight_number=row["flight_number"],
                plane_id=row["plane_id"],
                departure_airport=row["departure_airport"],
                arrival_airport=row["arrival_airport"],
                departure_time=departure,
                arrival_time=departure + timedelta(hours=row["duration_hours"]),
                base_price=Decimal(row["base_price"]),
                gate=row.get("gate"),
                terminal=row.get("terminal"),
            )
        logger.info(
            "Seeded {} users, {} fare classes, {} flights",
            len(seed["users"]),
            len(seed["fare_classes"]),
            len(seed["flights"]),
        )
