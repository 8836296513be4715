from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from skybook.audit.lineage import AuditStore
from skybook.booking.orchestrator import BookingOrchestrator
from skybook.bus.in_memory import InMemoryBus
from skybook.cancellation.engine import CancellationEngine
from skybook.db.repositories import BookingLedgerRepository, reset_memory_backend
from skybook.fares.calculator import FareCalculator
from skybook.models.domain import FareClass, Seat, User
from skybook.payments.reconciler import PaymentReconciler
from skybook.payments.webhooks import ClickWebhookAdapter, StripeWebhookAdapter
from skybook.stores.inventory import InventoryStore

STRIPE_SECRET = "whsec_test"
CLICK_SERVICE_ID = "777"
CLICK_SECRET = "click-secret"


@dataclass
class World:
    inventory: InventoryStore
    booking: BookingOrchestrator
    reconciler: PaymentReconciler
    cancellation: CancellationEngine
    ledger: BookingLedgerRepository
    bus: InMemoryBus
    audit: AuditStore


@pytest.fixture(autouse=True)
def memory_backend(monkeypatch):
    monkeypatch.setenv("SKYBOOK_STORAGE_BACKEND", "memory")
    monkeypatch.setenv("SKYBOOK_BUS_BACKEND", "memory")
    reset_memory_backend()
    yield
    reset_memory_backend()


def seed_reference_data(inventory: InventoryStore, departure: datetime | None = None) -> None:
    departure = departure or datetime.now(timezone.utc) + timedelta(days=30)
    inventory.add_user(User(id=1, full_name="Aziza Karimova", email="aziza@example.com"))
    inventory.add_user(User(id=2, full_name="John Miller", email="john@example.com"))
    inventory.add_fare_class(FareClass(id=1, name="Economy", price_multiplier=Decimal("1")))
    inventory.add_fare_class(FareClass(id=2, name="Business", price_multiplier=Decimal("1.5")))
    inventory.add_seats(
        [Seat(id=seat_id, plane_id=1, seat_number=f"1{seat_id:02d}", class_id=1) for seat_id in range(1, 11)]
    )
    inventory.add_seats([Seat(id=50, plane_id=2, seat_number="101", class_id=1)])
    inventory.add_flight(
        flight_id=1,
        flight_number="HY101",
        plane_id=1,
        departure_airport="TAS",
        arrival_airport="JFK",
        departure_time=departure,
        arrival_time=departure + timedelta(hours=8),
        base_price=Decimal("800.00"),
    )
    inventory.add_flight(
        flight_id=2,
        flight_number="HY102",
        plane_id=2,
        departure_airport="JFK",
        arrival_airport="TAS",
        departure_time=departure + timedelta(days=2),
        arrival_time=departure + timedelta(days=2, hours=11),
        base_price=Decimal("750.00"),
    )


@pytest.fixture
def world() -> World:
    bus = InMemoryBus()
    audit = AuditStore()
    ledger = BookingLedgerRepository()
    inventory = InventoryStore()
    seed_reference_data(inventory)
    return World(
        inventory=inventory,
        booking=BookingOrchestrator(
            inventory=inventory,
            fare_calculator=FareCalculator(),
            ledger=ledger,
            bus=bus,
            audit_store=audit,
        ),
        reconciler=PaymentReconciler(
            ledger=ledger,
            bus=bus,
            audit_store=audit,
            webhook_adapters={
                "stripe": StripeWebhookAdapter(STRIPE_SECRET),
                "click": ClickWebhookAdapter(CLICK_SERVICE_ID, CLICK_SECRET),
            },
        ),
        cancellation=CancellationEngine(ledger=ledger, bus=bus, audit_store=audit),
        ledger=ledger,
        bus=bus,
        audit=audit,
    )
