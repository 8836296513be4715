from .repositories import (
    AuditRepository,
    BookingLedgerRepository,
    FareClassRepository,
    FlightRepository,
    ReversalFailureRepository,
    SeatRepository,
    StorageBackend,
    TicketRepository,
    TransactionRepository,
    UserRepository,
    get_storage_backend,
    reset_memory_backend,
)

__all__ = [
    "AuditRepository",
    "BookingLedgerRepository",
    "FareClassRepository",
    "FlightRepository",
    "ReversalFailureRepository",
    "SeatRepository",
    "StorageBackend",
    "TicketRepository",
    "TransactionRepository",
    "UserRepository",
    "get_storage_backend",
    "reset_memory_backend",
]
