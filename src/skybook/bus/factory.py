from __future__ import annotations

from skybook.bus.kafka import KafkaBus
from skybook.config import Settings, get_settings


def build_transport_bus(settings: Settings | None = None) -> KafkaBus | None:
    settings = settings or get_settings()
    backend = settings.bus_backend.strip().lower()
    if backend == "memory":
        return None
    if backend == "kafka":
        return KafkaBus(bootstrap_servers=settings.kafka_bootstrap_servers, client_id=settings.kafka_client_id)
    raise ValueError("Unsupported SKYBOOK_BUS_BACKEND. Use 'memory' or 'kafka'.")
