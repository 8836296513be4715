from __future__ import annotations

from typing import Iterable

from loguru import logger

from skybook.models.events import DomainEvent


class FanoutBus:
    """Publishes to every bus; the first bus is the source of truth."""

    def __init__(self, buses: Iterable[object]) -> None:
        self._buses = list(buses)

    def publish(self, event: DomainEvent) -> None:
        primary, *secondary = self._buses
        primary.publish(event)
        for bus in secondary:
            try:
                bus.publish(event)
            except Exception as exc:
                logger.error("Failed to forward {} to {}: {}", event.event_type.value, type(bus).__name__, exc)

    def close(self) -> None:
        for bus in self._buses:
            close = getattr(bus, "close", None)
            if callable(close):
                close()
