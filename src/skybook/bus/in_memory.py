from __future__ import annotations

from collections import defaultdict

from skybook.bus.routing import EVENT_TOPIC_MAP
from skybook.models.events import DomainEvent


class InMemoryBus:
    def __init__(self) -> None:
        self.topics: dict[str, list[DomainEvent]] = defaultdict(list)

    def publish(self, event: DomainEvent) -> None:
        topic = EVENT_TOPIC_MAP[event.event_type]
        self.topics[topic].append(event)

    def reset(self) -> None:
        self.topics.clear()
