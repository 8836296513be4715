from __future__ import annotations

import json

from kafka import KafkaProducer

from skybook.bus.routing import EVENT_TOPIC_MAP
from skybook.models.events import DomainEvent


class KafkaBus:
    def __init__(
        self,
        bootstrap_servers: str,
        client_id: str = "skybook-producer",
        producer: KafkaProducer | None = None,
    ) -> None:
        self._owns_producer = producer is None
        self._producer = producer or KafkaProducer(
            bootstrap_servers=bootstrap_servers,
            client_id=client_id,
            linger_ms=10,
            acks="all",
            value_serializer=lambda payload: json.dumps(payload).encode("utf-8"),
            key_serializer=lambda key: key.encode("utf-8"),
        )

    def publish(self, event: DomainEvent) -> None:
        topic = EVENT_TOPIC_MAP[event.event_type]
        payload = event.model_dump(mode="json")
        self._producer.send(topic, key=event.partition_key, value=payload)
        self._producer.flush()

    def close(self) -> None:
        if self._owns_producer:
            self._producer.flush()
            self._producer.close()
