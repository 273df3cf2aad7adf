"""Broker transports and the consumer runtime.

- Broker: the ``send(topic, body, attributes)`` contract the publisher depends on
- InMemoryBroker: in-process transport for tests and local runs
- ConsumerRuntime: idempotent handler dispatch with ack/nack settlement
- RabbitBroker (``packfinder_bus.infra.messaging.rabbit``): FastStream transport
"""

from packfinder_bus.infra.messaging.broker import (
    ATTRIBUTE_KEYS,
    Broker,
    BrokerMessage,
    InMemoryBroker,
    InMemoryDelivery,
)
from packfinder_bus.infra.messaging.consumer import ConsumedEvent, ConsumerRuntime, Delivery, Outcome

__all__ = [
    "ATTRIBUTE_KEYS",
    "Broker",
    "BrokerMessage",
    "ConsumedEvent",
    "ConsumerRuntime",
    "Delivery",
    "InMemoryBroker",
    "InMemoryDelivery",
    "Outcome",
]
