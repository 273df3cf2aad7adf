"""Broker contract and the in-memory broker.

The publisher only needs ``send(topic, body, attributes)``. Any transport that
provides it can carry the outbox: ``RabbitBroker`` (FastStream) in production,
``InMemoryBroker`` in tests and local runs.

Example:
    broker = InMemoryBroker()
    broker.subscribe(analytics_runtime, topics=["orders", "billing"])

    publisher = OutboxPublisher(broker, runner=runner)
    await publisher.run_once()  # ships rows and delivers them to the runtime
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from packfinder_bus.infra.messaging.consumer import Outcome

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from packfinder_bus.infra.messaging.consumer import ConsumerRuntime

logger = logging.getLogger(__name__)

ATTRIBUTE_KEYS = ("event_id", "event_type", "aggregate_type", "aggregate_id", "created_at")


@runtime_checkable
class Broker(Protocol):
    """Anything that can ship an outbox row."""

    async def send(self, topic: str, body: bytes, attributes: Mapping[str, str]) -> None:
        """Ship one message; raise on failure."""
        ...


@dataclass(frozen=True, slots=True)
class BrokerMessage:
    """A message as the broker received it."""

    topic: str
    body: bytes
    attributes: dict[str, str] = field(default_factory=dict)

    @property
    def message_id(self) -> str | None:
        return self.attributes.get("event_id")

    @property
    def event_type(self) -> str:
        return self.attributes.get("event_type", "")


@dataclass(slots=True)
class InMemoryDelivery:
    """Delivery handed to a ``ConsumerRuntime``; records how it was settled."""

    message: BrokerMessage
    outcome: Outcome | None = None

    @property
    def body(self) -> bytes:
        return self.message.body

    @property
    def attributes(self) -> Mapping[str, str]:
        return self.message.attributes

    async def ack(self) -> None:
        self.outcome = Outcome.ACK

    async def nack(self) -> None:
        self.outcome = Outcome.NACK


class InMemoryBroker:
    """Broker that keeps messages in process.

    Attributes:
        sent: Every message accepted by ``send``, in order
        nacked: Deliveries a consumer rejected, available for ``redeliver_nacked``
    """

    def __init__(self, *, auto_deliver: bool = True) -> None:
        self.sent: list[BrokerMessage] = []
        self.nacked: list[tuple[ConsumerRuntime, InMemoryDelivery]] = []
        self.auto_deliver = auto_deliver
        self._failures: deque[BaseException] = deque()
        self._subscriptions: list[tuple[ConsumerRuntime, frozenset[str] | None]] = []

    def fail_next(self, error: BaseException, times: int = 1) -> None:
        """Make the next ``times`` sends raise ``error``."""
        self._failures.extend([error] * times)

    def subscribe(self, runtime: ConsumerRuntime, topics: Iterable[str] | None = None) -> None:
        """Deliver messages on ``topics`` (all topics when ``None``) to ``runtime``."""
        self._subscriptions.append((runtime, frozenset(topics) if topics is not None else None))

    async def send(self, topic: str, body: bytes, attributes: Mapping[str, str]) -> None:
        if self._failures:
            raise self._failures.popleft()
        message = BrokerMessage(topic=topic, body=bytes(body), attributes=dict(attributes))
        self.sent.append(message)
        logger.debug(
            "Message accepted",
            extra={"topic": topic, "event_type": message.event_type, "message_id": message.message_id},
        )
        if self.auto_deliver:
            await self.deliver(message)

    async def deliver(self, message: BrokerMessage) -> list[InMemoryDelivery]:
        """Hand ``message`` to every matching subscription."""
        deliveries = []
        for runtime, topics in self._subscriptions:
            if topics is not None and message.topic not in topics:
                continue
            deliveries.append(await self._deliver_to(runtime, message))
        return deliveries

    async def _deliver_to(self, runtime: ConsumerRuntime, message: BrokerMessage) -> InMemoryDelivery:
        delivery = InMemoryDelivery(message)
        await runtime.handle(delivery)
        if delivery.outcome is Outcome.NACK:
            self.nacked.append((runtime, delivery))
        return delivery

    async def redeliver_nacked(self) -> list[InMemoryDelivery]:
        """Redeliver every nacked message once to the consumer that rejected it."""
        pending, self.nacked = self.nacked, []
        return [await self._deliver_to(runtime, delivery.message) for runtime, delivery in pending]

    def messages_for(self, event_type: str) -> list[BrokerMessage]:
        return [message for message in self.sent if message.event_type == event_type]


__all__ = [
    "ATTRIBUTE_KEYS",
    "Broker",
    "BrokerMessage",
    "InMemoryBroker",
    "InMemoryDelivery",
]
