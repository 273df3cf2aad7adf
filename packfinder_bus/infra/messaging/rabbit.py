"""RabbitMQ transport via FastStream.

Outbox rows are published to one durable topic exchange (``packfinder.events``
by default) with the row's topic as routing key, the envelope event id as
``message_id`` and the broker attributes as headers. Consumers bind one
durable queue per ``(consumer, topic)`` and settle messages manually through
``RabbitDelivery``.

Usage:
    broker = RabbitBroker()
    broker.subscribe(analytics_runtime, topics=["orders", "billing"])
    await broker.start()
    ...
    await broker.close()
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from faststream.rabbit import ExchangeType, RabbitExchange, RabbitQueue
from faststream.rabbit import RabbitBroker as FastStreamRabbitBroker
from faststream.rabbit.annotations import RabbitMessage

from packfinder_bus.core.settings import RabbitSettings, get_publisher_settings, get_rabbit_settings

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from packfinder_bus.infra.messaging.consumer import ConsumerRuntime

logger = logging.getLogger(__name__)


class RabbitDelivery:
    """Adapts a FastStream ``RabbitMessage`` to the ``Delivery`` protocol."""

    def __init__(self, message: RabbitMessage) -> None:
        self._message = message

    @property
    def body(self) -> bytes:
        return self._message.body

    @property
    def attributes(self) -> Mapping[str, str]:
        attributes = {str(key): str(value) for key, value in (self._message.headers or {}).items()}
        if "event_id" not in attributes and self._message.message_id:
            attributes["event_id"] = str(self._message.message_id)
        return attributes

    async def ack(self) -> None:
        await self._message.ack()

    async def nack(self) -> None:
        await self._message.nack()


class RabbitBroker:
    """``Broker`` implementation over a FastStream RabbitMQ broker.

    Attributes:
        exchange: Topic exchange every event is published to
        send_timeout: Upper bound in seconds for one publish
    """

    def __init__(
        self,
        settings: RabbitSettings | None = None,
        *,
        send_timeout: float | None = None,
    ) -> None:
        self._settings = settings or get_rabbit_settings()
        self.send_timeout = send_timeout or get_publisher_settings().send_timeout
        self.exchange = RabbitExchange(
            name=self._settings.exchange_name,
            type=ExchangeType(self._settings.exchange_type),
            durable=True,
            auto_delete=False,
        )
        self._broker = FastStreamRabbitBroker(
            self._settings.url,
            graceful_timeout=self._settings.graceful_timeout,
            max_consumers=self._settings.prefetch_count,
            logger=logger,
        )
        self._started = False

    @property
    def broker(self) -> FastStreamRabbitBroker:
        return self._broker

    async def start(self) -> None:
        """Connect and start every registered subscriber.

        Raises:
            ConnectionError: If RabbitMQ does not answer within the connection timeout.
        """
        if self._started:
            return
        logger.info(
            "Starting RabbitMQ broker",
            extra={
                "host": self._settings.host,
                "exchange": self._settings.exchange_name,
                "connection_timeout": self._settings.connection_timeout,
            },
        )
        try:
            await asyncio.wait_for(self._broker.start(), timeout=self._settings.connection_timeout)
        except TimeoutError:
            error_msg = f"RabbitMQ connection timeout after {self._settings.connection_timeout}s"
            logger.error(error_msg, extra={"host": self._settings.host})
            raise ConnectionError(error_msg) from None
        await self._broker.declare_exchange(self.exchange)
        self._started = True
        logger.info("RabbitMQ broker started successfully")

    async def close(self) -> None:
        if not self._started:
            return
        logger.info("Stopping RabbitMQ broker")
        await self._broker.close()
        self._started = False
        logger.info("RabbitMQ broker stopped successfully")

    async def send(self, topic: str, body: bytes, attributes: Mapping[str, str]) -> None:
        """Publish one outbox row; raises on broker error or timeout."""
        headers = dict(attributes)
        await asyncio.wait_for(
            self._broker.publish(
                body,
                exchange=self.exchange,
                routing_key=topic,
                message_id=headers.get("event_id"),
                headers=headers,
                content_type="application/json",
                persist=True,
            ),
            timeout=self.send_timeout,
        )

    def subscribe(self, runtime: ConsumerRuntime, topics: Iterable[str]) -> None:
        """Bind ``runtime`` to ``topics``. Call before ``start``."""
        for topic in topics:
            queue = RabbitQueue(
                self._settings.get_prefixed_queue(f"{runtime.name}.{topic}"),
                durable=True,
                routing_key=topic,
            )

            async def _on_message(body: Any, message: RabbitMessage) -> None:
                await runtime.handle(RabbitDelivery(message))

            self._broker.subscriber(queue, exchange=self.exchange)(_on_message)
            logger.debug(
                "Consumer bound",
                extra={"consumer": runtime.name, "queue": queue.name, "routing_key": topic},
            )


__all__ = ["RabbitBroker", "RabbitDelivery"]
