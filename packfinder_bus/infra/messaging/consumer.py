"""Consumer runtime: idempotent dispatch of broker deliveries to a handler.

One ``ConsumerRuntime`` serves one subscription. For every delivery it:

1. skips event types the consumer does not handle (ack)
2. decodes the envelope, dropping malformed messages (ack)
3. decodes ``data`` with the consumer's ``DecoderRegistry`` if it has one
4. sets the idempotency mark, requeueing when the KV store fails (nack)
5. skips events already processed (ack)
6. runs the handler within the ack deadline; on failure releases the mark,
   then acks permanent errors and nacks recoverable ones

The runtime never talks to a broker directly; adapters hand it a
``Delivery`` and it settles the delivery with ``ack`` or ``nack``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

from packfinder_bus.core.events.envelope import decode_envelope
from packfinder_bus.core.exceptions import (
    BusError,
    DependencyError,
    InvalidArgError,
    error_kind,
    is_permanent,
)
from packfinder_bus.core.settings import get_consumer_settings
from packfinder_bus.infra.logging import log_context
from packfinder_bus.infra.metrics.tracking import observe_handler_duration, track_consumer_message

if TYPE_CHECKING:
    import uuid
    from collections.abc import Awaitable, Callable, Iterable, Mapping

    from packfinder_bus.core.events.envelope import PayloadEnvelope
    from packfinder_bus.core.events.payloads import EventPayload
    from packfinder_bus.core.events.registry import DecoderRegistry
    from packfinder_bus.infra.idempotency.guard import IdempotencyGuard

logger = logging.getLogger(__name__)


class Outcome(StrEnum):
    """How a delivery was settled."""

    ACK = "ack"
    NACK = "nack"


class Delivery(Protocol):
    """A broker message awaiting settlement."""

    @property
    def body(self) -> bytes: ...

    @property
    def attributes(self) -> Mapping[str, str]: ...

    async def ack(self) -> None: ...

    async def nack(self) -> None: ...


@dataclass(frozen=True, slots=True)
class ConsumedEvent:
    """What a handler receives.

    Attributes:
        event_type: Broker ``event_type`` attribute
        envelope: Decoded wire envelope
        attributes: All broker attributes
        payload: Typed payload when the consumer declares decoders, else ``None``
    """

    event_type: str
    envelope: PayloadEnvelope
    attributes: Mapping[str, str] = field(default_factory=dict)
    payload: EventPayload | None = None

    @property
    def event_id(self) -> uuid.UUID:
        return self.envelope.event_id

    @property
    def data(self) -> Any:
        return self.envelope.data


class ConsumerRuntime:
    """Dispatches deliveries of one subscription to its handler.

    Attributes:
        name: Consumer name; namespaces the idempotency marks
        event_types: Event types the handler accepts
        ack_deadline: Handler budget in seconds
    """

    def __init__(
        self,
        name: str,
        handler: Callable[[ConsumedEvent], Awaitable[None]],
        *,
        event_types: Iterable[str],
        guard: IdempotencyGuard,
        decoders: DecoderRegistry | None = None,
        ack_deadline: float | None = None,
    ) -> None:
        name = (name or "").strip()
        if not name:
            msg = "consumer name is required"
            raise InvalidArgError(msg)
        self.name = name
        self.event_types = frozenset(str(event_type) for event_type in event_types)
        self.ack_deadline = ack_deadline or get_consumer_settings().ack_deadline_for(name)
        self._handler = handler
        self._guard = guard
        self._decoders = decoders

    def handles(self, event_type: str) -> bool:
        return event_type in self.event_types

    async def handle(self, delivery: Delivery) -> Outcome:
        """Process a delivery and settle it with the broker."""
        outcome = await self.process(delivery.body, delivery.attributes)
        if outcome is Outcome.ACK:
            await delivery.ack()
        else:
            await delivery.nack()
        return outcome

    async def process(self, body: bytes, attributes: Mapping[str, str]) -> Outcome:
        """Decide the outcome of one message without settling it."""
        event_type = attributes.get("event_type", "")
        if not self.handles(event_type):
            track_consumer_message(self.name, event_type, "skipped")
            return Outcome.ACK

        try:
            envelope = decode_envelope(body)
        except InvalidArgError as e:
            logger.warning(
                "Dropping malformed envelope",
                extra={"consumer": self.name, "event_type": event_type, "error": str(e)},
            )
            track_consumer_message(self.name, event_type, "dropped")
            return Outcome.ACK

        with log_context(consumer=self.name, event_id=str(envelope.event_id), event_type=event_type):
            payload = None
            if self._decoders is not None:
                try:
                    payload = self._decoders.decode(event_type, envelope.version, envelope.data)
                except InvalidArgError as e:
                    logger.warning("Dropping undecodable payload", extra={"error": str(e)})
                    track_consumer_message(self.name, event_type, "dropped")
                    return Outcome.ACK

            try:
                already = await self._guard.check_and_mark(self.name, envelope.event_id)
            except BusError as e:
                logger.warning("Idempotency check failed, requeueing", extra={"error": str(e)})
                track_consumer_message(self.name, event_type, "retried")
                return Outcome.NACK

            if already:
                logger.info("Event already processed")
                track_consumer_message(self.name, event_type, "duplicate")
                return Outcome.ACK

            event = ConsumedEvent(
                event_type=event_type,
                envelope=envelope,
                attributes=dict(attributes),
                payload=payload,
            )
            return await self._dispatch(event)

    async def _dispatch(self, event: ConsumedEvent) -> Outcome:
        start = time.perf_counter()
        try:
            await asyncio.wait_for(self._handler(event), timeout=self.ack_deadline)
        except asyncio.CancelledError:
            await self._release(event)
            raise
        except Exception as e:
            error: BaseException = e
            if isinstance(e, TimeoutError):
                error = DependencyError(
                    "handler exceeded ack deadline",
                    extra={"ack_deadline": self.ack_deadline},
                )
            await self._release(event)
            observe_handler_duration(self.name, event.event_type, time.perf_counter() - start)
            return self._classify(event, error)

        observe_handler_duration(self.name, event.event_type, time.perf_counter() - start)
        track_consumer_message(self.name, event.event_type, "processed")
        logger.info("Event processed")
        return Outcome.ACK

    def _classify(self, event: ConsumedEvent, error: BaseException) -> Outcome:
        extra = {"error": str(error), "error_kind": str(error_kind(error))}
        if is_permanent(error):
            logger.warning("Dropping event after permanent handler failure", extra=extra)
            track_consumer_message(self.name, event.event_type, "dropped")
            return Outcome.ACK
        logger.error("Handler failed, requeueing", extra=extra, exc_info=error)
        track_consumer_message(self.name, event.event_type, "retried")
        return Outcome.NACK

    async def _release(self, event: ConsumedEvent) -> None:
        try:
            await self._guard.release(self.name, event.event_id)
        except BusError as e:
            logger.error("Failed to release idempotency mark", extra={"error": str(e)})


__all__ = ["ConsumedEvent", "ConsumerRuntime", "Delivery", "Outcome"]
