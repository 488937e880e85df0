import asyncio
from dataclasses import dataclass, replace

import pulsar
from loguru import logger

from ..core.errors import MessagingError, TransportError
from ..core.message import Envelope, Message, encode
from ..routing.router import validate_destination
from .registry import ProducerRegistry

DEFAULT_DESTINATION = "default"
DEFAULT_MESSAGE_TYPE = "info"
DEFAULT_SOURCE = "dataservice"


@dataclass(frozen=True)
class PublishResult:
    """Outcome of a single publish call."""

    message: Message
    destination: str
    error: MessagingError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> "PublishResult":
        if self.error is not None:
            raise self.error
        return self


class MessagePublisher:
    """
    Serializes messages into envelopes and sends them through the producer the
    registry holds for the destination. It does not retry: a failed send is
    reported back to the caller, who owns the retry policy.
    """

    def __init__(self, registry: ProducerRegistry, config: dict | None = None):
        self.registry = registry
        config = config or {}
        self.source = config.get("source", DEFAULT_SOURCE)

    async def publish(
        self,
        message: Message | str,
        destination: str = DEFAULT_DESTINATION,
        message_type: str = DEFAULT_MESSAGE_TYPE,
    ) -> PublishResult:
        if isinstance(message, str):
            message = Message(content=message, type=message_type)
        validate_destination(destination)

        if message.source is None:
            message = replace(message, source=self.source)

        try:
            envelope = encode(message)
            producer = await self.registry.get_or_create(destination)
            await asyncio.to_thread(self._send, producer, envelope)
        except MessagingError as e:
            logger.error(
                f"Error publishing message {message.id} to destination '{destination}': "
                f"[{e.kind}] {e}"
            )
            return PublishResult(message, destination, error=e)

        logger.info(f"Published message {message.id} to destination '{destination}'")
        return PublishResult(message, destination)

    @staticmethod
    def _send(producer: pulsar.Producer, envelope: Envelope):
        try:
            producer.send(
                envelope.body,
                properties=envelope.properties,
                event_timestamp=envelope.event_timestamp,
            )
        except Exception as e:
            logger.warning(
                f"Failed to send message to Pulsar topic '{producer.topic()}'. "
                f"Error: {e.__class__.__name__}."
            )
            raise TransportError(f"Send failed: {e}") from e
