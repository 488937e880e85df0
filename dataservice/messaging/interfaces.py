from abc import ABC, abstractmethod

from ..core.message import Message
from .consumer import ConsumerLoop, MessageHandler
from .publisher import PublishResult


class IConnectable(ABC):
    """Defines a contract for components that have a connect/stop lifecycle."""

    @abstractmethod
    def connect(self) -> bool:
        """Establishes the connection to the endpoint."""
        raise NotImplementedError

    @abstractmethod
    async def stop(self) -> list:
        """Stops the component, cleans up resources and returns the cleanup failures."""
        raise NotImplementedError


class IMessageQueue(IConnectable):
    """Defines a contract for any message queue client (Pulsar, Kafka...)."""

    @abstractmethod
    async def publish(
        self,
        message: Message | str,
        destination: str = "default",
        message_type: str = "info",
    ) -> PublishResult:
        """Publishes a Message, or a plain content string, to a destination."""
        raise NotImplementedError

    @abstractmethod
    async def declare(self, destination: str, durable: bool = True) -> bool:
        """Acknowledges a queue declaration request."""
        raise NotImplementedError

    @abstractmethod
    async def consume(self, destination: str, handler: MessageHandler) -> ConsumerLoop:
        """Starts a consumer loop on a destination and returns it running."""
        raise NotImplementedError

    @abstractmethod
    def is_healthy(self) -> bool:
        """Reports whether the broker connection is usable. Never raises."""
        raise NotImplementedError
