from loguru import logger
from tenacity import Retrying, RetryError, stop_after_attempt, wait_exponential

from ..core.message import Message
from ..routing.router import validate_destination
from .connection import BrokerConnection
from .consumer import ConsumerLoop, MessageHandler
from .interfaces import IMessageQueue
from .publisher import DEFAULT_DESTINATION, DEFAULT_MESSAGE_TYPE, MessagePublisher, PublishResult
from .registry import ProducerRegistry


class PulsarMessageQueue(IMessageQueue):
    """
    Message queue client over an Apache Pulsar cluster.
    Owns the broker connection, the producer registry and every consumer loop it starts.
    """

    def __init__(self, config: dict, connection: BrokerConnection | None = None):
        self.config = config
        self.connection = connection or BrokerConnection(config)
        self.registry = ProducerRegistry(self.connection)
        self.publisher = MessagePublisher(self.registry, config.get("publishing", {}))
        self.consumers: list[ConsumerLoop] = []

        connect_config = self.config.get("connect", {})
        self.retrier = Retrying(
            stop=stop_after_attempt(connect_config.get("retry_attempts", 5)),
            wait=wait_exponential(
                multiplier=1,
                min=connect_config.get("retry_min_wait_seconds", 2),
                max=connect_config.get("retry_max_wait_seconds", 10),
            ),
        )

    def connect(self) -> bool:
        try:
            self.retrier(self.connection.open)
            return True
        except RetryError as e:
            logger.critical(
                f"Pulsar connection failed: Could not reach broker at {self.connection.service_url} "
                f"after max attempts. Final error: {e.last_attempt.exception()}. "
                "Check configuration or broker status."
            )
            return False

    async def publish(
        self,
        message: Message | str,
        destination: str = DEFAULT_DESTINATION,
        message_type: str = DEFAULT_MESSAGE_TYPE,
    ) -> PublishResult:
        return await self.publisher.publish(message, destination, message_type)

    async def declare(self, destination: str, durable: bool = True) -> bool:
        validate_destination(destination)
        # Topics are provisioned out-of-band (infrastructure as code), never from here.
        logger.debug(
            f"Destination '{destination}' (durable={durable}) verification requested. "
            "Topics are pre-provisioned on the Pulsar cluster."
        )
        return True

    async def consume(self, destination: str, handler: MessageHandler) -> ConsumerLoop:
        validate_destination(destination)
        loop = ConsumerLoop(
            self.connection, destination, handler, self.config.get("consuming", {})
        )
        await loop.start()
        self.consumers.append(loop)
        return loop

    def is_healthy(self) -> bool:
        try:
            return self.connection.is_open
        except Exception:
            logger.exception("Error checking Pulsar health")
            return False

    async def stop(self) -> list:
        logger.info("Pulsar: Stopping...")
        failures: list = []

        for loop in self.consumers:
            try:
                await loop.stop()
            except Exception as e:
                logger.warning(f"Error stopping consumer for '{loop.destination}': {e}")
                failures.append((loop.destination, e))
        self.consumers.clear()

        failures.extend(await self.registry.close_all())

        error = self.connection.close()
        if error is not None:
            failures.append(("client", error))

        if failures:
            logger.warning(f"Pulsar: Stopped with {len(failures)} cleanup failure(s).")
        else:
            logger.info("Pulsar: Stopped.")
        return failures
