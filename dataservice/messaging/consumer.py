import asyncio
import enum
import inspect
from typing import Any, Awaitable, Callable, Union

import pulsar
from loguru import logger

from ..core.errors import HandlerError, MessagingError, SerializationError, TransportError
from ..core.message import Message, decode, is_expired
from .connection import BrokerConnection


class Disposition(enum.Enum):
    COMPLETE = "complete"
    ABANDON = "abandon"

    @classmethod
    def from_outcome(cls, outcome: Any) -> "Disposition":
        """None and True complete the message, False abandons it."""
        if isinstance(outcome, cls):
            return outcome
        if outcome is None or outcome is True:
            return cls.COMPLETE
        if outcome is False:
            return cls.ABANDON
        raise TypeError(f"Unsupported handler outcome: {outcome!r}")


HandlerOutcome = Union[Disposition, bool, None]
# Coroutine functions run on the event loop; any other callable runs in a worker thread.
MessageHandler = Callable[[Message], Union[HandlerOutcome, Awaitable[HandlerOutcome]]]


class ConsumerLoop:
    """
    At-least-once consumption of one destination.

    Messages are handled strictly one at a time and are never acknowledged
    automatically: the loop completes a message when the handler succeeds and
    abandons it (negative ack, redelivered by the broker) when the handler fails.
    A failing message never stops the loop.
    """

    def __init__(
        self,
        connection: BrokerConnection,
        destination: str,
        handler: MessageHandler,
        config: dict | None = None,
    ):
        config = config or {}
        self.destination = destination
        self.handler = handler
        self.subscription_name = config.get("subscription_name", "dataservice")

        self._connection = connection
        self._config = config
        self._receive_timeout_ms = config.get("receive_timeout_ms", 1000)
        self._error_backoff = config.get("error_backoff_ms", 1000) / 1000.0
        self._drain_timeout = config.get("drain_timeout_seconds", 30)

        self._consumer: pulsar.Consumer | None = None
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _subscribe_options(self) -> dict:
        options = {
            "consumer_type": pulsar.ConsumerType.Shared,
            # one message in flight: nothing is prefetched behind the current one
            "receiver_queue_size": 1,
            "negative_ack_redelivery_delay_ms": self._config.get(
                "negative_ack_redelivery_delay_ms", 1000
            ),
        }
        max_redeliver_count = self._config.get("max_redeliver_count")
        if max_redeliver_count:
            options["dead_letter_policy"] = pulsar.ConsumerDeadLetterPolicy(
                max_redeliver_count=max_redeliver_count,
                dead_letter_topic=self._config.get("dead_letter_topic"),
            )
        return options

    async def start(self):
        if self._task is not None:
            raise RuntimeError(f"Consumer for '{self.destination}' was already started.")

        try:
            self._consumer = await asyncio.to_thread(
                self._connection.subscribe,
                self.destination,
                self.subscription_name,
                **self._subscribe_options(),
            )
        except MessagingError:
            logger.error(f"Error starting consumer for destination '{self.destination}'")
            raise

        self._stop_event.clear()
        self._task = asyncio.create_task(
            self._run(), name=f"consumer:{self.destination}"
        )
        logger.info(f"Started consuming from destination '{self.destination}'")

    async def stop(self):
        """
        Stops receiving. The message being handled, if any, is allowed to finish;
        stop() itself never completes or abandons it.
        """
        if self._task is None:
            return
        self._stop_event.set()

        try:
            await asyncio.wait_for(asyncio.shield(self._task), self._drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Consumer for '{self.destination}' did not drain within "
                f"{self._drain_timeout}s. Leaving the in-flight message to the broker."
            )
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        if self._consumer is not None:
            try:
                await asyncio.to_thread(self._consumer.close)
            except Exception as e:
                logger.warning(
                    f"Exception while closing consumer for '{self.destination}': {e}"
                )
            self._consumer = None
        logger.info(f"Stopped consuming from destination '{self.destination}'")

    async def _run(self):
        while not self._stop_event.is_set():
            try:
                received = await asyncio.to_thread(
                    self._consumer.receive, self._receive_timeout_ms
                )
            except pulsar.Timeout:
                continue
            except Exception as e:
                if self._stop_event.is_set():
                    break
                logger.error(
                    f"Error receiving message from destination '{self.destination}': {e}"
                )
                await asyncio.sleep(self._error_backoff)
                continue

            await self.process(received)

    async def process(self, received: pulsar.Message) -> Disposition:
        """Decides and applies the terminal disposition of one delivery."""
        try:
            message = decode(received.data())
        except SerializationError as e:
            logger.error(
                f"Abandoning undecodable message from destination '{self.destination}': {e}"
            )
            await self._settle(received, Disposition.ABANDON)
            return Disposition.ABANDON

        if is_expired(received.properties()):
            logger.warning(
                f"Message {message.id} from destination '{self.destination}' has expired. "
                "Completing it without processing."
            )
            await self._settle(received, Disposition.COMPLETE)
            return Disposition.COMPLETE

        try:
            if inspect.iscoroutinefunction(self.handler):
                outcome = self.handler(message)
            else:
                outcome = await asyncio.to_thread(self.handler, message)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            disposition = Disposition.from_outcome(outcome)
        except Exception as e:
            error = HandlerError(f"Handler failed for message {message.id}: {e}")
            logger.opt(exception=e).error(
                f"Error processing message from destination '{self.destination}': {error}"
            )
            disposition = Disposition.ABANDON
        else:
            if disposition is Disposition.ABANDON:
                logger.error(
                    f"Handler rejected message {message.id} from destination "
                    f"'{self.destination}'"
                )

        if await self._settle(received, disposition) and disposition is Disposition.COMPLETE:
            logger.info(
                f"Processed message {message.id} from destination '{self.destination}'"
            )
        return disposition

    async def _settle(self, received: pulsar.Message, disposition: Disposition) -> bool:
        try:
            if disposition is Disposition.COMPLETE:
                await asyncio.to_thread(self._consumer.acknowledge, received)
            else:
                await asyncio.to_thread(self._consumer.negative_acknowledge, received)
        except Exception as e:
            error = TransportError(f"Could not {disposition.value} message: {e}")
            logger.error(f"Error settling message from '{self.destination}': {error}")
            return False
        return True
