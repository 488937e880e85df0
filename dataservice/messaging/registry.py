import asyncio

import pulsar
from loguru import logger

from ..core.errors import RegistryClosedError
from ..routing.router import validate_destination
from .connection import BrokerConnection


class ProducerRegistry:
    """
    Lazily opens one Pulsar producer per destination and keeps it for the
    lifetime of the registry. The registry is the only owner of its producers:
    nothing else may close them, and they are closed only by close_all().
    """

    def __init__(self, connection: BrokerConnection):
        self._connection = connection
        self._producers: dict[str, pulsar.Producer] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._producers)

    def __contains__(self, destination: str) -> bool:
        return destination in self._producers

    async def get_or_create(self, destination: str) -> pulsar.Producer:
        validate_destination(destination)

        producer = self._producers.get(destination)
        if producer is not None and not self._closed:
            return producer

        async with self._lock:
            if self._closed:
                raise RegistryClosedError(
                    f"Producer registry is closed. Cannot open destination '{destination}'."
                )
            # another caller may have created it while we waited for the lock
            producer = self._producers.get(destination)
            if producer is None:
                producer = await asyncio.to_thread(
                    self._connection.create_producer, destination
                )
                self._producers[destination] = producer
            return producer

    async def close_all(self) -> list[tuple[str, Exception]]:
        """
        Closes every producer exactly once and marks the registry closed.
        Close failures are logged and returned, never raised.
        """
        async with self._lock:
            if self._closed:
                return []

            producers = list(self._producers.items())
            self._producers.clear()
            failures: list[tuple[str, Exception]] = []

            logger.info("Closing all Pulsar producers...")
            logger.debug(f"Closing {len(producers)} Pulsar producers.")
            for destination, producer in producers:
                try:
                    await asyncio.to_thread(producer.close)
                except Exception as e:
                    logger.warning(
                        f"Error closing producer for destination '{destination}': {e}"
                    )
                    failures.append((destination, e))

            self._closed = True
            return failures
