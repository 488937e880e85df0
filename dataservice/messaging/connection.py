from typing import Callable

import pulsar
from loguru import logger

from ..core.errors import BrokerConnectionError
from ..routing.interfaces import TopicRouter
from ..routing.router import NamespaceTopicRouter

HEALTH_CHECK_DESTINATION = "non-existent-topic-for-health-check"


class BrokerConnection:
    """
    Process-wide Pulsar client shared by the publisher and the consumer loops.

    It is only a factory for producers and consumers; it never closes them.
    close() is the single shutdown path for the client itself.
    """

    def __init__(
        self,
        config: dict,
        router: TopicRouter | None = None,
        client_factory: Callable[..., pulsar.Client] = pulsar.Client,
    ):
        self.config = config
        self.router = router or NamespaceTopicRouter(config)
        self.client: pulsar.Client | None = None
        self._client_factory = client_factory
        self._closed = False

    @property
    def service_url(self) -> str:
        return self.config["service_url"]

    @property
    def is_open(self) -> bool:
        return self.client is not None and not self._closed

    def open(self) -> None:
        if self._closed:
            raise BrokerConnectionError("Broker connection was closed and cannot be reopened.")
        if self.client:
            return

        client = None
        try:
            client = self._client_factory(
                self.service_url,
                operation_timeout_seconds=self.config.get("operation_timeout_seconds", 30),
            )
            # If the broker is not available, this call will timeout and raise an exception.
            client.get_topic_partitions(
                self.router.get_pulsar_topic(HEALTH_CHECK_DESTINATION)
            )
        except (pulsar.ConnectError, pulsar.Timeout) as e:
            logger.warning(
                f"Could not reach Pulsar broker at {self.service_url}. "
                f"Error: {e.__class__.__name__}."
            )
            self._discard(client)
            raise BrokerConnectionError(
                f"Pulsar broker unreachable at {self.service_url}"
            ) from e
        except Exception as e:
            logger.exception("An unexpected error occurred while connecting to Pulsar")
            self._discard(client)
            raise BrokerConnectionError(f"Pulsar connection failed: {e}") from e

        self.client = client
        logger.success(f"Successfully connected to Pulsar service at {self.service_url}")

    @staticmethod
    def _discard(client: pulsar.Client | None):
        if not client:
            return
        try:
            client.close()
        except Exception as e:
            logger.warning(f"Exception while discarding Pulsar client: {e}")

    def _require_client(self) -> pulsar.Client:
        if not self.is_open:
            raise BrokerConnectionError("Pulsar client is not connected.")
        return self.client

    def create_producer(self, destination: str) -> pulsar.Producer:
        client = self._require_client()
        topic = self.router.get_pulsar_topic(destination)
        publishing_config = self.config.get("publishing", {})

        logger.debug(f"Attempting to create producer for Pulsar topic '{topic}'...")
        try:
            producer = client.create_producer(
                topic,
                send_timeout_millis=publishing_config.get("send_timeout_ms", 30000),
            )
        except Exception as e:
            logger.warning(
                f"Failed to create producer for Pulsar topic '{topic}'. "
                f"Error: {e.__class__.__name__}."
            )
            raise BrokerConnectionError(
                f"Could not open a producer for destination '{destination}'"
            ) from e

        logger.info(f"Created new Pulsar producer for topic: {topic}")
        return producer

    def subscribe(self, destination: str, subscription_name: str, **options) -> pulsar.Consumer:
        client = self._require_client()
        topic = self.router.get_pulsar_topic(destination)

        logger.debug(
            f"Attempting to subscribe '{subscription_name}' to Pulsar topic '{topic}'..."
        )
        try:
            consumer = client.subscribe(topic, subscription_name, **options)
        except Exception as e:
            logger.warning(
                f"Failed to subscribe to Pulsar topic '{topic}'. "
                f"Error: {e.__class__.__name__}."
            )
            raise BrokerConnectionError(
                f"Could not open a consumer for destination '{destination}'"
            ) from e

        logger.info(f"Subscribed '{subscription_name}' to Pulsar topic: {topic}")
        return consumer

    def close(self) -> Exception | None:
        """Closes the client. Returns the close failure, if any, instead of raising it."""
        if self._closed:
            return None
        self._closed = True
        if not self.client:
            return None

        try:
            self.client.close()
            logger.info("Pulsar client closed.")
            return None
        except Exception as e:
            logger.warning(f"Exception during Pulsar client closing: {e}")
            return e
