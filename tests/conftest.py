import asyncio
import queue
import threading
import time
from collections import Counter, defaultdict

import pulsar
import pytest

from dataservice.messaging.connection import BrokerConnection
from dataservice.messaging.pulsar import PulsarMessageQueue

BROKER_CONFIG = {
    "service_url": "pulsar://fake:6650",
    "tenant": "public",
    "namespace": "default",
    "connect": {"retry_attempts": 2, "retry_min_wait_seconds": 0, "retry_max_wait_seconds": 0},
    "publishing": {"source": "tests"},
    "consuming": {
        "subscription_name": "tests",
        "receive_timeout_ms": 20,
        "error_backoff_ms": 10,
        "drain_timeout_seconds": 2,
    },
}


def topic_of(destination: str) -> str:
    return f"persistent://public/default/{destination}"


class FakeMessage:
    def __init__(self, body: bytes, properties: dict | None, topic: str):
        self._body = body
        self._properties = dict(properties or {})
        self.topic = topic
        self.redelivery_count = 0

    def data(self) -> bytes:
        return self._body

    def properties(self) -> dict:
        return dict(self._properties)


class FakeProducer:
    def __init__(self, broker: "FakeBroker", topic: str):
        self._broker = broker
        self._topic = topic
        self.send_calls = 0
        self.close_calls = 0
        self.fail_close = False

    def topic(self) -> str:
        return self._topic

    def send(self, content, properties=None, event_timestamp=None, **kwargs):
        self.send_calls += 1
        if self._broker.fail_sends:
            raise RuntimeError("broker rejected the send")
        self._broker.put(self._topic, content, properties)

    def close(self):
        self.close_calls += 1
        if self.fail_close:
            raise RuntimeError("close failed")


class FakeConsumer:
    def __init__(self, broker: "FakeBroker", topic: str):
        self._broker = broker
        self._topic = topic
        self.closed = False

    def receive(self, timeout_millis=None):
        if self._broker.fail_receives:
            self._broker.fail_receives -= 1
            raise RuntimeError("connection reset while receiving")
        try:
            return self._broker.topics[self._topic].get(timeout=(timeout_millis or 1000) / 1000)
        except queue.Empty:
            raise pulsar.Timeout("receive timed out")

    def acknowledge(self, message):
        self._broker.acked[self._topic].append(message)

    def negative_acknowledge(self, message):
        self._broker.nacked[self._topic].append(message)
        message.redelivery_count += 1
        self._broker.topics[self._topic].put(message)

    def close(self):
        self.closed = True


class FakeClient:
    def __init__(self, broker: "FakeBroker", service_url: str, **kwargs):
        self._broker = broker
        self.service_url = service_url
        self.closed = False

    def get_topic_partitions(self, topic):
        if self._broker.unreachable:
            raise pulsar.ConnectError("broker unreachable")
        return [topic]

    def create_producer(self, topic, **kwargs):
        # widens the window in which two callers could race on one name
        time.sleep(self._broker.producer_delay)
        if self._broker.fail_producers:
            raise RuntimeError("cannot open producer")
        with self._broker.lock:
            self._broker.producers_created[topic] += 1
            producer = FakeProducer(self._broker, topic)
            self._broker.producers.append(producer)
        return producer

    def subscribe(self, topic, subscription_name, **kwargs):
        if self._broker.fail_subscribes:
            raise RuntimeError("cannot subscribe")
        self._broker.subscriptions.append((topic, subscription_name, kwargs))
        consumer = FakeConsumer(self._broker, topic)
        self._broker.consumers.append(consumer)
        return consumer

    def close(self):
        self.closed = True


class FakeBroker:
    """In-memory stand-in for a Pulsar cluster, reachable through FakeClient."""

    def __init__(self):
        self.lock = threading.Lock()
        self.topics: dict[str, queue.Queue] = defaultdict(queue.Queue)
        self.sent: dict[str, list[FakeMessage]] = defaultdict(list)
        self.acked: dict[str, list[FakeMessage]] = defaultdict(list)
        self.nacked: dict[str, list[FakeMessage]] = defaultdict(list)
        self.producers_created: Counter = Counter()
        self.producers: list[FakeProducer] = []
        self.consumers: list[FakeConsumer] = []
        self.subscriptions: list[tuple] = []
        self.clients: list[FakeClient] = []

        self.unreachable = False
        self.fail_sends = False
        self.fail_producers = False
        self.fail_subscribes = False
        self.fail_receives = 0
        self.producer_delay = 0.0

    def client_factory(self, service_url, **kwargs) -> FakeClient:
        client = FakeClient(self, service_url, **kwargs)
        self.clients.append(client)
        return client

    def put(self, topic: str, body: bytes, properties: dict | None = None) -> FakeMessage:
        message = FakeMessage(body, properties, topic)
        self.sent[topic].append(message)
        self.topics[topic].put(message)
        return message


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def connection(broker) -> BrokerConnection:
    conn = BrokerConnection(BROKER_CONFIG, client_factory=broker.client_factory)
    conn.open()
    return conn


@pytest.fixture
def message_queue(broker) -> PulsarMessageQueue:
    mq = PulsarMessageQueue(
        BROKER_CONFIG,
        connection=BrokerConnection(BROKER_CONFIG, client_factory=broker.client_factory),
    )
    assert mq.connect()
    return mq


@pytest.fixture
def eventually():
    async def wait(predicate, timeout: float = 2.0):
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return wait
