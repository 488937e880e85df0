import asyncio
import threading

import pulsar
import pytest

from conftest import BROKER_CONFIG, topic_of
from dataservice.core.errors import BrokerConnectionError
from dataservice.core.message import EXPIRES_AT_KEY, Message, encode
from dataservice.messaging.consumer import ConsumerLoop, Disposition

CONSUMING = BROKER_CONFIG["consuming"]


def put_message(broker, destination: str, message: Message):
    envelope = encode(message)
    return broker.put(topic_of(destination), envelope.body, envelope.properties)


@pytest.mark.parametrize(
    "outcome,expected",
    [
        (None, Disposition.COMPLETE),
        (True, Disposition.COMPLETE),
        (False, Disposition.ABANDON),
        (Disposition.ABANDON, Disposition.ABANDON),
    ],
)
def test_disposition_from_outcome(outcome, expected):
    assert Disposition.from_outcome(outcome) is expected


@pytest.mark.asyncio
async def test_subscribes_with_single_in_flight_and_manual_ack(connection, broker):
    config = dict(CONSUMING, max_redeliver_count=5, dead_letter_topic="dlq")
    loop = ConsumerLoop(connection, "orders", lambda m: None, config)
    await loop.start()
    await loop.stop()

    topic, subscription, options = broker.subscriptions[0]
    assert topic == topic_of("orders")
    assert subscription == "tests"
    assert options["receiver_queue_size"] == 1
    assert options["consumer_type"] == pulsar.ConsumerType.Shared
    assert "dead_letter_policy" in options


@pytest.mark.asyncio
async def test_successful_handler_completes_every_message(connection, broker, eventually):
    seen = []
    loop = ConsumerLoop(connection, "orders", seen.append, CONSUMING)
    for i in range(5):
        put_message(broker, "orders", Message(content=f"order {i}"))

    await loop.start()
    await eventually(lambda: len(broker.acked[topic_of("orders")]) == 5)
    await loop.stop()

    assert [m.content for m in seen] == [f"order {i}" for i in range(5)]
    assert broker.nacked[topic_of("orders")] == []


@pytest.mark.asyncio
async def test_failing_handler_abandons_and_loop_survives(connection, broker, eventually):
    attempts = []

    async def handler(message):
        attempts.append(message.id)
        raise RuntimeError("downstream unavailable")

    loop = ConsumerLoop(connection, "orders", handler, CONSUMING)
    put_message(broker, "orders", Message(content="first"))
    put_message(broker, "orders", Message(content="second"))

    await loop.start()
    await eventually(lambda: len(broker.nacked[topic_of("orders")]) >= 10)
    assert loop.running
    await loop.stop()

    assert broker.acked[topic_of("orders")] == []
    assert len(set(attempts)) == 2


@pytest.mark.asyncio
async def test_handler_returning_false_abandons(connection, broker, eventually):
    loop = ConsumerLoop(connection, "orders", lambda m: False, CONSUMING)
    put_message(broker, "orders", Message(content="x"))

    await loop.start()
    await eventually(lambda: len(broker.nacked[topic_of("orders")]) >= 1)
    await loop.stop()

    assert broker.acked[topic_of("orders")] == []


@pytest.mark.asyncio
async def test_one_message_in_handler_at_a_time(connection, broker, eventually):
    in_handler = 0
    peak = 0
    done = []

    async def handler(message):
        nonlocal in_handler, peak
        in_handler += 1
        peak = max(peak, in_handler)
        await asyncio.sleep(0.01)
        in_handler -= 1
        done.append(message.content)

    loop = ConsumerLoop(connection, "orders", handler, CONSUMING)
    for i in range(8):
        put_message(broker, "orders", Message(content=str(i)))

    await loop.start()
    await eventually(lambda: len(done) == 8)
    await loop.stop()

    assert peak == 1
    assert done == [str(i) for i in range(8)]


@pytest.mark.asyncio
async def test_loops_on_different_destinations_run_in_parallel(connection, broker, eventually):
    gate = asyncio.Event()
    reached = []

    async def blocking(message):
        reached.append("a")
        await gate.wait()

    async def other(message):
        reached.append("b")

    first = ConsumerLoop(connection, "a", blocking, CONSUMING)
    second = ConsumerLoop(connection, "b", other, CONSUMING)
    put_message(broker, "a", Message(content="x"))
    put_message(broker, "b", Message(content="y"))

    await first.start()
    await second.start()
    # "b" is handled while "a" is still stuck in its handler
    await eventually(lambda: reached.count("b") == 1 and reached.count("a") == 1)
    gate.set()
    await eventually(lambda: len(broker.acked[topic_of("a")]) == 1)
    await first.stop()
    await second.stop()


@pytest.mark.asyncio
async def test_blocking_sync_handler_does_not_stall_the_event_loop(connection, broker, eventually):
    release = threading.Event()
    blocked = []

    def blocking(message):
        blocked.append(message.content)
        release.wait(timeout=2)

    handled = []
    first = ConsumerLoop(connection, "a", blocking, CONSUMING)
    second = ConsumerLoop(connection, "b", lambda m: handled.append(m.content), CONSUMING)
    put_message(broker, "a", Message(content="slow"))
    put_message(broker, "b", Message(content="fast"))

    await first.start()
    await eventually(lambda: blocked == ["slow"])
    await second.start()
    await eventually(lambda: handled == ["fast"])
    assert broker.acked[topic_of("a")] == []

    release.set()
    await eventually(lambda: len(broker.acked[topic_of("a")]) == 1)
    await first.stop()
    await second.stop()


@pytest.mark.asyncio
async def test_undecodable_body_is_abandoned_without_calling_handler(connection, broker, eventually):
    calls = []
    loop = ConsumerLoop(connection, "orders", calls.append, CONSUMING)
    broker.put(topic_of("orders"), b"{not json")

    await loop.start()
    await eventually(lambda: len(broker.nacked[topic_of("orders")]) >= 1)
    await loop.stop()

    assert calls == []
    assert broker.acked[topic_of("orders")] == []


@pytest.mark.asyncio
async def test_expired_message_is_completed_without_calling_handler(connection, broker, eventually):
    calls = []
    loop = ConsumerLoop(connection, "orders", calls.append, CONSUMING)
    envelope = encode(Message(content="stale"))
    properties = dict(envelope.properties, **{EXPIRES_AT_KEY: "2000-01-01T00:00:00+00:00"})
    broker.put(topic_of("orders"), envelope.body, properties)

    await loop.start()
    await eventually(lambda: len(broker.acked[topic_of("orders")]) == 1)
    await loop.stop()

    assert calls == []


@pytest.mark.asyncio
async def test_receive_errors_do_not_stop_the_loop(connection, broker, eventually):
    broker.fail_receives = 3
    seen = []
    loop = ConsumerLoop(connection, "orders", seen.append, CONSUMING)
    put_message(broker, "orders", Message(content="after errors"))

    await loop.start()
    await eventually(lambda: len(seen) == 1)
    assert loop.running
    await loop.stop()


@pytest.mark.asyncio
async def test_start_failure_surfaces_to_caller(connection, broker):
    broker.fail_subscribes = True
    loop = ConsumerLoop(connection, "orders", lambda m: None, CONSUMING)

    with pytest.raises(BrokerConnectionError):
        await loop.start()
    assert not loop.running


@pytest.mark.asyncio
async def test_stop_lets_in_flight_message_finish_and_closes_consumer(connection, broker, eventually):
    started = asyncio.Event()
    release = asyncio.Event()

    async def handler(message):
        started.set()
        await release.wait()

    loop = ConsumerLoop(connection, "orders", handler, CONSUMING)
    put_message(broker, "orders", Message(content="slow"))
    await loop.start()
    await asyncio.wait_for(started.wait(), 2)

    stopping = asyncio.create_task(loop.stop())
    await asyncio.sleep(0.05)
    # stop() neither completed nor abandoned the message on its own
    assert broker.acked[topic_of("orders")] == []
    assert broker.nacked[topic_of("orders")] == []

    release.set()
    await stopping

    assert len(broker.acked[topic_of("orders")]) == 1
    assert broker.consumers[0].closed
    assert not loop.running


@pytest.mark.asyncio
async def test_start_twice_is_rejected(connection):
    loop = ConsumerLoop(connection, "orders", lambda m: None, CONSUMING)
    await loop.start()
    with pytest.raises(RuntimeError):
        await loop.start()
    await loop.stop()
