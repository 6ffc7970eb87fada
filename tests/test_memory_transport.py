"""Test the in-memory transport"""
import asyncio

import pytest

from reqreply import MemoryTransport, TransportError
from reqreply.memory import subject_matches


@pytest.mark.parametrize("pattern,subject,expected", [
    ("order.process", "order.process", True),
    ("order.process", "order.cancel", False),
    ("order.*", "order.process", True),
    ("order.*", "order.process.now", False),
    ("*.process", "order.process", True),
    ("order.>", "order.process", True),
    ("order.>", "order.process.now", True),
    ("order.>", "order", False),
    (">", "anything.at.all", True),
    ("order", "order.process", False),
])
def test_subject_matches(pattern, subject, expected):
    assert subject_matches(pattern, subject) is expected


@pytest.mark.asyncio
async def test_publish_delivers_message_fields(transport):
    received = []

    async def on_message(message):
        received.append(message)

    await transport.subscribe("order.process", on_message)
    await transport.publish("order.process", b"ORD-1", reply_to="reply.here",
                            headers={"X-Trace": "abc"})
    await asyncio.sleep(0.01)

    assert len(received) == 1
    message = received[0]
    assert message.subject == "order.process"
    assert message.payload == b"ORD-1"
    assert message.reply_to == "reply.here"
    assert message.headers == {"X-Trace": "abc"}


@pytest.mark.asyncio
async def test_wildcard_subscription(transport):
    received = []

    async def on_message(message):
        received.append(message.subject)

    await transport.subscribe("order.*", on_message)
    await transport.publish("order.process", b"")
    await transport.publish("user.validate", b"")
    await asyncio.sleep(0.01)

    assert received == ["order.process"]


@pytest.mark.asyncio
async def test_every_subscription_gets_a_copy(transport):
    first, second = [], []

    async def on_first(message):
        first.append(message.payload)

    async def on_second(message):
        second.append(message.payload)

    await transport.subscribe("news", on_first)
    await transport.subscribe("news", on_second)
    await transport.publish("news", b"hello")
    await asyncio.sleep(0.01)

    assert first == [b"hello"]
    assert second == [b"hello"]


@pytest.mark.asyncio
async def test_publish_without_subscribers_is_not_an_error(transport):
    await transport.publish("nobody.listens", b"x")
    assert transport.stats().out_msgs == 1


@pytest.mark.asyncio
async def test_not_running_raises():
    transport = MemoryTransport()

    async def on_message(message):
        pass

    with pytest.raises(TransportError):
        await transport.publish("x", b"")
    with pytest.raises(TransportError):
        await transport.subscribe("x", on_message)


@pytest.mark.asyncio
async def test_empty_subject_raises(transport):
    async def on_message(message):
        pass

    with pytest.raises(TransportError):
        await transport.publish("", b"")
    with pytest.raises(TransportError):
        await transport.subscribe("", on_message)


@pytest.mark.asyncio
async def test_unsubscribe_is_idempotent_and_stops_delivery(transport):
    received = []

    async def on_message(message):
        received.append(message)

    sub = await transport.subscribe("x", on_message)
    assert sub.active
    await sub.unsubscribe()
    await sub.unsubscribe()

    await transport.publish("x", b"")
    await asyncio.sleep(0.01)

    assert not sub.active
    assert received == []
    assert transport.subscription_count() == 0


@pytest.mark.asyncio
async def test_callback_may_unsubscribe_itself(transport):
    received = []
    holder = {}

    async def on_message(message):
        received.append(message.payload)
        await holder["sub"].unsubscribe()

    holder["sub"] = await transport.subscribe("once", on_message)
    await transport.publish("once", b"1")
    await asyncio.sleep(0.01)
    await transport.publish("once", b"2")
    await asyncio.sleep(0.01)

    assert received == [b"1"]
    assert transport.subscription_count("once") == 0


@pytest.mark.asyncio
async def test_callback_error_does_not_stop_consumer(transport):
    received = []

    async def on_message(message):
        if message.payload == b"bad":
            raise ValueError("bad message")
        received.append(message.payload)

    await transport.subscribe("x", on_message)
    await transport.publish("x", b"bad")
    await transport.publish("x", b"good")
    await asyncio.sleep(0.01)

    assert received == [b"good"]


@pytest.mark.asyncio
async def test_slow_consumer_drops_messages():
    transport = MemoryTransport(max_pending=1)
    await transport.start()
    release = asyncio.Event()
    received = []

    async def on_message(message):
        await release.wait()
        received.append(message.payload)

    await transport.subscribe("x", on_message)
    await transport.publish("x", b"1")
    await transport.publish("x", b"2")
    await transport.publish("x", b"3")

    assert transport.stats().dropped == 2

    release.set()
    await asyncio.sleep(0.01)
    assert received == [b"1"]
    await transport.stop()


@pytest.mark.asyncio
async def test_stats(transport):
    async def on_message(message):
        pass

    await transport.subscribe("x", on_message)
    await transport.publish("x", b"abc")
    await transport.publish("y", b"defg")
    await asyncio.sleep(0.01)

    stats = transport.stats()
    assert stats.out_msgs == 2
    assert stats.out_bytes == 7
    assert stats.in_msgs == 1
    assert stats.in_bytes == 3
    assert stats.subscriptions == 1
    assert "Out Msgs: 2" in stats.describe()


@pytest.mark.asyncio
async def test_stop_releases_subscriptions():
    async def on_message(message):
        pass

    async with MemoryTransport() as transport:
        sub = await transport.subscribe("x", on_message)
        assert transport.running

    assert not transport.running
    assert not sub.active
    assert transport.subscription_count() == 0


def test_new_inbox_is_unique():
    transport = MemoryTransport()
    inboxes = {transport.new_inbox() for _ in range(1000)}

    assert len(inboxes) == 1000
    assert all(inbox.startswith("_INBOX.") for inbox in inboxes)
