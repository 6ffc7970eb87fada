"""Test request/reply calls: replies, timeouts, cancellation and cleanup"""
import asyncio
import random

import pytest

from reqreply import (
    ErrorKind,
    MemoryTransport,
    RemoteHandlerError,
    RequestCancelled,
    RequestReplyClient,
    RequestTimeout,
    TransportError,
)
from tests.conftest import inbox_subscriptions


class BrokenPublishTransport(MemoryTransport):
    """Fails every publish to the 'broken' subject"""

    def __init__(self, exc: Exception):
        super().__init__()
        self.exc = exc

    async def publish(self, subject, payload=b"", reply_to=None, headers=None):
        if subject == "broken":
            raise self.exc
        await super().publish(subject, payload, reply_to=reply_to, headers=headers)


@pytest.mark.asyncio
async def test_call_returns_correlated_reply(transport, client, runtime):
    """A responder replying after 50ms resolves the call with its payload"""
    @runtime.handler("order.process")
    async def process_order(payload: bytes) -> bytes:
        await asyncio.sleep(0.05)
        return b"ACK:" + payload

    await runtime.start()

    loop = asyncio.get_running_loop()
    start = loop.time()
    result = await client.call("order.process", "Order-1", timeout=0.5)
    elapsed = loop.time() - start

    assert result.ok
    assert result.payload == b"ACK:Order-1"
    assert result.text() == "ACK:Order-1"
    assert 0.04 <= elapsed < 0.3
    assert inbox_subscriptions(transport) == 0
    assert client.pending_count == 0


@pytest.mark.asyncio
async def test_call_times_out_without_responder(transport, client):
    """No subscriber: the call resolves once, as a timeout, at the deadline"""
    loop = asyncio.get_running_loop()
    start = loop.time()
    result = await client.call("order.process", "Order-1", timeout=0.5)
    elapsed = loop.time() - start

    assert result.error == ErrorKind.TIMEOUT
    assert result.payload is None
    assert 0.49 <= elapsed < 0.8
    assert inbox_subscriptions(transport) == 0
    assert client.pending_count == 0
    assert client.get_stats()["timeouts"] == 1


@pytest.mark.asyncio
async def test_call_times_out_when_handler_is_too_slow(transport, client, runtime):
    @runtime.handler("slow")
    async def slow(payload: bytes) -> bytes:
        await asyncio.sleep(1)
        return b"late"

    await runtime.start()

    result = await client.call("slow", b"", timeout=0.1)

    assert result.error == ErrorKind.TIMEOUT
    assert inbox_subscriptions(transport) == 0


@pytest.mark.asyncio
async def test_default_timeout_is_used(transport):
    client = RequestReplyClient(transport, default_timeout=0.1)
    loop = asyncio.get_running_loop()
    start = loop.time()

    result = await client.call("nobody.listens")

    assert result.error == ErrorKind.TIMEOUT
    assert loop.time() - start < 0.4


@pytest.mark.asyncio
async def test_concurrent_calls_receive_only_their_own_reply(transport, client, runtime):
    """Each call gets the reply tagged with its own marker"""
    @runtime.handler("echo")
    async def echo(payload: bytes) -> bytes:
        await asyncio.sleep(random.uniform(0, 0.05))
        return b"echo:" + payload

    await runtime.start()

    markers = [f"call-{i}" for i in range(50)]
    results = await asyncio.gather(*(client.call("echo", m, timeout=1.0) for m in markers))

    assert [r.text() for r in results] == [f"echo:{m}" for m in markers]
    assert inbox_subscriptions(transport) == 0


@pytest.mark.asyncio
async def test_request_returns_payload(client, runtime):
    @runtime.handler("upper")
    def upper(payload: bytes) -> bytes:
        return payload.upper()

    await runtime.start()

    assert await client.request("upper", b"abc") == b"ABC"


@pytest.mark.asyncio
async def test_request_raises_timeout(client):
    with pytest.raises(RequestTimeout) as exc_info:
        await client.request("nobody.listens", b"", timeout=0.05)

    assert isinstance(exc_info.value, TimeoutError)
    assert exc_info.value.subject == "nobody.listens"


@pytest.mark.asyncio
async def test_cancel_after_reply_is_noop(client, runtime):
    """Cancelling a settled call leaves its result untouched"""
    @runtime.handler("fast")
    async def fast(payload: bytes) -> bytes:
        return b"done"

    await runtime.start()

    pending = await client.begin("fast", b"")
    result = await pending.result()

    assert pending.cancel() is False
    assert pending.cancel() is False
    assert await pending.result() == result
    assert result.payload == b"done"


@pytest.mark.asyncio
async def test_cancel_pending_call(transport, client, runtime):
    @runtime.handler("slow")
    async def slow(payload: bytes) -> bytes:
        await asyncio.sleep(0.2)
        return b"late"

    await runtime.start()

    pending = await client.begin("slow", b"", timeout=1.0)
    assert pending.cancel() is True
    assert pending.cancel() is False

    result = await pending.result()
    assert result.error == ErrorKind.CANCELLED
    with pytest.raises(RequestCancelled):
        result.unwrap()

    await asyncio.sleep(0.05)
    assert transport.subscription_count(pending.inbox) == 0
    assert client.pending_count == 0

    # The late reply is dropped without effect
    await asyncio.sleep(0.25)
    assert (await pending.result()).error == ErrorKind.CANCELLED


@pytest.mark.asyncio
async def test_cancelling_the_caller_releases_the_inbox(transport, client, runtime):
    @runtime.handler("slow")
    async def slow(payload: bytes) -> bytes:
        await asyncio.sleep(1)
        return b"late"

    await runtime.start()

    task = asyncio.create_task(client.call("slow", b"", timeout=5.0))
    await asyncio.sleep(0.05)
    assert inbox_subscriptions(transport) == 1

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert inbox_subscriptions(transport) == 0
    assert client.pending_count == 0
    assert client.get_stats()["cancelled"] == 1


@pytest.mark.asyncio
async def test_handler_failure_is_returned_as_typed_result(client, runtime):
    @runtime.handler("explode")
    async def explode(payload: bytes) -> bytes:
        raise ValueError("database password is hunter2")

    await runtime.start()

    result = await client.call("explode", b"")

    assert result.error == ErrorKind.HANDLER_FAILURE
    assert "ValueError" in result.detail
    assert "hunter2" not in result.detail

    with pytest.raises(RemoteHandlerError) as exc_info:
        await client.request("explode", b"")
    assert exc_info.value.reply.error_type == "ValueError"
    assert exc_info.value.reply.subject == "explode"


@pytest.mark.asyncio
async def test_stopped_transport_is_a_transport_failure(transport, client):
    await transport.stop()

    result = await client.call("order.process", b"")

    assert result.error == ErrorKind.TRANSPORT_FAILURE
    assert client.pending_count == 0
    with pytest.raises(TransportError):
        await client.request("order.process", b"")


@pytest.mark.asyncio
@pytest.mark.parametrize("exc", [TransportError("connection lost"), RuntimeError("boom")])
async def test_publish_failure_releases_the_inbox(exc):
    transport = BrokenPublishTransport(exc)
    await transport.start()
    client = RequestReplyClient(transport, default_timeout=1.0)

    result = await client.call("broken", b"payload")

    assert result.error == ErrorKind.TRANSPORT_FAILURE
    assert inbox_subscriptions(transport) == 0
    assert client.pending_count == 0
    await transport.stop()


@pytest.mark.asyncio
async def test_late_reply_on_unknown_inbox_is_dropped(transport, client):
    await transport.publish(transport.new_inbox(), b"orphan")
    await asyncio.sleep(0.01)

    assert client.pending_count == 0


@pytest.mark.asyncio
async def test_invalid_arguments(client):
    with pytest.raises(ValueError):
        await client.call("", b"")
    with pytest.raises(ValueError):
        await client.call("order.process", b"", timeout=0)
    with pytest.raises(TypeError):
        await client.call("order.process", 42)
    assert client.pending_count == 0


@pytest.mark.asyncio
async def test_close_cancels_outstanding_calls(transport, client):
    pending = await client.begin("nobody.listens", b"", timeout=5.0)

    await client.close()

    assert (await pending.result()).error == ErrorKind.CANCELLED
    assert inbox_subscriptions(transport) == 0


def test_client_requires_transport():
    with pytest.raises(ValueError):
        RequestReplyClient(None)


class GatedSubscribeTransport(MemoryTransport):
    """Memory transport whose subscribe waits until the gate opens"""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()

    async def subscribe(self, subject, callback, *, max_pending=None):
        await self.gate.wait()
        return await super().subscribe(subject, callback, max_pending=max_pending)


@pytest.mark.asyncio
async def test_cancel_while_subscribing_releases_the_inbox():
    transport = GatedSubscribeTransport()
    await transport.start()
    client = RequestReplyClient(transport, default_timeout=0.5)

    task = asyncio.create_task(client.call("order.process", b"Order-1"))
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    # The subscription completes only after the caller is gone
    transport.gate.set()
    await client.close()

    assert inbox_subscriptions(transport) == 0
    assert client.pending_count == 0
    assert client.get_stats()["cancelled"] == 1
    await transport.stop()
