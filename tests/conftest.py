"""Shared fixtures: an in-memory transport, a client and a responder runtime"""
import pytest

from reqreply import MemoryTransport, RequestReplyClient, ResponderRuntime
from reqreply.transport import INBOX_PREFIX


def inbox_subscriptions(transport: MemoryTransport) -> int:
    """Number of live inbox subscriptions on the transport"""
    return sum(
        count for subject, count in transport.get_subscriptions().items()
        if subject.startswith(INBOX_PREFIX + ".")
    )


@pytest.fixture
async def transport():
    """Create and cleanup a started MemoryTransport for each test"""
    transport = MemoryTransport()
    await transport.start()

    yield transport

    await transport.stop()


@pytest.fixture
async def client(transport):
    client = RequestReplyClient(transport, default_timeout=0.5)

    yield client

    await client.close()


@pytest.fixture
async def runtime(transport):
    """Responder runtime, started by the test after registering handlers"""
    runtime = ResponderRuntime(transport, grace=0.1)

    yield runtime

    await runtime.stop()
