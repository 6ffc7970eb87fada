"""Timeouts, Cancellation and Failures

Demonstrates:
- A request nobody answers resolving as a timeout
- Cancelling a pending call
- A failing handler producing a structured error reply
"""
import asyncio
import logging

from reqreply import MemoryTransport, RemoteHandlerError, RequestReplyClient, ResponderRuntime

logging.basicConfig(
    level=logging.WARNING,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


async def main():
    print("\n=== Timeouts, Cancellation and Failures ===\n")

    async with MemoryTransport() as transport:
        runtime = ResponderRuntime(transport)

        @runtime.handler("slow.service")
        async def slow_service(payload: bytes) -> bytes:
            await asyncio.sleep(2)
            return b"finally"

        @runtime.handler("broken.service")
        async def broken_service(payload: bytes) -> bytes:
            raise RuntimeError("something internal went wrong")

        await runtime.start()
        client = RequestReplyClient(transport, default_timeout=0.5)

        result = await client.call("nobody.listens", b"hello")
        print(f"  No responder: {result.error.value} after {result.duration_ms:.0f}ms")

        pending = await client.begin("slow.service", b"hello", timeout=5.0)
        await asyncio.sleep(0.1)
        pending.cancel()
        print(f"  Cancelled: {(await pending.result()).error.value}")

        try:
            await client.request("broken.service", b"hello")
        except RemoteHandlerError as e:
            print(f"  Handler failed: {e.reply.error_type}, error_id={e.reply.error_id}")

        await runtime.stop(grace=0.1)


if __name__ == "__main__":
    asyncio.run(main())
