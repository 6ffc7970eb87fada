"""Statistics

Demonstrates how to read transport, client and responder counters.
"""
import asyncio

from reqreply import MemoryTransport, RequestReplyClient, ResponderRuntime


async def main():
    print("\n=== Statistics ===\n")

    async with MemoryTransport() as transport:
        runtime = ResponderRuntime(transport)
        runtime.register("metrics", lambda payload: payload)
        await runtime.start()

        client = RequestReplyClient(transport, default_timeout=0.2)
        for i in range(5):
            await client.call("metrics", str(i))
        await client.call("unknown", b"")

        print(f"  {transport.stats().describe()}")
        print(f"  Client:    {client.get_stats()}")
        print(f"  Responder: {runtime.get_stats()}")
        await runtime.stop()


if __name__ == "__main__":
    asyncio.run(main())
