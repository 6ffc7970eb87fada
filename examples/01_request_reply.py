"""Request/Reply Basics

Demonstrates:
- Registering handlers on a ResponderRuntime
- Sending requests with RequestReplyClient
- Concurrent requests to the same subject
"""
import asyncio

from reqreply import MemoryTransport, RequestReplyClient, ResponderRuntime


async def main():
    print("\n=== Request/Reply Basics ===\n")

    async with MemoryTransport() as transport:
        runtime = ResponderRuntime(transport)

        @runtime.handler("calculator.add")
        async def add_service(payload: bytes) -> str:
            a, b = (int(x) for x in payload.decode().split("+"))
            print(f"  [Service] Computing {a} + {b} = {a + b}")
            return str(a + b)

        await runtime.start()
        client = RequestReplyClient(transport, default_timeout=1.0)

        print("  [Client] Sending request: 5 + 3")
        reply = await client.request("calculator.add", "5+3")
        print(f"  [Client] Got response: {reply.decode()}\n")

        print("  [Client] Sending 3 concurrent requests...")
        results = await asyncio.gather(
            *(client.call("calculator.add", f"{i}+{i + 1}") for i in range(3))
        )
        print(f"  [Client] Got {len(results)} responses: {[r.text() for r in results]}")

        await runtime.stop()


if __name__ == "__main__":
    asyncio.run(main())
