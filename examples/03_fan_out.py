"""Fan-Out

Demonstrates:
- Sending the same payload to several subjects at once
- Results collected in subject order, whatever order replies arrive in
"""
import asyncio

from reqreply import FanOutCoordinator, MemoryTransport, RequestReplyClient, ResponderRuntime
from reqreply.handlers import DemoHandlers


async def main():
    print("\n=== Fan-Out ===\n")

    async with MemoryTransport() as transport:
        runtime = ResponderRuntime(transport)
        for subject, handler in DemoHandlers().as_mapping().items():
            runtime.register(subject, handler)
        await runtime.start()

        fan_out = FanOutCoordinator(RequestReplyClient(transport))
        results = await fan_out.fan_out(
            ["payment.authorize", "missing.subject", "user.validate"],
            b"customer-42",
            per_call_timeout=0.5,
        )
        for result in results:
            status = "ok" if result.ok else result.error.value
            print(f"  {result.subject}: {status} ({result.duration_ms:.0f}ms)")

        await runtime.stop()


if __name__ == "__main__":
    asyncio.run(main())
