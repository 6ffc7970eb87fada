"""Responder Service on NATS

Serves the demo handlers until interrupted.

Requirements:
- NATS server running on localhost:4222
- Start NATS with: docker run -d -p 4222:4222 nats

Configuration (environment):
- REQREPLY_URL, REQREPLY_CONNECTION_NAME, REQREPLY_MAX_RECONNECT, ...
- REQREPLY_SUBJECTS: comma-separated subjects to serve
"""
import asyncio
import signal

from reqreply.config import ConnectionSettings, ResponderSettings, configure_logging
from reqreply.nats_transport import NatsTransport
from reqreply.services import serve_responder


async def main():
    configure_logging()
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    transport = NatsTransport(ConnectionSettings())
    runtime = await serve_responder(transport, ResponderSettings(), stop_event=stop_event)
    print(f"Total messages processed: {runtime.stats.received}")


if __name__ == "__main__":
    asyncio.run(main())
