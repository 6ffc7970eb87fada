"""Wiring for the requester and responder services"""
import asyncio
import logging
from typing import Dict, Optional

from fastapi import FastAPI

from reqreply.api import create_app
from reqreply.client import RequestReplyClient
from reqreply.config import ConnectionSettings, ResponderSettings
from reqreply.handlers import DemoHandlers
from reqreply.nats_transport import NatsTransport
from reqreply.responder import Handler, ResponderRuntime
from reqreply.transport import Transport

logger = logging.getLogger(__name__)


def build_requester_app(settings: Optional[ConnectionSettings] = None,
                        transport: Optional[Transport] = None) -> FastAPI:
    """Requester application on a NATS connection (or the given transport)"""
    settings = settings if settings is not None else ConnectionSettings()
    transport = transport if transport is not None else NatsTransport(settings)
    client = RequestReplyClient.from_settings(transport, settings)
    return create_app(transport, client)


async def serve_responder(transport: Transport,
                          settings: Optional[ResponderSettings] = None,
                          handlers: Optional[Dict[str, Handler]] = None,
                          stop_event: Optional[asyncio.Event] = None) -> ResponderRuntime:
    """Run a responder until stop_event is set

    The transport is started and stopped here. Returns the stopped runtime
    so callers can inspect its counters.
    """
    settings = settings if settings is not None else ResponderSettings()
    handlers = handlers if handlers is not None else DemoHandlers().as_mapping()
    stop_event = stop_event if stop_event is not None else asyncio.Event()

    await transport.start()
    runtime = ResponderRuntime.from_settings(transport, settings, handlers)
    try:
        await runtime.start()
        logger.info(f"Responder serving {len(runtime.subjects())} subjects")
        await stop_event.wait()
    finally:
        await runtime.stop()
        await transport.stop()
    return runtime
