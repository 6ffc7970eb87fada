"""NATS transport

Adapter over the nats-py client. Only raw publish/subscribe is used; the
request/reply correlation lives in RequestReplyClient.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import nats
from nats.errors import Error as NatsError

from reqreply.config import ConnectionSettings
from reqreply.errors import TransportError
from reqreply.message import Message, TransportStats
from reqreply.transport import MessageCallback, Subscription, Transport

ConnectFunc = Callable[..., Awaitable[Any]]


class NatsSubscription(Subscription):
    def __init__(self, subject: str, subscription: Any, transport: "NatsTransport") -> None:
        super().__init__(subject)
        self._subscription = subscription
        self._transport = transport
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    async def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._transport._subscriptions.discard(self)
        try:
            await self._subscription.unsubscribe()
        except NatsError as e:
            raise TransportError(f"Failed to unsubscribe from '{self.subject}': {e}") from e


class NatsTransport(Transport):
    """Transport backed by a NATS connection

    Args:
        settings: Connection settings, defaults to ConnectionSettings()
        connect: Coroutine function creating the client, defaults to nats.connect
        logger: Logger instance, uses standard library logging if None
    """

    def __init__(self, settings: Optional[ConnectionSettings] = None, *,
                 connect: Optional[ConnectFunc] = None,
                 logger: Optional[logging.Logger] = None) -> None:
        self._settings = settings if settings is not None else ConnectionSettings()
        self._connect = connect if connect is not None else nats.connect
        self._nc: Any = None
        self._subscriptions: Set[NatsSubscription] = set()
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    # --- Lifecycle ---

    async def start(self) -> None:
        if self.running:
            return
        settings = self._settings
        self._logger.info(f"Connecting to NATS server at: {settings.url}")
        try:
            self._nc = await self._connect(
                servers=[settings.url],
                name=settings.connection_name,
                connect_timeout=settings.connect_timeout_ms / 1000,
                max_reconnect_attempts=settings.max_reconnect,
                reconnect_time_wait=settings.reconnect_wait_ms / 1000,
                ping_interval=settings.ping_interval_ms / 1000,
                error_cb=self._on_error,
                disconnected_cb=self._on_disconnected,
                reconnected_cb=self._on_reconnected,
                closed_cb=self._on_closed,
            )
        except (NatsError, OSError, asyncio.TimeoutError) as e:
            self._logger.error(f"Failed to connect to NATS server at {settings.url}: {e}")
            raise TransportError(f"Failed to connect to {settings.url}: {e}") from e
        self._logger.info(f"Successfully connected to NATS server at {settings.url}")

    async def stop(self) -> None:
        """Drain the connection, then close it"""
        nc, self._nc = self._nc, None
        if nc is None or nc.is_closed:
            return
        self._logger.info("Closing NATS connection gracefully")
        try:
            await nc.drain()
        except (NatsError, asyncio.TimeoutError) as e:
            self._logger.error(f"Error draining NATS connection: {e}")
        if not nc.is_closed:
            await nc.close()
        self._subscriptions.clear()
        self._logger.info("NATS connection closed successfully")

    @property
    def running(self) -> bool:
        return self._nc is not None and not self._nc.is_closed

    # --- Pub/Sub ---

    async def publish(
        self,
        subject: str,
        payload: bytes = b"",
        reply_to: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        nc = self._require_connection()
        try:
            await nc.publish(subject, payload, reply=reply_to or "", headers=headers or None)
        except NatsError as e:
            raise TransportError(f"Failed to publish to '{subject}': {e}") from e

    async def subscribe(self, subject: str, callback: MessageCallback, *,
                        max_pending: Optional[int] = None) -> NatsSubscription:
        nc = self._require_connection()

        async def _deliver(msg: Any) -> None:
            message = Message(
                subject=msg.subject,
                payload=msg.data or b"",
                reply_to=msg.reply or None,
                headers=dict(msg.headers or {}),
            )
            await callback(message)

        try:
            if max_pending is None:
                sub = await nc.subscribe(subject, cb=_deliver)
            else:
                sub = await nc.subscribe(subject, cb=_deliver, pending_msgs_limit=max_pending)
        except NatsError as e:
            raise TransportError(f"Failed to subscribe to '{subject}': {e}") from e
        subscription = NatsSubscription(subject, sub, self)
        self._subscriptions.add(subscription)
        return subscription

    def _require_connection(self) -> Any:
        if not self.running:
            raise TransportError("NATS connection is not open. Call await transport.start() first.")
        return self._nc

    # --- Connection callbacks ---

    async def _on_error(self, e: Exception) -> None:
        self._logger.error(f"NATS error occurred: {e}")

    async def _on_disconnected(self) -> None:
        self._logger.warning("NATS connection status changed: DISCONNECTED")

    async def _on_reconnected(self) -> None:
        url = getattr(self._nc, "connected_url", None)
        self._logger.info(f"NATS connection status changed: RECONNECTED to {url}")

    async def _on_closed(self) -> None:
        self._logger.info("NATS connection status changed: CLOSED")

    # --- Diagnostics ---

    def stats(self) -> TransportStats:
        raw = getattr(self._nc, "stats", None) or {}
        return TransportStats(
            in_msgs=raw.get("in_msgs", 0),
            out_msgs=raw.get("out_msgs", 0),
            in_bytes=raw.get("in_bytes", 0),
            out_bytes=raw.get("out_bytes", 0),
            reconnects=raw.get("reconnects", 0),
            subscriptions=len(self._subscriptions),
        )
