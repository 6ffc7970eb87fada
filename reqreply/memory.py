"""In-memory transport

A single-process Transport on top of asyncio.Queue. Designed for
development, testing and demos where no NATS server is available.

Usage:
    from reqreply.memory import MemoryTransport

    transport = MemoryTransport()
    await transport.start()

    async def on_message(message):
        print(message.subject, message.payload)

    sub = await transport.subscribe("orders.*", on_message)
    await transport.publish("orders.created", b"ORD-1")
    await sub.unsubscribe()
    await transport.stop()
"""
import asyncio
import logging
from typing import Dict, List, Optional

from reqreply.errors import TransportError
from reqreply.message import Message, TransportStats, validate_subject
from reqreply.transport import MessageCallback, Subscription, Transport


def subject_matches(pattern: str, subject: str) -> bool:
    """Match a subject against a pattern with NATS-style wildcards

    ``*`` matches exactly one token, ``>`` matches one or more trailing tokens.
    """
    if pattern == subject:
        return True
    pattern_tokens = pattern.split(".")
    subject_tokens = subject.split(".")
    for i, token in enumerate(pattern_tokens):
        if token == ">":
            return len(subject_tokens) > i
        if i >= len(subject_tokens):
            return False
        if token != "*" and token != subject_tokens[i]:
            return False
    return len(pattern_tokens) == len(subject_tokens)


class MemorySubscription(Subscription):
    """Subscription owning a bounded queue and its consumer task"""

    def __init__(self, subject: str, callback: MessageCallback,
                 transport: "MemoryTransport", max_pending: int) -> None:
        super().__init__(subject)
        self._callback = callback
        self._transport = transport
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._task: Optional[asyncio.Task] = None
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _start(self) -> None:
        self._active = True
        self._task = asyncio.create_task(self._consumer_loop())

    def _offer(self, message: Message) -> bool:
        """Queue a message for delivery, False when the queue is full"""
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    async def _consumer_loop(self) -> None:
        """Background task that hands queued messages to the callback"""
        while self._active:
            message = await self._queue.get()
            self._transport._count_delivery(message)
            try:
                await self._callback(message)
            except Exception:
                self._transport._logger.exception(
                    f"Error in callback for subject '{self.subject}'"
                )
            finally:
                self._queue.task_done()

    async def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._transport._remove(self)
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        # A callback may unsubscribe its own subscription
        if task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass


class MemoryTransport(Transport):
    """In-memory Transport

    Args:
        max_pending: Maximum number of queued messages per subscription.
            Messages published to a full subscription are dropped.
        logger: Logger instance, uses standard library logging if None
    """

    def __init__(self, *, max_pending: int = 1000, logger: Optional[logging.Logger] = None) -> None:
        self._max_pending = max_pending
        self._subscriptions: Dict[str, List[MemorySubscription]] = {}
        self._running = False
        self._stats = TransportStats()
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    # --- Lifecycle ---

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._logger.info("Memory transport started")

    async def stop(self) -> None:
        """Stop the transport and cancel every subscription"""
        if not self._running:
            return
        self._running = False
        for subs in list(self._subscriptions.values()):
            for sub in list(subs):
                await sub.unsubscribe()
        self._subscriptions.clear()
        self._logger.info("Memory transport stopped")

    @property
    def running(self) -> bool:
        return self._running

    # --- Pub/Sub ---

    async def publish(
        self,
        subject: str,
        payload: bytes = b"",
        reply_to: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        if not self._running:
            raise TransportError("Transport is not running. Call await transport.start() first.")
        try:
            message = Message(subject=subject, payload=payload, reply_to=reply_to,
                              headers=headers or {})
        except ValueError as e:
            raise TransportError(f"Invalid message for subject '{subject}': {e}") from e

        self._stats.out_msgs += 1
        self._stats.out_bytes += len(message.payload)

        for pattern, subs in list(self._subscriptions.items()):
            if not subject_matches(pattern, subject):
                continue
            for sub in subs:
                if not sub._offer(message):
                    self._stats.dropped += 1
                    self._logger.warning(
                        f"Slow consumer on '{pattern}', dropped message for '{subject}'"
                    )

    async def subscribe(self, subject: str, callback: MessageCallback, *,
                        max_pending: Optional[int] = None) -> MemorySubscription:
        if not self._running:
            raise TransportError("Transport is not running. Call await transport.start() first.")
        try:
            validate_subject(subject)
        except ValueError as e:
            raise TransportError(str(e)) from e

        limit = self._max_pending if max_pending is None else max_pending
        sub = MemorySubscription(subject, callback, self, limit)
        self._subscriptions.setdefault(subject, []).append(sub)
        sub._start()
        self._logger.debug(f"Subscribed to '{subject}'")
        return sub

    # --- Internal ---

    def _remove(self, sub: MemorySubscription) -> None:
        subs = self._subscriptions.get(sub.subject)
        if subs is None:
            return
        if sub in subs:
            subs.remove(sub)
        if not subs:
            del self._subscriptions[sub.subject]
        self._logger.debug(f"Unsubscribed from '{sub.subject}'")

    def _count_delivery(self, message: Message) -> None:
        self._stats.in_msgs += 1
        self._stats.in_bytes += len(message.payload)

    # --- Diagnostics ---

    def subscription_count(self, subject: Optional[str] = None) -> int:
        """Number of live subscriptions, optionally for one subject"""
        if subject is not None:
            return len(self._subscriptions.get(subject, []))
        return sum(len(subs) for subs in self._subscriptions.values())

    def stats(self) -> TransportStats:
        return self._stats.model_copy(update={"subscriptions": self.subscription_count()})

    def get_subscriptions(self) -> Dict[str, int]:
        """Subject -> number of subscriptions"""
        return {subject: len(subs) for subject, subs in self._subscriptions.items()}
