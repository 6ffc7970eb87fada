"""Request/reply on top of raw publish/subscribe

Every call gets its own inbox subject. The inbox is subscribed before the
request is published and released exactly once whichever way the call ends.

Usage:
    client = RequestReplyClient(transport, default_timeout=0.5)

    result = await client.call("order.process", b"Order-1")
    if result.ok:
        print(result.text())

    # Or raise on failure
    reply = await client.request("order.process", b"Order-1", timeout=1.0)
"""
import asyncio
import logging
from typing import Any, Dict, Optional, Set, Union

from reqreply.config import ConnectionSettings
from reqreply.errors import TransportError
from reqreply.message import CallResult, ErrorKind, Message, to_bytes, validate_subject
from reqreply.transport import Subscription, Transport

Payload = Union[bytes, str]


class PendingCall:
    """One outstanding request

    The first of reply, timeout, cancellation or transport failure settles
    the call. Later transitions return False and change nothing.
    """

    def __init__(self, subject: str, inbox: str, timeout: float,
                 loop: asyncio.AbstractEventLoop) -> None:
        self.subject = subject
        self.inbox = inbox
        self.timeout = timeout
        self.started = loop.time()
        self.deadline = self.started + timeout
        self._loop = loop
        self._future: asyncio.Future = loop.create_future()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._subscription: Optional[Subscription] = None
        self._unsubscribing: Optional[asyncio.Future] = None

    @property
    def done(self) -> bool:
        return self._future.done()

    def _arm(self) -> None:
        self._timer = self._loop.call_at(self.deadline, self.expire)

    def _elapsed_ms(self) -> float:
        return (self._loop.time() - self.started) * 1000

    def _settle(self, result: CallResult) -> bool:
        if self._future.done():
            return False
        self._future.set_result(result)
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        return True

    def resolve(self, message: Message) -> bool:
        """Settle with a reply delivered on the inbox"""
        if message.is_error:
            return self._settle(CallResult.failure(
                self.subject, ErrorKind.HANDLER_FAILURE, message.text(), self._elapsed_ms()
            ))
        return self._settle(CallResult.success(self.subject, message.payload, self._elapsed_ms()))

    def expire(self) -> bool:
        return self._settle(CallResult.failure(
            self.subject, ErrorKind.TIMEOUT,
            f"No reply within {self.timeout * 1000:.0f}ms", self._elapsed_ms()
        ))

    def fail(self, detail: str) -> bool:
        return self._settle(CallResult.failure(
            self.subject, ErrorKind.TRANSPORT_FAILURE, detail, self._elapsed_ms()
        ))

    def cancel(self) -> bool:
        """Abandon the call. Idempotent, a no-op once the call has settled."""
        return self._settle(CallResult.failure(
            self.subject, ErrorKind.CANCELLED, "Cancelled by caller", self._elapsed_ms()
        ))

    async def result(self) -> CallResult:
        """Wait for the call to settle"""
        # Shielded so that cancelling the waiter does not cancel the future
        return await asyncio.shield(self._future)

    def __repr__(self) -> str:
        state = "done" if self.done else "pending"
        return f"<PendingCall {self.subject} inbox={self.inbox} {state}>"


class RequestReplyClient:
    """Correlation-based request/reply client

    Args:
        transport: Started Transport instance
        default_timeout: Deadline in seconds used when a call passes none
        logger: Logger instance, uses standard library logging if None
    """

    def __init__(self, transport: Transport, default_timeout: float = 5.0,
                 logger: Optional[logging.Logger] = None) -> None:
        if transport is None:
            raise ValueError("transport can not be None")
        if default_timeout <= 0:
            raise ValueError("default_timeout must be positive")
        self._transport = transport
        self._default_timeout = default_timeout
        # inbox -> PendingCall, only touched from the event loop thread
        self._pending: Dict[str, PendingCall] = {}
        self._release_tasks: Set[asyncio.Task] = set()
        self._stats = {
            "requests": 0,
            "replies": 0,
            "timeouts": 0,
            "handler_failures": 0,
            "transport_failures": 0,
            "cancelled": 0,
        }
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, transport: Transport, settings: ConnectionSettings,
                      logger: Optional[logging.Logger] = None) -> "RequestReplyClient":
        return cls(transport, default_timeout=settings.timeout, logger=logger)

    @property
    def default_timeout(self) -> float:
        return self._default_timeout

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # --- Calls ---

    async def begin(self, subject: str, payload: Payload = b"",
                    timeout: Optional[float] = None) -> PendingCall:
        """Start a call and return its handle without waiting for the reply

        Transport failures settle the returned call instead of raising.
        """
        validate_subject(subject)
        timeout = self._default_timeout if timeout is None else timeout
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        data = to_bytes(payload)

        loop = asyncio.get_running_loop()
        pending = PendingCall(subject, self._transport.new_inbox(), timeout, loop)
        self._pending[pending.inbox] = pending
        self._stats["requests"] += 1
        pending._future.add_done_callback(lambda _: self._on_settled(pending))
        pending._arm()

        self._logger.debug(f"Sending request to '{subject}' with inbox '{pending.inbox}'")
        try:
            # The inbox must be live before the request goes out
            await self._subscribe_inbox(pending)
            if pending.done:
                await self._release(pending)
                return pending
            await self._transport.publish(subject, data, reply_to=pending.inbox)
        except asyncio.CancelledError:
            pending.cancel()
            raise
        except TransportError as e:
            self._logger.error(f"Error sending request to subject '{subject}': {e}")
            pending.fail(str(e))
        except Exception as e:
            self._logger.exception(f"Unexpected transport error for subject '{subject}'")
            pending.fail(f"{type(e).__name__}: {e}")
        return pending

    async def call(self, subject: str, payload: Payload = b"",
                   timeout: Optional[float] = None) -> CallResult:
        """Send a request and wait for its typed result

        Returns:
            CallResult holding either the reply payload or an ErrorKind.
            Cancelling the awaiting task cancels the call and re-raises.
        """
        pending = await self.begin(subject, payload, timeout)
        try:
            return await pending.result()
        except asyncio.CancelledError:
            pending.cancel()
            raise
        finally:
            await self._release(pending)

    async def request(self, subject: str, payload: Payload = b"",
                      timeout: Optional[float] = None) -> bytes:
        """Send a request and return the reply payload

        Raises:
            RequestTimeout: If no reply arrived before the deadline.
            TransportError: If the request could not be sent.
            RequestCancelled: If the call was cancelled.
            RemoteHandlerError: If the responder's handler failed.
        """
        result = await self.call(subject, payload, timeout)
        return result.unwrap()

    async def close(self) -> None:
        """Cancel every outstanding call and release its inbox"""
        for pending in list(self._pending.values()):
            pending.cancel()
            await self._release(pending)
        if self._release_tasks:
            await asyncio.gather(*self._release_tasks, return_exceptions=True)

    # --- Internal ---

    async def _on_reply(self, message: Message) -> None:
        pending = self._pending.get(message.subject)
        if pending is None:
            self._logger.debug(f"Dropping late reply on '{message.subject}'")
            return
        if not pending.resolve(message):
            self._logger.debug(f"Call on '{pending.inbox}' already settled, reply ignored")

    async def _subscribe_inbox(self, pending: PendingCall) -> None:
        subscribing = asyncio.ensure_future(
            self._transport.subscribe(pending.inbox, self._on_reply)
        )
        try:
            pending._subscription = await asyncio.shield(subscribing)
        except asyncio.CancelledError:
            # The subscription may still be created after the caller left
            task = asyncio.ensure_future(self._release_late(pending, subscribing))
            self._release_tasks.add(task)
            task.add_done_callback(self._release_tasks.discard)
            raise

    async def _release_late(self, pending: PendingCall, subscribing: asyncio.Future) -> None:
        try:
            pending._subscription = await subscribing
        except Exception as e:
            self._logger.debug(f"Inbox '{pending.inbox}' was never subscribed: {e}")
            return
        await self._release(pending)

    def _on_settled(self, pending: PendingCall) -> None:
        result = pending._future.result()
        if result.ok:
            self._stats["replies"] += 1
        elif result.error == ErrorKind.TIMEOUT:
            self._stats["timeouts"] += 1
            self._logger.warning(f"Request timed out for subject: {pending.subject}")
        elif result.error == ErrorKind.HANDLER_FAILURE:
            self._stats["handler_failures"] += 1
        elif result.error == ErrorKind.CANCELLED:
            self._stats["cancelled"] += 1
        else:
            self._stats["transport_failures"] += 1

        if pending._subscription is None:
            self._pending.pop(pending.inbox, None)
            return
        task = asyncio.ensure_future(self._release(pending))
        self._release_tasks.add(task)
        task.add_done_callback(self._release_tasks.discard)

    async def _release(self, pending: PendingCall) -> None:
        """Drop the table entry and unsubscribe the inbox

        The unsubscribe runs once; concurrent callers all wait for it.
        """
        self._pending.pop(pending.inbox, None)
        subscription, pending._subscription = pending._subscription, None
        if subscription is not None:
            pending._unsubscribing = asyncio.ensure_future(
                self._unsubscribe(subscription, pending.inbox)
            )
        if pending._unsubscribing is not None:
            await asyncio.shield(pending._unsubscribing)

    async def _unsubscribe(self, subscription: Subscription, inbox: str) -> None:
        try:
            await subscription.unsubscribe()
        except Exception as e:
            self._logger.warning(f"Failed to unsubscribe inbox '{inbox}': {e}")

    # --- Diagnostics ---

    def get_stats(self) -> Dict[str, Any]:
        return {**self._stats, "pending": self.pending_count}
