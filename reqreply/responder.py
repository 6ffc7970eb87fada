"""Responder runtime

Subscribes a set of subjects, runs the handler registered for each inbound
message on its own task and publishes the result to the message's reply-to.

Usage:
    runtime = ResponderRuntime(transport)

    @runtime.handler("order.process")
    async def process_order(payload: bytes) -> bytes:
        return b"ACK:" + payload

    await runtime.start()
    ...
    await runtime.stop()
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from reqreply.config import ResponderSettings
from reqreply.errors import DuplicateHandlerError, TransportError
from reqreply.message import STATUS_ERROR, STATUS_HEADER, ErrorKind, ErrorReply, Message, to_bytes, validate_subject
from reqreply.transport import Subscription, Transport

Handler = Callable[[bytes], Union[bytes, str, Awaitable[Union[bytes, str]]]]

ON_DUPLICATE_REPLACE = "replace"
ON_DUPLICATE_ERROR = "error"


@dataclass
class SubjectRegistration:
    subject: str
    handler: Handler
    subscription: Optional[Subscription] = None

    @property
    def handler_name(self) -> str:
        return getattr(self.handler, "__name__", repr(self.handler))


@dataclass
class ResponderStats:
    """Counters owned by one runtime instance, reset on start()"""
    received: int = 0
    replied: int = 0
    failed: int = 0
    unmatched: int = 0
    no_reply_to: int = 0
    publish_errors: int = 0
    in_flight: int = 0
    by_subject: Dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "received": self.received,
            "replied": self.replied,
            "failed": self.failed,
            "unmatched": self.unmatched,
            "no_reply_to": self.no_reply_to,
            "publish_errors": self.publish_errors,
            "in_flight": self.in_flight,
            "by_subject": dict(self.by_subject),
        }


class ResponderRuntime:
    """Dispatches inbound requests to handlers keyed by subject

    Registering a subject twice replaces the handler (on_duplicate="replace")
    or raises DuplicateHandlerError (on_duplicate="error"). Messages whose
    subject has no handler get no reply; the caller's own timeout applies.

    Args:
        transport: Started Transport instance
        grace: Seconds stop() waits for in-flight handlers
        max_pending: Queued requests per subject subscription, the transport
            default applies when None
        on_duplicate: Policy for registering an already registered subject
        logger: Logger instance, uses standard library logging if None
    """

    def __init__(self, transport: Transport, *, grace: float = 5.0,
                 max_pending: Optional[int] = None,
                 on_duplicate: str = ON_DUPLICATE_REPLACE,
                 logger: Optional[logging.Logger] = None) -> None:
        if transport is None:
            raise ValueError("transport can not be None")
        if on_duplicate not in (ON_DUPLICATE_REPLACE, ON_DUPLICATE_ERROR):
            raise ValueError(f"Unknown duplicate policy: {on_duplicate}")
        self._transport = transport
        self._grace = grace
        self._max_pending = max_pending
        self._on_duplicate = on_duplicate
        self._registrations: Dict[str, SubjectRegistration] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._running = False
        self.stats = ResponderStats()
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, transport: Transport, settings: ResponderSettings,
                      handlers: Dict[str, Handler],
                      logger: Optional[logging.Logger] = None) -> "ResponderRuntime":
        """Build a runtime serving settings.subjects from a handler table"""
        runtime = cls(transport, grace=settings.grace, max_pending=settings.max_pending,
                      logger=logger)
        for subject in settings.subjects:
            if subject not in handlers:
                raise ValueError(f"No handler available for subject '{subject}'")
            runtime.register(subject, handlers[subject])
        return runtime

    @property
    def running(self) -> bool:
        return self._running

    # --- Registration ---

    def register(self, subject: str, handler: Handler) -> None:
        """Register a handler for a subject

        Subscribes right away when the runtime is already running.
        """
        validate_subject(subject)
        if not callable(handler):
            raise TypeError(f"handler for '{subject}' is not callable")

        existing = self._registrations.get(subject)
        if existing is not None:
            if self._on_duplicate == ON_DUPLICATE_ERROR:
                raise DuplicateHandlerError(
                    f"Subject '{subject}' already handled by '{existing.handler_name}'"
                )
            new_name = getattr(handler, "__name__", repr(handler))
            self._logger.warning(
                f"Replacing handler '{existing.handler_name}' with '{new_name}' for subject '{subject}'"
            )
            existing.handler = handler
            return

        registration = SubjectRegistration(subject, handler)
        self._registrations[subject] = registration
        self._logger.info(f"Registered handler '{registration.handler_name}' for subject '{subject}'")
        if self._running:
            self._spawn(self._subscribe_logged(registration))

    async def unregister(self, subject: str) -> bool:
        """Remove a registration and its subscription"""
        registration = self._registrations.pop(subject, None)
        if registration is None:
            return False
        await self._unsubscribe(registration)
        self._logger.info(f"Unregistered subject '{subject}'")
        return True

    def handler(self, subject: str) -> Callable[[Handler], Handler]:
        """Decorator form of register()"""
        def decorator(func: Handler) -> Handler:
            self.register(subject, func)
            return func
        return decorator

    def subjects(self) -> List[str]:
        return list(self._registrations)

    def get_handlers(self) -> Dict[str, str]:
        """Subject -> handler function name"""
        return {subject: reg.handler_name for subject, reg in self._registrations.items()}

    # --- Lifecycle ---

    async def start(self) -> None:
        """Subscribe every registered subject

        Raises:
            TransportError: If a subscription fails; subscriptions made so far
                are released.
        """
        if self._running:
            return
        self._logger.info("Starting responder runtime...")
        self.stats = ResponderStats()
        self._running = True
        try:
            for registration in list(self._registrations.values()):
                await self._subscribe(registration)
        except TransportError as e:
            self._logger.error(f"Failed to start responder runtime: {e}")
            self._running = False
            for registration in self._registrations.values():
                await self._unsubscribe(registration)
            raise
        self._logger.info(
            f"Responder runtime started. Subscribed to {len(self._registrations)} subjects"
        )

    async def stop(self, grace: Optional[float] = None) -> None:
        """Stop consuming, wait for in-flight handlers, then unsubscribe"""
        if not self._running:
            return
        self._running = False
        grace = self._grace if grace is None else grace
        self._logger.info("Stopping responder runtime...")

        tasks = set(self._tasks)
        if tasks:
            done, still_running = await asyncio.wait(tasks, timeout=grace)
            if still_running:
                self._logger.warning(
                    f"{len(still_running)} handler(s) still running after {grace}s, cancelling"
                )
                for task in still_running:
                    task.cancel()
                await asyncio.gather(*still_running, return_exceptions=True)

        for registration in self._registrations.values():
            await self._unsubscribe(registration)
        self._logger.info(f"Responder runtime stopped. Total messages received: {self.stats.received}")

    async def __aenter__(self) -> "ResponderRuntime":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()

    # --- Dispatch ---

    async def _on_message(self, message: Message) -> None:
        """Transport callback, hands each message to its own task"""
        if not self._running:
            self._logger.debug(f"Runtime stopping, dropped message on '{message.subject}'")
            return
        self._spawn(self._dispatch(message))

    async def _dispatch(self, message: Message) -> None:
        self.stats.received += 1
        msg_num = self.stats.received
        subject = message.subject

        registration = self._registrations.get(subject)
        if registration is None:
            self.stats.unmatched += 1
            self._logger.warning(
                f"{ErrorKind.NO_HANDLER.value}: no handler for message #{msg_num} on '{subject}', dropped"
            )
            return

        self.stats.by_subject[subject] = self.stats.by_subject.get(subject, 0) + 1
        self._logger.debug(f"Received request #{msg_num} on subject: {subject}")
        self.stats.in_flight += 1
        try:
            result = await self._invoke(registration.handler, message.payload)
            reply = to_bytes(result)
            headers = None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.stats.failed += 1
            error = ErrorReply.from_exception(subject, e)
            self._logger.error(
                f"Error processing request #{msg_num} on '{subject}' (error_id={error.error_id})",
                exc_info=True,
            )
            reply = error.to_bytes()
            headers = {STATUS_HEADER: STATUS_ERROR}
        finally:
            self.stats.in_flight -= 1

        if not message.reply_to:
            self.stats.no_reply_to += 1
            self._logger.warning(f"No reply-to subject for message #{msg_num}, cannot send response")
            return

        try:
            await self._transport.publish(message.reply_to, reply, headers=headers)
        except Exception as e:
            self.stats.publish_errors += 1
            self._logger.error(f"Error sending reply for message #{msg_num}: {e}")
            return
        if headers is None:
            self.stats.replied += 1
        self._logger.debug(f"Sent reply #{msg_num} to '{message.reply_to}'")

    async def _invoke(self, handler: Handler, payload: bytes) -> Union[bytes, str]:
        if asyncio.iscoroutinefunction(handler):
            return await handler(payload)
        # Blocking handlers run on a worker thread
        result = await asyncio.to_thread(handler, payload)
        if asyncio.iscoroutine(result):
            return await result
        return result

    # --- Internal ---

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _subscribe(self, registration: SubjectRegistration) -> None:
        if registration.subscription is not None and registration.subscription.active:
            return
        registration.subscription = await self._transport.subscribe(
            registration.subject, self._on_message, max_pending=self._max_pending
        )
        self._logger.info(f"Subscribed to subject: {registration.subject}")

    async def _subscribe_logged(self, registration: SubjectRegistration) -> None:
        try:
            await self._subscribe(registration)
        except TransportError as e:
            self._logger.error(f"Failed to subscribe to subject: {registration.subject}: {e}")

    async def _unsubscribe(self, registration: SubjectRegistration) -> None:
        subscription, registration.subscription = registration.subscription, None
        if subscription is None:
            return
        try:
            await subscription.unsubscribe()
            self._logger.info(f"Unsubscribed from subject: {registration.subject}")
        except Exception as e:
            self._logger.error(f"Error unsubscribing from subject: {registration.subject}: {e}")

    def get_stats(self) -> Dict[str, Any]:
        return {**self.stats.as_dict(), "running": self._running, "subjects": len(self._registrations)}
