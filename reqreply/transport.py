"""Transport boundary

The request/reply layer only relies on raw publish/subscribe. Concrete
transports (in-memory, NATS) implement this interface.
"""
import uuid
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

from reqreply.message import Message, TransportStats

MessageCallback = Callable[[Message], Awaitable[None]]

INBOX_PREFIX = "_INBOX"


class Subscription(ABC):
    """Handle returned by Transport.subscribe()"""

    def __init__(self, subject: str):
        self.subject = subject

    @property
    @abstractmethod
    def active(self) -> bool:
        ...

    @abstractmethod
    async def unsubscribe(self) -> None:
        """Stop delivery. Calling it more than once is a no-op."""


class Transport(ABC):
    """Asynchronous publish/subscribe connection

    Delivery is at-most-once per subscription with no ordering guarantee
    across subjects. There is no request/reply primitive here.
    """

    inbox_prefix: str = INBOX_PREFIX

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @property
    @abstractmethod
    def running(self) -> bool:
        ...

    @abstractmethod
    async def publish(
        self,
        subject: str,
        payload: bytes = b"",
        reply_to: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        """Publish a message

        Raises:
            TransportError: If the connection is not usable.
        """

    @abstractmethod
    async def subscribe(self, subject: str, callback: MessageCallback, *,
                        max_pending: Optional[int] = None) -> Subscription:
        """Subscribe a coroutine callback to a subject

        max_pending caps the messages queued for this subscription, the
        transport default applies when it is None.

        Raises:
            TransportError: If the connection is not usable.
        """

    @abstractmethod
    def stats(self) -> TransportStats:
        ...

    def new_inbox(self) -> str:
        """Return a fresh private reply subject namespaced under the inbox prefix"""
        return f"{self.inbox_prefix}.{uuid.uuid4().hex}"

    async def __aenter__(self) -> "Transport":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()
