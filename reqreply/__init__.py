"""reqreply package

Request/reply over a publish/subscribe transport:
1. RequestReplyClient - correlated calls with per-call inboxes and deadlines
2. ResponderRuntime - subject-keyed handler dispatch with concurrent handlers
3. FanOutCoordinator - parallel calls collected in input order
"""

from .client import PendingCall, RequestReplyClient
from .errors import (
    DuplicateHandlerError,
    RemoteHandlerError,
    ReqReplyError,
    RequestCancelled,
    RequestTimeout,
    TransportError,
)
from .fanout import FanOutCoordinator
from .memory import MemoryTransport
from .message import CallResult, ErrorKind, ErrorReply, Message, TransportStats
from .responder import ResponderRuntime
from .transport import Subscription, Transport

__all__ = [
    "RequestReplyClient",
    "PendingCall",
    "ResponderRuntime",
    "FanOutCoordinator",
    "Transport",
    "Subscription",
    "MemoryTransport",
    "Message",
    "CallResult",
    "ErrorKind",
    "ErrorReply",
    "TransportStats",
    "ReqReplyError",
    "TransportError",
    "RequestTimeout",
    "RequestCancelled",
    "RemoteHandlerError",
    "DuplicateHandlerError",
]
