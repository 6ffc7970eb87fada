"""Exceptions raised by the request/reply layer"""
from typing import Any, Optional


class ReqReplyError(Exception):
    """Base class for every request/reply error"""


class TransportError(ReqReplyError):
    """Publish or subscribe failed at the connection layer"""


class RequestTimeout(ReqReplyError, TimeoutError):
    """No reply arrived before the call deadline"""

    def __init__(self, subject: str, timeout: float):
        super().__init__(f"No reply from '{subject}' within {timeout * 1000:.0f}ms")
        self.subject = subject
        self.timeout = timeout


class RequestCancelled(ReqReplyError):
    """The caller abandoned the call before it resolved"""

    def __init__(self, subject: str):
        super().__init__(f"Request to '{subject}' was cancelled")
        self.subject = subject


class RemoteHandlerError(ReqReplyError):
    """The responder's handler failed and sent back an error reply"""

    def __init__(self, subject: str, reply: Optional[Any] = None):
        error_type = getattr(reply, "error_type", "unknown")
        error_id = getattr(reply, "error_id", "-")
        super().__init__(f"Handler for '{subject}' failed with {error_type} (error_id={error_id})")
        self.subject = subject
        self.reply = reply


class DuplicateHandlerError(ReqReplyError):
    """A handler is already registered for the subject"""
