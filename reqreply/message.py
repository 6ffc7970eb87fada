"""Message and result models

Models shared by the transport, the request/reply client and the responder
runtime. All of them are immutable once built.
"""
import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from reqreply.errors import (
    RemoteHandlerError,
    ReqReplyError,
    RequestCancelled,
    RequestTimeout,
    TransportError,
)

# Header set by the responder on error replies
STATUS_HEADER = "Reqreply-Status"
STATUS_ERROR = "error"


def validate_subject(value: str) -> str:
    """Reject empty routing subjects"""
    if not value:
        raise ValueError("subject cannot be empty")
    return value


def to_bytes(payload: Union[bytes, bytearray, str, None]) -> bytes:
    """Normalize a payload to bytes (str is UTF-8 encoded)"""
    if payload is None:
        return b""
    if isinstance(payload, str):
        return payload.encode("utf-8")
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return bytes(payload)
    raise TypeError(f"payload must be bytes or str, got {type(payload).__name__}")


class ErrorKind(str, Enum):
    """Outcome categories of a request

    - TIMEOUT: no reply within the deadline, caller may retry
    - TRANSPORT_FAILURE: publish/subscribe failed at the connection layer
    - CANCELLED: the caller abandoned the call
    - HANDLER_FAILURE: the responder's handler raised
    - NO_HANDLER: no registration for the inbound subject (responder side)
    """
    TIMEOUT = "Timeout"
    TRANSPORT_FAILURE = "TransportFailure"
    CANCELLED = "Cancelled"
    HANDLER_FAILURE = "HandlerFailure"
    NO_HANDLER = "NoHandler"


class Message(BaseModel):
    """A message delivered by the transport

    Attributes:
        subject: Subject the message was published to
        payload: Raw message body
        reply_to: Subject the receiver should publish its answer to
        headers: Optional string headers
    """
    model_config = ConfigDict(frozen=True)

    subject: str
    payload: bytes = b""
    reply_to: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("subject")
    @classmethod
    def check_subject(cls, v: str) -> str:
        return validate_subject(v)

    @field_validator("reply_to")
    @classmethod
    def check_reply_to(cls, v: Optional[str]) -> Optional[str]:
        # An empty reply-to means "no reply expected"
        return v or None

    @property
    def is_error(self) -> bool:
        return self.headers.get(STATUS_HEADER) == STATUS_ERROR

    def text(self) -> str:
        return self.payload.decode("utf-8", errors="replace")


class ErrorReply(BaseModel):
    """Structured payload a responder sends when a handler fails

    Only the exception class name travels back to the caller. The error_id
    matches the responder log record holding the full traceback.
    """
    status: str = STATUS_ERROR
    error: str = ErrorKind.HANDLER_FAILURE.value
    subject: str
    error_type: str
    error_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_exception(cls, subject: str, exc: BaseException) -> "ErrorReply":
        return cls(subject=subject, error_type=type(exc).__name__)

    def to_bytes(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def parse(cls, data: bytes) -> Optional["ErrorReply"]:
        """Decode an error reply, returns None when the body is not one"""
        try:
            return cls.model_validate_json(data)
        except ValueError:
            return None


class CallResult(BaseModel):
    """Outcome of a single request/reply call

    Exactly one of payload or error is set.
    """
    model_config = ConfigDict(frozen=True)

    subject: str
    payload: Optional[bytes] = None
    error: Optional[ErrorKind] = None
    detail: Optional[str] = None
    duration_ms: float = 0.0

    @classmethod
    def success(cls, subject: str, payload: bytes, duration_ms: float = 0.0) -> "CallResult":
        return cls(subject=subject, payload=payload, duration_ms=duration_ms)

    @classmethod
    def failure(cls, subject: str, error: ErrorKind, detail: Optional[str] = None,
                duration_ms: float = 0.0) -> "CallResult":
        return cls(subject=subject, error=error, detail=detail, duration_ms=duration_ms)

    @property
    def ok(self) -> bool:
        return self.error is None

    def text(self) -> str:
        """Decoded reply body, empty when the call failed"""
        return (self.payload or b"").decode("utf-8", errors="replace")

    def describe(self) -> str:
        """Human-readable outcome"""
        if self.ok:
            return self.text()
        if self.error == ErrorKind.TIMEOUT:
            return "Request timed out"
        if self.error == ErrorKind.CANCELLED:
            return "Request cancelled"
        if self.error == ErrorKind.HANDLER_FAILURE:
            return f"Handler error: {self.detail}"
        return f"Error: {self.detail}"

    def to_exception(self) -> Optional[ReqReplyError]:
        if self.ok:
            return None
        if self.error == ErrorKind.TIMEOUT:
            return RequestTimeout(self.subject, self.duration_ms / 1000)
        if self.error == ErrorKind.CANCELLED:
            return RequestCancelled(self.subject)
        if self.error == ErrorKind.HANDLER_FAILURE:
            reply = None
            if self.detail:
                try:
                    reply = ErrorReply.model_validate(json.loads(self.detail))
                except ValueError:
                    reply = None
            return RemoteHandlerError(self.subject, reply)
        return TransportError(self.detail or f"Transport failure for '{self.subject}'")

    def unwrap(self) -> bytes:
        """Return the reply payload or raise the matching exception"""
        exc = self.to_exception()
        if exc is not None:
            raise exc
        return self.payload or b""


class TransportStats(BaseModel):
    """Connection counters"""
    in_msgs: int = 0
    out_msgs: int = 0
    in_bytes: int = 0
    out_bytes: int = 0
    reconnects: int = 0
    dropped: int = 0
    subscriptions: int = 0

    def describe(self) -> str:
        return (
            f"Connection Stats - In Msgs: {self.in_msgs}, Out Msgs: {self.out_msgs}, "
            f"In Bytes: {self.in_bytes}, Out Bytes: {self.out_bytes}, "
            f"Reconnects: {self.reconnects}"
        )
