"""Settings for the requester and responder services"""
import logging
from typing import Annotated, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

DEFAULT_SUBJECTS = [
    "order.process",
    "user.validate",
    "payment.authorize",
    "inventory.check",
    "notification.send",
]


def configure_logging(level: int = logging.INFO) -> None:
    """Configure root logging for the service entry points"""
    logging.basicConfig(level=level, format=LOG_FORMAT)


class ConnectionSettings(BaseSettings):
    """Broker connection and request settings

    All durations are in milliseconds. Each field can be set from the
    environment with the REQREPLY_ prefix, e.g. REQREPLY_URL or
    REQREPLY_TIMEOUT_MS. Empty variables are ignored.
    """
    model_config = SettingsConfigDict(env_prefix="REQREPLY_", env_ignore_empty=True)

    url: str = Field(default="nats://localhost:4222", description="Broker URL")
    connection_name: str = Field(default="reqreply", description="Name reported to the server")
    timeout_ms: int = Field(default=5000, description="Default request deadline")
    max_reconnect: int = Field(default=60, description="Reconnect attempts, -1 for unlimited")
    reconnect_wait_ms: int = Field(default=2000, description="Wait between reconnect attempts")
    ping_interval_ms: int = Field(default=20000, description="Liveness probe period")
    connect_timeout_ms: int = Field(default=10000, description="Initial connection timeout")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v:
            raise ValueError("url cannot be empty")
        return v

    @field_validator("timeout_ms", "reconnect_wait_ms", "ping_interval_ms", "connect_timeout_ms")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("duration must be positive")
        return v

    @field_validator("max_reconnect")
    @classmethod
    def validate_max_reconnect(cls, v: int) -> int:
        if v < -1:
            raise ValueError("max_reconnect must be -1 (unlimited) or >= 0")
        return v

    @property
    def timeout(self) -> float:
        """Default request deadline in seconds"""
        return self.timeout_ms / 1000


class ResponderSettings(BaseSettings):
    """Responder runtime settings

    REQREPLY_SUBJECTS takes a comma separated list of subjects.
    """
    model_config = SettingsConfigDict(env_prefix="REQREPLY_", env_ignore_empty=True)

    subjects: Annotated[List[str], NoDecode] = Field(default_factory=lambda: list(DEFAULT_SUBJECTS))
    grace_ms: int = Field(default=5000, description="Shutdown wait for in-flight handlers")
    max_pending: int = Field(default=1000, description="Queued messages per subscription")

    @field_validator("subjects", mode="before")
    @classmethod
    def split_subjects(cls, v):
        if isinstance(v, str):
            v = [s.strip() for s in v.split(",")]
        return [s for s in v if s]

    @field_validator("grace_ms")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("grace_ms cannot be negative")
        return v

    @field_validator("max_pending")
    @classmethod
    def validate_max_pending(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_pending must be positive")
        return v

    @property
    def grace(self) -> float:
        return self.grace_ms / 1000
