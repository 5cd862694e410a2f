"""Configuration surfaces for the connection manager, publisher and consumer.

Durations are expressed in seconds (floats).
"""

from __future__ import annotations

import time
from urllib.parse import quote, urlencode

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConnectionConfig(BaseSettings):
    """Broker connection settings, read from ``RABBITMQ_*`` environment variables."""

    host: str = Field(default="localhost", description="RabbitMQ host")
    port: int = Field(default=5672, ge=1, le=65535, description="AMQP port")
    username: str = Field(default="guest", description="AMQP user")
    password: str = Field(default="guest", description="AMQP password")
    vhost: str = Field(default="/", description="Virtual host")
    connection_name: str = Field(
        default="checkin-messaging",
        description="Client-provided name shown in the management UI",
    )
    heartbeat: float = Field(default=60.0, ge=0, description="Heartbeat interval")
    connection_timeout: float = Field(default=30.0, gt=0, description="Dial timeout")
    max_retries: int = Field(
        default=5, ge=0, description="Reconnect attempts after an unexpected close"
    )
    retry_delay: float = Field(
        default=5.0, ge=0, description="Pause between reconnect attempts"
    )
    publisher_confirms: bool = Field(
        default=True, description="Open the channel in publisher-confirm mode"
    )

    model_config = SettingsConfigDict(env_prefix="RABBITMQ_")

    @property
    def amqp_url(self) -> str:
        """AMQP URL including credentials."""
        return self._url(self.password)

    @property
    def safe_url(self) -> str:
        """AMQP URL with the password masked, for logs."""
        return self._url("***")

    @property
    def connection_url(self) -> str:
        """``amqp_url`` plus the heartbeat and client-name query parameters."""
        query = urlencode(
            {"heartbeat": int(self.heartbeat), "name": self.connection_name}
        )
        return f"{self.amqp_url}?{query}"

    def _url(self, password: str) -> str:
        user = quote(self.username, safe="")
        secret = quote(password, safe="*")
        vhost = quote(self.vhost, safe="")
        return f"amqp://{user}:{secret}@{self.host}:{self.port}/{vhost}"


def _default_consumer_tag() -> str:
    return f"consumer-{time.time_ns()}"


class ConsumerConfig(BaseModel):
    """Consumer settings; frozen so a running consumer never sees them change."""

    model_config = ConfigDict(frozen=True)

    queue_name: str = Field(..., min_length=1)
    consumer_tag: str = Field(default_factory=_default_consumer_tag)
    auto_ack: bool = False
    prefetch_count: int = Field(default=10, ge=0)
    prefetch_size: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(
        default=5.0, ge=0, description="Pause before re-opening a closed stream"
    )
    processing_timeout: float = Field(default=30.0, gt=0)
    concurrent_consumers: int = Field(default=1, ge=1)
    requeue_delay: float = Field(
        default=0.0,
        ge=0,
        description="Hold a failed delivery this long before requeueing it",
    )


class PublisherConfig(BaseModel):
    """Publisher settings."""

    model_config = ConfigDict(frozen=True)

    default_exchange: str = ""
    default_timeout: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)
