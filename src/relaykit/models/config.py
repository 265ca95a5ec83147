"""Configuration models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RouterConfig(BaseModel):
    """Behaviour switches for :class:`~relaykit.core.router.MessageRouter`.

    Attributes:
        send_timeout: Seconds to wait for the sender to acknowledge a
            forwarded message. ``None`` waits indefinitely. A timeout is
            reported as a failed delivery.
        require_aggregation: Refuse connection requests while no
            aggregation destination is registered (nobody would see them).
    """

    send_timeout: float | None = Field(default=30.0, gt=0.0)
    require_aggregation: bool = False


class RetryPolicy(BaseModel):
    """Configures retry behaviour for message delivery."""

    max_retries: int = Field(default=3, ge=0)
    base_delay_seconds: float = Field(default=1.0, gt=0.0)
    max_delay_seconds: float = Field(default=60.0, gt=0.0)
    exponential_base: float = Field(default=2.0, gt=0.0)
