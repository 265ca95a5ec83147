"""Backoff schedule for delivery retries."""

from __future__ import annotations

from relaykit.models.config import RetryPolicy

__all__ = ["RetryPolicy", "backoff_delay"]


def backoff_delay(policy: RetryPolicy, attempt: int) -> float:
    """Seconds to wait after the zero-based *attempt* failed."""
    return min(
        policy.base_delay_seconds * (policy.exponential_base**attempt),
        policy.max_delay_seconds,
    )
