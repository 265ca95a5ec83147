"""RelayKit exception hierarchy."""

from __future__ import annotations


class RelayKitError(Exception):
    """Base exception for all RelayKit errors."""


class InvalidIdentityError(RelayKitError, ValueError):
    """A reference cannot be registered in the requested role.

    Raised for aggregation destinations that carry an account and for bot
    identities that lack one. Ordinary negative outcomes (duplicates, missing
    entries) are reported through return values instead.
    """
