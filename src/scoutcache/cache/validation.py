"""Cache validation utilities for staleness and schema compatibility."""

from typing import Optional


class CacheError(Exception):
    """Base exception for cache-related errors."""

    pass


class StoreUnavailable(CacheError):
    """Raised when the local store cannot be opened or its schema is invalid."""

    pass


class TransactionFailed(CacheError):
    """Raised when a read or write inside an open store fails.

    Attributes:
        cause: The underlying store error
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class InvalidItemError(CacheError, ValueError):
    """Raised when an item cannot be turned into a cache record."""

    pass


def compute_age(written_at: int, now: int) -> int:
    """Milliseconds elapsed since a write.

    Args:
        written_at: Write timestamp (ms since epoch)
        now: Current timestamp (ms since epoch)

    Returns:
        Age in milliseconds
    """
    return now - written_at


def is_age_stale(age: int, ttl_ms: int) -> bool:
    """Check if an age exceeds a TTL.

    A zero or negative TTL makes every read stale.

    Args:
        age: Age in milliseconds
        ttl_ms: Time-to-live in milliseconds

    Returns:
        True if the TTL is non-positive or the age is strictly greater
    """
    return ttl_ms <= 0 or age > ttl_ms


def is_stale(written_at: int, ttl_ms: int, now: int) -> bool:
    """Check if a cached write has outlived its TTL.

    Args:
        written_at: Write timestamp (ms since epoch)
        ttl_ms: Time-to-live in milliseconds
        now: Current timestamp (ms since epoch)

    Returns:
        True if the write is stale
    """
    return is_age_stale(compute_age(written_at, now), ttl_ms)


def get_ttl_remaining(written_at: int, ttl_ms: int, now: int) -> int:
    """Get remaining milliseconds until the TTL expires.

    Args:
        written_at: Write timestamp (ms since epoch)
        ttl_ms: Time-to-live in milliseconds
        now: Current timestamp (ms since epoch)

    Returns:
        Milliseconds remaining, never negative
    """
    return max(0, ttl_ms - compute_age(written_at, now))


def is_schema_compatible(stored_version: Optional[int], current_version: int) -> bool:
    """Check a stored schema tag against the store's current generation.

    Compatibility is plain equality; older and newer tags are both rejected.

    Args:
        stored_version: Schema version recorded with the data
        current_version: Schema version the store was opened at

    Returns:
        True if the versions match
    """
    return stored_version == current_version
