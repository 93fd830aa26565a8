"""Unit tests for cache validation module."""

import pytest

from scoutcache.cache.validation import (
    CacheError,
    InvalidItemError,
    StoreUnavailable,
    TransactionFailed,
    compute_age,
    get_ttl_remaining,
    is_age_stale,
    is_schema_compatible,
    is_stale,
)

NOW = 1_700_000_000_000


class TestTTLValidation:
    """Test staleness helpers."""

    def test_fresh_within_window(self):
        """Test that a write is fresh within its TTL window."""
        assert is_stale(NOW - 1000, 60_000, NOW) is False

    def test_stale_after_window(self):
        """Test that a write goes stale once the TTL has elapsed."""
        assert is_stale(NOW - 120_000, 60_000, NOW) is True

    def test_boundary_is_not_stale(self):
        """Test that age equal to TTL is still fresh (strictly greater is stale)."""
        assert is_stale(NOW - 60_000, 60_000, NOW) is False
        assert is_stale(NOW - 60_001, 60_000, NOW) is True

    @pytest.mark.parametrize("ttl", [0, -1, -60_000])
    def test_non_positive_ttl_always_stale(self, ttl):
        """Test that zero or negative TTL makes every read stale."""
        assert is_age_stale(0, ttl) is True
        assert is_stale(NOW, ttl, NOW) is True

    def test_compute_age(self):
        """Test age calculation."""
        assert compute_age(NOW - 2500, NOW) == 2500

    def test_ttl_remaining(self):
        """Test TTL remaining calculation."""
        assert get_ttl_remaining(NOW - 1000, 60_000, NOW) == 59_000

    def test_ttl_remaining_expired(self):
        """Test TTL remaining never goes negative."""
        assert get_ttl_remaining(NOW - 120_000, 60_000, NOW) == 0


class TestSchemaCompatibility:
    """Test schema version checks."""

    def test_equal_versions_compatible(self):
        assert is_schema_compatible(3, 3) is True

    @pytest.mark.parametrize("stored", [1, 4, None])
    def test_any_mismatch_incompatible(self, stored):
        """Test that older, newer and missing versions are all rejected."""
        assert is_schema_compatible(stored, 3) is False


class TestErrors:
    """Test error hierarchy."""

    def test_error_hierarchy(self):
        assert issubclass(StoreUnavailable, CacheError)
        assert issubclass(TransactionFailed, CacheError)
        assert issubclass(InvalidItemError, CacheError)
        assert issubclass(InvalidItemError, ValueError)

    def test_transaction_failed_carries_cause(self):
        cause = RuntimeError("disk I/O error")
        error = TransactionFailed("write failed", cause=cause)
        assert error.cause is cause
        assert "write failed" in str(error)
