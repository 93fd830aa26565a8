"""Local offline cache for Scout collections.

This module provides a browser-style persisted key/value cache with TTL-based
staleness, schema-version invalidation and hit/miss accounting.

Key components:
- ScoutCache: Main cache interface
- CacheConfig: Configuration management
- CacheMetadata / CacheResult / CacheStats: Value types
- validation: Staleness and schema-compatibility helpers, error types
"""

from scoutcache.cache.config import CacheConfig
from scoutcache.cache.manager import ScoutCache
from scoutcache.cache.metadata import (
    CacheMetadata,
    CacheRecord,
    CacheResult,
    CacheStats,
    HealthReport,
    RefreshDecision,
)
from scoutcache.cache.validation import (
    CacheError,
    InvalidItemError,
    StoreUnavailable,
    TransactionFailed,
)

__all__ = [
    "ScoutCache",
    "CacheConfig",
    "CacheMetadata",
    "CacheRecord",
    "CacheResult",
    "CacheStats",
    "HealthReport",
    "RefreshDecision",
    "CacheError",
    "InvalidItemError",
    "StoreUnavailable",
    "TransactionFailed",
]
