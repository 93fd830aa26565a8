"""scoutcache: Local offline cache for Scout wildlife-monitoring collections."""

__version__ = "0.1.0"

from scoutcache.cache import CacheConfig, ScoutCache

__all__ = ["ScoutCache", "CacheConfig", "__version__"]
