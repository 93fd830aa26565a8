"""Cache configuration management."""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from scoutcache.utils import DEFAULT_TTL_MS, HERD_MODULES

DEFAULT_CACHE_DIR = Path.home() / ".scoutcache"


@dataclass
class CacheConfig:
    """Configuration for the local offline cache.

    Attributes:
        cache_dir: Directory holding the database file and its lock file
        db_name: Name of the local database (file stem)
        schema_version: Physical schema generation; bumping it destroys all data
        format_version: Semantic version of the payload shape (informational)
        default_ttl_ms: Default time-to-live in milliseconds (24 hours)
        default_collection: Collection used when an operation is not given one
        lock_timeout: Seconds to wait on a blocked schema upgrade before failing
        linked_collections: Secondary metadata names removed by invalidate(),
            keyed by the collection they depend on
    """

    cache_dir: Path = DEFAULT_CACHE_DIR
    db_name: str = "ScoutCache"
    schema_version: int = 1
    format_version: str = "1.0.0"
    default_ttl_ms: int = DEFAULT_TTL_MS
    default_collection: str = HERD_MODULES
    lock_timeout: float = 10.0
    linked_collections: Dict[str, List[str]] = field(default_factory=dict)

    def __post_init__(self):
        """Ensure cache_dir is an expanded Path object."""
        if self.cache_dir is None:
            self.cache_dir = DEFAULT_CACHE_DIR
        self.cache_dir = Path(self.cache_dir).expanduser()

    @property
    def db_path(self) -> Path:
        """Path of the SQLite database file."""
        return self.cache_dir / f"{self.db_name}.sqlite3"

    @property
    def lock_path(self) -> Path:
        """Path of the advisory lock guarding upgrades and deletion."""
        return self.cache_dir / f"{self.db_name}.lock"

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "CacheConfig":
        """Load configuration from file.

        Args:
            config_path: Path to config file. If None, uses default location.

        Returns:
            CacheConfig instance
        """
        if config_path is None:
            config_path = DEFAULT_CACHE_DIR / "config.json"

        if not config_path.exists():
            return cls()

        with open(config_path, "r") as f:
            data = json.load(f)

        if "cache_dir" in data:
            data["cache_dir"] = Path(data["cache_dir"])

        return cls(**data)

    def save(self, config_path: Optional[Path] = None) -> None:
        """Save configuration to file.

        Args:
            config_path: Path to config file. If None, uses cache_dir/config.json.
        """
        if config_path is None:
            config_path = self.cache_dir / "config.json"

        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "cache_dir": str(self.cache_dir),
            "db_name": self.db_name,
            "schema_version": self.schema_version,
            "format_version": self.format_version,
            "default_ttl_ms": self.default_ttl_ms,
            "default_collection": self.default_collection,
            "lock_timeout": self.lock_timeout,
            "linked_collections": self.linked_collections,
        }

        with open(config_path, "w") as f:
            json.dump(data, f, indent=2)

    @classmethod
    def from_env(cls) -> "CacheConfig":
        """Create configuration from environment variables.

        Environment variables:
            SCOUTCACHE_DIR: Cache directory path
            SCOUTCACHE_DB_NAME: Database name
            SCOUTCACHE_SCHEMA_VERSION: Schema generation (integer)
            SCOUTCACHE_TTL_MS: Default TTL in milliseconds
            SCOUTCACHE_LOCK_TIMEOUT: Upgrade lock timeout in seconds

        Returns:
            CacheConfig instance
        """
        config = cls()

        if os.getenv("SCOUTCACHE_DIR"):
            config.cache_dir = Path(os.getenv("SCOUTCACHE_DIR")).expanduser()

        if os.getenv("SCOUTCACHE_DB_NAME"):
            config.db_name = os.getenv("SCOUTCACHE_DB_NAME")

        if os.getenv("SCOUTCACHE_SCHEMA_VERSION"):
            config.schema_version = int(os.getenv("SCOUTCACHE_SCHEMA_VERSION"))

        if os.getenv("SCOUTCACHE_TTL_MS"):
            config.default_ttl_ms = int(os.getenv("SCOUTCACHE_TTL_MS"))

        if os.getenv("SCOUTCACHE_LOCK_TIMEOUT"):
            config.lock_timeout = float(os.getenv("SCOUTCACHE_LOCK_TIMEOUT"))

        return config
