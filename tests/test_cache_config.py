"""Tests for cache configuration."""

from pathlib import Path

from scoutcache.cache.config import CacheConfig
from scoutcache.utils import DEFAULT_TTL_MS, HERD_MODULES


class TestCacheConfig:
    """Test CacheConfig defaults, persistence and environment loading."""

    def test_defaults(self):
        config = CacheConfig()
        assert config.db_name == "ScoutCache"
        assert config.schema_version == 1
        assert config.format_version == "1.0.0"
        assert config.default_ttl_ms == DEFAULT_TTL_MS == 86_400_000
        assert config.default_collection == HERD_MODULES
        assert config.linked_collections == {}

    def test_string_cache_dir_converted(self, tmp_path):
        """Test that string cache_dir is converted to a Path."""
        config = CacheConfig(cache_dir=str(tmp_path))
        assert isinstance(config.cache_dir, Path)
        assert config.cache_dir == tmp_path

    def test_derived_paths(self, tmp_path):
        config = CacheConfig(cache_dir=tmp_path, db_name="Field")
        assert config.db_path == tmp_path / "Field.sqlite3"
        assert config.lock_path == tmp_path / "Field.lock"

    def test_save_and_load_roundtrip(self, tmp_path):
        """Test that a saved config loads back with the same values."""
        config = CacheConfig(
            cache_dir=tmp_path,
            schema_version=3,
            default_ttl_ms=5000,
            linked_collections={"herd_modules": ["providers"]},
        )
        config.save()

        loaded = CacheConfig.load(tmp_path / "config.json")
        assert loaded.cache_dir == tmp_path
        assert loaded.schema_version == 3
        assert loaded.default_ttl_ms == 5000
        assert loaded.linked_collections == {"herd_modules": ["providers"]}

    def test_load_missing_file_returns_defaults(self, tmp_path):
        config = CacheConfig.load(tmp_path / "missing.json")
        assert config.db_name == "ScoutCache"

    def test_from_env(self, tmp_path, monkeypatch):
        """Test configuration from environment variables."""
        monkeypatch.setenv("SCOUTCACHE_DIR", str(tmp_path))
        monkeypatch.setenv("SCOUTCACHE_DB_NAME", "EnvCache")
        monkeypatch.setenv("SCOUTCACHE_SCHEMA_VERSION", "2")
        monkeypatch.setenv("SCOUTCACHE_TTL_MS", "1000")
        monkeypatch.setenv("SCOUTCACHE_LOCK_TIMEOUT", "0.5")

        config = CacheConfig.from_env()
        assert config.cache_dir == tmp_path
        assert config.db_name == "EnvCache"
        assert config.schema_version == 2
        assert config.default_ttl_ms == 1000
        assert config.lock_timeout == 0.5
