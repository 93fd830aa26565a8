"""Base classes for cached item schemas."""

from scoutcache.base.schema import DictItemSchema, HerdModuleSchema, ItemSchema

__all__ = ["ItemSchema", "DictItemSchema", "HerdModuleSchema"]
