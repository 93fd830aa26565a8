"""Item schema interface for cached domain objects.

An ItemSchema tells the cache how to key, label, serialize and deserialize
the items of one collection. Items are checked once when they cross the
serialization boundary: on write (dump) and on read (load).
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, Optional, Sequence, TypeVar

from scoutcache.cache.validation import InvalidItemError

T = TypeVar("T")


class ItemSchema(ABC, Generic[T]):
    """Abstract base class describing the items of a collection.

    Subclasses must expose a stable identifier and a sortable label for
    each item.

    Examples:
        >>> class SiteSchema(ItemSchema[dict]):
        ...     def key_of(self, item):
        ...         return str(item["site_id"])
        ...
        ...     def label_of(self, item):
        ...         return item["title"]
    """

    @abstractmethod
    def key_of(self, item: T) -> str:
        """Return the stable identifier of an item.

        Raises:
            InvalidItemError: If the item has no usable identifier
        """
        pass

    @abstractmethod
    def label_of(self, item: T) -> str:
        """Return the human-readable label used for ordering."""
        pass

    def dump(self, item: T) -> Dict[str, Any]:
        """Serialize an item to a JSON-compatible mapping.

        The default implementation accepts mappings and objects providing
        ``to_serializable()``.
        """
        if hasattr(item, "to_serializable"):
            return item.to_serializable()
        if isinstance(item, dict):
            return item
        raise InvalidItemError(
            f"Cannot serialize item of type {type(item).__name__}"
        )

    def load(self, payload: Dict[str, Any]) -> T:
        """Deserialize a stored payload. Identity by default."""
        return payload

    def is_valid_payload(self, payload: Any) -> bool:
        """Minimal shape check on a stored payload.

        Args:
            payload: Deserialized payload from the store

        Returns:
            True if a non-empty identifier can be extracted
        """
        try:
            return bool(self.key_of(self.load(payload)))
        except (InvalidItemError, KeyError, TypeError, AttributeError):
            return False


def _lookup(item: Any, path: Sequence[str]) -> Optional[Any]:
    value = item
    for part in path:
        if isinstance(value, dict):
            value = value.get(part)
        else:
            value = getattr(value, part, None)
        if value is None:
            return None
    return value


class DictItemSchema(ItemSchema[Dict[str, Any]]):
    """Schema for plain mappings addressed by key paths.

    Args:
        id_path: Keys leading to the identifier, e.g. ('herd', 'id')
        label_path: Keys leading to the label, e.g. ('herd', 'name')
    """

    def __init__(self, id_path: Sequence[str], label_path: Sequence[str]):
        self.id_path = tuple(id_path)
        self.label_path = tuple(label_path)

    def key_of(self, item: Dict[str, Any]) -> str:
        value = _lookup(item, self.id_path)
        if value is None or str(value) == "":
            raise InvalidItemError(
                f"Item has no identifier at {'.'.join(self.id_path)}"
            )
        return str(value)

    def label_of(self, item: Dict[str, Any]) -> str:
        value = _lookup(item, self.label_path)
        return "" if value is None else str(value)


class HerdModuleSchema(DictItemSchema):
    """Herd modules are keyed by ``herd.id`` and ordered by ``herd.name``."""

    def __init__(self):
        super().__init__(id_path=("herd", "id"), label_path=("herd", "name"))
