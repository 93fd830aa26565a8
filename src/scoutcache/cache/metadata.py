"""Cache record, metadata and result types."""

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


@dataclass
class CacheRecord:
    """One cached domain item as stored in the records table.

    Attributes:
        collection: Name of the collection the record belongs to
        key: Domain identifier (string form), unique within the collection
        payload: Serialized domain object
        written_at: Write timestamp (ms since epoch)
        schema_version: Store schema generation that produced the record
    """

    collection: str
    key: str
    payload: Dict[str, Any]
    written_at: int
    schema_version: int

    def to_row(self) -> Dict[str, Any]:
        """Convert to a records-table row."""
        return {
            "collection": self.collection,
            "domain_id": self.key,
            "payload": json.dumps(self.payload),
            "written_at": self.written_at,
            "schema_version": self.schema_version,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CacheRecord":
        """Build a record from a records-table row.

        Raises:
            ValueError: If the stored payload is not valid JSON
        """
        return cls(
            collection=row["collection"],
            key=row["domain_id"],
            payload=json.loads(row["payload"]),
            written_at=row["written_at"],
            schema_version=row["schema_version"],
        )


@dataclass
class CacheMetadata:
    """Singleton metadata row for one collection.

    Attributes:
        name: Collection name
        written_at: Timestamp of the last full collection write
        ttl_ms: Time-to-live governing staleness
        format_version: Semantic version of the payload shape
        schema_version: Store schema generation at write time
        etag: Reserved for conditional fetches
        last_modified: Reserved for conditional fetches
    """

    name: str
    written_at: int
    ttl_ms: int
    format_version: str
    schema_version: int
    etag: Optional[str] = None
    last_modified: Optional[int] = None

    def to_row(self) -> Dict[str, Any]:
        """Convert to a collection_metadata row."""
        return asdict(self)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CacheMetadata":
        """Build metadata from a collection_metadata row."""
        return cls(
            name=row["name"],
            written_at=row["written_at"],
            ttl_ms=row["ttl_ms"],
            format_version=row["format_version"],
            schema_version=row["schema_version"],
            etag=row.get("etag"),
            last_modified=row.get("last_modified"),
        )


@dataclass
class CacheResult(Generic[T]):
    """Outcome of reading a collection.

    ``data`` is None when no valid metadata exists; it may be an empty list
    when metadata exists but every record was filtered out.
    ``schema_mismatch`` marks metadata that was found but written under
    another schema version.
    """

    data: Optional[List[T]]
    is_stale: bool
    age: int
    metadata: Optional[CacheMetadata] = None
    schema_mismatch: bool = False

    @property
    def has_data(self) -> bool:
        return bool(self.data)


@dataclass
class CacheStats:
    """Summary of a collection plus process-lifetime hit/miss counters."""

    size: int
    last_updated: int
    is_stale: bool
    hit_rate: float
    total_hits: int
    total_misses: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RefreshDecision:
    """Verdict of should_refresh()."""

    should_refresh: bool
    reason: str


@dataclass
class HealthReport:
    """Result of check_health(); issues are human-readable strings."""

    healthy: bool
    issues: List[str] = field(default_factory=list)
