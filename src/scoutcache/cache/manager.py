"""Cache manager for collections of Scout domain records."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Coroutine, Dict, List, Optional, Sequence, Set, Tuple

from scoutcache.base.schema import DictItemSchema, HerdModuleSchema, ItemSchema
from scoutcache.cache.config import CacheConfig
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
    compute_age,
    is_age_stale,
    is_schema_compatible,
)
from scoutcache.storage.backend import READONLY, READWRITE, SQLiteStore, Transaction
from scoutcache.utils import HERD_MODULES, METADATA_TABLE, RECORDS_TABLE, now_ms

logger = logging.getLogger(__name__)

LoadFunction = Callable[[], Awaitable[Sequence[Any]]]


class ScoutCache:
    """Collection-oriented local cache with TTL staleness.

    Each collection (e.g. 'herd_modules') is written as one metadata row plus
    one record per item. Reads report the data together with its age and
    staleness; callers decide whether to refetch from the remote backend.

    Construct one instance at application startup and pass it to consumers.

    Examples:
        >>> cache = ScoutCache(CacheConfig(cache_dir=Path("/tmp/scout")))
        >>> await cache.set("herd_modules", herd_modules)
        >>> result = await cache.get("herd_modules")
        >>> result.is_stale
        False
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        store: Optional[SQLiteStore] = None,
        schemas: Optional[Dict[str, ItemSchema]] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """Initialize cache manager.

        Args:
            config: Cache configuration (defaults if None)
            store: Store adapter; built from config if None
            schemas: Item schemas keyed by collection name
            clock: Callable returning ms since epoch (for tests)
        """
        self.config = config or CacheConfig()
        self.store = store or SQLiteStore(
            self.config.db_path,
            schema_version=self.config.schema_version,
            lock_path=self.config.lock_path,
            lock_timeout=self.config.lock_timeout,
        )
        self._schemas: Dict[str, ItemSchema] = {HERD_MODULES: HerdModuleSchema()}
        if schemas:
            self._schemas.update(schemas)
        self._clock = clock or now_ms

        self._hits = 0
        self._misses = 0
        self._background: Set["asyncio.Task[Any]"] = set()

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def register_schema(self, collection: str, schema: ItemSchema) -> None:
        """Register the item schema used for a collection."""
        self._schemas[collection] = schema

    def schema_for(self, collection: str) -> ItemSchema:
        """Get the item schema for a collection.

        Collections without a registered schema are treated as mappings
        keyed by 'id' and labelled by 'name'.
        """
        schema = self._schemas.get(collection)
        if schema is None:
            schema = DictItemSchema(id_path=("id",), label_path=("name",))
            self._schemas[collection] = schema
        return schema

    def _collection(self, collection: Optional[str]) -> str:
        return collection or self.config.default_collection

    def get_default_ttl(self) -> int:
        """Get the default TTL in milliseconds."""
        return self.config.default_ttl_ms

    @property
    def hits(self) -> int:
        return self._hits

    @property
    def misses(self) -> int:
        return self._misses

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> "asyncio.Task[Any]":
        """Run a coroutine as a background task owned by this manager."""
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def wait_background(self) -> None:
        """Wait for all background purges and preloads to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def open(self) -> None:
        """Open the underlying store.

        Raises:
            StoreUnavailable: If the store cannot be opened
        """
        await self.store.open()

    async def _ensure_ready(self) -> None:
        await self.store.open()
        if not await self.store.validate_schema():
            raise StoreUnavailable(
                f"Local store {self.store.path.name} is missing required tables"
            )

    # ------------------------------------------------------------------ #
    # Core operations
    # ------------------------------------------------------------------ #
    def _build_rows(
        self, collection: str, items: Sequence[Any], timestamp: int
    ) -> List[Dict[str, Any]]:
        schema = self.schema_for(collection)
        rows = []
        for item in items:
            record = CacheRecord(
                collection=collection,
                key=schema.key_of(item),
                payload=schema.dump(item),
                written_at=timestamp,
                schema_version=self.store.schema_version,
            )
            try:
                rows.append(record.to_row())
            except (TypeError, ValueError) as e:
                raise InvalidItemError(
                    f"Item {record.key} in {collection} is not serializable: {e}"
                ) from e
        return rows

    async def set(
        self,
        collection: str,
        items: Sequence[Any],
        ttl_ms: Optional[int] = None,
        etag: Optional[str] = None,
    ) -> None:
        """Replace the cached contents of a collection.

        The records and the metadata row are written in one transaction.

        Args:
            collection: Collection name
            items: Domain items to cache
            ttl_ms: Time-to-live in milliseconds (default TTL if None)
            etag: Optional etag stored with the metadata

        Raises:
            InvalidItemError: If an item has no identifier or cannot be serialized
            StoreUnavailable: If the store cannot be opened or its schema is invalid
            TransactionFailed: If the write fails
        """
        ttl = self.config.default_ttl_ms if ttl_ms is None else ttl_ms
        timestamp = self._clock()
        rows = self._build_rows(collection, items, timestamp)
        metadata = CacheMetadata(
            name=collection,
            written_at=timestamp,
            ttl_ms=ttl,
            format_version=self.config.format_version,
            schema_version=self.store.schema_version,
            etag=etag,
            last_modified=timestamp,
        )

        await self._ensure_ready()

        async def write(tx: Transaction) -> None:
            records = tx.table(RECORDS_TABLE)
            await records.delete_where(collection=collection)
            for row in rows:
                await records.put(row)
            await tx.table(METADATA_TABLE).put(metadata.to_row())

        await self.store.run_transaction([RECORDS_TABLE, METADATA_TABLE], READWRITE, write)
        logger.debug(f"[ScoutCache] Cached {len(rows)} items in {collection}")

    async def get(self, collection: str) -> CacheResult:
        """Read a collection with its age and staleness.

        A missing metadata row, or one written under another schema version,
        is reported as a miss with ``data=None``. The latter also schedules
        a background purge of the collection.

        Args:
            collection: Collection name

        Returns:
            CacheResult

        Raises:
            StoreUnavailable: If the store cannot be opened or its schema is invalid
            TransactionFailed: If the read fails
        """
        schema = self.schema_for(collection)
        current_version = self.store.schema_version

        async def read(
            tx: Transaction,
        ) -> Tuple[Optional[CacheMetadata], Optional[List[Dict[str, Any]]]]:
            meta_row = await tx.table(METADATA_TABLE).get(collection)
            if meta_row is None:
                return None, None
            metadata = CacheMetadata.from_row(meta_row)
            if not is_schema_compatible(metadata.schema_version, current_version):
                return metadata, None
            rows = await tx.table(RECORDS_TABLE).get_all(collection=collection)
            return metadata, rows

        try:
            await self._ensure_ready()
            metadata, rows = await self.store.run_transaction(
                [RECORDS_TABLE, METADATA_TABLE], READONLY, read
            )
        except CacheError:
            self._misses += 1
            raise

        now = self._clock()

        if metadata is None:
            self._misses += 1
            return CacheResult(data=None, is_stale=True, age=0, metadata=None)

        if rows is None:
            self._misses += 1
            logger.warning(
                f"[ScoutCache] {collection} was written at schema version "
                f"{metadata.schema_version}, current is {current_version}; purging"
            )
            self._spawn(self._purge(collection))
            return CacheResult(
                data=None, is_stale=True, age=0, metadata=None, schema_mismatch=True
            )

        items = []
        for row in rows:
            try:
                record = CacheRecord.from_row(row)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"[ScoutCache] Skipping unreadable record in {collection}: {e}")
                continue
            if not is_schema_compatible(record.schema_version, current_version):
                continue
            if not schema.is_valid_payload(record.payload):
                logger.warning(
                    f"[ScoutCache] Skipping malformed record {record.key} in {collection}"
                )
                continue
            items.append(schema.load(record.payload))

        items.sort(key=schema.label_of)

        age = compute_age(metadata.written_at, now)
        stale = is_age_stale(age, metadata.ttl_ms)

        if items:
            self._hits += 1
        else:
            self._misses += 1

        return CacheResult(data=items, is_stale=stale, age=age, metadata=metadata)

    async def _purge(self, collection: str) -> None:
        try:
            await self.clear(collection)
            logger.info(f"[ScoutCache] Purged {collection} after schema version mismatch")
        except CacheError as e:
            logger.error(f"[ScoutCache] Background purge of {collection} failed: {e}")

    async def clear(self, collection: str) -> None:
        """Delete all records and the metadata row of a collection.

        Raises:
            StoreUnavailable: If the store cannot be opened or its schema is invalid
            TransactionFailed: If the delete fails
        """
        await self._ensure_ready()

        async def delete(tx: Transaction) -> None:
            await tx.table(RECORDS_TABLE).delete_where(collection=collection)
            await tx.table(METADATA_TABLE).delete(collection)

        await self.store.run_transaction([RECORDS_TABLE, METADATA_TABLE], READWRITE, delete)

    async def invalidate(self, collection: str) -> None:
        """Remove a collection's metadata so the next read misses.

        Records are left in place for the next set() to overwrite. Linked
        metadata names from ``config.linked_collections`` are removed too.

        Raises:
            StoreUnavailable: If the store cannot be opened or its schema is invalid
            TransactionFailed: If the delete fails
        """
        names = [collection] + list(self.config.linked_collections.get(collection, []))
        await self._ensure_ready()

        async def delete(tx: Transaction) -> None:
            metadata = tx.table(METADATA_TABLE)
            for name in names:
                await metadata.delete(name)

        await self.store.run_transaction([METADATA_TABLE], READWRITE, delete)

    # ------------------------------------------------------------------ #
    # Decisions and statistics (never raise)
    # ------------------------------------------------------------------ #
    async def _safe_get(self, collection: str) -> Tuple[CacheResult, Optional[CacheError]]:
        try:
            return await self.get(collection), None
        except CacheError as e:
            logger.warning(f"[ScoutCache] Read of {collection} failed: {e}")
            return CacheResult(data=None, is_stale=True, age=0, metadata=None), e

    async def is_valid(self, collection: Optional[str] = None, ttl_ms: Optional[int] = None) -> bool:
        """Check if a collection holds fresh, non-empty data.

        Args:
            collection: Collection name (default collection if None)
            ttl_ms: TTL overriding the stored one for this check only

        Returns:
            True if data is present and younger than the effective TTL
        """
        result, _ = await self._safe_get(self._collection(collection))
        if not result.data or result.metadata is None:
            return False
        effective_ttl = result.metadata.ttl_ms if ttl_ms is None else ttl_ms
        return not is_age_stale(result.age, effective_ttl)

    async def get_cache_age(self, collection: Optional[str] = None) -> int:
        """Age in milliseconds of a collection's last write (0 if absent)."""
        result, _ = await self._safe_get(self._collection(collection))
        return result.age

    async def should_refresh(
        self,
        collection: Optional[str] = None,
        max_age_ms: Optional[int] = None,
        force_refresh: bool = False,
    ) -> RefreshDecision:
        """Decide whether the caller should refetch from the remote source.

        Checks, in order: explicit force, store errors, schema mismatch, missing data,
        staleness per stored TTL, and the caller's max age.

        Args:
            collection: Collection name (default collection if None)
            max_age_ms: Optional maximum acceptable age (0 or None disables it)
            force_refresh: Always refresh if True

        Returns:
            RefreshDecision with a human-readable reason
        """
        if force_refresh:
            return RefreshDecision(True, "Force refresh requested")

        result, error = await self._safe_get(self._collection(collection))

        if error is not None:
            return RefreshDecision(True, f"Cache unavailable: {error}")

        if result.schema_mismatch:
            return RefreshDecision(True, "Cache schema version mismatch")

        if not result.data:
            return RefreshDecision(True, "No cached data")

        if result.is_stale:
            return RefreshDecision(True, "Cache is stale")

        if max_age_ms and result.age > max_age_ms:
            return RefreshDecision(
                True,
                f"Cache age ({round(result.age / 1000)}s) exceeds max age "
                f"({round(max_age_ms / 1000)}s)",
            )

        return RefreshDecision(False, "Cache is valid and fresh")

    async def get_stats(self, collection: Optional[str] = None) -> CacheStats:
        """Summarize a collection together with the hit/miss counters."""
        result, _ = await self._safe_get(self._collection(collection))
        total_requests = self._hits + self._misses
        hit_rate = round(self._hits / total_requests, 2) if total_requests > 0 else 0

        return CacheStats(
            size=len(result.data) if result.data else 0,
            last_updated=result.metadata.written_at if result.metadata else 0,
            is_stale=result.is_stale,
            hit_rate=hit_rate,
            total_hits=self._hits,
            total_misses=self._misses,
        )

    async def check_health(self, collection: Optional[str] = None) -> HealthReport:
        """Probe the store and collect human-readable issues.

        Returns:
            HealthReport; ``healthy`` is True only if no probe failed
        """
        issues: List[str] = []

        try:
            await self.store.open()
        except Exception as e:
            issues.append(f"Failed to open local store: {e}")
            return HealthReport(healthy=False, issues=issues)

        if not await self.store.validate_schema():
            issues.append("Local store schema is missing required tables")

        try:
            stored_version = await self.store.stored_schema_version()
            if not is_schema_compatible(stored_version, self.store.schema_version):
                issues.append(
                    f"Schema version mismatch: store is at {stored_version}, "
                    f"expected {self.store.schema_version}"
                )
        except Exception as e:
            issues.append(f"Failed to read schema version: {e}")

        try:
            await self.get(self._collection(collection))
        except Exception as e:
            issues.append(f"Trial read failed: {e}")

        return HealthReport(healthy=not issues, issues=issues)

    # ------------------------------------------------------------------ #
    # Background refresh and lifecycle
    # ------------------------------------------------------------------ #
    async def preload_cache(
        self,
        load_fn: LoadFunction,
        ttl_ms: Optional[int] = None,
        collection: Optional[str] = None,
    ) -> None:
        """Load fresh data and cache it. Never raises.

        Args:
            load_fn: Async callable fetching the items from the remote source
            ttl_ms: Time-to-live for the written collection
            collection: Collection name (default collection if None)
        """
        name = self._collection(collection)
        try:
            logger.info(f"[ScoutCache] Starting background preload of {name}")
            start = time.perf_counter()

            items = await load_fn()
            await self.set(name, items, ttl_ms)

            duration_ms = (time.perf_counter() - start) * 1000
            logger.info(f"[ScoutCache] Background preload of {name} completed in {duration_ms:.0f}ms")
        except Exception as e:
            logger.warning(f"[ScoutCache] Background preload of {name} failed: {e}")

    def spawn_preload(
        self,
        load_fn: LoadFunction,
        ttl_ms: Optional[int] = None,
        collection: Optional[str] = None,
    ) -> "asyncio.Task[None]":
        """Start preload_cache() as a background task owned by this cache.

        The task never fails; its completion carries no result.
        """
        return self._spawn(self.preload_cache(load_fn, ttl_ms, collection))

    async def reset_database(self) -> None:
        """Close the store and delete it entirely.

        The next operation recreates an empty store.
        """
        await self.wait_background()
        await self.store.delete_store()
        logger.info(f"[ScoutCache] Local store {self.store.path.name} reset")

    async def aclose(self) -> None:
        """Wait for background tasks and close the store."""
        await self.wait_background()
        await self.store.wait_pending()
        await self.store.close()

    async def __aenter__(self) -> "ScoutCache":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
