"""Persistent store adapter for the local cache.

This module owns the lifecycle of one named, versioned SQLite database holding
a record table and a metadata table. The schema generation lives in
``PRAGMA user_version``; opening with a newer generation drops every table and
recreates the layout from scratch. Destructive operations (schema upgrade,
store deletion) are coordinated across processes with an advisory lock file,
and every open connection holds a marker lock of its own so that upgrades and
deletions can wait for other connections to close.
"""

import asyncio
import logging
import sqlite3
import uuid
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple, TypeVar, Union

import aiosqlite
from filelock import FileLock, Timeout

from scoutcache.cache.validation import CacheError, StoreUnavailable, TransactionFailed
from scoutcache.utils import METADATA_TABLE, RECORDS_TABLE, REQUIRED_TABLES

logger = logging.getLogger(__name__)

R = TypeVar("R")

READONLY = "readonly"
READWRITE = "readwrite"

# Seconds between checks for other open connections
POLL_INTERVAL = 0.05

TABLE_DEFINITIONS: Dict[str, Dict[str, Any]] = {
    RECORDS_TABLE: {
        "columns": ("collection", "domain_id", "payload", "written_at", "schema_version"),
        "key": ("collection", "domain_id"),
        "ddl": [
            f"""CREATE TABLE {RECORDS_TABLE} (
                collection TEXT NOT NULL,
                domain_id TEXT NOT NULL,
                payload TEXT NOT NULL,
                written_at INTEGER NOT NULL,
                schema_version INTEGER NOT NULL,
                PRIMARY KEY (collection, domain_id)
            )""",
            f"CREATE INDEX idx_{RECORDS_TABLE}_written_at ON {RECORDS_TABLE} (written_at)",
        ],
    },
    METADATA_TABLE: {
        "columns": (
            "name",
            "written_at",
            "ttl_ms",
            "format_version",
            "schema_version",
            "etag",
            "last_modified",
        ),
        "key": ("name",),
        "ddl": [
            f"""CREATE TABLE {METADATA_TABLE} (
                name TEXT PRIMARY KEY,
                written_at INTEGER NOT NULL,
                ttl_ms INTEGER NOT NULL,
                format_version TEXT NOT NULL,
                schema_version INTEGER NOT NULL,
                etag TEXT,
                last_modified INTEGER
            )""",
        ],
    },
}


class StoreState(str, Enum):
    """Lifecycle states of a SQLiteStore."""

    UNINITIALIZED = "uninitialized"
    OPENING = "opening"
    OPEN = "open"
    FAILED = "failed"


class TableHandle:
    """Per-table accessor bound to one running transaction.

    Keys are tuples matching the table's key columns; a single value is
    accepted for single-column keys.
    """

    def __init__(self, conn: aiosqlite.Connection, name: str, writable: bool):
        self._conn = conn
        self.name = name
        self._writable = writable
        definition = TABLE_DEFINITIONS[name]
        self.columns: Tuple[str, ...] = definition["columns"]
        self.key_columns: Tuple[str, ...] = definition["key"]

    def _key_clause(self, key: Union[str, Sequence[Any]]) -> Tuple[str, List[Any]]:
        if isinstance(key, (str, int)):
            key = (key,)
        key = list(key)
        if len(key) != len(self.key_columns):
            raise ValueError(
                f"Table {self.name} expects a key of {self.key_columns}, got {key}"
            )
        clause = " AND ".join(f"{col} = ?" for col in self.key_columns)
        return clause, key

    def _match_clause(self, match: Dict[str, Any]) -> Tuple[str, List[Any]]:
        unknown = set(match) - set(self.columns)
        if unknown:
            raise ValueError(f"Unknown columns for {self.name}: {sorted(unknown)}")
        if not match:
            return "", []
        clause = " WHERE " + " AND ".join(f"{col} = ?" for col in match)
        return clause, list(match.values())

    def _require_writable(self) -> None:
        if not self._writable:
            raise TransactionFailed(f"Cannot write to {self.name} in a readonly transaction")

    async def get(self, key: Union[str, Sequence[Any]]) -> Optional[Dict[str, Any]]:
        """Fetch one row by primary key, or None."""
        clause, params = self._key_clause(key)
        async with self._conn.execute(
            f"SELECT * FROM {self.name} WHERE {clause}", params
        ) as cursor:
            row = await cursor.fetchone()
        return dict(row) if row is not None else None

    async def get_all(self, **match: Any) -> List[Dict[str, Any]]:
        """Fetch all rows whose columns equal the given values."""
        clause, params = self._match_clause(match)
        order = ", ".join(self.key_columns)
        async with self._conn.execute(
            f"SELECT * FROM {self.name}{clause} ORDER BY {order}", params
        ) as cursor:
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def put(self, row: Dict[str, Any]) -> None:
        """Insert or replace one row."""
        self._require_writable()
        placeholders = ", ".join("?" for _ in self.columns)
        await self._conn.execute(
            f"INSERT OR REPLACE INTO {self.name} ({', '.join(self.columns)}) "
            f"VALUES ({placeholders})",
            [row.get(col) for col in self.columns],
        )

    async def delete(self, key: Union[str, Sequence[Any]]) -> None:
        """Delete one row by primary key; missing rows are ignored."""
        self._require_writable()
        clause, params = self._key_clause(key)
        await self._conn.execute(f"DELETE FROM {self.name} WHERE {clause}", params)

    async def delete_where(self, **match: Any) -> int:
        """Delete all rows whose columns equal the given values.

        Returns:
            Number of rows deleted
        """
        self._require_writable()
        clause, params = self._match_clause(match)
        async with self._conn.execute(f"DELETE FROM {self.name}{clause}", params) as cursor:
            return cursor.rowcount

    async def clear(self) -> None:
        """Delete every row in the table."""
        await self.delete_where()


class Transaction:
    """Scope handed to run_transaction() bodies."""

    def __init__(self, conn: aiosqlite.Connection, tables: Iterable[str], mode: str):
        self.mode = mode
        self.tables = tuple(tables)
        self._handles = {
            name: TableHandle(conn, name, writable=(mode == READWRITE))
            for name in self.tables
        }

    def table(self, name: str) -> TableHandle:
        """Get the accessor for a table included in this transaction."""
        if name not in self._handles:
            raise TransactionFailed(
                f"Table {name} is not part of this transaction ({self.tables})"
            )
        return self._handles[name]


class SQLiteStore:
    """Named, versioned local database with a record and a metadata table.

    State machine: UNINITIALIZED -> OPENING -> OPEN; a failed open passes
    through FAILED back to UNINITIALIZED so the next call retries. close()
    and delete_store() return an open store to UNINITIALIZED.

    Examples:
        >>> store = SQLiteStore(Path("/tmp/ScoutCache.sqlite3"), schema_version=1)
        >>> await store.open()
        >>> await store.run_transaction([RECORDS_TABLE], READONLY, body)
    """

    def __init__(
        self,
        path: Path,
        schema_version: int = 1,
        lock_path: Optional[Path] = None,
        lock_timeout: float = 10.0,
    ):
        """Initialize the store adapter (does not touch the disk).

        Args:
            path: Database file path
            schema_version: Schema generation to open the store at
            lock_path: Advisory lock file (defaults to path with .lock suffix)
            lock_timeout: Seconds to wait on a blocked upgrade before failing
        """
        self.path = Path(path)
        self.schema_version = schema_version
        self.lock_path = Path(lock_path) if lock_path else self.path.with_suffix(".lock")
        self.lock_timeout = lock_timeout

        self._conn: Optional[aiosqlite.Connection] = None
        self._state = StoreState.UNINITIALIZED
        self._open_task: Optional["asyncio.Task[None]"] = None
        self._tx_lock = asyncio.Lock()
        self._pending_deletes: Set["asyncio.Task[None]"] = set()
        self._marker: Optional[FileLock] = None

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def _new_lock(self) -> FileLock:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        return FileLock(str(self.lock_path), thread_local=False)

    # ------------------------------------------------------------------ #
    # Connection markers
    # ------------------------------------------------------------------ #
    def _register(self) -> None:
        """Hold a marker lock announcing this connection to other stores.

        Must be called with the advisory lock held.
        """
        marker_path = self.path.parent / f"{self.path.name}.conn-{uuid.uuid4().hex}.lock"
        marker = FileLock(str(marker_path), thread_local=False)
        marker.acquire(timeout=0)
        self._marker = marker

    def _unregister(self) -> None:
        marker, self._marker = self._marker, None
        if marker is not None:
            marker.release()
            Path(marker.lock_file).unlink(missing_ok=True)

    def _other_connections(self) -> List[Path]:
        """List markers held by other open connections to this database.

        A marker whose lock can be taken belongs to a connection that went
        away without closing; it is removed. Must be called with the advisory
        lock held.
        """
        own = Path(self._marker.lock_file) if self._marker is not None else None
        live = []
        for marker_path in sorted(self.path.parent.glob(f"{self.path.name}.conn-*.lock")):
            if marker_path == own:
                continue
            candidate = FileLock(str(marker_path), thread_local=False)
            try:
                candidate.acquire(timeout=0)
            except Timeout:
                live.append(marker_path)
                continue
            candidate.release()
            marker_path.unlink(missing_ok=True)
        return live

    async def _wait_for_other_connections(self, action: str, timeout: float) -> None:
        """Wait until no other connection is open, logging a blocked signal.

        Raises:
            Timeout: If other connections are still open after ``timeout`` seconds
        """
        others = self._other_connections()
        if not others:
            return

        logger.warning(
            f"[ScoutCache] {action} of {self.path.name} blocked by {len(others)} "
            f"open connection(s), waiting for them to close"
        )
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while self._other_connections():
            if loop.time() >= deadline:
                raise Timeout(str(self.lock_path))
            await asyncio.sleep(POLL_INTERVAL)

    # ------------------------------------------------------------------ #
    # Open / upgrade
    # ------------------------------------------------------------------ #
    async def open(self) -> None:
        """Open the store, upgrading the schema if needed.

        Idempotent. Concurrent callers share one in-flight open.

        Raises:
            StoreUnavailable: If the database cannot be opened or upgraded
        """
        if self._conn is not None:
            return

        if self._open_task is None:
            self._state = StoreState.OPENING
            self._open_task = asyncio.get_running_loop().create_task(self._open())

        task = self._open_task
        try:
            await asyncio.shield(task)
        finally:
            if task.done() and self._open_task is task:
                self._open_task = None

    async def _open(self) -> None:
        if self._pending_deletes:
            # Opens queue behind a blocked deletion.
            await asyncio.gather(*self._pending_deletes, return_exceptions=True)

        logging.getLogger("aiosqlite").setLevel(logging.WARNING)

        conn = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            lock = self._new_lock()
            await self._acquire_lock(lock, self.lock_timeout, "Open")
            try:
                conn = await aiosqlite.connect(str(self.path), isolation_level=None)
                conn.row_factory = aiosqlite.Row

                stored_version = await self._read_user_version(conn)
                if stored_version > self.schema_version:
                    raise StoreUnavailable(
                        f"Store {self.path.name} is at schema version {stored_version}, "
                        f"cannot open at older version {self.schema_version}"
                    )
                if stored_version < self.schema_version:
                    await self._upgrade(conn, stored_version)
                self._register()
            finally:
                lock.release()
        except (sqlite3.Error, OSError, Timeout, StoreUnavailable) as e:
            self._state = StoreState.FAILED
            logger.error(f"[ScoutCache] Failed to open local store {self.path}: {e}")
            if conn is not None:
                await conn.close()
            self._state = StoreState.UNINITIALIZED
            if isinstance(e, StoreUnavailable):
                raise
            raise StoreUnavailable(f"Cannot open local store {self.path}: {e}") from e

        self._conn = conn
        self._state = StoreState.OPEN
        logger.info(
            f"[ScoutCache] Local store {self.path.name} opened at schema version "
            f"{self.schema_version}"
        )

    @staticmethod
    async def _read_user_version(conn: aiosqlite.Connection) -> int:
        async with conn.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def _acquire_lock(self, lock: FileLock, timeout: float, action: str) -> None:
        """Acquire the advisory lock, logging a blocked signal if it is held.

        Raises:
            Timeout: If the lock is still held after ``timeout`` seconds
        """
        try:
            lock.acquire(timeout=0)
            return
        except Timeout:
            logger.warning(
                f"[ScoutCache] {action} of {self.path.name} blocked by another "
                f"connection, waiting for it to close"
            )
        await asyncio.to_thread(lock.acquire, timeout=timeout)

    async def _upgrade(self, conn: aiosqlite.Connection, old_version: int) -> None:
        """Drop every table and recreate the layout at the current version.

        Must be called with the advisory lock held. Waits for other open
        connections to close first. The stored version is read again inside
        the write transaction; if another connection already brought the
        store to this version, nothing is dropped.
        """
        await self._wait_for_other_connections("Schema upgrade", self.lock_timeout)

        await conn.execute("BEGIN IMMEDIATE")
        try:
            current_version = await self._read_user_version(conn)
            if current_version > self.schema_version:
                raise StoreUnavailable(
                    f"Store {self.path.name} is at schema version {current_version}, "
                    f"cannot open at older version {self.schema_version}"
                )
            if current_version == self.schema_version:
                await conn.execute("ROLLBACK")
                logger.debug(
                    f"[ScoutCache] {self.path.name} already at schema version "
                    f"{current_version}, skipping upgrade"
                )
                return

            async with conn.execute(
                "SELECT name FROM sqlite_master "
                "WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
            ) as cursor:
                existing = [row[0] for row in await cursor.fetchall()]
            for name in existing:
                await conn.execute(f'DROP TABLE IF EXISTS "{name}"')
            for definition in TABLE_DEFINITIONS.values():
                for statement in definition["ddl"]:
                    await conn.execute(statement)
            await conn.execute(f"PRAGMA user_version = {int(self.schema_version)}")
            await conn.execute("COMMIT")
        except Exception:
            if conn.in_transaction:
                await conn.execute("ROLLBACK")
            raise

        logger.info(
            f"[ScoutCache] Database schema upgraded from version {old_version} "
            f"to {self.schema_version}"
        )

    async def stored_schema_version(self) -> Optional[int]:
        """Schema version recorded in the open database, or None if closed."""
        if self._conn is None:
            return None
        return await self._read_user_version(self._conn)

    async def validate_schema(self) -> bool:
        """Check that both required tables exist.

        Returns:
            False if the store is not open, a table is missing, or the
            catalog cannot be read
        """
        if self._conn is None:
            return False
        try:
            async with self._conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            ) as cursor:
                names = {row[0] for row in await cursor.fetchall()}
        except sqlite3.Error as e:
            logger.warning(f"[ScoutCache] Could not read schema catalog: {e}")
            return False
        return all(table in names for table in REQUIRED_TABLES)

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #
    async def run_transaction(
        self,
        tables: Sequence[str],
        mode: str,
        body: Callable[[Transaction], Awaitable[R]],
    ) -> R:
        """Run ``body`` inside one transaction spanning ``tables``.

        Readwrite transactions commit when the body returns and roll back if
        it raises. Readonly transactions never commit.

        Args:
            tables: Names of the tables the body may touch
            mode: 'readonly' or 'readwrite'
            body: Async callable receiving the Transaction

        Returns:
            Whatever the body returns

        Raises:
            StoreUnavailable: If the store is not open
            TransactionFailed: If any operation inside the transaction fails
        """
        if mode not in (READONLY, READWRITE):
            raise ValueError(f"Unknown transaction mode: {mode}")
        unknown = [name for name in tables if name not in TABLE_DEFINITIONS]
        if unknown:
            raise TransactionFailed(f"Unknown tables: {unknown}")

        async with self._tx_lock:
            conn = self._conn
            if conn is None:
                raise StoreUnavailable("Local store is not open")

            try:
                await conn.execute("BEGIN IMMEDIATE" if mode == READWRITE else "BEGIN")
                result = await body(Transaction(conn, tables, mode))
                await conn.execute("COMMIT" if mode == READWRITE else "ROLLBACK")
                return result
            except Exception as e:
                if conn.in_transaction:
                    try:
                        await conn.execute("ROLLBACK")
                    except sqlite3.Error as rollback_error:
                        logger.warning(f"[ScoutCache] Rollback failed: {rollback_error}")
                if isinstance(e, CacheError):
                    raise
                raise TransactionFailed(
                    f"Transaction on {list(tables)} failed: {e}", cause=e
                ) from e

    # ------------------------------------------------------------------ #
    # Close / delete
    # ------------------------------------------------------------------ #
    async def close(self) -> None:
        """Close the connection if open."""
        conn, self._conn = self._conn, None
        self._state = StoreState.UNINITIALIZED
        if conn is not None:
            async with self._tx_lock:
                await conn.close()
            self._unregister()
            logger.debug(f"[ScoutCache] Local store {self.path.name} closed")

    def _remove_files(self) -> None:
        for suffix in ("", "-wal", "-shm", "-journal"):
            Path(f"{self.path}{suffix}").unlink(missing_ok=True)

    async def delete_store(self) -> None:
        """Destroy the entire database.

        If another connection is open (or holds the lock), the deletion is
        logged and finished by a background task once they have closed; the
        caller is not failed.
        """
        await self.close()

        lock = self._new_lock()
        try:
            lock.acquire(timeout=0)
        except Timeout:
            self._defer_delete()
            return

        try:
            if self._other_connections():
                self._defer_delete()
                return
            self._remove_files()
        except OSError as e:
            raise StoreUnavailable(f"Cannot delete local store {self.path}: {e}") from e
        finally:
            lock.release()
        logger.info(f"[ScoutCache] Local store {self.path.name} deleted")

    def _defer_delete(self) -> None:
        logger.warning(
            f"[ScoutCache] Deletion of {self.path.name} blocked by another "
            f"connection, will complete once it closes"
        )
        task = asyncio.get_running_loop().create_task(self._delete_when_unblocked())
        self._pending_deletes.add(task)
        task.add_done_callback(self._pending_deletes.discard)

    async def _delete_when_unblocked(self) -> None:
        lock = self._new_lock()
        try:
            while True:
                await asyncio.to_thread(lock.acquire)
                try:
                    if not self._other_connections():
                        self._remove_files()
                        break
                finally:
                    lock.release()
                await asyncio.sleep(POLL_INTERVAL)
            logger.info(f"[ScoutCache] Deferred deletion of {self.path.name} completed")
        except OSError as e:
            logger.error(f"[ScoutCache] Deferred deletion of {self.path.name} failed: {e}")

    async def wait_pending(self) -> None:
        """Wait for any deferred deletion to finish."""
        if self._pending_deletes:
            await asyncio.gather(*self._pending_deletes, return_exceptions=True)

    async def __aenter__(self) -> "SQLiteStore":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
