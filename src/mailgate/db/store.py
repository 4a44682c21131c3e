"""Database store with ledger and list-cache operations.

This module provides the DatabaseStore class that encapsulates all database
operations for mailgate. It uses aiosqlite for async access and converts rows
into dataclasses.

Every state change on the executions table is a single status-guarded SQL
statement (``... WHERE trace_id = ? AND status = 'pending'``); SQLite's write
lock is the only serialization point, so two concurrent confirmations of the
same trace_id produce exactly one winner.

Ledger operations fail closed: an uninitialized or unreachable store raises
StoreUnavailableError. List-cache reads and writes fail soft: they log and
behave like a miss.

Usage:
    from mailgate.db.store import DatabaseStore, ExecutionRecord

    store = DatabaseStore("data/mailgate.db")
    await store.initialize()

    await store.create_execution(record)
    confirmed = await store.confirm_execution_if_pending(trace_id, expires_at=deadline)
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

import aiosqlite
from pydantic import BaseModel

from mailgate.core.errors import (
    DatabaseError,
    DuplicateTraceIdError,
    InvalidParamsError,
    StoreUnavailableError,
)
from mailgate.core.ids import now_ms as _now_ms
from mailgate.core.ids import now_sec as _now_sec
from mailgate.core.logging import get_logger
from mailgate.core.params import ExecutionParams, parse_execution_params
from mailgate.db.models import init_database

logger = get_logger(__name__)

# Type aliases
ExecutionStatus = Literal["pending", "confirmed", "canceled", "executed"]

EXECUTION_STATUSES: tuple[str, ...] = ("pending", "confirmed", "canceled", "executed")

# Reason recorded when the expiry watcher cancels a confirmed action
EXPIRED_REASON = "expired"


@dataclass
class ExecutionRecord:
    """Execution ledger record.

    ``params`` is the typed payload for ``type``. Rows whose stored payload no
    longer validates are still returned (with the raw dict) so the gate can
    read their status.
    """

    trace_id: str
    type: str
    user_id: str
    action: str
    params: ExecutionParams | dict[str, Any]
    status: ExecutionStatus = "pending"
    digest: str | None = None
    expires_at: int | None = None
    reason: str | None = None
    channel: str | None = None
    message_ts: str | None = None
    created_at: int = 0
    updated_at: int = 0

    def params_dict(self) -> dict[str, Any]:
        """Return params as a plain dict (None fields omitted)."""
        if isinstance(self.params, BaseModel):
            return self.params.model_dump(exclude_none=True)
        return dict(self.params)

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation used by the API and CLI."""
        return {
            "trace_id": self.trace_id,
            "type": self.type,
            "user_id": self.user_id,
            "action": self.action,
            "params": self.params_dict(),
            "status": self.status,
            "digest": self.digest,
            "expires_at": self.expires_at,
            "reason": self.reason,
            "channel": self.channel,
            "message_ts": self.message_ts,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True, slots=True)
class ListItem:
    """One entry of a cached list, addressed by its 1-based index."""

    index: int
    message_id: str
    subject: str = ""
    sender: str = ""
    date: str | None = None
    thread_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ListItem:
        """Build from the stored JSON shape (``messageId``/``from`` keys)."""
        return cls(
            index=int(data["index"]),
            message_id=str(data.get("messageId") or data.get("message_id") or ""),
            subject=data.get("subject") or "",
            sender=data.get("from") or data.get("sender") or "",
            date=data.get("date"),
            thread_id=data.get("threadId") or data.get("thread_id"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the stored JSON shape."""
        data: dict[str, Any] = {
            "index": self.index,
            "messageId": self.message_id,
            "subject": self.subject,
            "from": self.sender,
        }
        if self.date is not None:
            data["date"] = self.date
        if self.thread_id is not None:
            data["threadId"] = self.thread_id
        return data


@dataclass
class EmailListCacheRecord:
    """Cached list result. Times are epoch seconds."""

    cache_key: str
    created_at: int
    expires_at: int
    items_json: str
    channel: str | None = None
    thread_ts: str | None = None

    def is_expired(self, now_sec: int | None = None) -> bool:
        """True once ``now`` is past ``expires_at`` (the row may still be readable)."""
        now = _now_sec() if now_sec is None else now_sec
        return now > self.expires_at

    def items(self) -> list[ListItem]:
        """Parse ``items_json``.

        Raises:
            ValueError: If items_json is not the expected shape
        """
        parsed = json.loads(self.items_json or "{}")
        raw_items = parsed.get("items", []) if isinstance(parsed, dict) else parsed
        if not isinstance(raw_items, list):
            raise ValueError("items_json 'items' must be a list")
        return [ListItem.from_dict(item) for item in raw_items]


@dataclass(frozen=True, slots=True)
class SweepResult:
    """Counters from one cache sweep."""

    expired: int = 0
    deleted: int = 0


class DatabaseStore:
    """Database store for the execution ledger and the list cache.

    Attributes:
        db_path: Path to the SQLite database file
        _initialized: Whether the database has been initialized
    """

    def __init__(self, db_path: str | Path):
        """Initialize the database store.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = Path(db_path)
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the database, creating tables if needed.

        This must be called before any other operations.
        """
        await init_database(self.db_path)
        self._initialized = True

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @asynccontextmanager
    async def _db(self) -> AsyncIterator[aiosqlite.Connection]:
        """Get a configured database connection.

        Sets all required PRAGMAs for reliability and performance:
        - busy_timeout: 10s so concurrent confirm/cancel calls wait for the write lock
        - synchronous: NORMAL (safe with WAL, faster writes)
        - temp_store: MEMORY for faster temp operations
        """
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA busy_timeout = 10000")
            await db.execute("PRAGMA synchronous = NORMAL")
            await db.execute("PRAGMA temp_store = MEMORY")

            db.row_factory = aiosqlite.Row
            yield db

    def _require_ledger(self, operation: str) -> None:
        if not self._initialized:
            raise StoreUnavailableError(
                f"Cannot {operation}: execution store at {self.db_path} is not initialized. "
                "Call DatabaseStore.initialize() before handling actions."
            )

    async def checkpoint_wal(self) -> None:
        """Run a WAL checkpoint to keep WAL file size bounded."""
        try:
            async with self._db() as db:
                await db.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            logger.debug("wal_checkpoint_complete")
        except aiosqlite.Error as e:
            logger.warning("wal_checkpoint_failed", error=str(e))

    # =========================================================================
    # Execution Operations
    # =========================================================================

    async def create_execution(
        self, record: ExecutionRecord, now_ms: int | None = None
    ) -> ExecutionRecord:
        """Insert a new execution in ``pending`` state.

        Args:
            record: Record to store; its status and timestamps are overwritten
            now_ms: Creation time (defaults to now)

        Returns:
            The stored record

        Raises:
            DuplicateTraceIdError: If the trace_id already exists
            StoreUnavailableError: If the store is unavailable
        """
        self._require_ledger("create execution")
        now = _now_ms() if now_ms is None else now_ms
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO executions (
                        trace_id, type, user_id, action, params, digest,
                        expires_at, status, reason, channel, message_ts,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?, ?, ?, ?)
                    """,
                    (
                        record.trace_id,
                        record.type,
                        record.user_id,
                        record.action,
                        json.dumps(record.params_dict()),
                        record.digest,
                        record.expires_at,
                        record.reason,
                        record.channel,
                        record.message_ts,
                        now,
                        now,
                    ),
                )
                await db.commit()

        except aiosqlite.IntegrityError as e:
            logger.warning("Duplicate execution trace_id", trace_id=record.trace_id)
            raise DuplicateTraceIdError(
                f"Execution {record.trace_id} already exists. "
                "Generate a fresh trace_id for every proposed action.",
                trace_id=record.trace_id,
            ) from e
        except aiosqlite.Error as e:
            logger.error("Failed to create execution", trace_id=record.trace_id, error=str(e))
            raise StoreUnavailableError(
                f"Failed to create execution {record.trace_id}: {e}"
            ) from e

        logger.debug("Execution created", trace_id=record.trace_id, type=record.type)
        return ExecutionRecord(
            trace_id=record.trace_id,
            type=record.type,
            user_id=record.user_id,
            action=record.action,
            params=record.params,
            status="pending",
            digest=record.digest,
            expires_at=record.expires_at,
            reason=record.reason,
            channel=record.channel,
            message_ts=record.message_ts,
            created_at=now,
            updated_at=now,
        )

    async def get_execution(self, trace_id: str) -> ExecutionRecord | None:
        """Get an execution by trace id.

        Returns:
            ExecutionRecord or None if not found
        """
        self._require_ledger("read execution")
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM executions WHERE trace_id = ?", (trace_id,)
                )
                row = await cursor.fetchone()

                if not row:
                    return None

                return self._row_to_execution(row)

        except aiosqlite.Error as e:
            logger.error("Failed to get execution", trace_id=trace_id, error=str(e))
            raise StoreUnavailableError(f"Failed to get execution {trace_id}: {e}") from e

    async def confirm_execution_if_pending(
        self,
        trace_id: str,
        channel: str | None = None,
        message_ts: str | None = None,
        expires_at: int | None = None,
        digest: str | None = None,
        now_ms: int | None = None,
    ) -> ExecutionRecord | None:
        """Move an execution from pending to confirmed.

        Single atomic UPDATE guarded by ``status = 'pending'``; patch fields
        left as None keep their stored values.

        Returns:
            The confirmed record, or None if the row is absent or was not pending
        """
        self._require_ledger("confirm execution")
        now = _now_ms() if now_ms is None else now_ms
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    UPDATE executions
                    SET status = 'confirmed',
                        channel = COALESCE(?, channel),
                        message_ts = COALESCE(?, message_ts),
                        expires_at = COALESCE(?, expires_at),
                        digest = COALESCE(?, digest),
                        updated_at = ?
                    WHERE trace_id = ? AND status = 'pending'
                    RETURNING *
                    """,
                    (channel, message_ts, expires_at, digest, now, trace_id),
                )
                row = await cursor.fetchone()
                await db.commit()

                if not row:
                    logger.info("Execution not pending, confirm skipped", trace_id=trace_id)
                    return None

                return self._row_to_execution(row)

        except aiosqlite.Error as e:
            logger.error("Failed to confirm execution", trace_id=trace_id, error=str(e))
            raise StoreUnavailableError(f"Failed to confirm execution {trace_id}: {e}") from e

    async def cancel_execution_if_pending(
        self,
        trace_id: str,
        reason: str | None = None,
        channel: str | None = None,
        message_ts: str | None = None,
        now_ms: int | None = None,
    ) -> ExecutionRecord | None:
        """Move an execution from pending to canceled.

        Returns:
            The canceled record, or None if the row is absent or was not pending
        """
        self._require_ledger("cancel execution")
        now = _now_ms() if now_ms is None else now_ms
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    UPDATE executions
                    SET status = 'canceled',
                        reason = COALESCE(?, reason),
                        channel = COALESCE(?, channel),
                        message_ts = COALESCE(?, message_ts),
                        updated_at = ?
                    WHERE trace_id = ? AND status = 'pending'
                    RETURNING *
                    """,
                    (reason, channel, message_ts, now, trace_id),
                )
                row = await cursor.fetchone()
                await db.commit()

                if not row:
                    logger.info("Execution not pending, cancel skipped", trace_id=trace_id)
                    return None

                return self._row_to_execution(row)

        except aiosqlite.Error as e:
            logger.error("Failed to cancel execution", trace_id=trace_id, error=str(e))
            raise StoreUnavailableError(f"Failed to cancel execution {trace_id}: {e}") from e

    async def update_execution(
        self,
        trace_id: str,
        status: ExecutionStatus | None = None,
        reason: str | None = None,
        channel: str | None = None,
        message_ts: str | None = None,
        expires_at: int | None = None,
        digest: str | None = None,
        now_ms: int | None = None,
    ) -> ExecutionRecord | None:
        """Merge fields into an execution without a status guard.

        Status transitions go through the guarded methods; this is the
        unconditional merge for maintenance and tests.

        Returns:
            The updated record, or None if no row matched
        """
        self._require_ledger("update execution")
        if status is not None and status not in EXECUTION_STATUSES:
            raise ValueError(f"Unknown execution status '{status}'")
        now = _now_ms() if now_ms is None else now_ms
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    UPDATE executions
                    SET status = COALESCE(?, status),
                        reason = COALESCE(?, reason),
                        channel = COALESCE(?, channel),
                        message_ts = COALESCE(?, message_ts),
                        expires_at = COALESCE(?, expires_at),
                        digest = COALESCE(?, digest),
                        updated_at = ?
                    WHERE trace_id = ?
                    RETURNING *
                    """,
                    (status, reason, channel, message_ts, expires_at, digest, now, trace_id),
                )
                row = await cursor.fetchone()
                await db.commit()

                if not row:
                    return None

                logger.debug("Execution updated", trace_id=trace_id, status=row["status"])
                return self._row_to_execution(row)

        except aiosqlite.Error as e:
            logger.error("Failed to update execution", trace_id=trace_id, error=str(e))
            raise StoreUnavailableError(f"Failed to update execution {trace_id}: {e}") from e

    async def finish_confirmed_execution(
        self,
        trace_id: str,
        status: Literal["executed", "canceled"],
        reason: str | None = None,
        now_ms: int | None = None,
    ) -> ExecutionRecord | None:
        """Move a confirmed execution to its terminal status.

        Guarded by ``status = 'confirmed'``: of two concurrent finishers (or a
        finisher racing the expiry watcher) exactly one changes the row.

        Returns:
            The updated record, or None if the row is absent or not confirmed
        """
        self._require_ledger("finish execution")
        if status not in ("executed", "canceled"):
            raise ValueError(f"Terminal status must be executed or canceled, got '{status}'")
        now = _now_ms() if now_ms is None else now_ms
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    UPDATE executions
                    SET status = ?,
                        reason = COALESCE(?, reason),
                        updated_at = ?
                    WHERE trace_id = ? AND status = 'confirmed'
                    RETURNING *
                    """,
                    (status, reason, now, trace_id),
                )
                row = await cursor.fetchone()
                await db.commit()

                if not row:
                    logger.info("Execution not confirmed, finish skipped", trace_id=trace_id)
                    return None

                return self._row_to_execution(row)

        except aiosqlite.Error as e:
            logger.error("Failed to finish execution", trace_id=trace_id, error=str(e))
            raise StoreUnavailableError(f"Failed to finish execution {trace_id}: {e}") from e

    async def expire_confirmed_execution(
        self,
        trace_id: str,
        reason: str = EXPIRED_REASON,
        now_ms: int | None = None,
    ) -> ExecutionRecord | None:
        """Cancel a confirmed execution whose deadline has passed.

        Guarded by ``status = 'confirmed'`` and the deadline, so a row that
        was marked executed (or re-checked by another sweep) in the meantime
        is left alone.

        Returns:
            The canceled record, or None if nothing changed
        """
        self._require_ledger("expire execution")
        now = _now_ms() if now_ms is None else now_ms
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    UPDATE executions
                    SET status = 'canceled',
                        reason = ?,
                        updated_at = ?
                    WHERE trace_id = ?
                    AND status = 'confirmed'
                    AND expires_at IS NOT NULL
                    AND expires_at <= ?
                    RETURNING *
                    """,
                    (reason, now, trace_id, now),
                )
                row = await cursor.fetchone()
                await db.commit()

                if not row:
                    return None

                return self._row_to_execution(row)

        except aiosqlite.Error as e:
            logger.error("Failed to expire execution", trace_id=trace_id, error=str(e))
            raise StoreUnavailableError(f"Failed to expire execution {trace_id}: {e}") from e

    async def find_expired_confirmed(self, now_ms: int | None = None) -> list[ExecutionRecord]:
        """Get confirmed executions whose deadline is at or before ``now_ms``."""
        self._require_ledger("find expired executions")
        now = _now_ms() if now_ms is None else now_ms
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    SELECT * FROM executions
                    WHERE status = 'confirmed'
                    AND expires_at IS NOT NULL
                    AND expires_at <= ?
                    ORDER BY expires_at
                    """,
                    (now,),
                )
                rows = await cursor.fetchall()
                return [self._row_to_execution(row) for row in rows]

        except aiosqlite.Error as e:
            logger.error("Failed to find expired executions", error=str(e))
            raise StoreUnavailableError(f"Failed to find expired executions: {e}") from e

    async def list_recent_executions(
        self, limit: int = 50, status: ExecutionStatus | None = None
    ) -> list[ExecutionRecord]:
        """Get the newest executions, optionally filtered by status."""
        self._require_ledger("list executions")
        try:
            async with self._db() as db:
                if status:
                    cursor = await db.execute(
                        """
                        SELECT * FROM executions
                        WHERE status = ?
                        ORDER BY created_at DESC, id DESC
                        LIMIT ?
                        """,
                        (status, limit),
                    )
                else:
                    cursor = await db.execute(
                        "SELECT * FROM executions ORDER BY created_at DESC, id DESC LIMIT ?",
                        (limit,),
                    )
                rows = await cursor.fetchall()
                return [self._row_to_execution(row) for row in rows]

        except aiosqlite.Error as e:
            logger.error("Failed to list executions", error=str(e))
            raise StoreUnavailableError(f"Failed to list executions: {e}") from e

    async def get_execution_counts(self) -> dict[str, int]:
        """Count executions per status (every status present, zero if none)."""
        self._require_ledger("count executions")
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT status, COUNT(*) AS c FROM executions GROUP BY status"
                )
                counts = {status: 0 for status in EXECUTION_STATUSES}
                for row in await cursor.fetchall():
                    counts[row["status"]] = row["c"]
                return counts

        except aiosqlite.Error as e:
            logger.error("Failed to count executions", error=str(e))
            raise StoreUnavailableError(f"Failed to count executions: {e}") from e

    def _row_to_execution(self, row: aiosqlite.Row) -> ExecutionRecord:
        """Convert a database row to an ExecutionRecord dataclass."""
        raw_params: Any = {}
        if row["params"]:
            try:
                raw_params = json.loads(row["params"])
            except json.JSONDecodeError:
                logger.warning("Unreadable execution params", trace_id=row["trace_id"])

        params: ExecutionParams | dict[str, Any]
        try:
            params = parse_execution_params(row["type"], raw_params)
        except InvalidParamsError:
            params = raw_params if isinstance(raw_params, dict) else {}

        return ExecutionRecord(
            trace_id=row["trace_id"],
            type=row["type"],
            user_id=row["user_id"],
            action=row["action"],
            params=params,
            status=row["status"],
            digest=row["digest"],
            expires_at=row["expires_at"],
            reason=row["reason"],
            channel=row["channel"],
            message_ts=row["message_ts"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # =========================================================================
    # Email List Cache Operations
    # =========================================================================

    def _cache_available(self, operation: str) -> bool:
        if not self._initialized:
            logger.debug("List cache unavailable, treating as miss", operation=operation)
            return False
        return True

    async def upsert_list_cache(
        self,
        cache_key: str,
        items_json: str,
        expires_at: int,
        channel: str | None = None,
        thread_ts: str | None = None,
        created_at: int | None = None,
    ) -> bool:
        """Insert or replace a cached list.

        On conflict ``items_json`` and ``expires_at`` are overwritten while
        ``channel``/``thread_ts`` keep their stored values when omitted.
        Indices inside items_json are stored as given, never renumbered.

        Returns:
            True if stored; False if the store was unavailable or
            ``expires_at`` is not after ``created_at``
        """
        if not self._cache_available("upsert"):
            return False
        created = _now_sec() if created_at is None else created_at
        if expires_at <= created:
            logger.warning(
                "Rejected list cache row that expires before it is created",
                cache_key=cache_key,
                created_at=created,
                expires_at=expires_at,
            )
            return False
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO email_list_cache (
                        cache_key, created_at, expires_at, items_json, channel, thread_ts
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(cache_key) DO UPDATE SET
                        expires_at = excluded.expires_at,
                        items_json = excluded.items_json,
                        channel = COALESCE(excluded.channel, email_list_cache.channel),
                        thread_ts = COALESCE(excluded.thread_ts, email_list_cache.thread_ts)
                    """,
                    (cache_key, created, expires_at, items_json, channel, thread_ts),
                )
                await db.commit()
                return True

        except aiosqlite.Error as e:
            logger.warning("Failed to upsert list cache", cache_key=cache_key, error=str(e))
            return False

    async def get_list_cache(self, cache_key: str) -> EmailListCacheRecord | None:
        """Get a cached list by exact key.

        Expiry is not checked; callers compare ``expires_at`` themselves.
        """
        if not self._cache_available("get"):
            return None
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM email_list_cache WHERE cache_key = ?", (cache_key,)
                )
                row = await cursor.fetchone()

                if not row:
                    return None

                return self._row_to_list_cache(row)

        except aiosqlite.Error as e:
            logger.warning("Failed to get list cache", cache_key=cache_key, error=str(e))
            return None

    async def get_latest_list_cache_by_scope(
        self, channel: str, thread_ts: str | None = None
    ) -> EmailListCacheRecord | None:
        """Get the newest cached list for a conversation scope.

        With ``thread_ts``, the newest row in that exact thread wins; if the
        thread has none, the newest row for the channel (any thread) is used.
        """
        if not self._cache_available("get_by_scope"):
            return None
        try:
            async with self._db() as db:
                if thread_ts:
                    cursor = await db.execute(
                        """
                        SELECT * FROM email_list_cache
                        WHERE channel = ? AND thread_ts = ?
                        ORDER BY created_at DESC, rowid DESC
                        LIMIT 1
                        """,
                        (channel, thread_ts),
                    )
                    row = await cursor.fetchone()
                    if row:
                        return self._row_to_list_cache(row)

                cursor = await db.execute(
                    """
                    SELECT * FROM email_list_cache
                    WHERE channel = ?
                    ORDER BY created_at DESC, rowid DESC
                    LIMIT 1
                    """,
                    (channel,),
                )
                row = await cursor.fetchone()
                return self._row_to_list_cache(row) if row else None

        except aiosqlite.Error as e:
            logger.warning(
                "Failed to get list cache by scope",
                channel=channel,
                thread_ts=thread_ts,
                error=str(e),
            )
            return None

    async def count_list_cache(self) -> int:
        """Count cached list rows (0 when the store is unavailable)."""
        if not self._cache_available("count"):
            return 0
        try:
            async with self._db() as db:
                cursor = await db.execute("SELECT COUNT(*) FROM email_list_cache")
                return (await cursor.fetchone())[0]
        except aiosqlite.Error as e:
            logger.warning("Failed to count list cache", error=str(e))
            return 0

    def _row_to_list_cache(self, row: aiosqlite.Row) -> EmailListCacheRecord:
        """Convert a database row to an EmailListCacheRecord dataclass."""
        return EmailListCacheRecord(
            cache_key=row["cache_key"],
            created_at=row["created_at"],
            expires_at=row["expires_at"],
            items_json=row["items_json"],
            channel=row["channel"],
            thread_ts=row["thread_ts"],
        )

    # =========================================================================
    # Cache Sweep Operations
    # =========================================================================

    async def count_expired_list_cache(self, before_sec: int) -> int:
        """Count cached lists with ``expires_at < before_sec``."""
        if not self._initialized:
            raise StoreUnavailableError("Cannot sweep list cache: store is not initialized")
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT COUNT(1) FROM email_list_cache WHERE expires_at < ?",
                    (before_sec,),
                )
                return (await cursor.fetchone())[0]
        except aiosqlite.Error as e:
            logger.error("Failed to count expired list cache", error=str(e))
            raise DatabaseError(f"Failed to count expired list cache: {e}") from e

    async def delete_expired_list_cache(self, before_sec: int, max_delete: int) -> int:
        """Delete at most ``max_delete`` cached lists with ``expires_at < before_sec``.

        Returns:
            Number of rows deleted
        """
        if not self._initialized:
            raise StoreUnavailableError("Cannot sweep list cache: store is not initialized")
        try:
            async with self._db() as db:
                # rowid window caps the delete without relying on DELETE ... LIMIT
                cursor = await db.execute(
                    """
                    DELETE FROM email_list_cache
                    WHERE rowid IN (
                        SELECT rowid FROM email_list_cache
                        WHERE expires_at < ?
                        LIMIT ?
                    )
                    """,
                    (before_sec, max(1, max_delete)),
                )
                await db.commit()
                return cursor.rowcount
        except aiosqlite.Error as e:
            logger.error("Failed to delete expired list cache", error=str(e))
            raise DatabaseError(f"Failed to delete expired list cache: {e}") from e

    async def sweep_list_cache(
        self, now_sec: int, grace_sec: int = 0, max_delete: int = 1000
    ) -> SweepResult:
        """Delete expired cached lists in one bounded pass.

        Rows are eligible once ``expires_at < now_sec - grace_sec``.

        Returns:
            SweepResult with the eligible count and the number deleted
        """
        threshold = now_sec - max(0, grace_sec)
        expired = await self.count_expired_list_cache(threshold)
        deleted = await self.delete_expired_list_cache(threshold, max_delete) if expired else 0
        return SweepResult(expired=expired, deleted=deleted)
