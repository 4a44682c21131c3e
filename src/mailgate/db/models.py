"""SQLite database schema and initialization for mailgate.

This module defines the database schema with 2 tables:
- executions: Ledger of proposed dangerous actions and their disposition
- email_list_cache: Short-lived list results keyed by a deterministic cache key

Usage:
    from mailgate.db.models import init_database

    # Initialize database (creates tables if not exist)
    await init_database("data/mailgate.db")
"""

import stat
from pathlib import Path

import aiosqlite

from mailgate.core.errors import DatabaseError
from mailgate.core.logging import get_logger

logger = get_logger(__name__)

# Schema version for migrations (increment when schema changes)
SCHEMA_VERSION = 2

REQUIRED_TABLES = ["executions", "email_list_cache"]

# SQL schema definition
SCHEMA_SQL = """
-- MUST be set before creating tables. Persists across connections.
PRAGMA journal_mode=WAL;

-- Ledger of dangerous actions. Rows are never deleted (audit trail).
CREATE TABLE IF NOT EXISTS executions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    trace_id TEXT NOT NULL UNIQUE,          -- Caller-visible id, e.g. exec_lx2k9a1b_4f8d1c2e
    type TEXT NOT NULL,                     -- 'send-mail', 'save-draft', 'create-event'
    user_id TEXT NOT NULL,
    action TEXT NOT NULL,                   -- Human-readable label
    params TEXT NOT NULL,                   -- JSON payload, shape fixed per type
    digest TEXT,                            -- Audit summary written at confirmation
    expires_at INTEGER,                     -- Epoch ms; meaningful only while confirmed
    status TEXT NOT NULL,                   -- 'pending', 'confirmed', 'canceled', 'executed'
    reason TEXT,                            -- Set on cancellation
    channel TEXT,                           -- Where the confirmation happened
    message_ts TEXT,
    created_at INTEGER NOT NULL,            -- Epoch ms
    updated_at INTEGER NOT NULL             -- Epoch ms
);

CREATE INDEX IF NOT EXISTS idx_executions_status ON executions(status);

-- List results for numeric follow-ups ("open #3"). Times are epoch seconds.
CREATE TABLE IF NOT EXISTS email_list_cache (
    cache_key TEXT PRIMARY KEY,
    created_at INTEGER NOT NULL,
    expires_at INTEGER NOT NULL,
    items_json TEXT NOT NULL,               -- {"items": [{index, messageId, subject, from, date}]}
    channel TEXT,
    thread_ts TEXT
);

-- Index to accelerate expiry sweeps
CREATE INDEX IF NOT EXISTS idx_email_list_cache_exp ON email_list_cache(expires_at);

-- Composite index for scope lookups (newest row per channel/thread)
CREATE INDEX IF NOT EXISTS idx_email_list_cache_scope
    ON email_list_cache(channel, thread_ts, created_at DESC);
"""

# Indexes that depend on columns added by _migrate_executions
POST_MIGRATION_SQL = """
CREATE INDEX IF NOT EXISTS idx_executions_status_expiry ON executions(status, expires_at);
"""


async def _migrate_executions(db: aiosqlite.Connection) -> list[str]:
    """Add columns introduced after the first schema to older databases.

    Returns:
        Names of the columns that were added
    """
    cursor = await db.execute("PRAGMA table_info(executions)")
    columns = {row[1] for row in await cursor.fetchall()}

    added = []
    if "digest" not in columns:
        await db.execute("ALTER TABLE executions ADD COLUMN digest TEXT")
        added.append("digest")
    if "expires_at" not in columns:
        await db.execute("ALTER TABLE executions ADD COLUMN expires_at INTEGER")
        added.append("expires_at")
    return added


async def init_database(db_path: str | Path) -> None:
    """Initialize the SQLite database with schema and WAL mode.

    Creates the database file if it doesn't exist, enables WAL mode for
    concurrent access, creates all tables and indexes, and migrates older
    execution tables.

    Args:
        db_path: Path to the SQLite database file

    Raises:
        DatabaseError: If database initialization fails
    """
    db_path = Path(db_path)

    # Ensure parent directory exists
    db_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        async with aiosqlite.connect(db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            journal_mode = await db.execute("PRAGMA journal_mode")
            mode = await journal_mode.fetchone()
            if mode and mode[0].lower() != "wal":
                logger.warning(
                    "WAL mode not enabled",
                    requested="wal",
                    actual=mode[0],
                    db_path=str(db_path),
                )

            await db.executescript(SCHEMA_SQL)
            added = await _migrate_executions(db)
            await db.executescript(POST_MIGRATION_SQL)
            await db.commit()

            if added:
                logger.info("Executions table migrated", added_columns=added)

            cursor = await db.execute("SELECT COUNT(*) FROM sqlite_master WHERE type='table'")
            table_count = (await cursor.fetchone())[0]

        # Ledger params carry recipients and bodies: owner read/write only
        db_path.chmod(stat.S_IRUSR | stat.S_IWUSR)

        for suffix in ["-wal", "-shm"]:
            wal_file = db_path.with_suffix(db_path.suffix + suffix)
            if wal_file.exists():
                wal_file.chmod(stat.S_IRUSR | stat.S_IWUSR)

        logger.info(
            "Database initialized",
            db_path=str(db_path),
            schema_version=SCHEMA_VERSION,
            tables_created=table_count,
        )

    except aiosqlite.Error as e:
        logger.error(
            "Database initialization failed",
            db_path=str(db_path),
            error=str(e),
        )
        raise DatabaseError(
            f"Failed to initialize database at {db_path}: {e}. "
            "Check that the directory is writable and the database file is not corrupted."
        ) from e


async def verify_schema(db_path: str | Path) -> bool:
    """Verify that the database has the expected schema.

    Args:
        db_path: Path to the SQLite database file

    Returns:
        True if all tables exist, False otherwise
    """
    try:
        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("SELECT name FROM sqlite_master WHERE type='table'")
            existing_tables = {row[0] for row in await cursor.fetchall()}

            missing = set(REQUIRED_TABLES) - existing_tables
            if missing:
                logger.warning(
                    "Missing database tables",
                    missing=sorted(missing),
                    db_path=str(db_path),
                )
                return False

            return True

    except aiosqlite.Error as e:
        logger.error(
            "Schema verification failed",
            db_path=str(db_path),
            error=str(e),
        )
        return False
