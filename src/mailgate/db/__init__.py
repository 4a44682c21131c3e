"""Database layer for mailgate.

This module provides SQLite database access with async operations.

Usage:
    from mailgate.db import DatabaseStore, ExecutionRecord

    store = DatabaseStore("data/mailgate.db")
    await store.initialize()

    # Record a proposed action
    await store.create_execution(record)

    # Promote it exactly once
    confirmed = await store.confirm_execution_if_pending(record.trace_id)
"""

from mailgate.db.models import (
    SCHEMA_VERSION,
    init_database,
    verify_schema,
)
from mailgate.db.store import (
    EXECUTION_STATUSES,
    EXPIRED_REASON,
    DatabaseStore,
    EmailListCacheRecord,
    ExecutionRecord,
    ExecutionStatus,
    ListItem,
    SweepResult,
)

__all__ = [
    # Models
    "SCHEMA_VERSION",
    "init_database",
    "verify_schema",
    # Store
    "DatabaseStore",
    "EXECUTION_STATUSES",
    "EXPIRED_REASON",
    "ExecutionStatus",
    # Dataclasses
    "ExecutionRecord",
    "EmailListCacheRecord",
    "ListItem",
    "SweepResult",
]
