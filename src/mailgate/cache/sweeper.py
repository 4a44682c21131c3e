"""Periodic removal of expired list-cache rows.

Rows stay readable for ``cache.sweep_grace_seconds`` after they expire (so a
follow-up can still be told "that list expired"), then are deleted in bounded
batches of at most ``cache.max_delete_per_sweep`` rows.

Usage:
    from mailgate.cache.sweeper import CacheSweeper

    sweeper = CacheSweeper(store, config)
    result = await sweeper.run_once()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from mailgate.core.ids import now_sec
from mailgate.core.logging import get_logger
from mailgate.db.store import SweepResult

if TYPE_CHECKING:
    from mailgate.config_schema import AppConfig
    from mailgate.db.store import DatabaseStore

logger = get_logger(__name__)

CACHE_TABLE = "email_list_cache"

# Scheduled sweeps never run more often than this
MIN_SWEEP_INTERVAL_SECONDS = 5


class CacheSweeper:
    """Delete expired list-cache rows past their grace period."""

    def __init__(self, store: DatabaseStore, config: AppConfig) -> None:
        self._store = store
        self._config = config

    def schedule(self) -> tuple[int, int]:
        """Interval and jitter (seconds) for the scheduled job.

        The scheduler delays each run by a random 0..jitter, so the interval is
        shifted down by one jitter span to fire at ``sweep_seconds`` +/- jitter,
        never sooner than MIN_SWEEP_INTERVAL_SECONDS.
        """
        cache = self._config.cache
        jitter = cache.sweep_jitter_seconds
        interval = max(MIN_SWEEP_INTERVAL_SECONDS, cache.sweep_seconds - jitter)
        return interval, 2 * jitter

    async def sweep(self, now_sec: int | None = None) -> SweepResult:
        """Run one sweep, propagating store errors (used by the CLI)."""
        cache = self._config.cache
        now = _resolve_now(now_sec)
        result = await self._store.sweep_list_cache(
            now,
            grace_sec=cache.sweep_grace_seconds,
            max_delete=cache.max_delete_per_sweep,
        )
        logger.info(
            "cache_sweep_complete",
            table=CACHE_TABLE,
            expired=result.expired,
            deleted=result.deleted,
            grace=cache.sweep_grace_seconds,
            max=cache.max_delete_per_sweep,
        )
        return result

    async def run_once(self, now_sec: int | None = None) -> SweepResult:
        """Run one sweep; store failures are logged and reported as zero counts."""
        try:
            return await self.sweep(now_sec)
        except Exception as e:
            logger.warning("cache_sweep_failed", table=CACHE_TABLE, error=str(e))
            return SweepResult()


def _resolve_now(value: int | None) -> int:
    return now_sec() if value is None else value
