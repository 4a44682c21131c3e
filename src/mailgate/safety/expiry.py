"""Expiry watcher for confirmed-but-never-executed actions.

A confirmed action must run within its deadline (``expires_at``). Each tick,
the watcher cancels confirmed records whose deadline has passed and posts a
notice into the thread where the action was confirmed.

The cancel is status-guarded: if the action was marked executed between the
scan and the cancel, nothing changes and no notice is sent. A second tick
over the same rows is therefore a no-op.

Usage:
    from mailgate.safety.expiry import ExpiryWatcher

    watcher = ExpiryWatcher(store, notifier)
    result = await watcher.run_once()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from mailgate.core.ids import now_ms
from mailgate.core.logging import get_logger, set_trace_id
from mailgate.db.store import EXPIRED_REASON

if TYPE_CHECKING:
    from mailgate.db.store import DatabaseStore
    from mailgate.notify import Notifier

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ExpiryResult:
    """Result of one expiry tick.

    Attributes:
        found: Confirmed records past their deadline
        canceled: Records this tick actually moved to canceled
        notified: Notices delivered
        errors: Records (or the scan) that failed
    """

    found: int = 0
    canceled: int = 0
    notified: int = 0
    errors: int = 0


def expiry_notice(trace_id: str) -> str:
    """Text posted into the thread when a confirmed action expires."""
    return f"⏳ Confirmed action was auto-canceled because it expired. trace_id=`{trace_id}`"


class ExpiryWatcher:
    """Cancel confirmed actions that outlived their deadline."""

    def __init__(self, store: DatabaseStore, notifier: Notifier) -> None:
        self._store = store
        self._notifier = notifier

    async def run_once(self, now_ms: int | None = None) -> ExpiryResult:
        """Run one expiry tick.

        Args:
            now_ms: Current time in epoch ms (defaults to now)

        Returns:
            ExpiryResult with counts for each outcome
        """
        now = _resolve_now(now_ms)
        try:
            expired = await self._store.find_expired_confirmed(now)
        except Exception as e:
            logger.error("expiry_scan_failed", error=str(e))
            return ExpiryResult(errors=1)

        if not expired:
            return ExpiryResult()

        canceled = 0
        notified = 0
        errors = 0

        for record in expired:
            set_trace_id(record.trace_id)
            try:
                updated = await self._store.expire_confirmed_execution(
                    record.trace_id, reason=EXPIRED_REASON, now_ms=now
                )
            except Exception as e:
                errors += 1
                logger.warning("execution_expire_failed", trace_id=record.trace_id, error=str(e))
                continue

            if updated is None:
                # Executed or already canceled since the scan
                logger.debug("execution_expire_skipped", trace_id=record.trace_id)
                continue

            canceled += 1
            logger.info(
                "execution_expired",
                trace_id=updated.trace_id,
                expires_at=updated.expires_at,
            )

            if not updated.channel or not updated.message_ts:
                continue

            try:
                await self._notifier.notify(
                    updated.channel, updated.message_ts, expiry_notice(updated.trace_id)
                )
                notified += 1
            except Exception as e:
                errors += 1
                logger.warning(
                    "expiry_notice_failed",
                    trace_id=updated.trace_id,
                    channel=updated.channel,
                    error=str(e),
                )

        set_trace_id(None)
        result = ExpiryResult(
            found=len(expired), canceled=canceled, notified=notified, errors=errors
        )
        logger.info(
            "expiry_tick_complete",
            found=result.found,
            canceled=result.canceled,
            notified=result.notified,
            errors=result.errors,
        )
        return result


def _resolve_now(value: int | None) -> int:
    return now_ms() if value is None else value
