"""Execution ledger service.

Wraps the store's status-guarded transitions with parameter validation,
trace id generation, confirmation deadlines and audit logging.

Lifecycle of a record::

    pending --confirm--> confirmed --mark_executed--> executed
       |                     |
       +--cancel--> canceled <--mark_failed / expiry watcher

``pending -> confirmed`` and ``pending -> canceled`` are compare-and-swap
operations: of two concurrent callers exactly one wins, the other gets
NotApplicableError.

Usage:
    from mailgate.safety.ledger import ExecutionLedger

    ledger = ExecutionLedger(store, config)
    record = await ledger.propose("U123", "send-mail", {"to": "a@example.com"})
    await ledger.confirm(record.trace_id, channel="C1", message_ts="171.01")
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from mailgate.core.errors import ExecutionNotFoundError, NotApplicableError
from mailgate.core.ids import generate_trace_id, now_ms
from mailgate.core.logging import get_logger, set_trace_id
from mailgate.core.params import ACTION_LABELS, parse_execution_params
from mailgate.core.pii import hash_user_id, mask_email_and_phone
from mailgate.db.store import ExecutionRecord

if TYPE_CHECKING:
    from mailgate.config_schema import AppConfig
    from mailgate.db.store import DatabaseStore

logger = get_logger(__name__)

TRACE_ID_PREFIX = "exec"


class ExecutionLedger:
    """Durable record of proposed dangerous actions and their disposition."""

    def __init__(self, store: DatabaseStore, config: AppConfig) -> None:
        self._store = store
        self._config = config

    @property
    def ttl_ms(self) -> int:
        return self._config.safety.execution_ttl_minutes * 60_000

    def _hashed(self, user_id: str) -> str | None:
        return hash_user_id(user_id, self._config.safety.hash_salt)

    async def propose(
        self,
        user_id: str,
        type: str,
        params: Any,
        action: str | None = None,
        trace_id: str | None = None,
    ) -> ExecutionRecord:
        """Record a proposed action in ``pending`` state.

        Args:
            user_id: Chat user who asked for the action
            type: Execution type (send-mail, save-draft, create-event)
            params: Payload for that type
            action: Human-readable label (defaults per type)
            trace_id: Explicit trace id (generated when omitted)

        Returns:
            The stored pending record

        Raises:
            InvalidParamsError: If params do not match the type
            DuplicateTraceIdError: If trace_id is already used
            StoreUnavailableError: If the ledger cannot be written
        """
        typed = parse_execution_params(type, params)
        record = ExecutionRecord(
            trace_id=trace_id or generate_trace_id(TRACE_ID_PREFIX),
            type=type,
            user_id=user_id,
            action=action or ACTION_LABELS.get(type, type),
            params=typed,
        )
        set_trace_id(record.trace_id)
        stored = await self._store.create_execution(record)
        logger.info(
            "execution_proposed",
            trace_id=stored.trace_id,
            type=stored.type,
            user=self._hashed(user_id),
        )
        return stored

    async def get(self, trace_id: str) -> ExecutionRecord:
        """Get a record by trace id.

        Raises:
            ExecutionNotFoundError: If no record exists
        """
        record = await self._store.get_execution(trace_id)
        if record is None:
            raise ExecutionNotFoundError(
                f"No execution found for trace_id '{trace_id}'. "
                "It may never have been proposed; ask the user to start again.",
                trace_id=trace_id,
            )
        return record

    async def _not_applicable(self, trace_id: str, operation: str) -> NotApplicableError:
        """Explain why a CAS changed nothing (absent vs. wrong state)."""
        current = await self.get(trace_id)
        logger.info(
            "execution_transition_skipped",
            trace_id=trace_id,
            operation=operation,
            status=current.status,
        )
        return NotApplicableError(
            f"Cannot {operation} execution '{trace_id}': it is already {current.status}.",
            trace_id=trace_id,
            status=current.status,
        )

    async def confirm(
        self,
        trace_id: str,
        channel: str | None = None,
        message_ts: str | None = None,
        now_ms: int | None = None,
    ) -> ExecutionRecord:
        """Confirm a pending action and start its execution deadline.

        Raises:
            ExecutionNotFoundError: If no record exists
            NotApplicableError: If the record is no longer pending
        """
        set_trace_id(trace_id)
        now = _resolve_now(now_ms)
        current = await self.get(trace_id)
        digest = _digest_for(current)

        confirmed = await self._store.confirm_execution_if_pending(
            trace_id,
            channel=channel,
            message_ts=message_ts,
            expires_at=now + self.ttl_ms,
            digest=digest,
            now_ms=now,
        )
        if confirmed is None:
            raise await self._not_applicable(trace_id, "confirm")

        logger.info(
            "execution_confirmed",
            trace_id=trace_id,
            type=confirmed.type,
            expires_at=confirmed.expires_at,
            digest=mask_email_and_phone(digest),
            user=self._hashed(confirmed.user_id),
        )
        return confirmed

    async def cancel(
        self,
        trace_id: str,
        reason: str = "user",
        channel: str | None = None,
        message_ts: str | None = None,
    ) -> ExecutionRecord:
        """Cancel a pending action.

        Raises:
            ExecutionNotFoundError: If no record exists
            NotApplicableError: If the record is no longer pending
        """
        set_trace_id(trace_id)
        canceled = await self._store.cancel_execution_if_pending(
            trace_id, reason=reason, channel=channel, message_ts=message_ts
        )
        if canceled is None:
            raise await self._not_applicable(trace_id, "cancel")

        logger.info("execution_canceled", trace_id=trace_id, reason=reason)
        return canceled

    async def mark_executed(self, trace_id: str) -> ExecutionRecord:
        """Record that the side effect of a confirmed action succeeded.

        Raises:
            ExecutionNotFoundError: If no record exists
            NotApplicableError: If the record is not confirmed (already
                finished, or canceled by the expiry watcher)
        """
        set_trace_id(trace_id)
        updated = await self._store.finish_confirmed_execution(trace_id, status="executed")
        if updated is None:
            raise await self._not_applicable(trace_id, "mark executed")
        logger.info("execution_executed", trace_id=trace_id, type=updated.type)
        return updated

    async def mark_failed(self, trace_id: str, reason: str) -> ExecutionRecord:
        """Record that the side effect of a confirmed action failed.

        The record is canceled with the failure message as its reason.

        Raises:
            ExecutionNotFoundError: If no record exists
            NotApplicableError: If the record is not confirmed
        """
        set_trace_id(trace_id)
        updated = await self._store.finish_confirmed_execution(
            trace_id, status="canceled", reason=reason or "failed"
        )
        if updated is None:
            raise await self._not_applicable(trace_id, "mark failed")
        logger.warning(
            "execution_failed",
            trace_id=trace_id,
            reason=mask_email_and_phone(reason),
        )
        return updated

    async def recent(self, limit: int = 50, status: str | None = None) -> list[ExecutionRecord]:
        """Newest records first, for inspection."""
        return await self._store.list_recent_executions(limit=limit, status=status)


def _resolve_now(value: int | None) -> int:
    return now_ms() if value is None else value


def _digest_for(record: ExecutionRecord) -> str | None:
    if isinstance(record.params, dict):
        return None
    return record.params.digest()
