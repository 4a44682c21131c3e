"""Confirmation gate for dangerous actions.

Before a side-effecting tool (send mail, save draft, create event) runs, the
gate checks the ledger: the action is allowed only if its trace id refers to
a record in ``confirmed`` state whose deadline has not passed. Every other
case is a denial, including a missing trace id, an unknown trace id and an
unreadable ledger. An expired confirmation is denied at once, whether or
not the expiry watcher has canceled it yet.

Setting ``safety.enforce: false`` (or ``SAFETY_ENFORCE=0``) disables every
check. It exists for controlled test environments only.

Usage:
    from mailgate.safety.gate import ConfirmationGate

    gate = ConfirmationGate(store, config)
    await gate.must_allow(trace_id, "gmail.send")   # raises ExecutionDeniedError
    partition = await gate.filter_tool_calls(tool_calls, trace_id)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from mailgate.core.errors import ExecutionDeniedError
from mailgate.core.ids import now_ms as current_ms
from mailgate.core.logging import get_logger

if TYPE_CHECKING:
    from mailgate.config_schema import AppConfig
    from mailgate.db.store import DatabaseStore

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ToolCallPartition:
    """Tool calls split by the gate.

    Attributes:
        allowed: Calls that may run
        blocked: Calls that were denied
    """

    allowed: list[Any] = field(default_factory=list)
    blocked: list[Any] = field(default_factory=list)


def tool_call_name(call: Any) -> str | None:
    """Read the action name from a tool call (mapping or object with ``name``)."""
    if isinstance(call, Mapping):
        name = call.get("name")
    else:
        name = getattr(call, "name", None)
    return name if isinstance(name, str) and name else None


class ConfirmationGate:
    """Deny dangerous actions that lack a confirmed ledger record."""

    def __init__(self, store: DatabaseStore, config: AppConfig) -> None:
        self._store = store
        self._config = config

    @property
    def enforced(self) -> bool:
        return self._config.safety.enforce

    def is_dangerous(self, action: str | None) -> bool:
        """True if the action needs confirmation. A missing action is dangerous."""
        if not action:
            return True
        return action in self._config.safety.dangerous_actions

    def _deny(
        self,
        message: str,
        trace_id: str | None,
        action: str | None,
        status: str | None,
        reason: str,
    ) -> ExecutionDeniedError:
        logger.warning(
            "gate_denied",
            trace_id=trace_id,
            action=action,
            status=status,
            reason=reason,
        )
        return ExecutionDeniedError(
            message, trace_id=trace_id, action=action, status=status, reason=reason
        )

    async def must_allow(
        self, trace_id: str | None, action: str | None, now_ms: int | None = None
    ) -> None:
        """Raise unless the action may run now.

        Args:
            trace_id: Ledger record the action belongs to
            action: Tool or execution name
            now_ms: Clock override (defaults to wall clock)

        Raises:
            ExecutionDeniedError: If a dangerous action is not confirmed, or
                its confirmation has expired
            StoreUnavailableError: If the ledger cannot be read
        """
        if not self.enforced or not self.is_dangerous(action):
            return

        if not trace_id:
            raise self._deny(
                f"Action '{action}' requires confirmation but no trace_id was given.",
                trace_id=None,
                action=action,
                status=None,
                reason="missing_trace_id",
            )

        record = await self._store.get_execution(trace_id)
        if record is None:
            raise self._deny(
                f"Action '{action}' denied: no execution found for trace_id '{trace_id}'.",
                trace_id=trace_id,
                action=action,
                status=None,
                reason="not_found",
            )

        if record.status != "confirmed":
            raise self._deny(
                f"Action '{action}' denied: execution '{trace_id}' is {record.status}, "
                "not confirmed. Ask the user to confirm before running it.",
                trace_id=trace_id,
                action=action,
                status=record.status,
                reason="not_confirmed",
            )

        now = current_ms() if now_ms is None else now_ms
        if record.expires_at is not None and record.expires_at <= now:
            raise self._deny(
                f"Action '{action}' denied: confirmation for execution '{trace_id}' "
                "has expired. Ask the user to confirm again.",
                trace_id=trace_id,
                action=action,
                status=record.status,
                reason="expired",
            )

        logger.debug("gate_allowed", trace_id=trace_id, action=action)

    async def filter_tool_calls(
        self, calls: Iterable[Any], trace_id: str | None, now_ms: int | None = None
    ) -> ToolCallPartition:
        """Split tool calls into those allowed and those blocked.

        Raises:
            StoreUnavailableError: If the ledger cannot be read
        """
        calls = list(calls)
        if not self.enforced:
            return ToolCallPartition(allowed=calls, blocked=[])

        allowed: list[Any] = []
        blocked: list[Any] = []
        for call in calls:
            try:
                await self.must_allow(trace_id, tool_call_name(call), now_ms=now_ms)
            except ExecutionDeniedError:
                blocked.append(call)
            else:
                allowed.append(call)

        if blocked:
            logger.info(
                "gate_filtered",
                trace_id=trace_id,
                allowed=len(allowed),
                blocked=len(blocked),
            )
        return ToolCallPartition(allowed=allowed, blocked=blocked)
