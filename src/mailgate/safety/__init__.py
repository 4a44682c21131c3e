"""Safety layer for dangerous actions.

This package provides:
- Execution ledger with compare-and-swap confirmation and cancellation
- Confirmation gate that denies unconfirmed dangerous actions
- Expiry watcher that cancels confirmed actions past their deadline
"""

from mailgate.safety.expiry import ExpiryResult, ExpiryWatcher, expiry_notice
from mailgate.safety.gate import ConfirmationGate, ToolCallPartition, tool_call_name
from mailgate.safety.ledger import TRACE_ID_PREFIX, ExecutionLedger

__all__ = [
    # Ledger
    "ExecutionLedger",
    "TRACE_ID_PREFIX",
    # Gate
    "ConfirmationGate",
    "ToolCallPartition",
    "tool_call_name",
    # Expiry
    "ExpiryResult",
    "ExpiryWatcher",
    "expiry_notice",
]
