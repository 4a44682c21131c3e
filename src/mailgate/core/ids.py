"""Trace id generation for proposed executions.

Trace ids are time + random composites (``exec_<base36 ms>_<8 random>``),
unique enough for a single-process ledger; the ledger's UNIQUE constraint
rejects the rare collision.
"""

from __future__ import annotations

import secrets
import string
import time

_BASE36 = string.digits + string.ascii_lowercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_trace_id(prefix: str = "trace") -> str:
    """Generate a unique trace id such as ``exec_lx2k9a1b_4f8d1c2e``."""
    rand = "".join(secrets.choice(_BASE36) for _ in range(8))
    return f"{prefix}_{_to_base36(time.time_ns() // 1_000_000)}_{rand}"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def now_sec() -> int:
    """Current wall-clock time in epoch seconds."""
    return int(time.time())
