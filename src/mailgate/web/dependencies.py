"""FastAPI dependency injection helpers.

Extracts shared dependencies from app.state for use in route handlers.
All dependencies are initialized during the FastAPI lifespan and stored
on app.state for concurrent access by the API routes and background jobs.

A dependency that failed to initialize (for example, the store could not be
opened) is None on app.state; requesting it answers 503, except for the
list cache, which is handed over as None.

Usage:
    from mailgate.web.dependencies import get_ledger

    @router.get("/executions/{trace_id}")
    async def get_execution(trace_id: str, ledger: ExecutionLedger = Depends(get_ledger)):
        return (await ledger.get(trace_id)).to_dict()
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import HTTPException, Request

if TYPE_CHECKING:
    from mailgate.cache.list_cache import ScopedResultCache
    from mailgate.cache.sweeper import CacheSweeper
    from mailgate.db.store import DatabaseStore
    from mailgate.safety.gate import ConfirmationGate
    from mailgate.safety.ledger import ExecutionLedger


def _require(request: Request, name: str) -> Any:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail=f"{name} not available")
    return value


def get_store(request: Request) -> DatabaseStore:
    """Get the shared DatabaseStore from app state."""
    return _require(request, "store")


def get_ledger(request: Request) -> ExecutionLedger:
    """Get the ExecutionLedger from app state."""
    return _require(request, "ledger")


def get_gate(request: Request) -> ConfirmationGate:
    """Get the ConfirmationGate from app state."""
    return _require(request, "gate")


def get_list_cache(request: Request) -> ScopedResultCache | None:
    """Get the ScopedResultCache from app state, or None when it is down.

    The list cache is best effort, so its routes degrade to a miss instead
    of answering 503.
    """
    return getattr(request.app.state, "list_cache", None)


def get_sweeper(request: Request) -> CacheSweeper:
    """Get the CacheSweeper from app state."""
    return _require(request, "sweeper")
