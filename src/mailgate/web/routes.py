"""HTTP API for the execution ledger, confirmation gate and list cache.

All routes live under ``/api`` and use FastAPI dependency injection to
access shared state. Ledger store failures are turned into 503 by the
exception handler registered in mailgate.web.app.
"""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from mailgate.cache.list_cache import ScopedResultCache
from mailgate.cache.sweeper import CacheSweeper
from mailgate.core.errors import (
    DatabaseError,
    DuplicateTraceIdError,
    ExecutionDeniedError,
    ExecutionNotFoundError,
    InvalidParamsError,
    NotApplicableError,
)
from mailgate.core.logging import get_logger
from mailgate.db.store import DatabaseStore, ExecutionStatus
from mailgate.safety.gate import ConfirmationGate
from mailgate.safety.ledger import ExecutionLedger
from mailgate.web.dependencies import (
    get_gate,
    get_ledger,
    get_list_cache,
    get_store,
    get_sweeper,
)

logger = get_logger(__name__)

VERSION = "0.1.0"

api_router = APIRouter(prefix="/api")


# ---------------------------------------------------------------------------
# Pydantic models for API input validation
# ---------------------------------------------------------------------------


class ProposeRequest(BaseModel):
    """Request body for proposing a dangerous action."""

    user_id: str = Field(min_length=1)
    type: str
    params: dict[str, Any] = Field(default_factory=dict)
    action: str | None = None
    trace_id: str | None = None


class ConfirmRequest(BaseModel):
    """Request body for confirming an action (where the user confirmed it)."""

    channel: str | None = None
    message_ts: str | None = None


class CancelRequest(BaseModel):
    """Request body for canceling an action."""

    reason: str = "user"
    channel: str | None = None
    message_ts: str | None = None


class ResultRequest(BaseModel):
    """Request body reporting the outcome of a confirmed action."""

    outcome: Literal["executed", "failed"]
    action: str | None = None
    reason: str | None = None


class GateCheckRequest(BaseModel):
    """Request body for a single gate check."""

    trace_id: str | None = None
    action: str | None = None


class GateFilterRequest(BaseModel):
    """Request body for filtering a batch of tool calls."""

    trace_id: str | None = None
    calls: list[dict[str, Any]] = Field(default_factory=list)


class SaveListRequest(BaseModel):
    """Request body for caching a list result."""

    user_id: str = Field(min_length=1)
    items: list[dict[str, Any]]
    channel: str | None = None
    thread_ts: str | None = None
    workspace_id: str | None = None
    mailbox: str | None = None
    query: str | None = None
    page_token: str | None = None
    page: int | None = None


def _conflict(e: NotApplicableError) -> HTTPException:
    return HTTPException(
        status_code=409,
        detail={"message": "Execution already processed", "status": e.status},
    )


def _denied(e: ExecutionDeniedError) -> HTTPException:
    return HTTPException(
        status_code=403,
        detail={
            "allowed": False,
            "reason": e.reason,
            "status": e.status,
            "trace_id": e.trace_id,
            "action": e.action,
        },
    )


# ---------------------------------------------------------------------------
# Execution ledger
# ---------------------------------------------------------------------------


@api_router.post("/executions", status_code=201)
async def propose_execution(
    body: ProposeRequest,
    ledger: ExecutionLedger = Depends(get_ledger),
):
    """Record a proposed action in pending state."""
    try:
        record = await ledger.propose(
            body.user_id,
            body.type,
            body.params,
            action=body.action,
            trace_id=body.trace_id,
        )
    except InvalidParamsError as e:
        raise HTTPException(status_code=422, detail=str(e)) from None
    except DuplicateTraceIdError:
        raise HTTPException(status_code=409, detail="trace_id already exists") from None
    return record.to_dict()


@api_router.get("/executions")
async def list_executions(
    limit: int = Query(default=50, ge=1, le=500),
    status: ExecutionStatus | None = None,
    ledger: ExecutionLedger = Depends(get_ledger),
):
    """Newest executions first, optionally filtered by status."""
    records = await ledger.recent(limit=limit, status=status)
    return {"executions": [record.to_dict() for record in records]}


@api_router.get("/executions/{trace_id}")
async def get_execution(
    trace_id: str,
    ledger: ExecutionLedger = Depends(get_ledger),
):
    try:
        record = await ledger.get(trace_id)
    except ExecutionNotFoundError:
        raise HTTPException(status_code=404, detail="Execution not found") from None
    return record.to_dict()


@api_router.post("/executions/{trace_id}/confirm")
async def confirm_execution(
    trace_id: str,
    body: ConfirmRequest | None = None,
    ledger: ExecutionLedger = Depends(get_ledger),
):
    """Confirm a pending action. Exactly one of concurrent confirms succeeds."""
    body = body or ConfirmRequest()
    try:
        record = await ledger.confirm(trace_id, channel=body.channel, message_ts=body.message_ts)
    except ExecutionNotFoundError:
        raise HTTPException(status_code=404, detail="Execution not found") from None
    except NotApplicableError as e:
        raise _conflict(e) from None
    return record.to_dict()


@api_router.post("/executions/{trace_id}/cancel")
async def cancel_execution(
    trace_id: str,
    body: CancelRequest | None = None,
    ledger: ExecutionLedger = Depends(get_ledger),
):
    """Cancel a pending action."""
    body = body or CancelRequest()
    try:
        record = await ledger.cancel(
            trace_id,
            reason=body.reason,
            channel=body.channel,
            message_ts=body.message_ts,
        )
    except ExecutionNotFoundError:
        raise HTTPException(status_code=404, detail="Execution not found") from None
    except NotApplicableError as e:
        raise _conflict(e) from None
    return record.to_dict()


@api_router.post("/executions/{trace_id}/result")
async def report_execution_result(
    trace_id: str,
    body: ResultRequest,
    ledger: ExecutionLedger = Depends(get_ledger),
    gate: ConfirmationGate = Depends(get_gate),
):
    """Record the outcome of running a confirmed action.

    The gate is consulted first, so a result can only be reported for an
    action that was allowed to run.
    """
    try:
        current = await ledger.get(trace_id)
        await gate.must_allow(trace_id, body.action or current.type)
        if body.outcome == "executed":
            record = await ledger.mark_executed(trace_id)
        else:
            record = await ledger.mark_failed(trace_id, body.reason or "failed")
    except ExecutionNotFoundError:
        raise HTTPException(status_code=404, detail="Execution not found") from None
    except ExecutionDeniedError as e:
        raise _denied(e) from None
    except NotApplicableError as e:
        raise _conflict(e) from None
    return record.to_dict()


# ---------------------------------------------------------------------------
# Confirmation gate
# ---------------------------------------------------------------------------


@api_router.post("/gate/check")
async def gate_check(
    body: GateCheckRequest,
    gate: ConfirmationGate = Depends(get_gate),
):
    """Allow (200) or deny (403) one action."""
    try:
        await gate.must_allow(body.trace_id, body.action)
    except ExecutionDeniedError as e:
        raise _denied(e) from None
    return {
        "allowed": True,
        "trace_id": body.trace_id,
        "action": body.action,
        "enforced": gate.enforced,
    }


@api_router.post("/gate/filter")
async def gate_filter(
    body: GateFilterRequest,
    gate: ConfirmationGate = Depends(get_gate),
):
    """Split tool calls into allowed and blocked."""
    partition = await gate.filter_tool_calls(body.calls, body.trace_id)
    return {"allowed": partition.allowed, "blocked": partition.blocked}


# ---------------------------------------------------------------------------
# List cache
# ---------------------------------------------------------------------------


@api_router.post("/list-cache")
async def save_list(
    body: SaveListRequest,
    cache: ScopedResultCache | None = Depends(get_list_cache),
):
    """Cache a list result. A store failure is reported as ``stored: false``."""
    if cache is None:
        logger.warning("list_cache_unavailable", operation="save")
        return {"cache_key": None, "stored": False}
    key = await cache.save_list(
        body.items,
        user_id=body.user_id,
        channel=body.channel,
        thread_ts=body.thread_ts,
        workspace_id=body.workspace_id,
        mailbox=body.mailbox,
        query=body.query,
        page_token=body.page_token,
        page=body.page,
    )
    return {"cache_key": key, "stored": key is not None}


@api_router.get("/list-cache/resolve")
async def resolve_list_index(
    channel: str,
    index: int = Query(ge=1),
    thread_ts: str | None = None,
    cache: ScopedResultCache | None = Depends(get_list_cache),
):
    """Resolve "#index" against the newest list cached for a scope."""
    if cache is None:
        logger.warning("list_cache_unavailable", operation="resolve")
        return {"status": "miss", "index": index, "cache_key": None, "item": None}
    lookup = await cache.resolve_index(channel, thread_ts, index)
    return {
        "status": lookup.status,
        "index": lookup.index,
        "cache_key": lookup.cache_key,
        "item": lookup.item.to_dict() if lookup.item else None,
    }


@api_router.get("/list-cache/preview")
async def preview_list(
    cache_key: str,
    cache: ScopedResultCache | None = Depends(get_list_cache),
):
    items = await cache.preview(cache_key) if cache is not None else None
    if items is None:
        raise HTTPException(status_code=404, detail="No fresh cached list")
    return {"cache_key": cache_key, "items": [item.to_dict() for item in items]}


@api_router.post("/list-cache/sweep")
async def sweep_list_cache(
    sweeper: CacheSweeper = Depends(get_sweeper),
):
    """Run one cache sweep now."""
    try:
        result = await sweeper.sweep()
    except DatabaseError as e:
        logger.error("manual_sweep_failed", error=str(e))
        raise HTTPException(status_code=503, detail="Cache sweep failed") from None
    return {"expired": result.expired, "deleted": result.deleted}


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@api_router.get("/health")
async def health_check(
    request: Request,
    store: DatabaseStore = Depends(get_store),
):
    """Health check endpoint for Docker and monitoring."""
    counts = await store.get_execution_counts()
    cached_lists = await store.count_list_cache()

    scheduler = getattr(request.app.state, "scheduler", None)
    config = getattr(request.app.state, "config", None)
    enforced = config.safety.enforce if config else True

    return {
        "status": "healthy" if enforced else "degraded",
        "gate_enforced": enforced,
        "scheduler_running": bool(scheduler and scheduler.running),
        "executions": counts,
        "cached_lists": cached_lists,
        "version": VERSION,
    }
