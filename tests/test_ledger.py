"""Tests for the execution ledger service.

Covers proposal validation, compare-and-swap confirmation and cancellation,
deadlines, and post-execution bookkeeping.
"""

import asyncio
from typing import Any

import pytest

from mailgate.config_schema import AppConfig
from mailgate.core.errors import (
    DuplicateTraceIdError,
    ExecutionNotFoundError,
    InvalidParamsError,
    NotApplicableError,
    StoreUnavailableError,
)
from mailgate.core.params import CreateEventParams, SendMailParams, parse_execution_params
from mailgate.db.store import DatabaseStore
from mailgate.safety.ledger import ExecutionLedger

NOW_MS = 1_700_000_000_000


class TestPropose:
    async def test_propose_creates_pending_record(
        self, ledger: ExecutionLedger, send_mail_params: dict[str, Any]
    ) -> None:
        record = await ledger.propose("U123", "send-mail", send_mail_params)

        assert record.status == "pending"
        assert record.trace_id.startswith("exec_")
        assert record.action == "Send email"
        assert isinstance(record.params, SendMailParams)

    async def test_propose_uses_given_trace_id_and_action(
        self, ledger: ExecutionLedger, send_mail_params: dict[str, Any]
    ) -> None:
        record = await ledger.propose(
            "U123", "send-mail", send_mail_params, action="gmail.send", trace_id="exec_a1"
        )
        assert record.trace_id == "exec_a1"
        assert record.action == "gmail.send"

    async def test_propose_generates_unique_trace_ids(
        self, ledger: ExecutionLedger, send_mail_params: dict[str, Any]
    ) -> None:
        records = [await ledger.propose("U123", "send-mail", send_mail_params) for _ in range(5)]
        assert len({r.trace_id for r in records}) == 5

    async def test_propose_duplicate_trace_id(
        self, ledger: ExecutionLedger, send_mail_params: dict[str, Any]
    ) -> None:
        await ledger.propose("U123", "send-mail", send_mail_params, trace_id="exec_a1")
        with pytest.raises(DuplicateTraceIdError):
            await ledger.propose("U123", "send-mail", send_mail_params, trace_id="exec_a1")

    async def test_propose_rejects_unknown_type(self, ledger: ExecutionLedger) -> None:
        with pytest.raises(InvalidParamsError) as exc_info:
            await ledger.propose("U123", "delete-mailbox", {})
        assert exc_info.value.execution_type == "delete-mailbox"

    async def test_propose_rejects_unknown_fields(self, ledger: ExecutionLedger) -> None:
        with pytest.raises(InvalidParamsError):
            await ledger.propose("U123", "send-mail", {"to": "a@example.com", "attachments": []})

    async def test_propose_rejects_missing_recipient(self, ledger: ExecutionLedger) -> None:
        with pytest.raises(InvalidParamsError):
            await ledger.propose("U123", "send-mail", {"subject": "Hi"})

    async def test_propose_create_event(self, ledger: ExecutionLedger) -> None:
        record = await ledger.propose(
            "U123",
            "create-event",
            {"title": "Sync", "start": "2025-01-10T10:00:00", "attendees": ["a@example.com"]},
        )
        assert isinstance(record.params, CreateEventParams)
        assert record.action == "Create calendar event"


class TestGet:
    async def test_get_missing_raises(self, ledger: ExecutionLedger) -> None:
        with pytest.raises(ExecutionNotFoundError) as exc_info:
            await ledger.get("exec_missing")
        assert exc_info.value.trace_id == "exec_missing"


class TestConfirm:
    async def test_confirm_sets_deadline_and_digest(
        self, ledger: ExecutionLedger, send_mail_params: dict[str, Any]
    ) -> None:
        await ledger.propose("U123", "send-mail", send_mail_params, trace_id="exec_a1")

        record = await ledger.confirm("exec_a1", channel="C1", message_ts="171.01", now_ms=NOW_MS)

        assert record.status == "confirmed"
        assert record.expires_at == NOW_MS + 10 * 60_000
        assert record.channel == "C1"
        assert record.message_ts == "171.01"
        assert record.digest == (
            "to=alice@example.com; subject=Quarterly report; "
            "body_head=Hi Alice, attached is the quarterly report you ask"
        )

    async def test_confirm_ttl_follows_config(
        self,
        store: DatabaseStore,
        sample_config_dict: dict[str, Any],
        send_mail_params: dict[str, Any],
    ) -> None:
        sample_config_dict["safety"]["execution_ttl_minutes"] = 2
        ledger = ExecutionLedger(store, AppConfig(**sample_config_dict))
        await ledger.propose("U123", "send-mail", send_mail_params, trace_id="exec_a1")

        record = await ledger.confirm("exec_a1", now_ms=NOW_MS)
        assert record.expires_at == NOW_MS + 120_000

    async def test_second_confirm_not_applicable(
        self, ledger: ExecutionLedger, send_mail_params: dict[str, Any]
    ) -> None:
        await ledger.propose("U123", "send-mail", send_mail_params, trace_id="exec_a1")
        await ledger.confirm("exec_a1")

        with pytest.raises(NotApplicableError) as exc_info:
            await ledger.confirm("exec_a1")
        assert exc_info.value.status == "confirmed"

    async def test_confirm_missing_raises_not_found(self, ledger: ExecutionLedger) -> None:
        with pytest.raises(ExecutionNotFoundError):
            await ledger.confirm("exec_missing")

    async def test_concurrent_confirms_exactly_one_wins(
        self, ledger: ExecutionLedger, send_mail_params: dict[str, Any]
    ) -> None:
        await ledger.propose("U123", "send-mail", send_mail_params, trace_id="exec_a1")

        results = await asyncio.gather(
            *[ledger.confirm("exec_a1", channel="C1") for _ in range(5)],
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, NotApplicableError)]
        assert len(successes) == 1
        assert len(conflicts) == 4
        assert all(c.status == "confirmed" for c in conflicts)

    async def test_concurrent_confirm_and_cancel_one_wins(
        self, ledger: ExecutionLedger, send_mail_params: dict[str, Any]
    ) -> None:
        await ledger.propose("U123", "send-mail", send_mail_params, trace_id="exec_a1")

        results = await asyncio.gather(
            ledger.confirm("exec_a1"),
            ledger.cancel("exec_a1"),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(successes) == 1
        final = await ledger.get("exec_a1")
        assert final.status == successes[0].status


class TestCancel:
    async def test_cancel_pending(
        self, ledger: ExecutionLedger, send_mail_params: dict[str, Any]
    ) -> None:
        await ledger.propose("U123", "send-mail", send_mail_params, trace_id="exec_a1")
        record = await ledger.cancel("exec_a1")
        assert record.status == "canceled"
        assert record.reason == "user"

    async def test_cancel_then_confirm_not_applicable(
        self, ledger: ExecutionLedger, send_mail_params: dict[str, Any]
    ) -> None:
        await ledger.propose("U123", "send-mail", send_mail_params, trace_id="exec_a1")
        await ledger.cancel("exec_a1", reason="changed my mind")

        with pytest.raises(NotApplicableError) as exc_info:
            await ledger.confirm("exec_a1")
        assert exc_info.value.status == "canceled"

    async def test_cancel_missing_raises_not_found(self, ledger: ExecutionLedger) -> None:
        with pytest.raises(ExecutionNotFoundError):
            await ledger.cancel("exec_missing")


class TestCompletion:
    async def test_mark_executed(
        self, ledger: ExecutionLedger, send_mail_params: dict[str, Any]
    ) -> None:
        await ledger.propose("U123", "send-mail", send_mail_params, trace_id="exec_a1")
        await ledger.confirm("exec_a1")

        record = await ledger.mark_executed("exec_a1")
        assert record.status == "executed"

    async def test_mark_executed_requires_confirmed(
        self, ledger: ExecutionLedger, send_mail_params: dict[str, Any]
    ) -> None:
        await ledger.propose("U123", "send-mail", send_mail_params, trace_id="exec_a1")

        with pytest.raises(NotApplicableError) as exc_info:
            await ledger.mark_executed("exec_a1")
        assert exc_info.value.status == "pending"

    async def test_mark_failed_cancels_with_reason(
        self, ledger: ExecutionLedger, send_mail_params: dict[str, Any]
    ) -> None:
        await ledger.propose("U123", "send-mail", send_mail_params, trace_id="exec_a1")
        await ledger.confirm("exec_a1")

        record = await ledger.mark_failed("exec_a1", "smtp 550")
        assert record.status == "canceled"
        assert record.reason == "smtp 550"

    async def test_mark_executed_twice_not_applicable(
        self, ledger: ExecutionLedger, send_mail_params: dict[str, Any]
    ) -> None:
        await ledger.propose("U123", "send-mail", send_mail_params, trace_id="exec_a1")
        await ledger.confirm("exec_a1")
        await ledger.mark_executed("exec_a1")

        with pytest.raises(NotApplicableError):
            await ledger.mark_executed("exec_a1")

    async def test_concurrent_executed_and_failed_one_wins(
        self, ledger: ExecutionLedger, send_mail_params: dict[str, Any]
    ) -> None:
        for i in range(10):
            trace_id = f"exec_race_{i}"
            await ledger.propose("U123", "send-mail", send_mail_params, trace_id=trace_id)
            await ledger.confirm(trace_id)

            results = await asyncio.gather(
                ledger.mark_executed(trace_id),
                ledger.mark_failed(trace_id, "smtp down"),
                return_exceptions=True,
            )

            successes = [r for r in results if not isinstance(r, Exception)]
            conflicts = [r for r in results if isinstance(r, NotApplicableError)]
            assert len(successes) == 1
            assert len(conflicts) == 1
            final = await ledger.get(trace_id)
            assert final.status == successes[0].status

    async def test_mark_executed_after_expiry_cancel_not_applicable(
        self, ledger: ExecutionLedger, store: DatabaseStore, send_mail_params: dict[str, Any]
    ) -> None:
        await ledger.propose("U123", "send-mail", send_mail_params, trace_id="exec_a1")
        confirmed = await ledger.confirm("exec_a1", now_ms=NOW_MS)
        await store.expire_confirmed_execution("exec_a1", now_ms=confirmed.expires_at)

        with pytest.raises(NotApplicableError) as exc_info:
            await ledger.mark_executed("exec_a1")
        assert exc_info.value.status == "canceled"
        assert (await ledger.get("exec_a1")).reason == "expired"

    async def test_mark_failed_missing_raises_not_found(self, ledger: ExecutionLedger) -> None:
        with pytest.raises(ExecutionNotFoundError):
            await ledger.mark_failed("exec_missing", "smtp down")

    async def test_recent_lists_newest_first(
        self, ledger: ExecutionLedger, send_mail_params: dict[str, Any]
    ) -> None:
        await ledger.propose("U123", "send-mail", send_mail_params, trace_id="exec_1")
        await asyncio.sleep(0.002)
        await ledger.propose("U123", "send-mail", send_mail_params, trace_id="exec_2")

        recent = await ledger.recent()
        assert [r.trace_id for r in recent] == ["exec_2", "exec_1"]


class TestStoreUnavailable:
    async def test_propose_fails_closed(
        self, data_dir, sample_config: AppConfig, send_mail_params: dict[str, Any]
    ) -> None:
        ledger = ExecutionLedger(DatabaseStore(data_dir / "never.db"), sample_config)
        with pytest.raises(StoreUnavailableError):
            await ledger.propose("U123", "send-mail", send_mail_params)

    async def test_confirm_fails_closed(self, data_dir, sample_config: AppConfig) -> None:
        ledger = ExecutionLedger(DatabaseStore(data_dir / "never.db"), sample_config)
        with pytest.raises(StoreUnavailableError):
            await ledger.confirm("exec_a1")


class TestParams:
    def test_send_mail_digest_truncates_body(self) -> None:
        params = parse_execution_params("send-mail", {"to": "a@example.com", "body": "x" * 80})
        assert params.digest().endswith("body_head=" + "x" * 50)

    def test_event_digest(self) -> None:
        params = parse_execution_params(
            "create-event", {"title": "Sync", "start": "2025-01-10T10:00", "attendees": ["a", "b"]}
        )
        assert params.digest() == "title=Sync; start=2025-01-10T10:00; attendees=2"

    def test_save_draft_allows_missing_recipient(self) -> None:
        params = parse_execution_params("save-draft", {"body": "draft"})
        assert params.to is None

    def test_params_must_be_mapping(self) -> None:
        with pytest.raises(InvalidParamsError):
            parse_execution_params("send-mail", ["a@example.com"])
