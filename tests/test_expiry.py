"""Tests for the expiry watcher.

The core scenario: an action is proposed and confirmed, the user never
triggers execution, the deadline passes, and the watcher cancels it and
posts one notice in the confirming thread.
"""

from typing import Any
from unittest.mock import AsyncMock

import pytest

from mailgate.core.errors import NotificationError, StoreUnavailableError
from mailgate.db.store import DatabaseStore
from mailgate.safety.expiry import ExpiryWatcher, expiry_notice
from mailgate.safety.ledger import ExecutionLedger

NOW_MS = 1_700_000_000_000
TTL_MS = 10 * 60_000


@pytest.fixture
def notifier() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def watcher(store: DatabaseStore, notifier: AsyncMock) -> ExpiryWatcher:
    return ExpiryWatcher(store, notifier)


@pytest.fixture
async def confirmed(ledger: ExecutionLedger, send_mail_params: dict[str, Any]) -> str:
    await ledger.propose("U123", "send-mail", send_mail_params, trace_id="exec_a1")
    await ledger.confirm("exec_a1", channel="C1", message_ts="171.01", now_ms=NOW_MS)
    return "exec_a1"


class TestExpiryWatcher:
    async def test_expired_confirmation_is_canceled_and_notified(
        self,
        watcher: ExpiryWatcher,
        notifier: AsyncMock,
        ledger: ExecutionLedger,
        confirmed: str,
    ) -> None:
        result = await watcher.run_once(now_ms=NOW_MS + TTL_MS + 1)

        assert result.found == 1
        assert result.canceled == 1
        assert result.notified == 1
        assert result.errors == 0

        record = await ledger.get(confirmed)
        assert record.status == "canceled"
        assert record.reason == "expired"

        notifier.notify.assert_awaited_once()
        channel, thread_ts, text = notifier.notify.await_args.args
        assert channel == "C1"
        assert thread_ts == "171.01"
        assert "exec_a1" in text

    async def test_second_tick_is_noop(
        self, watcher: ExpiryWatcher, notifier: AsyncMock, confirmed: str
    ) -> None:
        await watcher.run_once(now_ms=NOW_MS + TTL_MS + 1)
        result = await watcher.run_once(now_ms=NOW_MS + TTL_MS + 2)

        assert result.found == 0
        assert result.canceled == 0
        assert notifier.notify.await_count == 1

    async def test_before_deadline_nothing_happens(
        self, watcher: ExpiryWatcher, notifier: AsyncMock, ledger: ExecutionLedger, confirmed: str
    ) -> None:
        result = await watcher.run_once(now_ms=NOW_MS + TTL_MS - 1)

        assert result.found == 0
        assert (await ledger.get(confirmed)).status == "confirmed"
        notifier.notify.assert_not_awaited()

    async def test_executed_record_is_left_alone(
        self, watcher: ExpiryWatcher, notifier: AsyncMock, ledger: ExecutionLedger, confirmed: str
    ) -> None:
        await ledger.mark_executed(confirmed)

        result = await watcher.run_once(now_ms=NOW_MS + TTL_MS + 1)

        assert result.found == 0
        assert (await ledger.get(confirmed)).status == "executed"
        notifier.notify.assert_not_awaited()

    async def test_race_with_execution_between_scan_and_cancel(
        self, store: DatabaseStore, notifier: AsyncMock, ledger: ExecutionLedger, confirmed: str
    ) -> None:
        """A record executed after the scan is not canceled and not announced."""
        real_find = store.find_expired_confirmed

        async def find_then_execute(now_ms: int):
            rows = await real_find(now_ms)
            await store.update_execution(confirmed, status="executed")
            return rows

        store.find_expired_confirmed = find_then_execute
        watcher = ExpiryWatcher(store, notifier)

        result = await watcher.run_once(now_ms=NOW_MS + TTL_MS + 1)

        assert result.found == 1
        assert result.canceled == 0
        assert (await ledger.get(confirmed)).status == "executed"
        notifier.notify.assert_not_awaited()

    async def test_no_notice_without_thread(
        self,
        watcher: ExpiryWatcher,
        notifier: AsyncMock,
        ledger: ExecutionLedger,
        send_mail_params: dict[str, Any],
    ) -> None:
        await ledger.propose("U123", "send-mail", send_mail_params, trace_id="exec_b1")
        await ledger.confirm("exec_b1", now_ms=NOW_MS)

        result = await watcher.run_once(now_ms=NOW_MS + TTL_MS + 1)

        assert result.canceled == 1
        assert result.notified == 0
        notifier.notify.assert_not_awaited()

    async def test_notify_failure_is_counted_not_raised(
        self, watcher: ExpiryWatcher, notifier: AsyncMock, ledger: ExecutionLedger, confirmed: str
    ) -> None:
        notifier.notify.side_effect = NotificationError("webhook down", status_code=502)

        result = await watcher.run_once(now_ms=NOW_MS + TTL_MS + 1)

        assert result.canceled == 1
        assert result.notified == 0
        assert result.errors == 1
        assert (await ledger.get(confirmed)).status == "canceled"

    async def test_scan_failure_returns_error(self, notifier: AsyncMock) -> None:
        store = AsyncMock(spec=DatabaseStore)
        store.find_expired_confirmed.side_effect = StoreUnavailableError("down")

        result = await ExpiryWatcher(store, notifier).run_once(now_ms=NOW_MS)

        assert result.errors == 1
        assert result.found == 0

    async def test_pending_records_never_expire(
        self,
        watcher: ExpiryWatcher,
        ledger: ExecutionLedger,
        send_mail_params: dict[str, Any],
    ) -> None:
        await ledger.propose("U123", "send-mail", send_mail_params, trace_id="exec_p1")

        result = await watcher.run_once(now_ms=NOW_MS + 10 * TTL_MS)

        assert result.found == 0
        assert (await ledger.get("exec_p1")).status == "pending"


def test_expiry_notice_mentions_trace_id() -> None:
    assert "exec_a1" in expiry_notice("exec_a1")
