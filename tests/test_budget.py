"""
Tests for the monthly generation budget.
"""

import asyncio
from datetime import date, datetime, timezone

from mise.observability.budget import (
    INCREMENT_RPC,
    USAGE_TABLE,
    build_budget_exceeded_message,
    check_generation_budget,
    format_reset_date,
    month_start,
    next_month_start,
    record_generation_usage,
)

USER_ID = "11111111-1111-1111-1111-111111111111"
NOW = datetime(2026, 3, 18, 15, 0, tzinfo=timezone.utc)


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio needed)."""
    return asyncio.run(coro)


def _usage_row(count: int, **overrides) -> dict:
    row = {
        "user_id": USER_ID,
        "month_start": "2026-03-01",
        "generation_count": count,
        "warning_80_sent_at": None,
        "warning_90_sent_at": None,
    }
    row.update(overrides)
    return row


def _increment(allowed: bool, used: int, sent_80: bool = False, sent_90: bool = False) -> list[dict]:
    return [
        {
            "allowed": allowed,
            "used": used,
            "was_80_warning_sent": sent_80,
            "was_90_warning_sent": sent_90,
        }
    ]


class TestDates:
    def test_month_window(self):
        assert month_start(NOW) == date(2026, 3, 1)
        assert next_month_start(date(2026, 3, 1)) == date(2026, 4, 1)
        assert next_month_start(date(2026, 12, 1)) == date(2027, 1, 1)

    def test_reset_date_formatting(self):
        assert format_reset_date(date(2026, 4, 1)) == "April 1, 2026"
        assert format_reset_date(date(2026, 4, 1), "es") == "1 de abril de 2026"

    def test_exceeded_message(self):
        message = build_budget_exceeded_message("en", date(2026, 3, 1))
        assert "monthly recipe creation limit" in message
        assert "resets on March 1, 2026" in message


class TestCheckBudget:
    def test_no_row_means_nothing_used(self, fake_db):
        status = _run(check_generation_budget(USER_ID, limit=10, now=NOW))

        assert status.allowed
        assert status.used == 0
        assert status.limit == 10
        assert status.reset_at == date(2026, 4, 1)

    def test_at_limit_is_blocked(self, fake_db):
        fake_db.seed(USAGE_TABLE, [_usage_row(10), _usage_row(50, month_start="2026-02-01")])
        status = _run(check_generation_budget(USER_ID, limit=10, now=NOW))

        assert not status.allowed
        assert status.used == 10

    def test_read_failure_fails_open(self, fake_db):
        fake_db.failing.add(USAGE_TABLE)
        assert _run(check_generation_budget(USER_ID, limit=10, now=NOW)).allowed

    def test_default_limit_from_settings(self, fake_db):
        assert _run(check_generation_budget(USER_ID, now=NOW)).limit == 120


class TestRecordUsage:
    def test_increment_without_warning(self, fake_db):
        fake_db.rpc_results[INCREMENT_RPC] = _increment(True, 3)
        status = _run(record_generation_usage(USER_ID, "en", limit=10, now=NOW))

        assert status.allowed
        assert status.used == 3
        assert status.warning_message is None
        assert fake_db.rpc_calls == [(INCREMENT_RPC, {"p_user_id": USER_ID, "p_limit": 10})]

    def test_80_percent_warning_is_sent_once(self, fake_db):
        fake_db.seed(USAGE_TABLE, [_usage_row(8)])
        fake_db.rpc_results[INCREMENT_RPC] = _increment(True, 8)

        status = _run(record_generation_usage(USER_ID, "en", limit=10, now=NOW))

        assert status.warning_level == 80
        assert "8 of 10" in status.warning_message
        assert "It resets on April 1, 2026" in status.warning_message
        assert fake_db.tables[USAGE_TABLE][0]["warning_80_sent_at"] == NOW.isoformat()

        fake_db.rpc_results[INCREMENT_RPC] = _increment(True, 8, sent_80=True)
        assert _run(record_generation_usage(USER_ID, "en", limit=10, now=NOW)).warning_message is None

    def test_90_percent_warning_wins(self, fake_db):
        fake_db.rpc_results[INCREMENT_RPC] = _increment(True, 9)
        status = _run(record_generation_usage(USER_ID, "es", limit=10, now=NOW))

        assert status.warning_level == 90
        assert status.warning_message.startswith("Aviso: has usado 9 de 10")

    def test_blocked_at_limit(self, fake_db):
        fake_db.rpc_results[INCREMENT_RPC] = _increment(False, 10, sent_80=True, sent_90=True)
        status = _run(record_generation_usage(USER_ID, "es", limit=10, now=NOW))

        assert not status.allowed
        assert "límite mensual" in status.warning_message

    def test_rpc_failure_fails_open(self, fake_db):
        fake_db.failing.add(INCREMENT_RPC)
        status = _run(record_generation_usage(USER_ID, "en", limit=10, now=NOW))

        assert status.allowed
        assert status.warning_message is None

    def test_empty_rpc_result_fails_open(self, fake_db):
        status = _run(record_generation_usage(USER_ID, "en", limit=10, now=NOW))
        assert status.allowed
