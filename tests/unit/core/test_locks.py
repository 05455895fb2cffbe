"""Unit tests for advisory lock helpers."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from reconciler.core.locks import advisory_lock, customer_lock_key


class TestCustomerLockKey:
    def test_stable_across_calls(self):
        assert customer_lock_key("cus_1") == customer_lock_key("cus_1")

    def test_differs_per_customer(self):
        assert customer_lock_key("cus_1") != customer_lock_key("cus_2")

    def test_fits_postgres_bigint(self):
        for customer in ("cus_1", "cus_ZZZZZZZZZZZZ", ""):
            key = customer_lock_key(customer)
            assert -(2**63) <= key < 2**63


def _session_maker(acquired: bool) -> tuple[MagicMock, AsyncMock]:
    session = AsyncMock()
    result = MagicMock()
    result.scalar.return_value = acquired
    session.execute.return_value = result

    @asynccontextmanager
    async def maker():
        yield session

    return MagicMock(side_effect=maker), session


class TestAdvisoryLock:
    @pytest.mark.asyncio
    async def test_acquired_lock_is_released(self):
        maker, session = _session_maker(acquired=True)
        with patch("reconciler.core.locks.direct_session_maker", maker):
            async with advisory_lock(42) as acquired:
                assert acquired is True

        statements = [str(call.args[0]) for call in session.execute.await_args_list]
        assert "pg_try_advisory_lock" in statements[0]
        assert "pg_advisory_unlock" in statements[1]
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_held_lock_yields_false(self):
        maker, session = _session_maker(acquired=False)
        with patch("reconciler.core.locks.direct_session_maker", maker):
            async with advisory_lock(42) as acquired:
                assert acquired is False

        assert session.execute.await_count == 1
