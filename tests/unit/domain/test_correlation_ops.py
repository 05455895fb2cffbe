"""Unit tests for CorrelationOperations — SQL shape of the buffer table."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from reconciler.domain.correlation_operations import CorrelationOperations

from tests.helpers.mock_factories import NOW, make_mock_db, mock_scalar_result


def _compiled(db) -> str:
    statement = db.execute.await_args.args[0]
    return str(statement.compile(dialect=postgresql.dialect()))


class TestCorrelationOperations:
    def setup_method(self):
        self.ops = CorrelationOperations()
        self.db = make_mock_db()

    @pytest.mark.asyncio
    async def test_get_live_filters_expired(self):
        self.db.execute.return_value = mock_scalar_result(None)
        assert await self.ops.get_live(self.db, "sub_1", NOW) is None
        assert "pending_correlations.expires_at >" in _compiled(self.db)

    @pytest.mark.asyncio
    async def test_upsert_on_conflict(self):
        await self.ops.upsert(self.db, "sub_1", "cus_1", None, "subscription_created", NOW)
        sql = _compiled(self.db)
        assert "ON CONFLICT (external_subscription_id) DO UPDATE" in sql
        self.db.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delete_reports_whether_a_row_existed(self):
        self.db.execute.return_value = MagicMock(rowcount=1)
        assert await self.ops.delete(self.db, "sub_1") is True
        self.db.execute.return_value = MagicMock(rowcount=0)
        assert await self.ops.delete(self.db, "sub_1") is False

    @pytest.mark.asyncio
    async def test_purge_expired_returns_keys_and_sources(self):
        result = MagicMock()
        result.all.return_value = [("sub_1", "subscription_created")]
        self.db.execute.return_value = result

        purged = await self.ops.purge_expired(self.db, NOW)

        assert purged == [("sub_1", "subscription_created")]
        assert "RETURNING" in _compiled(self.db)
