# tests/unit/infrastructure/storage/test_postgres_store.py
import json
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from domain.models.business_state import AgentRunStatus, BusinessStatus
from infrastructure.storage.business_store import (
    FIELD_ORDER,
    SCHEMA_STATEMENTS,
    PostgresBusinessStore,
)

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def conn():
    connection = AsyncMock()
    connection.transaction = MagicMock()
    return connection


@pytest.fixture
def pool(conn):
    mock_pool = MagicMock()
    mock_pool.acquire.return_value.__aenter__.return_value = conn
    mock_pool.close = AsyncMock()
    return mock_pool


@pytest.fixture
def pg_store(pool):
    return PostgresBusinessStore("postgresql://test", pool=pool)


def business_row(**overrides):
    row = {f: None for f in FIELD_ORDER}
    row.update({
        "id": "biz-1",
        "prompt": "A bakery",
        "status": "pending",
        "current_agent": None,
        "stale_fields": "[]",
        "created_at": NOW,
        "updated_at": NOW,
    })
    row.update(overrides)
    return row


class TestSchemaAndLifecycle:

    @pytest.mark.asyncio
    async def test_initialize_with_existing_pool_creates_schema(self, pg_store, conn):
        await pg_store.initialize()

        assert conn.execute.await_count == len(SCHEMA_STATEMENTS)

    @pytest.mark.asyncio
    async def test_close(self, pg_store, pool):
        await pg_store.close()

        pool.close.assert_awaited_once()


class TestBusinessQueries:
    """Test row mapping and field writes"""

    @pytest.mark.asyncio
    async def test_create_business(self, pg_store, conn):
        conn.fetchrow.return_value = business_row()

        business = await pg_store.create_business("A bakery")

        args = conn.fetchrow.await_args.args
        assert "INSERT INTO businesses" in args[0]
        assert args[2] == "A bakery"
        assert args[3] == "pending"
        assert business.status == BusinessStatus.PENDING

    @pytest.mark.asyncio
    async def test_get_business_decodes_json_columns(self, pg_store, conn):
        conn.fetchrow.return_value = business_row(
            status="completed",
            brand_colors=json.dumps({"primary": "#FFAA00"}),
            tagline=json.dumps("Fresh daily"),
            stale_fields=json.dumps(["logo_url"]),
        )

        business = await pg_store.get_business("biz-1")

        assert business.status == BusinessStatus.COMPLETED
        assert business.brand_colors == {"primary": "#FFAA00"}
        assert business.tagline == "Fresh daily"
        assert business.stale_fields == ["logo_url"]
        assert business.website_code is None

    @pytest.mark.asyncio
    async def test_get_missing_business(self, pg_store, conn):
        conn.fetchrow.return_value = None

        assert await pg_store.get_business("missing") is None

    @pytest.mark.asyncio
    async def test_update_fields_builds_jsonb_assignments(self, pg_store, conn):
        await pg_store.update_business_fields("biz-1", {"tagline": "Fresh", "brand_colors": {"primary": "#000"}})

        args = conn.execute.await_args.args
        assert "tagline = $2::jsonb" in args[0]
        assert "brand_colors = $3::jsonb" in args[0]
        assert args[1:] == ("biz-1", '"Fresh"', '{"primary": "#000"}')

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_columns(self, pg_store, conn):
        with pytest.raises(ValueError):
            await pg_store.update_business_fields("biz-1", {"id; DROP TABLE businesses": "x"})

        conn.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_update_is_skipped(self, pg_store, conn):
        await pg_store.update_business_fields("biz-1", {})

        conn.execute.assert_not_called()


class TestAgentRunQueries:

    @pytest.mark.asyncio
    async def test_insert_run(self, pg_store, conn):
        run_id = await pg_store.insert_agent_run("biz-1", "scout", {"prompt": "A bakery"})

        args = conn.execute.await_args.args
        assert args[1] == run_id
        assert args[3] == "scout"
        assert args[4] == "running"
        assert json.loads(args[5]) == {"prompt": "A bakery"}

    @pytest.mark.asyncio
    async def test_update_run_sets_completion_for_terminal_status(self, pg_store, conn):
        await pg_store.update_agent_run("run-1", AgentRunStatus.FAILED, error="boom")

        args = conn.execute.await_args.args
        assert args[1:] == ("run-1", "failed", None, "boom", True)

    @pytest.mark.asyncio
    async def test_update_run_to_running(self, pg_store, conn):
        await pg_store.update_agent_run("run-1", AgentRunStatus.RUNNING)

        assert conn.execute.await_args.args[-1] is False

    @pytest.mark.asyncio
    async def test_list_runs(self, pg_store, conn):
        conn.fetch.return_value = [{
            "id": "run-1",
            "business_id": "biz-1",
            "agent_name": "scout",
            "status": "completed",
            "input": '{"prompt": "A bakery"}',
            "output": '{"market_research": {}}',
            "error": None,
            "started_at": NOW,
            "completed_at": NOW,
        }]

        runs = await pg_store.list_agent_runs("biz-1")

        assert runs[0].status == AgentRunStatus.COMPLETED
        assert runs[0].input == {"prompt": "A bakery"}
        assert runs[0].output == {"market_research": {}}


class TestFieldVersionQueries:
    """Test staleness writes run in one transaction"""

    @pytest.mark.asyncio
    async def test_mark_stale_is_transactional(self, pg_store, conn):
        await pg_store.mark_fields_stale("biz-1", ["website_code", "logo_url"], "edited")

        conn.transaction.assert_called_once()
        assert conn.execute.await_count == 2
        mark_call, refresh_call = conn.execute.await_args_list
        assert mark_call.args[1:] == ("biz-1", ["website_code", "logo_url"], "edited")
        assert "COALESCE(field_versions.stale_since" in mark_call.args[0]
        assert "UPDATE businesses" in refresh_call.args[0]
        assert refresh_call.args[2] == FIELD_ORDER

    @pytest.mark.asyncio
    async def test_clear_staleness_is_transactional(self, pg_store, conn):
        await pg_store.clear_field_staleness("biz-1", ["logo_url"])

        conn.transaction.assert_called_once()
        assert conn.execute.await_count == 2
        assert "is_stale = FALSE" in conn.execute.await_args_list[0].args[0]

    @pytest.mark.asyncio
    async def test_upsert_drops_reason_when_fresh(self, pg_store, conn):
        await pg_store.upsert_field_version("biz-1", "tagline", is_stale=False, stale_reason="ignored")

        assert conn.execute.await_args.args[1:] == ("biz-1", "tagline", None, None, False, None)

    @pytest.mark.asyncio
    async def test_list_field_versions(self, pg_store, conn):
        conn.fetch.return_value = [{
            "business_id": "biz-1",
            "field_name": "logo_url",
            "version": 2,
            "content_hash": "abcd",
            "is_stale": True,
            "stale_reason": "edited",
            "stale_since": NOW,
            "updated_at": NOW,
        }]

        rows = await pg_store.list_field_versions("biz-1", stale_only=True)

        assert conn.fetch.await_args.args[1:] == ("biz-1", True, FIELD_ORDER)
        assert rows[0].field_name == "logo_url"
        assert rows[0].is_stale is True

    @pytest.mark.asyncio
    async def test_set_stale_fields(self, pg_store, conn):
        await pg_store.set_stale_fields("biz-1", ["logo_url"])

        assert conn.execute.await_args.args[1:] == ("biz-1", '["logo_url"]')
