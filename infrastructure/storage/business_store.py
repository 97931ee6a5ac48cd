# infrastructure/storage/business_store.py
import json
import uuid
from typing import Dict, Any, Optional, List, Protocol
import asyncpg
from domain.models.business_state import (
    Business,
    BusinessStatus,
    AgentRunRecord,
    AgentRunStatus,
    FieldVersionInfo,
)
from domain.models.fields import BusinessField, GENERATED_FIELDS
from shared.logging import logger

FIELD_ORDER = [f.value for f in GENERATED_FIELDS]

SCHEMA_STATEMENTS = [
    # Business records with one JSONB column per generated field
    """
    CREATE TABLE IF NOT EXISTS businesses (
        id VARCHAR(36) PRIMARY KEY,
        prompt TEXT NOT NULL,
        status VARCHAR(20) NOT NULL,
        current_agent VARCHAR(50),
        market_research JSONB,
        business_name JSONB,
        tagline JSONB,
        business_canvas JSONB,
        brand_colors JSONB,
        brand_voice JSONB,
        logo_url JSONB,
        website_structure JSONB,
        website_code JSONB,
        customer_journey JSONB,
        automation_flows JSONB,
        stale_fields JSONB NOT NULL DEFAULT '[]',
        created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # Per-field version and staleness bookkeeping
    """
    CREATE TABLE IF NOT EXISTS field_versions (
        business_id VARCHAR(36) NOT NULL REFERENCES businesses(id) ON DELETE CASCADE,
        field_name VARCHAR(50) NOT NULL,
        version INTEGER NOT NULL DEFAULT 1,
        content_hash VARCHAR(64),
        is_stale BOOLEAN NOT NULL DEFAULT FALSE,
        stale_reason TEXT,
        stale_since TIMESTAMPTZ,
        updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (business_id, field_name),
        CHECK (is_stale OR (stale_reason IS NULL AND stale_since IS NULL))
    )
    """,
    # Append-only agent invocation log
    """
    CREATE TABLE IF NOT EXISTS agent_runs (
        id VARCHAR(36) PRIMARY KEY,
        business_id VARCHAR(36) NOT NULL REFERENCES businesses(id) ON DELETE CASCADE,
        agent_name VARCHAR(50) NOT NULL,
        status VARCHAR(20) NOT NULL,
        input JSONB NOT NULL DEFAULT '{}',
        output JSONB,
        error TEXT,
        started_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
        completed_at TIMESTAMPTZ
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_business_status ON businesses(status)",
    "CREATE INDEX IF NOT EXISTS idx_field_versions_stale ON field_versions(business_id) WHERE is_stale",
    "CREATE INDEX IF NOT EXISTS idx_agent_runs_business ON agent_runs(business_id, started_at)",
]


class BusinessStore(Protocol):
    """Persistence operations used by the pipeline and the staleness engine"""

    async def initialize(self) -> None: ...

    async def close(self) -> None: ...

    async def create_business(self, prompt: str) -> Business: ...

    async def get_business(self, business_id: str) -> Optional[Business]: ...

    async def update_business_fields(self, business_id: str, values: Dict[str, Any]) -> None: ...

    async def set_status(self, business_id: str, status: BusinessStatus,
                         current_agent: Optional[str] = None) -> None: ...

    async def set_current_agent(self, business_id: str, agent_name: Optional[str]) -> None: ...

    async def insert_agent_run(self, business_id: str, agent_name: str, input_data: Dict[str, Any],
                               status: AgentRunStatus = AgentRunStatus.RUNNING) -> str: ...

    async def update_agent_run(self, run_id: str, status: AgentRunStatus,
                               output: Optional[Dict[str, Any]] = None,
                               error: Optional[str] = None) -> None: ...

    async def get_agent_run(self, run_id: str) -> Optional[AgentRunRecord]: ...

    async def list_agent_runs(self, business_id: str) -> List[AgentRunRecord]: ...

    async def mark_fields_stale(self, business_id: str, fields: List[str], reason: str) -> None: ...

    async def clear_field_staleness(self, business_id: str, fields: List[str]) -> None: ...

    async def increment_field_version(self, business_id: str, field_name: str,
                                      content_hash: Optional[str]) -> None: ...

    async def upsert_field_version(self, business_id: str, field_name: str, is_stale: bool,
                                   stale_reason: Optional[str] = None,
                                   version: Optional[int] = None,
                                   content_hash: Optional[str] = None) -> None: ...

    async def list_field_versions(self, business_id: str,
                                  stale_only: bool = False) -> List[FieldVersionInfo]: ...

    async def set_stale_fields(self, business_id: str, fields: List[str]) -> None: ...


def _dump(value: Any) -> Optional[str]:
    return json.dumps(value) if value is not None else None


def _load(value: Any) -> Any:
    if value is None:
        return None
    return json.loads(value) if isinstance(value, str) else value


def normalize_field_values(values: Dict[Any, Any]) -> Dict[str, Any]:
    normalized = {
        (key.value if isinstance(key, BusinessField) else key): value
        for key, value in values.items()
    }
    unknown = [name for name in normalized if name not in FIELD_ORDER]
    if unknown:
        raise ValueError(f"Not a generated field: {unknown}")
    return normalized


class PostgresBusinessStore:
    def __init__(self, database_url: str, min_size: int = 2, max_size: int = 10,
                 pool: Optional[asyncpg.Pool] = None):
        self.database_url = database_url
        self.min_size = min_size
        self.max_size = max_size
        self.connection_pool: Optional[asyncpg.Pool] = pool

    async def initialize(self):
        """Initialize database connection pool and create tables"""
        if self.connection_pool is None:
            self.connection_pool = await asyncpg.create_pool(
                self.database_url,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=60
            )
        await self._create_schema()

    async def _create_schema(self):
        async with self.connection_pool.acquire() as conn:
            for statement in SCHEMA_STATEMENTS:
                await conn.execute(statement)

    async def close(self):
        if self.connection_pool:
            await self.connection_pool.close()

    async def create_business(self, prompt: str) -> Business:
        business_id = str(uuid.uuid4())

        async with self.connection_pool.acquire() as conn:
            row = await conn.fetchrow("""
                INSERT INTO businesses (id, prompt, status)
                VALUES ($1, $2, $3)
                RETURNING *
            """, business_id, prompt, BusinessStatus.PENDING.value)

        logger.info("Business created", business_id=business_id)
        return self._row_to_business(row)

    async def get_business(self, business_id: str) -> Optional[Business]:
        async with self.connection_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM businesses WHERE id = $1", business_id)

        if not row:
            return None
        return self._row_to_business(row)

    async def update_business_fields(self, business_id: str, values: Dict[str, Any]) -> None:
        """Persist generated field values; each call is its own committed write"""
        values = normalize_field_values(values)
        columns = list(values.keys())
        if not columns:
            return

        assignments = ", ".join(
            f"{column} = ${index}::jsonb" for index, column in enumerate(columns, start=2)
        )
        params = [_dump(values[column]) for column in columns]

        async with self.connection_pool.acquire() as conn:
            await conn.execute(
                f"UPDATE businesses SET {assignments}, updated_at = NOW() WHERE id = $1",
                business_id, *params
            )

    async def set_status(self, business_id: str, status: BusinessStatus,
                         current_agent: Optional[str] = None) -> None:
        async with self.connection_pool.acquire() as conn:
            await conn.execute("""
                UPDATE businesses
                SET status = $2, current_agent = $3, updated_at = NOW()
                WHERE id = $1
            """, business_id, status.value, current_agent)

    async def set_current_agent(self, business_id: str, agent_name: Optional[str]) -> None:
        async with self.connection_pool.acquire() as conn:
            await conn.execute("""
                UPDATE businesses SET current_agent = $2, updated_at = NOW() WHERE id = $1
            """, business_id, agent_name)

    async def insert_agent_run(self, business_id: str, agent_name: str, input_data: Dict[str, Any],
                               status: AgentRunStatus = AgentRunStatus.RUNNING) -> str:
        run_id = str(uuid.uuid4())

        async with self.connection_pool.acquire() as conn:
            await conn.execute("""
                INSERT INTO agent_runs (id, business_id, agent_name, status, input)
                VALUES ($1, $2, $3, $4, $5::jsonb)
            """, run_id, business_id, agent_name, status.value, json.dumps(input_data))

        return run_id

    async def update_agent_run(self, run_id: str, status: AgentRunStatus,
                               output: Optional[Dict[str, Any]] = None,
                               error: Optional[str] = None) -> None:
        finished = status in (AgentRunStatus.COMPLETED, AgentRunStatus.FAILED)

        async with self.connection_pool.acquire() as conn:
            await conn.execute("""
                UPDATE agent_runs
                SET status = $2,
                    output = COALESCE($3::jsonb, output),
                    error = COALESCE($4, error),
                    completed_at = CASE WHEN $5 THEN NOW() ELSE completed_at END
                WHERE id = $1
            """, run_id, status.value, _dump(output), error, finished)

    async def get_agent_run(self, run_id: str) -> Optional[AgentRunRecord]:
        async with self.connection_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM agent_runs WHERE id = $1", run_id)

        if not row:
            return None
        return self._row_to_agent_run(row)

    async def list_agent_runs(self, business_id: str) -> List[AgentRunRecord]:
        async with self.connection_pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM agent_runs WHERE business_id = $1 ORDER BY started_at
            """, business_id)

        return [self._row_to_agent_run(row) for row in rows]

    async def mark_fields_stale(self, business_id: str, fields: List[str], reason: str) -> None:
        """Mark fields stale and refresh the business aggregate in one transaction"""
        async with self.connection_pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("""
                    INSERT INTO field_versions
                        (business_id, field_name, is_stale, stale_reason, stale_since, updated_at)
                    SELECT $1, name, TRUE, $3, NOW(), NOW() FROM unnest($2::text[]) AS name
                    ON CONFLICT (business_id, field_name) DO UPDATE
                    SET is_stale = TRUE,
                        stale_reason = EXCLUDED.stale_reason,
                        stale_since = COALESCE(field_versions.stale_since, EXCLUDED.stale_since),
                        updated_at = NOW()
                """, business_id, list(fields), reason)
                await self._refresh_stale_fields(conn, business_id)

    async def clear_field_staleness(self, business_id: str, fields: List[str]) -> None:
        async with self.connection_pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("""
                    UPDATE field_versions
                    SET is_stale = FALSE, stale_reason = NULL, stale_since = NULL, updated_at = NOW()
                    WHERE business_id = $1 AND field_name = ANY($2::text[])
                """, business_id, list(fields))
                await self._refresh_stale_fields(conn, business_id)

    async def _refresh_stale_fields(self, conn, business_id: str):
        # Aggregate is derived from the per-field rows, in pipeline field order
        await conn.execute("""
            UPDATE businesses
            SET stale_fields = COALESCE((
                    SELECT jsonb_agg(field_name ORDER BY array_position($2::text[], field_name::text))
                    FROM field_versions
                    WHERE business_id = $1 AND is_stale
                ), '[]'::jsonb),
                updated_at = NOW()
            WHERE id = $1
        """, business_id, FIELD_ORDER)

    async def increment_field_version(self, business_id: str, field_name: str,
                                      content_hash: Optional[str]) -> None:
        async with self.connection_pool.acquire() as conn:
            await conn.execute("""
                INSERT INTO field_versions (business_id, field_name, version, content_hash, updated_at)
                VALUES ($1, $2, 1, $3, NOW())
                ON CONFLICT (business_id, field_name) DO UPDATE
                SET version = field_versions.version + 1,
                    content_hash = EXCLUDED.content_hash,
                    updated_at = NOW()
            """, business_id, field_name, content_hash)

    async def upsert_field_version(self, business_id: str, field_name: str, is_stale: bool,
                                   stale_reason: Optional[str] = None,
                                   version: Optional[int] = None,
                                   content_hash: Optional[str] = None) -> None:
        """Single-row write used by the manual staleness path and version seeding"""
        reason = stale_reason if is_stale else None

        async with self.connection_pool.acquire() as conn:
            await conn.execute("""
                INSERT INTO field_versions
                    (business_id, field_name, version, content_hash,
                     is_stale, stale_reason, stale_since, updated_at)
                VALUES ($1, $2, COALESCE($3::int, 1), $4::text, $5::boolean, $6::text,
                        CASE WHEN $5::boolean THEN NOW() ELSE NULL END, NOW())
                ON CONFLICT (business_id, field_name) DO UPDATE
                SET version = COALESCE($3::int, field_versions.version),
                    content_hash = COALESCE($4::text, field_versions.content_hash),
                    is_stale = $5::boolean,
                    stale_reason = $6::text,
                    stale_since = CASE WHEN $5::boolean
                        THEN COALESCE(field_versions.stale_since, NOW()) ELSE NULL END,
                    updated_at = NOW()
            """, business_id, field_name, version, content_hash, is_stale, reason)

    async def list_field_versions(self, business_id: str,
                                  stale_only: bool = False) -> List[FieldVersionInfo]:
        async with self.connection_pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM field_versions
                WHERE business_id = $1 AND (NOT $2 OR is_stale)
                ORDER BY array_position($3::text[], field_name::text)
            """, business_id, stale_only, FIELD_ORDER)

        return [self._row_to_field_version(row) for row in rows]

    async def set_stale_fields(self, business_id: str, fields: List[str]) -> None:
        async with self.connection_pool.acquire() as conn:
            await conn.execute("""
                UPDATE businesses SET stale_fields = $2::jsonb, updated_at = NOW() WHERE id = $1
            """, business_id, json.dumps(list(fields)))

    def _row_to_business(self, row) -> Business:
        values = {f.value: _load(row[f.value]) for f in GENERATED_FIELDS}
        return Business(
            id=row["id"],
            prompt=row["prompt"],
            status=BusinessStatus(row["status"]),
            current_agent=row["current_agent"],
            stale_fields=_load(row["stale_fields"]) or [],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            **values
        )

    def _row_to_agent_run(self, row) -> AgentRunRecord:
        return AgentRunRecord(
            run_id=row["id"],
            business_id=row["business_id"],
            agent_name=row["agent_name"],
            status=AgentRunStatus(row["status"]),
            input=_load(row["input"]) or {},
            output=_load(row["output"]),
            error=row["error"],
            started_at=row["started_at"],
            completed_at=row["completed_at"]
        )

    def _row_to_field_version(self, row) -> FieldVersionInfo:
        return FieldVersionInfo(
            business_id=row["business_id"],
            field_name=row["field_name"],
            version=row["version"],
            content_hash=row["content_hash"],
            is_stale=row["is_stale"],
            stale_reason=row["stale_reason"],
            stale_since=row["stale_since"],
            updated_at=row["updated_at"]
        )
