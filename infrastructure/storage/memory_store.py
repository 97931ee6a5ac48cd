# infrastructure/storage/memory_store.py
import copy
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List, Tuple

from domain.models.business_state import (
    Business,
    BusinessStatus,
    AgentRunRecord,
    AgentRunStatus,
    FieldVersionInfo,
)
from infrastructure.storage.business_store import FIELD_ORDER, normalize_field_values
from shared.logging import logger


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _field_position(name: str) -> int:
    return FIELD_ORDER.index(name) if name in FIELD_ORDER else len(FIELD_ORDER)


class InMemoryBusinessStore:
    """Process-local store with the same contract as the PostgreSQL store.

    Values are deep-copied on the way in and out so callers never share
    mutable state with the stored records.
    """

    def __init__(self):
        self._businesses: Dict[str, Business] = {}
        self._field_versions: Dict[Tuple[str, str], FieldVersionInfo] = {}
        self._agent_runs: Dict[str, AgentRunRecord] = {}

    async def initialize(self):
        logger.info("Using in-memory business store")

    async def close(self):
        pass

    async def create_business(self, prompt: str) -> Business:
        business_id = str(uuid.uuid4())
        now = _now()
        business = Business(
            id=business_id,
            prompt=prompt,
            status=BusinessStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self._businesses[business_id] = business
        logger.info("Business created", business_id=business_id)
        return copy.deepcopy(business)

    async def get_business(self, business_id: str) -> Optional[Business]:
        business = self._businesses.get(business_id)
        return copy.deepcopy(business) if business else None

    def _update(self, business_id: str, **changes):
        business = self._businesses.get(business_id)
        if business is None:
            return
        self._businesses[business_id] = replace(business, updated_at=_now(), **changes)

    async def update_business_fields(self, business_id: str, values: Dict[str, Any]) -> None:
        self._update(business_id, **copy.deepcopy(normalize_field_values(values)))

    async def set_status(self, business_id: str, status: BusinessStatus,
                         current_agent: Optional[str] = None) -> None:
        self._update(business_id, status=status, current_agent=current_agent)

    async def set_current_agent(self, business_id: str, agent_name: Optional[str]) -> None:
        self._update(business_id, current_agent=agent_name)

    async def insert_agent_run(self, business_id: str, agent_name: str, input_data: Dict[str, Any],
                               status: AgentRunStatus = AgentRunStatus.RUNNING) -> str:
        run_id = str(uuid.uuid4())
        self._agent_runs[run_id] = AgentRunRecord(
            run_id=run_id,
            business_id=business_id,
            agent_name=agent_name,
            status=status,
            input=copy.deepcopy(input_data),
            started_at=_now(),
        )
        return run_id

    async def update_agent_run(self, run_id: str, status: AgentRunStatus,
                               output: Optional[Dict[str, Any]] = None,
                               error: Optional[str] = None) -> None:
        run = self._agent_runs.get(run_id)
        if run is None:
            return
        finished = status in (AgentRunStatus.COMPLETED, AgentRunStatus.FAILED)
        self._agent_runs[run_id] = replace(
            run,
            status=status,
            output=copy.deepcopy(output) if output is not None else run.output,
            error=error if error is not None else run.error,
            completed_at=_now() if finished else run.completed_at,
        )

    async def get_agent_run(self, run_id: str) -> Optional[AgentRunRecord]:
        run = self._agent_runs.get(run_id)
        return copy.deepcopy(run) if run else None

    async def list_agent_runs(self, business_id: str) -> List[AgentRunRecord]:
        return [copy.deepcopy(r) for r in self._agent_runs.values() if r.business_id == business_id]

    async def mark_fields_stale(self, business_id: str, fields: List[str], reason: str) -> None:
        now = _now()
        for name in fields:
            current = self._field_versions.get((business_id, name))
            if current is None:
                current = FieldVersionInfo(business_id=business_id, field_name=name, version=1)
            self._field_versions[(business_id, name)] = replace(
                current,
                is_stale=True,
                stale_reason=reason,
                stale_since=current.stale_since or now,
                updated_at=now,
            )
        self._refresh_stale_fields(business_id)

    async def clear_field_staleness(self, business_id: str, fields: List[str]) -> None:
        now = _now()
        for name in fields:
            current = self._field_versions.get((business_id, name))
            if current is None:
                continue
            self._field_versions[(business_id, name)] = replace(
                current, is_stale=False, stale_reason=None, stale_since=None, updated_at=now
            )
        self._refresh_stale_fields(business_id)

    def _refresh_stale_fields(self, business_id: str):
        stale = [
            info.field_name for (owner, _), info in self._field_versions.items()
            if owner == business_id and info.is_stale
        ]
        self._update(business_id, stale_fields=sorted(stale, key=_field_position))

    async def increment_field_version(self, business_id: str, field_name: str,
                                      content_hash: Optional[str]) -> None:
        current = self._field_versions.get((business_id, field_name))
        if current is None:
            self._field_versions[(business_id, field_name)] = FieldVersionInfo(
                business_id=business_id,
                field_name=field_name,
                version=1,
                content_hash=content_hash,
                updated_at=_now(),
            )
            return
        self._field_versions[(business_id, field_name)] = replace(
            current, version=current.version + 1, content_hash=content_hash, updated_at=_now()
        )

    async def upsert_field_version(self, business_id: str, field_name: str, is_stale: bool,
                                   stale_reason: Optional[str] = None,
                                   version: Optional[int] = None,
                                   content_hash: Optional[str] = None) -> None:
        now = _now()
        current = self._field_versions.get((business_id, field_name))
        stale_since = None
        if is_stale:
            stale_since = current.stale_since if current and current.stale_since else now

        self._field_versions[(business_id, field_name)] = FieldVersionInfo(
            business_id=business_id,
            field_name=field_name,
            version=version if version is not None else (current.version if current else 1),
            content_hash=content_hash if content_hash is not None else (current.content_hash if current else None),
            is_stale=is_stale,
            stale_reason=stale_reason if is_stale else None,
            stale_since=stale_since,
            updated_at=now,
        )

    async def list_field_versions(self, business_id: str,
                                  stale_only: bool = False) -> List[FieldVersionInfo]:
        rows = [
            info for (owner, _), info in self._field_versions.items()
            if owner == business_id and (info.is_stale or not stale_only)
        ]
        return sorted(rows, key=lambda info: _field_position(info.field_name))

    async def set_stale_fields(self, business_id: str, fields: List[str]) -> None:
        self._update(business_id, stale_fields=list(fields))
