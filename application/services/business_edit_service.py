# application/services/business_edit_service.py
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List, Set, Tuple

import structlog

from application.services.staleness_engine import MarkStaleOptions, MarkStaleResult, StalenessEngine
from domain.dependencies.change_detector import FieldChange, detect_batch_changes
from domain.exceptions import BusinessNotFoundError, InvalidEditError
from domain.models.business_state import Business
from domain.models.fields import EDITABLE_FIELDS
from infrastructure.storage.business_store import BusinessStore
from shared.logging import logger

# Propagation failures are reported on their own channel
staleness_logger = structlog.get_logger().bind(channel="staleness")

EDITABLE_FIELD_NAMES = [f.value for f in EDITABLE_FIELDS]


@dataclass(frozen=True)
class PropagationFailure:
    options: MarkStaleOptions
    error: str
    failed_at: datetime
    attempts: int = 1


@dataclass(frozen=True)
class EditResult:
    business: Business
    changes: List[FieldChange] = field(default_factory=list)
    dispatched_fields: List[str] = field(default_factory=list)

    @property
    def changed_fields(self) -> List[str]:
        return [change.field for change in self.changes]


class StalenessDispatcher:
    """Runs staleness propagation outside the edit that triggered it.

    Each propagation is its own task. Failures are kept for inspection and
    can be retried without repeating the edit. Only the newest max_history
    results and failures are kept.
    """

    def __init__(self, engine: StalenessEngine, max_history: int = 500):
        self.engine = engine
        self.max_history = max_history
        self.failures: List[PropagationFailure] = []
        self.results: Dict[Tuple[str, str], MarkStaleResult] = {}
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def dispatch(self, options: MarkStaleOptions, attempts: int = 1) -> asyncio.Task:
        task = asyncio.create_task(self._propagate(options, attempts))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _propagate(self, options: MarkStaleOptions, attempts: int) -> Optional[MarkStaleResult]:
        try:
            result = await self.engine.mark_dependents_stale(options)
        except Exception as e:
            staleness_logger.error("Staleness propagation failed",
                                   business_id=options.business_id,
                                   changed_field=options.changed_field,
                                   attempts=attempts,
                                   error=str(e))
            self.failures.append(PropagationFailure(
                options=options,
                error=str(e),
                failed_at=datetime.now(timezone.utc),
                attempts=attempts
            ))
            del self.failures[:-self.max_history]
            return None

        key = (options.business_id, options.changed_field)
        # Re-inserting moves the key to the newest end
        self.results.pop(key, None)
        self.results[key] = result
        while len(self.results) > self.max_history:
            del self.results[next(iter(self.results))]
        return result

    def retry_failed(self) -> List[asyncio.Task]:
        """Re-dispatch every recorded failure"""
        failed, self.failures = self.failures, []
        return [self.dispatch(failure.options, attempts=failure.attempts + 1) for failure in failed]

    async def drain(self):
        """Wait for all in-flight propagations"""
        while self._pending:
            await asyncio.gather(*list(self._pending))


class BusinessEditService:
    """Applies user edits to generated fields"""

    def __init__(self, store: BusinessStore, dispatcher: StalenessDispatcher):
        self.store = store
        self.dispatcher = dispatcher

    async def apply_edits(self, business_id: str, updates: Dict[str, Any],
                          changed_by: str = "user") -> EditResult:
        """Persist the edit, then hand staleness propagation to the dispatcher"""
        invalid = [name for name in updates if name not in EDITABLE_FIELD_NAMES]
        if invalid:
            raise InvalidEditError(f"Fields cannot be edited: {', '.join(invalid)}")
        if not updates:
            raise InvalidEditError("No valid fields to update")

        business = await self.store.get_business(business_id)
        if business is None:
            raise BusinessNotFoundError(business_id)

        old_values = {name: business.field_value(name) for name in updates}
        await self.store.update_business_fields(business_id, updates)

        logger.info("Business fields updated",
                   business_id=business_id,
                   fields=list(updates.keys()),
                   changed_by=changed_by)

        changes = detect_batch_changes(old_values, updates, fields=list(updates.keys()))

        dispatched = []
        for change in changes:
            self.dispatcher.dispatch(MarkStaleOptions(
                business_id=business_id,
                changed_field=change.field,
                changed_by=changed_by,
                old_value=old_values[change.field],
                new_value=updates[change.field]
            ))
            dispatched.append(change.field)

        updated = await self.store.get_business(business_id)
        return EditResult(business=updated or business, changes=changes, dispatched_fields=dispatched)
