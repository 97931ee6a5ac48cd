# application/services/staleness_engine.py
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List

from domain.dependencies.change_detector import (
    analyze_change,
    has_content,
    hash_field_content,
    is_significant_change,
)
from domain.dependencies.graph import (
    get_affected_sections,
    get_downstream_dependents,
    get_subfield_dependents,
)
from domain.exceptions import StalenessBookkeepingError
from domain.models.business_state import Business, FieldVersionInfo
from domain.models.fields import GENERATED_FIELDS
from infrastructure.storage.business_store import BusinessStore
from shared.logging import logger, log_staleness_event

NO_CHANGE_REASON = "No change detected"
NOT_SIGNIFICANT_REASON = "Change not significant enough to trigger updates"
NO_DEPENDENTS_REASON = "No downstream dependents found"


@dataclass(frozen=True)
class MarkStaleOptions:
    business_id: str
    changed_field: str
    changed_by: str  # "user" or "agent:<name>"
    old_value: Any
    new_value: Any


@dataclass(frozen=True)
class MarkStaleResult:
    stale_fields: List[str] = field(default_factory=list)
    affected_sections: List[str] = field(default_factory=list)
    reason: str = ""


def build_stale_reason(changed_field: str, changed_by: str) -> str:
    if changed_by == "user":
        return f"'{changed_field}' was edited by user"
    return f"'{changed_field}' was updated by {changed_by}"


class StalenessEngine:
    """Tracks which generated fields are out of date with respect to their inputs"""

    def __init__(self, store: BusinessStore):
        self.store = store

    async def mark_dependents_stale(self, options: MarkStaleOptions) -> MarkStaleResult:
        """Mark every field derived from a changed field as stale"""
        analysis = analyze_change(options.old_value, options.new_value)

        if not analysis.has_change:
            return MarkStaleResult(reason=NO_CHANGE_REASON)

        if not is_significant_change(options.changed_field, analysis.changed_subfields):
            return MarkStaleResult(reason=NOT_SIGNIFICANT_REASON)

        stale_fields = get_downstream_dependents(options.changed_field)
        for dependent in get_subfield_dependents(options.changed_field, analysis.changed_subfields):
            if dependent not in stale_fields:
                stale_fields.append(dependent)

        if not stale_fields:
            return MarkStaleResult(reason=NO_DEPENDENTS_REASON)

        reason = build_stale_reason(options.changed_field, options.changed_by)

        try:
            await self.store.mark_fields_stale(options.business_id, stale_fields, reason)
        except Exception as e:
            logger.error("Failed to mark fields stale",
                        business_id=options.business_id,
                        fields=stale_fields,
                        error=str(e))
            await self._manual_mark_stale(options.business_id, stale_fields, reason)

        await self._bump_version(options.business_id, options.changed_field, analysis.new_hash)

        affected_sections = get_affected_sections(options.changed_field, analysis.changed_subfields)

        log_staleness_event(
            business_id=options.business_id,
            event_type="marked_stale",
            fields=stale_fields,
            reason=reason,
            additional_context={"affected_sections": affected_sections}
        )

        return MarkStaleResult(
            stale_fields=stale_fields,
            affected_sections=affected_sections,
            reason=reason
        )

    async def _manual_mark_stale(self, business_id: str, fields: List[str], reason: str):
        """Per-field fallback that reaches the same end state as the batch write"""
        try:
            for name in fields:
                await self.store.upsert_field_version(
                    business_id, name, is_stale=True, stale_reason=reason
                )
            await self._recompute_stale_fields(business_id)
        except Exception as e:
            raise StalenessBookkeepingError(
                f"Manual stale marking failed for {business_id}: {e}"
            ) from e

        log_staleness_event(business_id=business_id, event_type="manual_mark_fallback", fields=fields)

    async def clear_staleness(self, business_id: str, fields: List[str],
                              new_hashes: Optional[Dict[str, Optional[str]]] = None) -> None:
        """Clear staleness for regenerated fields and record their new versions"""
        if not fields:
            return

        try:
            await self.store.clear_field_staleness(business_id, fields)
        except Exception as e:
            logger.error("Failed to clear staleness",
                        business_id=business_id,
                        fields=fields,
                        error=str(e))
            await self._manual_clear_staleness(business_id, fields)

        hashes = new_hashes or {}
        for name in fields:
            await self._bump_version(business_id, name, hashes.get(name))

        log_staleness_event(business_id=business_id, event_type="cleared", fields=fields)

    async def _manual_clear_staleness(self, business_id: str, fields: List[str]):
        try:
            for name in fields:
                await self.store.upsert_field_version(business_id, name, is_stale=False)
            await self._recompute_stale_fields(business_id)
        except Exception as e:
            raise StalenessBookkeepingError(
                f"Manual staleness clear failed for {business_id}: {e}"
            ) from e

        log_staleness_event(business_id=business_id, event_type="manual_clear_fallback", fields=fields)

    async def _recompute_stale_fields(self, business_id: str):
        rows = await self.store.list_field_versions(business_id, stale_only=True)
        await self.store.set_stale_fields(business_id, [row.field_name for row in rows])

    async def _bump_version(self, business_id: str, field_name: str, content_hash: Optional[str]):
        try:
            await self.store.increment_field_version(business_id, field_name, content_hash)
        except Exception as e:
            raise StalenessBookkeepingError(
                f"Failed to bump version of '{field_name}' for {business_id}: {e}"
            ) from e

    async def get_staleness_info(self, business_id: str) -> List[FieldVersionInfo]:
        try:
            return await self.store.list_field_versions(business_id, stale_only=True)
        except Exception as e:
            logger.error("Failed to get staleness info", business_id=business_id, error=str(e))
            return []

    async def get_field_versions(self, business_id: str) -> Dict[str, FieldVersionInfo]:
        try:
            rows = await self.store.list_field_versions(business_id)
        except Exception as e:
            logger.error("Failed to get field versions", business_id=business_id, error=str(e))
            return {}

        return {row.field_name: row for row in rows}

    async def initialize_field_versions(self, business_id: str, business: Business) -> None:
        """Seed version 1 for every generated field that currently has content"""
        seeded = []
        for f in GENERATED_FIELDS:
            value = business.field_value(f)
            if not has_content(value):
                continue
            await self.store.upsert_field_version(
                business_id,
                f.value,
                is_stale=False,
                version=1,
                content_hash=hash_field_content(value)
            )
            seeded.append(f.value)

        log_staleness_event(business_id=business_id, event_type="initialized", fields=seeded)
