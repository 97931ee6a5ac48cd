# domain/dependencies/change_detector.py
import hashlib
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

NULL_HASH = "null"
HASH_LENGTH = 16


class ChangeType(Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class ChangeAnalysis:
    has_change: bool
    changed_subfields: List[str]
    old_hash: str
    new_hash: str
    change_type: ChangeType


@dataclass(frozen=True)
class FieldChange:
    field: str
    analysis: ChangeAnalysis
    is_significant: bool


# Sub-keys whose edits always propagate; fields not listed here fail open
SIGNIFICANT_SUBFIELDS: Dict[str, List[str]] = {
    "business_canvas": [
        "unfair_advantage",
        "value_proposition",
        "problem",
        "solution",
        "customer_segments",
    ],
    "brand_colors": ["primary", "secondary", "accent"],
    "market_research": ["industry", "target_audience", "trends"],
}


def hash_field_content(value: Any) -> str:
    """Stable short digest of a field value, independent of key insertion order"""
    if value is None:
        return NULL_HASH

    canonical = json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def _kind(value: Any) -> str:
    # bool is checked before int since bool subclasses int
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def has_content(value: Any) -> bool:
    # Empty containers still count as present content
    if isinstance(value, (list, tuple, dict)):
        return True
    return bool(value)


def has_semantic_change(old_value: Any, new_value: Any) -> bool:
    if old_value is None and new_value is None:
        return False
    if old_value is None or new_value is None:
        return True

    kind = _kind(old_value)
    if kind != _kind(new_value):
        return True

    if kind == "string":
        return old_value.strip().lower() != new_value.strip().lower()

    if kind in ("number", "boolean"):
        return old_value != new_value

    if kind == "array":
        if len(old_value) != len(new_value):
            return True
        return any(has_semantic_change(o, n) for o, n in zip(old_value, new_value))

    return hash_field_content(old_value) != hash_field_content(new_value)


def detect_subfield_changes(
    old_value: Optional[Dict[str, Any]],
    new_value: Optional[Dict[str, Any]],
) -> List[str]:
    """Top-level keys whose values differ between two objects"""
    if not old_value and not new_value:
        return []
    if not old_value or not new_value:
        return list((old_value or new_value or {}).keys())

    keys = list(old_value.keys()) + [k for k in new_value.keys() if k not in old_value]
    return [k for k in keys if has_semantic_change(old_value.get(k), new_value.get(k))]


def analyze_change(old_value: Any, new_value: Any) -> ChangeAnalysis:
    old_hash = hash_field_content(old_value)
    new_hash = hash_field_content(new_value)
    has_change = old_hash != new_hash

    if not has_content(old_value) and has_content(new_value):
        change_type = ChangeType.CREATED
    elif has_content(old_value) and not has_content(new_value):
        change_type = ChangeType.DELETED
    elif has_change:
        change_type = ChangeType.UPDATED
    else:
        change_type = ChangeType.UNCHANGED

    changed_subfields: List[str] = []
    if isinstance(old_value, dict) and isinstance(new_value, dict):
        changed_subfields = detect_subfield_changes(old_value, new_value)

    return ChangeAnalysis(
        has_change=has_change,
        changed_subfields=changed_subfields,
        old_hash=old_hash,
        new_hash=new_hash,
        change_type=change_type,
    )


def is_significant_change(field_name: str, changed_subfields: Optional[List[str]] = None) -> bool:
    if not changed_subfields:
        return True

    significant = SIGNIFICANT_SUBFIELDS.get(field_name)
    if significant is None:
        return True

    return any(sub in significant for sub in changed_subfields)


def detect_batch_changes(
    old_data: Dict[str, Any],
    new_data: Dict[str, Any],
    fields: Optional[Iterable[str]] = None,
) -> List[FieldChange]:
    """Changed fields across two record versions, with significance"""
    if fields is not None:
        names = list(fields)
    else:
        names = list(old_data.keys()) + [k for k in new_data.keys() if k not in old_data]
    changes: List[FieldChange] = []

    for name in names:
        analysis = analyze_change(old_data.get(name), new_data.get(name))
        if analysis.has_change:
            changes.append(
                FieldChange(
                    field=name,
                    analysis=analysis,
                    is_significant=is_significant_change(name, analysis.changed_subfields),
                )
            )

    return changes
