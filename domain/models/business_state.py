# domain/models/business_state.py
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List, Union
from datetime import datetime
from enum import Enum

from domain.models.fields import BusinessField, GENERATED_FIELDS


class BusinessStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class AgentRunStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# Agent name recorded for a tracked regeneration request
PARTIAL_PIPELINE_RUN = "partial_pipeline"


@dataclass(frozen=True)
class Business:
    """Immutable snapshot of a business record"""
    id: str
    prompt: str
    status: BusinessStatus
    current_agent: Optional[str] = None
    market_research: Optional[Dict[str, Any]] = None
    business_name: Optional[str] = None
    tagline: Optional[str] = None
    business_canvas: Optional[Dict[str, Any]] = None
    brand_colors: Optional[Dict[str, Any]] = None
    brand_voice: Optional[str] = None
    logo_url: Optional[str] = None
    website_structure: Optional[Dict[str, Any]] = None
    website_code: Optional[str] = None
    customer_journey: Optional[Dict[str, Any]] = None
    automation_flows: Optional[List[Dict[str, Any]]] = None
    stale_fields: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self.status == BusinessStatus.RUNNING

    def field_value(self, name: Union[str, BusinessField]) -> Any:
        field_name = BusinessField(name).value
        return getattr(self, field_name)

    def generated_values(self) -> Dict[str, Any]:
        """Current value of every generated field, keyed by field name"""
        return {f.value: getattr(self, f.value) for f in GENERATED_FIELDS}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "prompt": self.prompt,
            "status": self.status.value,
            "current_agent": self.current_agent,
            **self.generated_values(),
            "stale_fields": list(self.stale_fields),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class FieldVersionInfo:
    """Version and staleness bookkeeping for one field of one business"""
    business_id: str
    field_name: str
    version: int
    content_hash: Optional[str] = None
    is_stale: bool = False
    stale_reason: Optional[str] = None
    stale_since: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.is_stale and (self.stale_reason is not None or self.stale_since is not None):
            raise ValueError(
                f"Field '{self.field_name}' is not stale but carries a stale reason or timestamp"
            )
        if self.version < 0:
            raise ValueError("Field version cannot be negative")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field_name": self.field_name,
            "version": self.version,
            "content_hash": self.content_hash,
            "is_stale": self.is_stale,
            "stale_reason": self.stale_reason,
            "stale_since": self.stale_since.isoformat() if self.stale_since else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class AgentRunRecord:
    """Audit row for a single agent invocation"""
    run_id: str
    business_id: str
    agent_name: str
    status: AgentRunStatus
    input: Dict[str, Any]
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
