# domain/models/agent_context.py
from dataclasses import dataclass
from typing import Dict, Any, Optional

from domain.models.business_state import Business
from domain.models.pipeline_events import EventEmitter


@dataclass(frozen=True)
class AgentContext:
    """Immutable input handed to an agent for one invocation"""
    business: Business
    previous_outputs: Dict[str, Any]
    emit: EventEmitter

    @property
    def prompt(self) -> str:
        return self.business.prompt

    def output(self, field_name: str) -> Optional[Any]:
        """Upstream value produced earlier in this run, or the stored one"""
        return self.previous_outputs.get(field_name)
