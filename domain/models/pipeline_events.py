# domain/models/pipeline_events.py
from enum import Enum
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    AGENT_START = "agent_start"
    AGENT_PROGRESS = "agent_progress"
    AGENT_COMPLETE = "agent_complete"
    AGENT_ERROR = "agent_error"
    GENERATION_COMPLETE = "generation_complete"


class PipelineEvent(BaseModel):
    """Progress notification streamed to observers of a pipeline run"""
    type: EventType
    message: str
    agent: Optional[str] = None
    data: Optional[Any] = None
    progress: Optional[int] = Field(default=None, ge=0, le=100)

    @property
    def is_terminal(self) -> bool:
        # A tagged agent_error is followed by the untagged fatal one
        return self.type == EventType.GENERATION_COMPLETE or (
            self.type == EventType.AGENT_ERROR and self.agent is None
        )

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def agent_start(cls, agent: str, message: str) -> "PipelineEvent":
        return cls(type=EventType.AGENT_START, agent=agent, message=message)

    @classmethod
    def agent_progress(cls, agent: str, message: str, progress: int) -> "PipelineEvent":
        return cls(type=EventType.AGENT_PROGRESS, agent=agent, message=message, progress=progress)

    @classmethod
    def agent_complete(cls, agent: str, message: str, data: Any) -> "PipelineEvent":
        return cls(type=EventType.AGENT_COMPLETE, agent=agent, message=message, data=data)

    @classmethod
    def agent_error(cls, message: str, agent: Optional[str] = None) -> "PipelineEvent":
        return cls(type=EventType.AGENT_ERROR, agent=agent, message=message)

    @classmethod
    def generation_complete(cls, message: str) -> "PipelineEvent":
        return cls(type=EventType.GENERATION_COMPLETE, message=message)


# Observers receive events synchronously, in emission order
EventEmitter = Callable[[PipelineEvent], None]
