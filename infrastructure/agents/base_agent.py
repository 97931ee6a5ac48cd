# infrastructure/agents/base_agent.py
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Any, List

from domain.dependencies.graph import AGENT_OUTPUTS
from domain.models.agent_context import AgentContext
from domain.models.fields import AgentName
from domain.models.pipeline_events import PipelineEvent
from infrastructure.agents.content_tool import MockBusinessContentTool
from shared.logging import log_agent_execution


class BusinessAgent(ABC):
    """One pipeline stage: reads upstream outputs, returns its own fields"""

    name: AgentName

    def __init__(self, content_tool=None):
        self.content_tool = content_tool or MockBusinessContentTool()

    @property
    def display_name(self) -> str:
        return self.name.display_name

    @property
    def output_fields(self) -> List[str]:
        return [f.value for f in AGENT_OUTPUTS[self.name]]

    async def transform(self, context: AgentContext) -> Dict[str, Any]:
        """Run the agent; failures are logged and re-raised to the pipeline"""
        start_time = datetime.now(timezone.utc)

        try:
            result = await self._generate(context)
        except Exception as e:
            log_agent_execution(
                agent_name=self.name.value,
                business_id=context.business.id,
                execution_time_ms=self._elapsed_ms(start_time),
                success=False,
                error_message=str(e)
            )
            raise

        log_agent_execution(
            agent_name=self.name.value,
            business_id=context.business.id,
            execution_time_ms=self._elapsed_ms(start_time),
            success=True,
            output_fields=sorted(result.keys())
        )
        return result

    @abstractmethod
    async def _generate(self, context: AgentContext) -> Dict[str, Any]:
        ...

    def _progress(self, context: AgentContext, message: str, progress: int):
        context.emit(PipelineEvent.agent_progress(self.name.value, message, progress))

    def _require(self, context: AgentContext, *fields: str) -> Dict[str, Any]:
        missing = [f for f in fields if context.output(f) is None]
        if missing:
            raise ValueError(f"{self.display_name} requires {', '.join(missing)}")
        return {f: context.output(f) for f in fields}

    @staticmethod
    def _elapsed_ms(start_time: datetime) -> int:
        return int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)
