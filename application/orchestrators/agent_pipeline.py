# application/orchestrators/agent_pipeline.py
from dataclasses import dataclass
from typing import Dict, Any, Optional, List, Iterable, Mapping, Callable, Union

from application.orchestrators.event_sink import SafeEmitter
from application.services.staleness_engine import StalenessEngine
from domain.dependencies.change_detector import hash_field_content
from domain.dependencies.graph import AGENT_ORDER, AGENT_OUTPUTS, get_agents_to_run, order_agents
from domain.exceptions import AgentExecutionError, BusinessNotFoundError
from domain.models.agent_context import AgentContext
from domain.models.business_state import AgentRunStatus, Business, BusinessStatus
from domain.models.fields import AgentName
from domain.models.pipeline_events import EventEmitter, PipelineEvent
from infrastructure.agents.base_agent import BusinessAgent
from infrastructure.storage.business_store import BusinessStore
from shared.logging import logger


@dataclass(frozen=True)
class RunMessages:
    """User-facing progress text for one kind of pipeline run"""
    agent_start: str
    agent_complete: str
    finished: str
    failed: str


FULL_RUN_MESSAGES = RunMessages(
    agent_start="{name} is starting...",
    agent_complete="{name} completed!",
    finished="All agents completed successfully!",
    failed="Generation failed",
)

PARTIAL_RUN_MESSAGES = RunMessages(
    agent_start="{name} is regenerating...",
    agent_complete="{name} regenerated!",
    finished="Partial regeneration completed!",
    failed="Regeneration failed",
)

AGENT_FAILED_MESSAGE = "Agent failed"
BUSINESS_NOT_FOUND_MESSAGE = "Business not found"

RunInputBuilder = Callable[[Dict[str, Any]], Dict[str, Any]]


class AgentPipeline:
    """Runs the five agents in order, persisting and streaming as it goes"""

    def __init__(self,
                 store: BusinessStore,
                 agents: Mapping[AgentName, BusinessAgent],
                 staleness_engine: StalenessEngine):
        missing = [name.value for name in AGENT_ORDER if name not in agents]
        if missing:
            raise ValueError(f"No agent registered for: {missing}")

        self.store = store
        self.agents = agents
        self.staleness_engine = staleness_engine

    async def run_full(self, business_id: str,
                       emit: Optional[EventEmitter] = None) -> Dict[str, Any]:
        """Generate every field from the prompt"""
        emitter = SafeEmitter(emit)
        business = await self._load_business(business_id, emitter)

        logger.info("Starting agent pipeline", business_id=business_id)

        outputs: Dict[str, Any] = {}

        def run_input(current: Dict[str, Any]) -> Dict[str, Any]:
            return {"prompt": business.prompt, "previous_outputs": dict(current)}

        async def finalize():
            await self._record_field_versions(business_id, outputs)

        await self._execute(
            business, AGENT_ORDER, outputs, emitter, FULL_RUN_MESSAGES,
            run_input, finalize=finalize
        )
        return outputs

    async def run_partial(self, business_id: str,
                          agents_to_run: Iterable[Union[str, AgentName]],
                          emit: Optional[EventEmitter] = None,
                          tracking_run_id: Optional[str] = None) -> Dict[str, Any]:
        """Re-run a subset of agents against the last persisted field values"""
        emitter = SafeEmitter(emit)
        business = await self._load_business(business_id, emitter)
        agent_names = order_agents(agents_to_run)

        logger.info("Starting partial pipeline",
                   business_id=business_id,
                   agents=[a.value for a in agent_names])

        # Skipped agents contribute their stored values
        outputs: Dict[str, Any] = business.generated_values()

        def run_input(current: Dict[str, Any]) -> Dict[str, Any]:
            return {"type": "partial_regeneration", "previous_outputs": dict(current)}

        async def after_agent(produced: Dict[str, Any]):
            hashes = {name: hash_field_content(value)
                      for name, value in produced.items() if value is not None}
            await self._clear_staleness_safely(business_id, list(produced.keys()), hashes)

        if tracking_run_id:
            await self._update_tracking_run(tracking_run_id, AgentRunStatus.RUNNING)

        try:
            await self._execute(
                business, agent_names, outputs, emitter, PARTIAL_RUN_MESSAGES,
                run_input, after_agent=after_agent
            )
        except Exception as e:
            if tracking_run_id:
                await self._update_tracking_run(tracking_run_id, AgentRunStatus.FAILED, error=str(e))
            raise

        if tracking_run_id:
            await self._update_tracking_run(
                tracking_run_id, AgentRunStatus.COMPLETED,
                output={"agents": [a.value for a in agent_names]}
            )
        return outputs

    async def regenerate_fields(self, business_id: str, fields: Iterable[str],
                                emit: Optional[EventEmitter] = None) -> Dict[str, Any]:
        """Regenerate specific fields by running the agents that produce them"""
        agent_names = get_agents_to_run(fields)
        return await self.run_partial(business_id, agent_names, emit)

    async def _load_business(self, business_id: str, emit: EventEmitter) -> Business:
        business = await self.store.get_business(business_id)
        if business is None:
            logger.error("Pipeline requested for unknown business", business_id=business_id)
            emit(PipelineEvent.agent_error(BUSINESS_NOT_FOUND_MESSAGE))
            raise BusinessNotFoundError(business_id)
        return business

    async def _execute(self,
                       business: Business,
                       agent_names: List[AgentName],
                       outputs: Dict[str, Any],
                       emit: EventEmitter,
                       messages: RunMessages,
                       run_input: RunInputBuilder,
                       after_agent=None,
                       finalize=None):
        """Shared run loop; the business always ends completed or failed"""
        business_id = business.id

        try:
            await self.store.set_status(business_id, BusinessStatus.RUNNING)

            for agent_name in agent_names:
                produced = await self._run_agent(
                    business, agent_name, outputs, emit, messages, run_input
                )
                if after_agent is not None:
                    await after_agent(produced)

            if finalize is not None:
                await finalize()

            await self.store.set_status(business_id, BusinessStatus.COMPLETED, current_agent=None)
            emit(PipelineEvent.generation_complete(messages.finished))

            logger.info("Pipeline completed",
                       business_id=business_id,
                       agents=[a.value for a in agent_names])

        except Exception as e:
            logger.error("Pipeline failed", business_id=business_id, error=str(e))
            await self._mark_failed(business_id)
            emit(PipelineEvent.agent_error(str(e) or messages.failed))
            raise

    async def _run_agent(self,
                         business: Business,
                         agent_name: AgentName,
                         outputs: Dict[str, Any],
                         emit: EventEmitter,
                         messages: RunMessages,
                         run_input: RunInputBuilder) -> Dict[str, Any]:
        agent = self.agents[agent_name]
        display_name = agent_name.display_name

        emit(PipelineEvent.agent_start(agent_name.value, messages.agent_start.format(name=display_name)))
        await self.store.set_current_agent(business.id, agent_name.value)
        run_id = await self.store.insert_agent_run(business.id, agent_name.value, run_input(outputs))

        context = AgentContext(business=business, previous_outputs=dict(outputs), emit=emit)

        try:
            result = await agent.transform(context)
            if not isinstance(result, dict):
                raise TypeError(f"{display_name} returned {type(result).__name__}, expected a mapping")

            # Only declared output fields are merged and persisted
            produced = {
                f.value: result[f.value] for f in AGENT_OUTPUTS[agent_name] if f.value in result
            }
            if produced:
                await self.store.update_business_fields(business.id, produced)
            await self.store.update_agent_run(run_id, AgentRunStatus.COMPLETED, output=result)
        except Exception as e:
            message = str(e) or AGENT_FAILED_MESSAGE
            try:
                await self.store.update_agent_run(run_id, AgentRunStatus.FAILED, error=message)
            except Exception as store_error:
                logger.error("Failed to record agent failure",
                            business_id=business.id,
                            agent_name=agent_name.value,
                            error=str(store_error))
            emit(PipelineEvent.agent_error(message, agent=agent_name.value))
            raise AgentExecutionError(agent_name.value, message) from e

        outputs.update(produced)
        emit(PipelineEvent.agent_complete(
            agent_name.value,
            messages.agent_complete.format(name=display_name),
            data=result
        ))
        return produced

    async def _mark_failed(self, business_id: str):
        try:
            await self.store.set_status(business_id, BusinessStatus.FAILED, current_agent=None)
        except Exception as e:
            logger.error("Failed to mark business as failed", business_id=business_id, error=str(e))

    async def _clear_staleness_safely(self, business_id: str, fields: List[str],
                                      hashes: Dict[str, Optional[str]]):
        try:
            await self.staleness_engine.clear_staleness(business_id, fields, hashes)
        except Exception as e:
            logger.error("Failed to clear staleness after regeneration",
                        business_id=business_id,
                        fields=fields,
                        error=str(e))

    async def _record_field_versions(self, business_id: str, outputs: Dict[str, Any]):
        """Seed versions on the first run, otherwise bump the regenerated fields"""
        try:
            existing = await self.staleness_engine.get_field_versions(business_id)
            if not existing:
                business = await self.store.get_business(business_id)
                if business is not None:
                    await self.staleness_engine.initialize_field_versions(business_id, business)
                return

            hashes = {name: hash_field_content(value)
                      for name, value in outputs.items() if value is not None}
            await self.staleness_engine.clear_staleness(business_id, list(outputs.keys()), hashes)
        except Exception as e:
            logger.error("Failed to record field versions", business_id=business_id, error=str(e))

    async def _update_tracking_run(self, run_id: str, status: AgentRunStatus,
                                   output: Optional[Dict[str, Any]] = None,
                                   error: Optional[str] = None):
        try:
            await self.store.update_agent_run(run_id, status, output=output, error=error)
        except Exception as e:
            logger.error("Failed to update regeneration run", run_id=run_id, error=str(e))
