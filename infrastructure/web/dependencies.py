# infrastructure/web/dependencies.py
import asyncio
from dataclasses import dataclass, field
from typing import Any, Coroutine, Mapping, Optional, Set

from fastapi import Request

from application.orchestrators.agent_pipeline import AgentPipeline
from application.services.business_edit_service import BusinessEditService, StalenessDispatcher
from application.services.staleness_engine import StalenessEngine
from domain.models.fields import AgentName
from infrastructure.agents.base_agent import BusinessAgent
from infrastructure.agents.business_agents import build_default_agents
from infrastructure.agents.content_tool import MockBusinessContentTool
from infrastructure.storage.business_store import BusinessStore, PostgresBusinessStore
from infrastructure.storage.memory_store import InMemoryBusinessStore
from shared.config import AppConfig
from shared.logging import logger


@dataclass
class ServiceContainer:
    """Explicitly constructed services shared by the HTTP handlers"""
    config: AppConfig
    store: BusinessStore
    staleness_engine: StalenessEngine
    dispatcher: StalenessDispatcher
    edit_service: BusinessEditService
    pipeline: AgentPipeline
    running_tasks: Set[asyncio.Task] = field(default_factory=set)
    active_businesses: Set[str] = field(default_factory=set)

    def claim(self, business_id: str) -> bool:
        """Reserve a business for one pipeline run; False if one is already active"""
        if business_id in self.active_businesses:
            return False
        self.active_businesses.add(business_id)
        return True

    def spawn(self, business_id: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run a pipeline independently of the request that started it"""
        task = asyncio.create_task(coro)
        self.running_tasks.add(task)

        def _done(finished: asyncio.Task):
            self.running_tasks.discard(finished)
            self.active_businesses.discard(business_id)
            if not finished.cancelled() and finished.exception() is not None:
                logger.warning("Background pipeline ended with error",
                              business_id=business_id,
                              error=str(finished.exception()))

        task.add_done_callback(_done)
        return task

    async def shutdown(self):
        if self.running_tasks:
            await asyncio.gather(*list(self.running_tasks), return_exceptions=True)
        await self.dispatcher.drain()
        await self.store.close()


def build_store(config: AppConfig) -> BusinessStore:
    if config.storage_backend == "postgres":
        return PostgresBusinessStore(
            config.database_url,
            min_size=config.db_pool_min_size,
            max_size=config.db_pool_max_size
        )
    return InMemoryBusinessStore()


def build_container(config: AppConfig,
                    store: Optional[BusinessStore] = None,
                    agents: Optional[Mapping[AgentName, BusinessAgent]] = None) -> ServiceContainer:
    store = store or build_store(config)
    agents = agents or build_default_agents(
        MockBusinessContentTool(latency_seconds=config.agent_latency_seconds)
    )

    staleness_engine = StalenessEngine(store)
    dispatcher = StalenessDispatcher(staleness_engine, max_history=config.staleness_history_size)

    return ServiceContainer(
        config=config,
        store=store,
        staleness_engine=staleness_engine,
        dispatcher=dispatcher,
        edit_service=BusinessEditService(store, dispatcher),
        pipeline=AgentPipeline(store, agents, staleness_engine),
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container
