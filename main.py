# main.py
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Mapping, Optional

from fastapi import FastAPI, Request

# Internal imports
from domain.models.fields import AgentName
from infrastructure.agents.base_agent import BusinessAgent
from infrastructure.storage.business_store import BusinessStore
from infrastructure.web.business_api import router as business_router
from infrastructure.web.dependencies import build_container
from shared.config import AppConfig
from shared.logging import logger, setup_logging

APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    container = app.state.container
    config = container.config

    # Startup
    setup_logging(level=config.log_level, json_logs=config.json_logs)
    logger.info("Starting Business Forge", storage_backend=config.storage_backend)

    try:
        await container.store.initialize()
        logger.info("Application initialized successfully")
    except Exception as e:
        logger.error("Failed to initialize application", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("Shutting down Business Forge",
               running_pipelines=len(container.running_tasks),
               pending_staleness_updates=container.dispatcher.pending_count)
    await container.shutdown()


def create_app(config: Optional[AppConfig] = None,
               store: Optional[BusinessStore] = None,
               agents: Optional[Mapping[AgentName, BusinessAgent]] = None) -> FastAPI:
    config = config or AppConfig.from_env()

    app = FastAPI(
        title="Business Forge",
        description="Prompt-to-business generation with dependency-aware regeneration",
        version=APP_VERSION,
        lifespan=lifespan
    )
    app.state.container = build_container(config, store=store, agents=agents)
    app.include_router(business_router)

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint"""
        container = request.app.state.container
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": APP_VERSION,
            "storage_backend": container.config.storage_backend,
            "running_pipelines": len(container.running_tasks),
            "failed_staleness_updates": len(container.dispatcher.failures)
        }

    @app.get("/")
    async def root():
        """Root endpoint with API information"""
        return {
            "name": "Business Forge",
            "version": APP_VERSION,
            "description": "Five-agent business generation with targeted regeneration",
            "endpoints": {
                "create": "/businesses",
                "generate_stream": "/generate/{business_id}/stream",
                "edit": "/businesses/{business_id}",
                "regenerate": "/regenerate/{business_id}",
                "regenerate_stream": "/regenerate/{business_id}/stream",
                "health": "/health"
            }
        }

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    settings = AppConfig.from_env()
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower()
    )
