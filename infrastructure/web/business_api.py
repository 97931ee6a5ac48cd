# infrastructure/web/business_api.py
from fastapi import APIRouter, HTTPException, Depends, Query
from fastapi.responses import StreamingResponse
from typing import Dict, Any, Optional, List
from pydantic import BaseModel, Field

from domain.dependencies.graph import can_regenerate, get_agents_to_run, order_agents
from domain.exceptions import BusinessNotFoundError, InvalidEditError
from domain.models.business_state import AgentRunStatus, Business, PARTIAL_PIPELINE_RUN
from domain.models.fields import EDITABLE_FIELDS
from infrastructure.web.dependencies import ServiceContainer, get_container
from infrastructure.web.event_stream import QueueEventSink, sse_stream
from shared.logging import logger

router = APIRouter(tags=["businesses"])

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"}


class GenerateRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=5000)


class GenerateResponse(BaseModel):
    id: str
    status: str
    stream_url: str


class RegenerateRequest(BaseModel):
    fields: Optional[List[str]] = None
    agents: Optional[List[str]] = None
    trigger: Optional[str] = None


class RegenerateResponse(BaseModel):
    message: Optional[str] = None
    run_id: Optional[str] = None
    business_id: Optional[str] = None
    agents_to_run: List[str] = []
    stream_url: Optional[str] = None


class StalenessStatusResponse(BaseModel):
    business_id: str
    status: str
    stale_fields: List[str]
    field_versions: Dict[str, Dict[str, Any]]
    regenerable_fields: List[str]


async def _require_business(container: ServiceContainer, business_id: str) -> Business:
    business = await container.store.get_business(business_id)
    if business is None:
        raise HTTPException(status_code=404, detail="Business not found")
    return business


def _ensure_idle(container: ServiceContainer, business: Business):
    if business.is_running or not container.claim(business.id):
        raise HTTPException(status_code=409, detail="Generation already in progress")


@router.post("/businesses", response_model=GenerateResponse)
async def create_business(
    request: GenerateRequest,
    container: ServiceContainer = Depends(get_container)
):
    """Create a business from a prompt; generation starts when the stream is opened"""
    prompt = request.prompt.strip()
    if not prompt:
        raise HTTPException(status_code=400, detail="Prompt is required")

    try:
        business = await container.store.create_business(prompt)
        return GenerateResponse(
            id=business.id,
            status=business.status.value,
            stream_url=f"/generate/{business.id}/stream"
        )
    except Exception as e:
        logger.error("Failed to create business", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to create business")


@router.get("/businesses/{business_id}")
async def get_business(
    business_id: str,
    container: ServiceContainer = Depends(get_container)
):
    business = await _require_business(container, business_id)
    return business.to_dict()


@router.patch("/businesses/{business_id}")
async def update_business(
    business_id: str,
    updates: Dict[str, Any],
    container: ServiceContainer = Depends(get_container)
):
    """Edit generated fields; dependents are marked stale in the background"""
    editable = {name: value for name, value in updates.items()
                if name in {f.value for f in EDITABLE_FIELDS}}
    if not editable:
        raise HTTPException(status_code=400, detail="No valid fields to update")

    try:
        result = await container.edit_service.apply_edits(business_id, editable)

        return {
            "business": result.business.to_dict(),
            "changed_fields": result.changed_fields,
            "dispatched_fields": result.dispatched_fields
        }

    except BusinessNotFoundError:
        raise HTTPException(status_code=404, detail="Business not found")
    except InvalidEditError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error("Failed to update business", business_id=business_id, error=str(e))
        raise HTTPException(status_code=500, detail="Failed to update business")


@router.get("/generate/{business_id}/stream")
async def stream_generation(
    business_id: str,
    container: ServiceContainer = Depends(get_container)
):
    """Run the full pipeline and stream its progress as server-sent events"""
    business = await _require_business(container, business_id)
    _ensure_idle(container, business)

    sink = QueueEventSink(container.config.event_queue_size)
    task = container.spawn(business_id, container.pipeline.run_full(business_id, sink))

    return StreamingResponse(sse_stream(sink, task), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/regenerate/{business_id}", response_model=RegenerateResponse)
async def request_regeneration(
    business_id: str,
    request: RegenerateRequest,
    container: ServiceContainer = Depends(get_container)
):
    """Resolve which agents to re-run and record a pending regeneration"""
    try:
        business = await _require_business(container, business_id)
        if business.is_running:
            raise HTTPException(status_code=409, detail="Generation already in progress")

        if request.agents:
            agents_to_run = order_agents(request.agents)
        elif request.fields:
            agents_to_run = get_agents_to_run(request.fields)
        else:
            agents_to_run = get_agents_to_run(business.stale_fields)

        if not agents_to_run:
            return RegenerateResponse(message="Nothing to regenerate", business_id=business_id)

        agent_values = [a.value for a in agents_to_run]
        run_id = await container.store.insert_agent_run(
            business_id,
            PARTIAL_PIPELINE_RUN,
            {
                "agents": agent_values,
                "fields": request.fields or business.stale_fields,
                "trigger": request.trigger or "manual"
            },
            status=AgentRunStatus.PENDING
        )

        logger.info("Regeneration requested",
                   business_id=business_id,
                   run_id=run_id,
                   agents=agent_values)

        return RegenerateResponse(
            run_id=run_id,
            business_id=business_id,
            agents_to_run=agent_values,
            stream_url=f"/regenerate/{business_id}/stream?run_id={run_id}&agents={','.join(agent_values)}"
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error("Failed to request regeneration", business_id=business_id, error=str(e))
        raise HTTPException(status_code=500, detail="Failed to request regeneration")


@router.get("/regenerate/{business_id}/stream")
async def stream_regeneration(
    business_id: str,
    run_id: Optional[str] = Query(default=None),
    agents: Optional[str] = Query(default=None),
    container: ServiceContainer = Depends(get_container)
):
    """Run a partial pipeline and stream its progress"""
    business = await _require_business(container, business_id)

    if run_id:
        run = await container.store.get_agent_run(run_id)
        if run is None or run.business_id != business_id:
            raise HTTPException(status_code=404, detail="Regeneration run not found")
        # A requested run streams once, with the agents fixed at request time
        if run.status != AgentRunStatus.PENDING:
            raise HTTPException(status_code=409, detail="Regeneration run already started")
        agents_to_run = order_agents(run.input.get("agents", []))
    elif agents:
        agents_to_run = order_agents(a.strip() for a in agents.split(","))
    else:
        agents_to_run = get_agents_to_run(business.stale_fields)

    if not agents_to_run:
        raise HTTPException(status_code=400, detail="No agents to run")

    _ensure_idle(container, business)

    sink = QueueEventSink(container.config.event_queue_size)
    task = container.spawn(
        business_id,
        container.pipeline.run_partial(business_id, agents_to_run, sink, tracking_run_id=run_id)
    )

    return StreamingResponse(sse_stream(sink, task), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/regenerate/{business_id}", response_model=StalenessStatusResponse)
async def get_staleness_status(
    business_id: str,
    container: ServiceContainer = Depends(get_container)
):
    """What is out of date, and what can be regenerated right now"""
    business = await _require_business(container, business_id)
    versions = await container.staleness_engine.get_field_versions(business_id)

    stale = list(business.stale_fields)
    return StalenessStatusResponse(
        business_id=business_id,
        status=business.status.value,
        stale_fields=stale,
        field_versions={name: info.to_dict() for name, info in versions.items()},
        regenerable_fields=[name for name in stale if can_regenerate(name, stale)]
    )
