# tests/unit/application/orchestrators/test_agent_pipeline.py
import pytest
from unittest.mock import AsyncMock, MagicMock

from application.orchestrators.agent_pipeline import AgentPipeline
from application.services.staleness_engine import MarkStaleOptions, StalenessEngine
from domain.dependencies.change_detector import hash_field_content
from domain.exceptions import AgentExecutionError, BusinessNotFoundError
from domain.models.business_state import AgentRunStatus, BusinessStatus, PARTIAL_PIPELINE_RUN
from domain.models.fields import AgentName, GENERATED_FIELDS
from domain.models.pipeline_events import EventType


@pytest.fixture
def engine(store):
    return StalenessEngine(store)


@pytest.fixture
def pipeline(store, stub_agents, engine):
    return AgentPipeline(store, stub_agents, engine)


@pytest.fixture
def events():
    return []


async def generated_business(store, sample_outputs):
    business = await store.create_business("A coffee shop for remote workers")
    values = {}
    for outputs in sample_outputs.values():
        values.update(outputs)
    await store.update_business_fields(business.id, values)
    return await store.get_business(business.id)


def terminal(events):
    return [e for e in events if e.is_terminal]


class TestFullRun:
    """Test full generation from a prompt"""

    @pytest.mark.asyncio
    async def test_successful_run(self, store, pipeline, events, sample_outputs):
        business = await store.create_business("A coffee shop for remote workers")

        outputs = await pipeline.run_full(business.id, events.append)

        updated = await store.get_business(business.id)
        assert updated.status == BusinessStatus.COMPLETED
        assert updated.current_agent is None
        assert updated.business_name == "Brew Hub"
        assert updated.website_code == "<html></html>"
        assert all(updated.field_value(f) is not None for f in GENERATED_FIELDS)
        assert outputs["automation_flows"] == sample_outputs[AgentName.CONNECTOR]["automation_flows"]

        assert [e.type for e in events[:3]] == [
            EventType.AGENT_START, EventType.AGENT_PROGRESS, EventType.AGENT_COMPLETE
        ]
        assert [e.agent for e in events if e.type == EventType.AGENT_START] == [
            "scout", "strategist", "artist", "architect", "connector"
        ]
        assert events[0].message == "Scout is starting..."
        assert events[2].message == "Scout completed!"
        assert events[2].data == sample_outputs[AgentName.SCOUT]
        assert events[-1].type == EventType.GENERATION_COMPLETE
        assert events[-1].message == "All agents completed successfully!"
        assert len(terminal(events)) == 1

    @pytest.mark.asyncio
    async def test_agents_see_upstream_outputs(self, store, pipeline, stub_agents):
        business = await store.create_business("A coffee shop for remote workers")

        await pipeline.run_full(business.id)

        scout_context = stub_agents[AgentName.SCOUT].contexts[0]
        artist_context = stub_agents[AgentName.ARTIST].contexts[0]
        assert scout_context.previous_outputs == {}
        assert artist_context.output("business_name") == "Brew Hub"
        assert artist_context.output("brand_colors") is None
        assert artist_context.prompt == "A coffee shop for remote workers"

    @pytest.mark.asyncio
    async def test_agent_runs_are_recorded(self, store, pipeline):
        business = await store.create_business("A coffee shop for remote workers")

        await pipeline.run_full(business.id)

        runs = await store.list_agent_runs(business.id)
        assert [r.agent_name for r in runs] == ["scout", "strategist", "artist", "architect", "connector"]
        assert all(r.status == AgentRunStatus.COMPLETED for r in runs)
        assert all(r.completed_at is not None for r in runs)
        assert runs[0].input == {"prompt": "A coffee shop for remote workers", "previous_outputs": {}}

    @pytest.mark.asyncio
    async def test_field_versions_seeded_then_bumped(self, store, pipeline, engine):
        business = await store.create_business("A coffee shop for remote workers")

        await pipeline.run_full(business.id)
        first = await engine.get_field_versions(business.id)
        await pipeline.run_full(business.id)
        second = await engine.get_field_versions(business.id)

        assert set(first) == {f.value for f in GENERATED_FIELDS}
        assert all(info.version == 1 for info in first.values())
        assert all(info.version == 2 for info in second.values())
        assert second["tagline"].content_hash == hash_field_content("Work, fueled")

    @pytest.mark.asyncio
    async def test_agent_failure_stops_the_run(self, store, stub_agents, engine, make_stub_agent, events):
        stub_agents[AgentName.ARTIST] = make_stub_agent(AgentName.ARTIST, error=RuntimeError("Image service down"))
        pipeline = AgentPipeline(store, stub_agents, engine)
        business = await store.create_business("A coffee shop for remote workers")

        with pytest.raises(AgentExecutionError) as exc_info:
            await pipeline.run_full(business.id, events.append)

        assert exc_info.value.agent_name == "artist"

        updated = await store.get_business(business.id)
        assert updated.status == BusinessStatus.FAILED
        assert updated.current_agent is None
        assert updated.market_research is not None
        assert updated.business_name == "Brew Hub"
        assert updated.brand_colors is None
        assert stub_agents[AgentName.ARCHITECT].contexts == []
        assert stub_agents[AgentName.CONNECTOR].contexts == []

        errors = [e for e in events if e.type == EventType.AGENT_ERROR]
        assert [(e.agent, e.message) for e in errors] == [
            ("artist", "Image service down"),
            (None, "Image service down"),
        ]
        assert events[-1].agent is None
        assert len(terminal(events)) == 1

        runs = await store.list_agent_runs(business.id)
        assert runs[-1].agent_name == "artist"
        assert runs[-1].status == AgentRunStatus.FAILED
        assert runs[-1].error == "Image service down"

    @pytest.mark.asyncio
    async def test_error_without_message_uses_generic_text(self, store, stub_agents, engine, make_stub_agent,
                                                           events):
        stub_agents[AgentName.SCOUT] = make_stub_agent(AgentName.SCOUT, error=RuntimeError())
        pipeline = AgentPipeline(store, stub_agents, engine)
        business = await store.create_business("A bakery")

        with pytest.raises(AgentExecutionError):
            await pipeline.run_full(business.id, events.append)

        assert events[-1].message == "Agent failed"

    @pytest.mark.asyncio
    async def test_non_mapping_output_fails_the_agent(self, store, stub_agents, engine, make_stub_agent):
        stub_agents[AgentName.SCOUT] = make_stub_agent(AgentName.SCOUT, output="plain text")
        pipeline = AgentPipeline(store, stub_agents, engine)
        business = await store.create_business("A bakery")

        with pytest.raises(AgentExecutionError):
            await pipeline.run_full(business.id)

        assert (await store.get_business(business.id)).status == BusinessStatus.FAILED

    @pytest.mark.asyncio
    async def test_persist_failure_fails_the_agent_run(self, store, pipeline, events):
        business = await store.create_business("A coffee shop for remote workers")
        store.update_business_fields = AsyncMock(side_effect=RuntimeError("disk full"))

        with pytest.raises(AgentExecutionError) as exc_info:
            await pipeline.run_full(business.id, events.append)

        assert exc_info.value.agent_name == "scout"
        assert (await store.get_business(business.id)).status == BusinessStatus.FAILED

        runs = await store.list_agent_runs(business.id)
        assert [(r.agent_name, r.status) for r in runs] == [("scout", AgentRunStatus.FAILED)]
        assert runs[0].error == "disk full"

        assert EventType.AGENT_COMPLETE not in [e.type for e in events]
        errors = [e for e in events if e.type == EventType.AGENT_ERROR]
        assert [(e.agent, e.message) for e in errors] == [("scout", "disk full"), (None, "disk full")]

    @pytest.mark.asyncio
    async def test_unknown_business(self, pipeline, events, store):
        store.set_status = AsyncMock()

        with pytest.raises(BusinessNotFoundError):
            await pipeline.run_full("missing", events.append)

        assert len(events) == 1
        assert events[0].type == EventType.AGENT_ERROR
        assert events[0].agent is None
        assert events[0].message == "Business not found"
        store.set_status.assert_not_called()

    @pytest.mark.asyncio
    async def test_observer_errors_are_swallowed(self, store, pipeline):
        business = await store.create_business("A bakery")
        emit = MagicMock(side_effect=RuntimeError("client went away"))

        await pipeline.run_full(business.id, emit)

        assert emit.call_count == 16
        assert (await store.get_business(business.id)).status == BusinessStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_undeclared_output_keys_are_not_persisted(self, store, stub_agents, engine, make_stub_agent):
        output = {"market_research": {"industry": "Retail"}, "business_name": "Sneaky"}
        stub_agents[AgentName.SCOUT] = make_stub_agent(AgentName.SCOUT, output=output)
        pipeline = AgentPipeline(store, stub_agents, engine)
        business = await store.create_business("A bakery")

        await pipeline.run_partial(business.id, ["scout"])

        updated = await store.get_business(business.id)
        assert updated.market_research == {"industry": "Retail"}
        assert updated.business_name is None
        runs = await store.list_agent_runs(business.id)
        assert runs[0].output == output

    def test_every_agent_must_be_registered(self, store, stub_agents, engine):
        del stub_agents[AgentName.CONNECTOR]

        with pytest.raises(ValueError):
            AgentPipeline(store, stub_agents, engine)


class TestPartialRun:
    """Test regeneration of a subset of agents"""

    @pytest.mark.asyncio
    async def test_runs_requested_agents_in_order(self, store, pipeline, stub_agents, events, sample_outputs):
        business = await generated_business(store, sample_outputs)

        await pipeline.run_partial(business.id, ["connector", "architect"], events.append)

        assert [e.agent for e in events if e.type == EventType.AGENT_START] == ["architect", "connector"]
        assert stub_agents[AgentName.SCOUT].contexts == []
        assert stub_agents[AgentName.ARTIST].contexts == []
        assert events[0].message == "Architect is regenerating..."
        assert events[-1].message == "Partial regeneration completed!"
        assert len(terminal(events)) == 1

    @pytest.mark.asyncio
    async def test_skipped_agents_contribute_stored_values(self, store, pipeline, stub_agents, sample_outputs):
        business = await generated_business(store, sample_outputs)
        await store.update_business_fields(business.id, {"brand_voice": "Bold and loud"})

        await pipeline.run_partial(business.id, ["architect"])

        context = stub_agents[AgentName.ARCHITECT].contexts[0]
        assert context.output("brand_voice") == "Bold and loud"
        assert context.output("business_name") == "Brew Hub"

    @pytest.mark.asyncio
    async def test_regenerated_fields_are_no_longer_stale(self, store, pipeline, engine, sample_outputs):
        business = await generated_business(store, sample_outputs)
        await engine.initialize_field_versions(business.id, business)
        await engine.mark_dependents_stale(MarkStaleOptions(
            business_id=business.id,
            changed_field="brand_voice",
            changed_by="user",
            old_value="Calm and focused",
            new_value="Bold and loud",
        ))
        assert (await store.get_business(business.id)).stale_fields

        await pipeline.run_partial(business.id, ["architect", "connector"])

        updated = await store.get_business(business.id)
        assert updated.status == BusinessStatus.COMPLETED
        assert updated.stale_fields == []
        versions = await engine.get_field_versions(business.id)
        assert versions["website_code"].version == 2
        assert versions["website_code"].content_hash == hash_field_content("<html></html>")

    @pytest.mark.asyncio
    async def test_regenerate_fields_picks_producing_agents(self, store, pipeline, stub_agents, sample_outputs):
        business = await generated_business(store, sample_outputs)

        await pipeline.regenerate_fields(business.id, ["logo_url", "customer_journey", "prompt"])

        ran = [name for name, agent in stub_agents.items() if agent.contexts]
        assert sorted(a.value for a in ran) == ["artist", "connector"]

    @pytest.mark.asyncio
    async def test_partial_run_input(self, store, pipeline, sample_outputs):
        business = await generated_business(store, sample_outputs)

        await pipeline.run_partial(business.id, ["connector"])

        run = (await store.list_agent_runs(business.id))[0]
        assert run.input["type"] == "partial_regeneration"
        assert run.input["previous_outputs"]["business_name"] == "Brew Hub"

    @pytest.mark.asyncio
    async def test_failure_keeps_earlier_regenerated_fields(self, store, stub_agents, engine, make_stub_agent,
                                                            sample_outputs):
        stub_agents[AgentName.ARCHITECT] = make_stub_agent(
            AgentName.ARCHITECT,
            output={"website_structure": {"pages": []}, "website_code": "<html>v2</html>"},
        )
        stub_agents[AgentName.CONNECTOR] = make_stub_agent(AgentName.CONNECTOR, error=RuntimeError("CRM timeout"))
        pipeline = AgentPipeline(store, stub_agents, engine)
        business = await generated_business(store, sample_outputs)

        with pytest.raises(AgentExecutionError):
            await pipeline.run_partial(business.id, ["architect", "connector"])

        updated = await store.get_business(business.id)
        assert updated.status == BusinessStatus.FAILED
        assert updated.website_code == "<html>v2</html>"


class TestTrackingRun:
    """Test the record kept for a regeneration request"""

    @pytest.mark.asyncio
    async def test_tracking_run_completed(self, store, pipeline, sample_outputs):
        business = await generated_business(store, sample_outputs)
        run_id = await store.insert_agent_run(
            business.id, PARTIAL_PIPELINE_RUN, {"agents": ["artist"]}, status=AgentRunStatus.PENDING
        )

        await pipeline.run_partial(business.id, ["artist"], tracking_run_id=run_id)

        run = await store.get_agent_run(run_id)
        assert run.status == AgentRunStatus.COMPLETED
        assert run.output == {"agents": ["artist"]}
        assert run.completed_at is not None

    @pytest.mark.asyncio
    async def test_tracking_run_failed(self, store, stub_agents, engine, make_stub_agent, sample_outputs):
        stub_agents[AgentName.ARTIST] = make_stub_agent(AgentName.ARTIST, error=RuntimeError("Image service down"))
        pipeline = AgentPipeline(store, stub_agents, engine)
        business = await generated_business(store, sample_outputs)
        run_id = await store.insert_agent_run(
            business.id, PARTIAL_PIPELINE_RUN, {"agents": ["artist"]}, status=AgentRunStatus.PENDING
        )

        with pytest.raises(AgentExecutionError):
            await pipeline.run_partial(business.id, ["artist"], tracking_run_id=run_id)

        run = await store.get_agent_run(run_id)
        assert run.status == AgentRunStatus.FAILED
        assert run.error == "Image service down"
