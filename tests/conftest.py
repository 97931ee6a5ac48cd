# tests/conftest.py
import copy
import pytest

from domain.models.fields import AgentName
from domain.models.pipeline_events import PipelineEvent
from infrastructure.storage.memory_store import InMemoryBusinessStore

SAMPLE_OUTPUTS = {
    AgentName.SCOUT: {
        "market_research": {
            "industry": "Food & Beverage",
            "target_audience": "Remote workers",
            "trends": ["Cold brew", "Loyalty apps"],
        },
    },
    AgentName.STRATEGIST: {
        "business_name": "Brew Hub",
        "tagline": "Work, fueled",
        "business_canvas": {
            "value_proposition": "A quiet cafe built for focus",
            "problem": "Cafes are loud and crowded",
            "solution": "Bookable desks with table service",
            "customer_segments": ["Remote workers", "Students"],
            "channels": ["Instagram"],
            "unfair_advantage": "Fastest wifi in town",
        },
    },
    AgentName.ARTIST: {
        "brand_colors": {
            "primary": "#6F4E37",
            "secondary": "#C8A27C",
            "accent": "#E07A5F",
            "background": "#FFFFFF",
            "text": "#1A1A1A",
        },
        "brand_voice": "Calm and focused",
        "logo_url": "https://example.com/logo.png",
    },
    AgentName.ARCHITECT: {
        "website_structure": {"pages": [{"name": "Home", "slug": "/", "sections": []}]},
        "website_code": "<html></html>",
    },
    AgentName.CONNECTOR: {
        "customer_journey": {"stages": [{"name": "Awareness"}]},
        "automation_flows": [{"name": "Welcome sequence"}],
    },
}


class StubAgent:
    """Agent double that records its contexts and returns canned output"""

    def __init__(self, name: AgentName, output=None, error=None):
        self.name = name
        self.output = output if output is not None else copy.deepcopy(SAMPLE_OUTPUTS[name])
        self.error = error
        self.contexts = []

    async def transform(self, context):
        self.contexts.append(context)
        context.emit(PipelineEvent.agent_progress(self.name.value, "Working...", 50))
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.output)


@pytest.fixture
def sample_outputs():
    return copy.deepcopy(SAMPLE_OUTPUTS)


@pytest.fixture
def store():
    """Fresh in-memory store per test"""
    return InMemoryBusinessStore()


@pytest.fixture
def stub_agents():
    return {name: StubAgent(name) for name in AgentName}


@pytest.fixture
def make_stub_agent():
    """Factory for agents with custom output or a failure"""
    return StubAgent
