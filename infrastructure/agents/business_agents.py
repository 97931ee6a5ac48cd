# infrastructure/agents/business_agents.py
from typing import Dict, Any

from domain.models.agent_context import AgentContext
from domain.models.fields import AgentName
from infrastructure.agents.base_agent import BusinessAgent
from infrastructure.agents.content_tool import MockBusinessContentTool
from shared.logging import logger


class ScoutAgent(BusinessAgent):
    """Market research from the raw prompt"""

    name = AgentName.SCOUT

    async def _generate(self, context: AgentContext) -> Dict[str, Any]:
        self._progress(context, "Starting market research...", 0)
        self._progress(context, "Searching for industry trends...", 20)

        research = await self.content_tool.research_market(context.prompt)

        self._progress(context, "Analyzing market data...", 60)
        self._progress(context, "Market research complete!", 100)
        return {"market_research": research}


class StrategistAgent(BusinessAgent):
    """Name, tagline and business model canvas"""

    name = AgentName.STRATEGIST

    async def _generate(self, context: AgentContext) -> Dict[str, Any]:
        inputs = self._require(context, "market_research")
        self._progress(context, "Analyzing business opportunity...", 0)
        self._progress(context, "Crafting business model...", 30)

        strategy = await self.content_tool.draft_strategy(context.prompt, inputs["market_research"])

        self._progress(context, "Defining revenue model...", 60)
        self._progress(context, "Business strategy complete!", 100)
        return {
            "business_name": strategy["business_name"],
            "tagline": strategy["tagline"],
            "business_canvas": strategy["business_canvas"],
        }


class ArtistAgent(BusinessAgent):
    """Brand colors, voice and logo"""

    name = AgentName.ARTIST

    async def _generate(self, context: AgentContext) -> Dict[str, Any]:
        inputs = self._require(context, "market_research", "business_name", "business_canvas")
        self._progress(context, "Designing brand identity...", 0)
        self._progress(context, "Selecting color palette...", 20)

        design = await self.content_tool.design_brand(
            context.prompt, inputs["business_name"], inputs["business_canvas"]
        )

        self._progress(context, "Generating logo...", 50)
        # The logo is optional; a failed image generation leaves it empty
        logo_url = None
        try:
            logo_url = await self.content_tool.generate_logo(design["logo_prompt"])
        except Exception as e:
            logger.warning("Logo generation failed",
                          business_id=context.business.id,
                          error=str(e))

        self._progress(context, "Brand identity complete!", 100)
        return {
            "brand_colors": design["brand_colors"],
            "brand_voice": design["brand_voice"],
            "logo_url": logo_url,
        }


class ArchitectAgent(BusinessAgent):
    """Website structure and the rendered website code"""

    name = AgentName.ARCHITECT

    async def _generate(self, context: AgentContext) -> Dict[str, Any]:
        inputs = self._require(
            context, "business_name", "tagline", "business_canvas", "brand_colors", "brand_voice"
        )
        self._progress(context, "Designing website architecture...", 0)
        self._progress(context, "Creating page layouts...", 30)

        structure = await self.content_tool.plan_website(
            context.prompt,
            inputs["business_name"],
            inputs["tagline"],
            inputs["business_canvas"],
            inputs["brand_voice"],
        )

        self._progress(context, "Writing website content...", 60)
        website_code = await self.content_tool.render_website(structure, inputs["brand_colors"])

        self._progress(context, "Website architecture complete!", 100)
        return {"website_structure": structure, "website_code": website_code}


class ConnectorAgent(BusinessAgent):
    """Customer journey and marketing automation flows"""

    name = AgentName.CONNECTOR

    async def _generate(self, context: AgentContext) -> Dict[str, Any]:
        inputs = self._require(context, "market_research", "business_name", "website_structure")
        self._progress(context, "Mapping customer journey...", 0)
        self._progress(context, "Identifying touchpoints...", 30)

        journey = await self.content_tool.map_customer_journey(
            inputs["business_name"], inputs["market_research"], inputs["website_structure"]
        )

        self._progress(context, "Designing automation flows...", 60)
        flows = await self.content_tool.design_automations(inputs["business_name"], journey)

        self._progress(context, "Customer flow complete!", 100)
        return {"customer_journey": journey, "automation_flows": flows}


AGENT_CLASSES = {
    AgentName.SCOUT: ScoutAgent,
    AgentName.STRATEGIST: StrategistAgent,
    AgentName.ARTIST: ArtistAgent,
    AgentName.ARCHITECT: ArchitectAgent,
    AgentName.CONNECTOR: ConnectorAgent,
}


def build_default_agents(content_tool=None) -> Dict[AgentName, BusinessAgent]:
    """One agent per pipeline stage, sharing a content tool"""
    tool = content_tool or MockBusinessContentTool()
    return {name: agent_class(tool) for name, agent_class in AGENT_CLASSES.items()}
