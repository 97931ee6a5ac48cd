# domain/models/fields.py
from enum import Enum
from typing import Optional, Union


class BusinessField(str, Enum):
    """Named artifacts tracked on a business"""
    PROMPT = "prompt"
    MARKET_RESEARCH = "market_research"
    BUSINESS_NAME = "business_name"
    TAGLINE = "tagline"
    BUSINESS_CANVAS = "business_canvas"
    BRAND_COLORS = "brand_colors"
    BRAND_VOICE = "brand_voice"
    LOGO_URL = "logo_url"
    WEBSITE_STRUCTURE = "website_structure"
    WEBSITE_CODE = "website_code"
    CUSTOMER_JOURNEY = "customer_journey"
    AUTOMATION_FLOWS = "automation_flows"


class AgentName(str, Enum):
    SCOUT = "scout"
    STRATEGIST = "strategist"
    ARTIST = "artist"
    ARCHITECT = "architect"
    CONNECTOR = "connector"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


# Every field except the root prompt is produced by an agent
GENERATED_FIELDS = tuple(f for f in BusinessField if f is not BusinessField.PROMPT)

# website_code is derived output and only ever regenerated
EDITABLE_FIELDS = tuple(f for f in GENERATED_FIELDS if f is not BusinessField.WEBSITE_CODE)


def parse_field(name: Union[str, BusinessField]) -> Optional[BusinessField]:
    """Resolve a field name, returning None for unknown names"""
    if isinstance(name, BusinessField):
        return name
    try:
        return BusinessField(name)
    except ValueError:
        return None


def parse_agent(name: Union[str, AgentName]) -> Optional[AgentName]:
    """Resolve an agent name, returning None for unknown names"""
    if isinstance(name, AgentName):
        return name
    try:
        return AgentName(name)
    except ValueError:
        return None
