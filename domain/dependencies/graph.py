# domain/dependencies/graph.py
"""
Static dependency graph over generated business artifacts.

FIELD_DEPENDENCIES lists, for each field, the fields it is generated from.
Every generated field is produced by exactly one agent and agents always run
in AGENT_ORDER, which is a topological order of the field graph.
"""
import re
from collections import deque
from typing import Dict, Iterable, List, Optional, Set, Union

from domain.exceptions import DependencyGraphError
from domain.models.fields import (
    AgentName,
    BusinessField,
    GENERATED_FIELDS,
    parse_agent,
    parse_field,
)

F = BusinessField

FIELD_DEPENDENCIES: Dict[BusinessField, List[BusinessField]] = {
    F.PROMPT: [],
    F.MARKET_RESEARCH: [F.PROMPT],
    F.BUSINESS_NAME: [F.PROMPT, F.MARKET_RESEARCH],
    F.TAGLINE: [F.PROMPT, F.MARKET_RESEARCH],
    F.BUSINESS_CANVAS: [F.PROMPT, F.MARKET_RESEARCH],
    F.BRAND_COLORS: [F.MARKET_RESEARCH, F.BUSINESS_NAME, F.BUSINESS_CANVAS],
    F.BRAND_VOICE: [F.MARKET_RESEARCH, F.BUSINESS_NAME, F.BUSINESS_CANVAS],
    F.LOGO_URL: [F.MARKET_RESEARCH, F.BUSINESS_NAME, F.BUSINESS_CANVAS],
    F.WEBSITE_STRUCTURE: [
        F.MARKET_RESEARCH,
        F.BUSINESS_NAME,
        F.TAGLINE,
        F.BUSINESS_CANVAS,
        F.BRAND_COLORS,
        F.BRAND_VOICE,
    ],
    F.WEBSITE_CODE: [F.WEBSITE_STRUCTURE, F.BRAND_COLORS],
    F.CUSTOMER_JOURNEY: [F.MARKET_RESEARCH, F.BUSINESS_NAME, F.BUSINESS_CANVAS, F.WEBSITE_STRUCTURE],
    F.AUTOMATION_FLOWS: [F.MARKET_RESEARCH, F.BUSINESS_NAME, F.BUSINESS_CANVAS, F.WEBSITE_STRUCTURE],
}

AGENT_OUTPUTS: Dict[AgentName, List[BusinessField]] = {
    AgentName.SCOUT: [F.MARKET_RESEARCH],
    AgentName.STRATEGIST: [F.BUSINESS_NAME, F.TAGLINE, F.BUSINESS_CANVAS],
    AgentName.ARTIST: [F.BRAND_COLORS, F.BRAND_VOICE, F.LOGO_URL],
    AgentName.ARCHITECT: [F.WEBSITE_STRUCTURE, F.WEBSITE_CODE],
    AgentName.CONNECTOR: [F.CUSTOMER_JOURNEY, F.AUTOMATION_FLOWS],
}

AGENT_ORDER: List[AgentName] = [
    AgentName.SCOUT,
    AgentName.STRATEGIST,
    AgentName.ARTIST,
    AgentName.ARCHITECT,
    AgentName.CONNECTOR,
]

# Finer-grained edges for fields whose sub-keys feed specific consumers
SUBFIELD_DEPENDENCIES: Dict[str, List[BusinessField]] = {
    "business_canvas.unfair_advantage": [F.WEBSITE_STRUCTURE, F.WEBSITE_CODE],
    "business_canvas.value_proposition": [F.WEBSITE_STRUCTURE, F.WEBSITE_CODE, F.BRAND_VOICE],
    "business_canvas.problem": [F.WEBSITE_STRUCTURE],
    "business_canvas.solution": [F.WEBSITE_STRUCTURE],
    "business_canvas.customer_segments": [F.WEBSITE_STRUCTURE, F.CUSTOMER_JOURNEY],
    "brand_colors.primary": [F.WEBSITE_CODE],
    "brand_colors.secondary": [F.WEBSITE_CODE],
    "brand_colors.accent": [F.WEBSITE_CODE],
    "brand_colors.background": [F.WEBSITE_CODE],
    "brand_colors.text": [F.WEBSITE_CODE],
}

ALL_SECTIONS = "ALL"

CHANGE_TO_SECTIONS: Dict[str, List[str]] = {
    "business_canvas.unfair_advantage": ["hero", "about"],
    "business_canvas.value_proposition": ["hero", "features", "about"],
    "business_canvas.problem": ["hero", "about"],
    "business_canvas.solution": ["features", "about"],
    "business_canvas.customer_segments": ["hero", "testimonials"],
    "brand_colors": [ALL_SECTIONS],
    "brand_voice": ["hero", "about", "cta"],
    "business_name": ["hero", "about", "footer"],
    "tagline": ["hero", "footer"],
    "logo_url": ["hero", "footer"],
    "offerings.price": ["pricing", "menu"],
    "offerings.name": ["services", "menu", "pricing"],
}

# Dotted paths outside the generated fields; '*' matches one path segment
INTEGRATION_DEPENDENCIES: Dict[str, List[BusinessField]] = {
    "integrations.stripe.status": [F.CUSTOMER_JOURNEY, F.AUTOMATION_FLOWS],
    "integrations.calcom.status": [F.WEBSITE_STRUCTURE, F.CUSTOMER_JOURNEY],
    "offerings.*.price": [F.WEBSITE_STRUCTURE],
    "offerings.*.name": [F.WEBSITE_STRUCTURE],
    "customers.count": [],
    "bookings.availability": [F.WEBSITE_STRUCTURE],
    "crm.segments": [F.AUTOMATION_FLOWS, F.CUSTOMER_JOURNEY],
    "crm.deals.stage": [],
}

FieldRef = Union[str, BusinessField]


def _build_dependents() -> Dict[BusinessField, List[BusinessField]]:
    dependents: Dict[BusinessField, List[BusinessField]] = {f: [] for f in BusinessField}
    for target, deps in FIELD_DEPENDENCIES.items():
        for dep in deps:
            dependents[dep].append(target)
    return dependents


def _build_producers() -> Dict[BusinessField, AgentName]:
    producers: Dict[BusinessField, AgentName] = {}
    for agent, outputs in AGENT_OUTPUTS.items():
        for output in outputs:
            if output in producers:
                raise DependencyGraphError(
                    f"Field '{output.value}' is produced by both "
                    f"'{producers[output].value}' and '{agent.value}'"
                )
            producers[output] = agent
    return producers


def _validate_graph():
    missing = [f.value for f in BusinessField if f not in FIELD_DEPENDENCIES]
    if missing:
        raise DependencyGraphError(f"Fields without a dependency entry: {missing}")

    unproduced = [f.value for f in GENERATED_FIELDS if f not in _PRODUCERS]
    if unproduced:
        raise DependencyGraphError(f"Generated fields without a producing agent: {unproduced}")
    if F.PROMPT in _PRODUCERS:
        raise DependencyGraphError("The prompt is an input and cannot be produced by an agent")

    if sorted(AGENT_ORDER, key=lambda a: a.value) != sorted(AgentName, key=lambda a: a.value):
        raise DependencyGraphError("AGENT_ORDER must list every agent exactly once")

    # Kahn's algorithm; leftover nodes sit on a cycle
    indegree = {f: len(deps) for f, deps in FIELD_DEPENDENCIES.items()}
    ready = deque(f for f, n in indegree.items() if n == 0)
    seen = 0
    while ready:
        current = ready.popleft()
        seen += 1
        for dependent in _DEPENDENTS[current]:
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                ready.append(dependent)
    if seen != len(FIELD_DEPENDENCIES):
        cyclic = [f.value for f, n in indegree.items() if n > 0]
        raise DependencyGraphError(f"Field dependency cycle among: {cyclic}")

    # Every field's producer must run no earlier than its dependencies' producers
    position = {agent: i for i, agent in enumerate(AGENT_ORDER)}
    for target, deps in FIELD_DEPENDENCIES.items():
        if target not in _PRODUCERS:
            continue
        for dep in deps:
            if dep in _PRODUCERS and position[_PRODUCERS[dep]] > position[_PRODUCERS[target]]:
                raise DependencyGraphError(
                    f"'{target.value}' is produced before its dependency '{dep.value}'"
                )


_DEPENDENTS = _build_dependents()
_PRODUCERS = _build_producers()
_validate_graph()


def get_downstream_dependents(field_name: FieldRef) -> List[str]:
    """Transitive closure of fields generated from the given one (excluding itself)"""
    start = parse_field(field_name)
    if start is None:
        return []

    visited: Set[BusinessField] = {start}
    result: List[str] = []
    worklist = deque([start])
    while worklist:
        current = worklist.popleft()
        for dependent in _DEPENDENTS[current]:
            if dependent not in visited:
                visited.add(dependent)
                result.append(dependent.value)
                worklist.append(dependent)
    return result


def get_agent_for_field(field_name: FieldRef) -> Optional[AgentName]:
    parsed = parse_field(field_name)
    if parsed is None:
        return None
    return _PRODUCERS.get(parsed)


def get_agents_to_run(stale_fields: Iterable[FieldRef]) -> List[AgentName]:
    """Minimal set of agents that regenerates the given fields, in pipeline order"""
    needed: Set[AgentName] = set()
    for name in stale_fields:
        agent = get_agent_for_field(name)
        if agent is not None:
            needed.add(agent)
    return [agent for agent in AGENT_ORDER if agent in needed]


def order_agents(agents: Iterable[Union[str, AgentName]]) -> List[AgentName]:
    """Filter to known agents and sort them into pipeline order"""
    requested = {parsed for parsed in (parse_agent(a) for a in agents) if parsed is not None}
    return [agent for agent in AGENT_ORDER if agent in requested]


def get_fields_for_agents(agents: Iterable[Union[str, AgentName]]) -> List[str]:
    return [f.value for agent in order_agents(agents) for f in AGENT_OUTPUTS[agent]]


def get_subfield_dependents(field_name: FieldRef, subfields: Iterable[str]) -> List[str]:
    key_prefix = field_name.value if isinstance(field_name, BusinessField) else field_name
    result: List[str] = []
    for subfield in subfields:
        for dependent in SUBFIELD_DEPENDENCIES.get(f"{key_prefix}.{subfield}", []):
            if dependent.value not in result:
                result.append(dependent.value)
    return result


def get_affected_sections(field_name: FieldRef, subfields: Optional[Iterable[str]] = None) -> List[str]:
    """Website sections touched by a change; collapses to ['ALL'] when any mapping says so"""
    key_prefix = field_name.value if isinstance(field_name, BusinessField) else field_name
    sections: List[str] = []

    for section in CHANGE_TO_SECTIONS.get(key_prefix, []):
        if section not in sections:
            sections.append(section)

    for subfield in subfields or []:
        for section in CHANGE_TO_SECTIONS.get(f"{key_prefix}.{subfield}", []):
            if section not in sections:
                sections.append(section)

    if ALL_SECTIONS in sections:
        return [ALL_SECTIONS]
    return sections


def get_upstream_dependencies(field_name: FieldRef) -> List[str]:
    parsed = parse_field(field_name)
    if parsed is None:
        return []
    return [dep.value for dep in FIELD_DEPENDENCIES[parsed]]


def can_regenerate(field_name: FieldRef, stale_fields: Iterable[FieldRef]) -> bool:
    """True when none of the field's direct dependencies is stale"""
    stale = {f.value if isinstance(f, BusinessField) else f for f in stale_fields}
    return all(dep not in stale for dep in get_upstream_dependencies(field_name))


def get_extended_dependents(path: str) -> List[str]:
    """Dependents of a generated field or an integration / module path"""
    if parse_field(path) is not None:
        return get_downstream_dependents(path)

    if path in INTEGRATION_DEPENDENCIES:
        return [f.value for f in INTEGRATION_DEPENDENCIES[path]]

    for pattern, deps in INTEGRATION_DEPENDENCIES.items():
        if "*" not in pattern:
            continue
        regex = "^" + re.escape(pattern).replace(r"\*", "[^.]+") + "$"
        if re.match(regex, path):
            return [f.value for f in deps]

    return []
