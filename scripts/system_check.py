#!/usr/bin/env python3
# scripts/system_check.py
"""
Offline end-to-end check for Business Forge.
Run this to verify everything is working before starting the API server.
"""

import asyncio
import sys


def check_dependency_graph():
    """Check graph constants and closure helpers"""
    from domain.dependencies.graph import get_agents_to_run, get_downstream_dependents

    dependents = get_downstream_dependents("business_canvas")
    agents = [a.value for a in get_agents_to_run(dependents)]
    if "website_code" not in dependents or agents != ["artist", "architect", "connector"]:
        return False, f"Unexpected closure: {dependents} -> {agents}"
    return True, f"Graph OK - business_canvas invalidates {len(dependents)} fields"


def check_change_detection():
    """Check hashing and semantic comparison"""
    from domain.dependencies.change_detector import has_semantic_change, hash_field_content

    if hash_field_content({"a": 1, "b": 2}) != hash_field_content({"b": 2, "a": 1}):
        return False, "Hash depends on key order"
    if has_semantic_change("Hello ", "hello"):
        return False, "Whitespace/case treated as a change"
    return True, "Change detection OK"


async def check_pipeline():
    """Generate a business, edit it and regenerate what went stale"""
    from application.orchestrators.agent_pipeline import AgentPipeline
    from application.services.business_edit_service import BusinessEditService, StalenessDispatcher
    from application.services.staleness_engine import StalenessEngine
    from infrastructure.agents.business_agents import build_default_agents
    from infrastructure.storage.memory_store import InMemoryBusinessStore

    store = InMemoryBusinessStore()
    engine = StalenessEngine(store)
    dispatcher = StalenessDispatcher(engine)
    pipeline = AgentPipeline(store, build_default_agents(), engine)
    editor = BusinessEditService(store, dispatcher)

    business = await store.create_business("A cozy coffee shop for remote workers")
    events = []
    await pipeline.run_full(business.id, events.append)

    await editor.apply_edits(business.id, {"business_name": "Remote Roast"})
    await dispatcher.drain()
    stale = (await store.get_business(business.id)).stale_fields

    await pipeline.regenerate_fields(business.id, stale, events.append)
    final = await store.get_business(business.id)

    if final.stale_fields:
        return False, f"Fields still stale after regeneration: {final.stale_fields}"
    return True, f"Pipeline OK - {len(events)} events, {len(stale)} fields regenerated"


def main():
    results = [check_dependency_graph(), check_change_detection(), asyncio.run(check_pipeline())]

    for ok, message in results:
        print(("PASS " if ok else "FAIL ") + message)

    return 0 if all(ok for ok, _ in results) else 1


if __name__ == "__main__":
    sys.exit(main())
