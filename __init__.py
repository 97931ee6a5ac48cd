"""
Business Forge v1.0 - Prompt-to-Business Generation with Targeted Regeneration

A five-agent pipeline (scout, strategist, artist, architect, connector) that
turns a single prompt into market research, a business model, a brand, a
website and customer automation, then keeps those artifacts consistent as
users edit them.

Features:
- Sequential agent orchestration with server-sent progress events
- Static field dependency graph with transitive staleness propagation
- Content hashing and semantic change detection
- Partial regeneration of only the agents whose outputs went stale
- PostgreSQL or in-memory persistence
"""

__version__ = "1.0.0"
__author__ = "Business Forge Team"
