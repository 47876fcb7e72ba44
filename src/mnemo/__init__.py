"""
Mnemo - tiered memory retrieval for conversational agents.

Package structure:
- core: Orchestrator, config, common types, errors, scheduler
- cognition: Importance scoring, query planning, entity extraction
- memory: The four memory tiers (hot cache, facts, archive, patterns)
- llm: Injectable collaborators (embedding, sentiment, classification, completion)
"""

__version__ = "0.1.0"
