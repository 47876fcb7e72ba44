"""
Cognition module - deciding what matters and where to look.

Components:
- importance: salience score of a turn
- planner: query intent and tier selection
- extraction: turn annotation and fact extraction
"""

from mnemo.cognition.extraction import EntityExtractor, annotate_turn
from mnemo.cognition.importance import ImportanceScorer, ImportanceSignals
from mnemo.cognition.planner import Planner

__all__ = ["EntityExtractor", "annotate_turn", "ImportanceScorer", "ImportanceSignals", "Planner"]
