"""
Collaborators - embedding, sentiment, classification, completion.

The core only depends on the interfaces in `base`; `heuristic` holds
offline defaults and `litellm_adapter` an optional model-backed service.
"""

from mnemo.llm.base import Embedder, LLMConfig, QueryClassifier, SentimentAnalyzer, TextCompleter
from mnemo.llm.heuristic import LexiconSentimentAnalyzer

__all__ = [
    "Embedder",
    "LLMConfig",
    "QueryClassifier",
    "SentimentAnalyzer",
    "TextCompleter",
    "LexiconSentimentAnalyzer",
]
