"""
Memory module - four-tier conversational memory.

Tiers:
- hot_cache: recent turns per conversation (Tier 4)
- facts: extracted per-user facts (Tier 3)
- archive / sqlite_archive: full message log (Tier 2)
- patterns / detection: learned procedures (Tier 1)

Storage: in-memory, with SQLite + FTS5 for the archive
"""

from mnemo.memory.archive import InMemoryArchive
from mnemo.memory.base import Archive, FactStore, HotCache, PatternStore
from mnemo.memory.detection import PatternDetector
from mnemo.memory.facts import InMemoryFactStore
from mnemo.memory.hot_cache import InMemoryHotCache
from mnemo.memory.patterns import InMemoryPatternStore
from mnemo.memory.sqlite_archive import SQLiteArchive

__all__ = [
    "Archive",
    "FactStore",
    "HotCache",
    "PatternStore",
    "InMemoryArchive",
    "InMemoryFactStore",
    "InMemoryHotCache",
    "InMemoryPatternStore",
    "PatternDetector",
    "SQLiteArchive",
]
