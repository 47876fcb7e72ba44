"""
Core module - orchestration, configuration, shared types.

Components:
- config: Settings management via pydantic-settings
- types: Shared data structures (Turn, Fact, Pattern, ...)
- errors: Error taxonomy and input validation
- orchestrator: Read/write facade over the memory tiers
- scheduler: Periodic maintenance tasks
- logging: Structured logging setup
"""

from mnemo.core.config import Settings
from mnemo.core.errors import MnemoError, ValidationError
from mnemo.core.types import MemoryContext, Role, Turn

__all__ = ["Settings", "MnemoError", "ValidationError", "MemoryContext", "Role", "Turn"]
