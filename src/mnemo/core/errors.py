"""
Error taxonomy and input validation.

Only ValidationError ever reaches a caller. Collaborator failures are
raised by adapters as CollaboratorUnavailable and always replaced by a
deterministic fallback inside the core.
"""

import re

IDENTIFIER_RE = re.compile(r"[A-Za-z0-9_.:@-]{1,128}")
MAX_TEXT_LENGTH = 10_000
MAX_QUERY_LENGTH = 5_000


class MnemoError(Exception):
    """Base class for all mnemo errors."""


class ValidationError(MnemoError, ValueError):
    """Malformed identifier or content, rejected before any mutation."""


class CollaboratorUnavailable(MnemoError):
    """Embedding, sentiment, classification or completion call failed."""


def validate_identifier(value: str, field: str) -> str:
    """Return value if it is a well-formed identifier, else raise."""
    if not isinstance(value, str) or not IDENTIFIER_RE.fullmatch(value):
        raise ValidationError(f"{field} is malformed: {value!r}")
    return value


def validate_text(text: str, field: str = "text", max_length: int = MAX_TEXT_LENGTH) -> str:
    if not isinstance(text, str) or not text.strip():
        raise ValidationError(f"{field} cannot be empty")
    if len(text) > max_length:
        raise ValidationError(f"{field} cannot exceed {max_length:,} characters")
    return text


def validate_query(query: str) -> str:
    return validate_text(query, field="query", max_length=MAX_QUERY_LENGTH)


def validate_limit(limit: int, field: str = "max_results") -> int:
    if not isinstance(limit, int) or limit < 0:
        raise ValidationError(f"{field} must be a non-negative integer")
    return limit
