"""Shared typing aliases used across modules."""

from typing import TypeAlias

Vector: TypeAlias = list[float]
BucketKey: TypeAlias = tuple[str, str]
