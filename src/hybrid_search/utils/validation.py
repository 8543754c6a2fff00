"""Validation of cache keys and embedding vectors."""

import math
import re

MAX_DIMENSIONS = 16000

_KEY_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def validate_cache_key(key: str) -> str:
    """Return ``key`` if it is a 64-character lowercase hex digest.

    Raises:
        ValueError: For anything else
    """
    if not isinstance(key, str) or not _KEY_PATTERN.match(key):
        raise ValueError(f"Invalid cache key: {key!r} (expected 64 hex characters)")
    return key


def vector_problem(vector: list[float]) -> str | None:
    """Describe why ``vector`` cannot be stored, or None if it can."""
    if not vector:
        return "empty vector"
    if len(vector) > MAX_DIMENSIONS:
        return f"{len(vector)} dimensions exceeds the maximum of {MAX_DIMENSIONS}"
    for value in vector:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return f"non-numeric component {value!r}"
        if not math.isfinite(value):
            return f"non-finite component {value!r}"
    return None
