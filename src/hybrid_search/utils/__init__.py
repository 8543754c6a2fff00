"""Utility helpers for hybrid search."""

from .filters import accepted_values, filter_text, matches_filters, tokenize
from .text import normalize_text, truncate_text
from .validation import MAX_DIMENSIONS, validate_cache_key, vector_problem

__all__ = [
    "MAX_DIMENSIONS",
    "accepted_values",
    "filter_text",
    "matches_filters",
    "normalize_text",
    "tokenize",
    "truncate_text",
    "validate_cache_key",
    "vector_problem",
]
