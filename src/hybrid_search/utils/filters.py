"""Structural filter helpers shared by the SQL renderer and the in-process store."""

import re
from typing import Any

_TOKEN = re.compile(r"\w+", re.UNICODE)


def filter_text(value: Any) -> str:
    """Render a filter or field value the way JSONB ``->>`` renders it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def accepted_values(value: Any) -> list[str]:
    """A filter value is a scalar or a list of accepted scalars."""
    values = value if isinstance(value, (list, tuple, set)) else [value]
    return [filter_text(v) for v in values]


def matches_filters(fields: dict[str, Any], filters: dict[str, Any]) -> bool:
    """True when every filtered field holds one of the accepted values.

    List-valued fields match when any element is accepted.
    """
    for name, wanted in filters.items():
        if name not in fields:
            return False
        accepted = set(accepted_values(wanted))
        stored = fields[name]
        candidates = stored if isinstance(stored, (list, tuple)) else [stored]
        if not any(filter_text(c) in accepted for c in candidates):
            return False
    return True


def tokenize(text: str) -> list[str]:
    return [t.lower() for t in _TOKEN.findall(text)]
