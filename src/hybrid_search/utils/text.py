"""Text normalisation shared by cache keys and embedding requests."""

import re

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Strip control characters, collapse whitespace and trim.

    Case is preserved. Tabs and newlines count as whitespace.
    """
    text = _CONTROL_CHARS.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def truncate_text(text: str, max_chars: int) -> str:
    """Cut ``text`` to ``max_chars``, preferring a word boundary."""
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    space = cut.rfind(" ")
    # Only back off to a word boundary when it keeps most of the budget
    if space > max_chars * 0.8:
        cut = cut[:space]
    return cut.rstrip()
