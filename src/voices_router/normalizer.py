"""Text normalization shared by every matching component."""

import re

_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize(text: str) -> str:
    """
    Lower-case, replace punctuation with spaces and collapse whitespace.

    Idempotent: ``normalize(normalize(s)) == normalize(s)``.

    Examples:
        >>> normalize("  What was the June-Fourth incident?! ")
        'what was the june fourth incident'
    """
    if not text:
        return ""
    lowered = text.lower()
    stripped = _NON_WORD.sub(" ", lowered)
    return _WHITESPACE.sub(" ", stripped).strip()
