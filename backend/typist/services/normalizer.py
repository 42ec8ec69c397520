"""Text normalization shared by stored passages and user submissions."""

from __future__ import annotations

import unicodedata

# Pilcrow, line separator, paragraph separator.
STRIPPED_MARKS = frozenset({"\u00b6", "\u2028", "\u2029"})


def normalize(text: str) -> str:
    """Drop control characters and paragraph/line separator marks."""
    return "".join(
        ch
        for ch in text
        if ch not in STRIPPED_MARKS and unicodedata.category(ch) != "Cc"
    )


def canonical(text: str) -> str:
    """Form used for submission comparison: trimmed, then normalized."""
    return normalize(text.strip()).strip()
