"""Split raw text into bounded-length segments at natural boundaries."""

import re

from speechmaker.constants import (
    MAX_CHUNK_LENGTH,
    MIN_CHUNK_LENGTH_LIMIT,
    MAX_CHUNK_LENGTH_LIMIT,
    SENTENCE_SEARCH_WINDOW,
)
from speechmaker.errors import InputError
from speechmaker.models import TextSegment

# Sentence terminator followed by whitespace
_SENTENCE_END_RE = re.compile(r"[.!?]\s+")


def validate_max_length(max_length: int) -> int:
    """Reject chunk lengths outside the supported range."""
    if not isinstance(max_length, int) or isinstance(max_length, bool):
        raise InputError(f"Chunk length must be an integer, got {max_length!r}")
    if max_length < MIN_CHUNK_LENGTH_LIMIT or max_length > MAX_CHUNK_LENGTH_LIMIT:
        raise InputError(
            f"Chunk length must be between {MIN_CHUNK_LENGTH_LIMIT} and "
            f"{MAX_CHUNK_LENGTH_LIMIT} characters, got {max_length}"
        )
    return max_length


def _find_cut(text: str, start: int, end: int) -> int:
    """Pick the cut position for the window text[start:end].

    Prefers the end of the last sentence within SENTENCE_SEARCH_WINDOW chars of
    the window boundary, then the last whitespace at or before the boundary,
    then the boundary itself (mid-token cut).
    """
    search_start = max(end - SENTENCE_SEARCH_WINDOW, start)
    last = None
    for last in _SENTENCE_END_RE.finditer(text, search_start, end):
        pass
    if last is not None:
        return last.end()

    for pos in range(end, start, -1):
        if text[pos].isspace():
            return pos

    return end


def split_text(text: str, max_length: int = MAX_CHUNK_LENGTH) -> list[TextSegment]:
    """Split text into ordered segments of at most max_length characters.

    Short text comes back as a single trimmed segment. Whitespace-only text
    yields no segments.
    """
    validate_max_length(max_length)

    if len(text) <= max_length:
        content = text.strip()
        return [TextSegment(index=0, content=content)] if content else []

    pieces = []
    pos = 0
    while pos < len(text):
        end = pos + max_length
        if end < len(text):
            end = _find_cut(text, pos, end)
        pieces.append(text[pos:end].strip())
        pos = end

    return [
        TextSegment(index=i, content=piece)
        for i, piece in enumerate(p for p in pieces if p)
    ]
