"""
Word-level highlight spans derived from synthesizer boundary events.

A boundary event carries the character offset of the word being spoken. The
highlighted span runs from that offset to the next whitespace or punctuation
character, or to the end of the text, whichever comes first.
"""
import unicodedata
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class HighlightSpan:
    start: int
    end: int

    @property
    def is_empty(self) -> bool:
        return self.start < 0 or self.end <= self.start

    def slice(self, text: str) -> str:
        if self.is_empty:
            return ""
        return text[self.start:self.end]


NO_HIGHLIGHT = HighlightSpan(-1, -1)


def is_word_delimiter(char: str) -> bool:
    return char.isspace() or unicodedata.category(char).startswith("P")


def word_end(text: str, start: int) -> int:
    """Index of the first delimiter at or after `start`, else len(text)"""
    for idx in range(max(start, 0), len(text)):
        if is_word_delimiter(text[idx]):
            return idx
    return len(text)


def span_at(text: str, offset: int) -> Optional[HighlightSpan]:
    """Span for a boundary at `offset`, or None when it would be zero-width"""
    if offset < 0 or offset >= len(text):
        return None
    end = word_end(text, offset)
    if end == offset:
        return None
    return HighlightSpan(offset, end)
