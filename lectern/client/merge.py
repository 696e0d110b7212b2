"""
Merge streamed text fragments into running prose.

Upstream chunkers sometimes resend the tail of what they already sent, and
sometimes split between two words without the space.  ``merge_chunks`` drops
the repeated overlap and restores a missing space at word boundaries.
"""
from __future__ import annotations

OVERLAP_WINDOW = 4096
MIN_OVERLAP = 3
_GLUE_PUNCTUATION = ".,;:!?"


def sanitize_chunk(text: str) -> str:
    """Remove NUL bytes and normalise CRLF to LF."""
    return (text or "").replace("\x00", "").replace("\r\n", "\n")


def find_overlap(previous: str, incoming: str, window: int = OVERLAP_WINDOW) -> int:
    """
    Length of the longest suffix of ``previous[-window:]`` that is also a
    prefix of *incoming*, or 0 when that overlap is too short to trust.

    An overlap counts when it is at least ``MIN_OVERLAP`` characters, or when
    it covers all of *incoming* or the whole window of *previous*.  A single
    whole word after a finished word (*previous* ends in whitespace) is a
    genuine repetition, not a resend: "said that " + "that is" keeps both.
    """
    tail = previous[-window:]
    longest = min(len(tail), len(incoming))
    for size in range(longest, 0, -1):
        if tail.endswith(incoming[:size]):
            if size < MIN_OVERLAP and size != len(incoming) and size != len(tail):
                return 0
            if _is_repeated_word(tail, incoming[:size]):
                return 0
            return size
    return 0


def _is_repeated_word(tail: str, overlap: str) -> bool:
    start = len(tail) - len(overlap)
    if start == 0 or not tail[-1].isspace():
        return False
    word = overlap.strip()
    if not word or any(c.isspace() for c in word):
        return False
    return tail[start - 1].isspace()


def _needs_space(left: str, right: str) -> bool:
    if not left or not right:
        return False
    a, b = left[-1], right[0]
    if a.isalnum() and b.isalnum():
        return True
    return a in _GLUE_PUNCTUATION and b.isalpha()


def merge_chunks(previous: str, incoming: str) -> str:
    """
    Append *incoming* to *previous* without duplicating an overlap or gluing
    two words together.

    >>> merge_chunks("the end", "endmore")
    'the endmore'
    """
    incoming = sanitize_chunk(incoming)
    if not incoming:
        return previous
    if not previous:
        return incoming
    # Cumulative resend of everything so far
    if incoming.startswith(previous):
        return incoming

    overlap = find_overlap(previous, incoming)
    if overlap:
        return previous + incoming[overlap:]
    if _needs_space(previous, incoming):
        return previous + " " + incoming
    return previous + incoming
