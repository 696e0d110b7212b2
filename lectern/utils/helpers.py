"""
Common utility functions and helpers.
"""
from typing import List, Set
import hashlib
import re


STOPWORDS: Set[str] = {
    'the', 'a', 'an', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for',
    'of', 'with', 'by', 'from', 'as', 'is', 'was', 'are', 'were', 'been',
    'be', 'have', 'has', 'had', 'do', 'does', 'did', 'will', 'would',
    'could', 'should', 'may', 'might', 'can', 'this', 'that', 'these',
    'those', 'i', 'you', 'he', 'she', 'it', 'we', 'they', 'them', 'their',
    'what', 'which', 'who', 'whom', 'when', 'where', 'why', 'how', 'not',
    'into', 'than', 'then', 'there', 'about', 'also', 'only', 'such',
    'each', 'other', 'some', 'most', 'more', 'very', 'just', 'over',
    'following', 'according', 'true', 'false', 'statement', 'lesson',
    'its', 'our', 'your', 'his', 'her', 'all', 'any', 'both', 'one',
}

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def tokenize(text: str) -> List[str]:
    """Lowercase alphanumeric tokens of *text*, in order."""
    return _TOKEN_RE.findall((text or "").lower())


def significant_words(text: str, min_length: int = 4) -> Set[str]:
    """
    Distinct tokens of at least *min_length* characters that are not stopwords.

    Args:
        text: Input text
        min_length: Shortest token kept

    Returns:
        Set of significant words
    """
    return {w for w in tokenize(text) if len(w) >= min_length and w not in STOPWORDS}


def extract_keywords(text: str, top_n: int = 12) -> List[str]:
    """
    Extract top keywords from text using simple frequency analysis.

    Args:
        text: Input text
        top_n: Number of top keywords to return

    Returns:
        List of top keywords
    """
    word_freq = {}
    for word in tokenize(text):
        if word not in STOPWORDS and len(word) >= 4:
            word_freq[word] = word_freq.get(word, 0) + 1

    # Sort by frequency and return top N
    sorted_words = sorted(word_freq.items(), key=lambda x: x[1], reverse=True)
    return [word for word, _ in sorted_words[:top_n]]


def jaccard(a: Set[str], b: Set[str]) -> float:
    """Jaccard similarity of two sets; two empty sets score 0."""
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def strip_nul(text: str) -> str:
    """Remove NUL bytes, which PostgreSQL text columns reject."""
    return (text or "").replace("\x00", "")


def strip_control_chars(text: str) -> str:
    """Remove C0 control characters except newline, carriage return and tab."""
    return _CONTROL_RE.sub("", text or "")


def generate_hash(text: str) -> str:
    """
    Generate SHA256 hash of text.

    Args:
        text: Text to hash

    Returns:
        Hex digest of hash
    """
    return hashlib.sha256(text.encode('utf-8')).hexdigest()
