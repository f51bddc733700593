"""Text utilities shared by the chunker, retriever and quality validator.

Three concerns live here:

1. **Token counting and normalization** -- tokens are whitespace-delimited
   words, so counts are deterministic and need no tokenizer download.
   ``normalize_text`` produces the canonical form used for cache keys and
   provider input.

2. **Lexical similarity** -- Jaccard overlap of content words drives
   boundary scoring in the chunker; rapidfuzz ``token_sort_ratio`` drives
   near-duplicate and redundancy detection, where word order matters less
   than shared vocabulary.

3. **Keyword extraction** -- a stop-word filtered term list used by the
   hybrid retrieval strategy and by keyword search in the vector stores.
"""

import hashlib
import re
import unicodedata

from rapidfuzz import fuzz

_WORD_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9'\-]*")
_WHITESPACE_RE = re.compile(r"\s+")

STOP_WORDS: frozenset[str] = frozenset(
    {
        "a", "about", "after", "all", "also", "an", "and", "any", "are", "as",
        "at", "be", "been", "but", "by", "can", "could", "did", "do", "does",
        "for", "from", "had", "has", "have", "how", "i", "if", "in", "into",
        "is", "it", "its", "me", "my", "of", "on", "or", "our", "should",
        "so", "than", "that", "the", "their", "them", "then", "there", "these",
        "they", "this", "those", "to", "up", "was", "we", "were", "what",
        "when", "where", "which", "who", "why", "will", "with", "would", "you",
        "your",
    }
)


def count_tokens(text: str) -> int:
    """Return the number of whitespace-delimited tokens in *text*."""
    return len(text.split())


def normalize_text(text: str) -> str:
    """NFKC-normalize *text*, collapse runs of whitespace and strip the ends."""
    return _WHITESPACE_RE.sub(" ", unicodedata.normalize("NFKC", text)).strip()


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def content_words(text: str) -> set[str]:
    """Lower-cased words longer than two characters, minus stop words."""
    return {
        w
        for w in (m.group(0).lower() for m in _WORD_RE.finditer(text))
        if len(w) > 2 and w not in STOP_WORDS
    }


def jaccard(a: set[str], b: set[str]) -> float:
    """Jaccard index of two word sets; 0.0 when both are empty."""
    if not a and not b:
        return 0.0
    return len(a & b) / len(a | b)


def text_similarity(a: str, b: str) -> float:
    """Order-insensitive fuzzy similarity in [0, 1] using rapidfuzz."""
    if not a or not b:
        return 0.0
    return fuzz.token_sort_ratio(a.lower(), b.lower()) / 100.0


def extract_keywords(text: str, limit: int | None = None) -> list[str]:
    """Return content words of *text* in first-occurrence order.

    Duplicates are dropped; ``limit`` caps the number of terms.
    """
    seen: dict[str, None] = {}
    for match in _WORD_RE.finditer(text):
        word = match.group(0).lower()
        if len(word) > 2 and word not in STOP_WORDS:
            seen.setdefault(word, None)
    terms = list(seen)
    return terms[:limit] if limit else terms


def keyword_score(terms: list[str], text: str) -> float:
    """Fraction of *terms* present in *text*, weighted by log term frequency.

    Returns a value in [0, 1]; 1.0 means every term occurs at least once
    with the maximum frequency boost.
    """
    if not terms:
        return 0.0
    counts: dict[str, int] = {}
    for match in _WORD_RE.finditer(text):
        word = match.group(0).lower()
        counts[word] = counts.get(word, 0) + 1
    total = 0.0
    for term in terms:
        tf = counts.get(term, 0)
        if tf:
            # 1 hit -> 0.75, 3+ hits -> 1.0
            total += min(1.0, 0.75 + 0.125 * (tf - 1))
    return total / len(terms)
