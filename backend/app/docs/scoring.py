"""Similarity and score fusion used by in-process chunk search.

PostgreSQL computes these in SQL (pgvector ``<=>`` and ``ts_rank_cd``); the
functions here reproduce the same contract for stores without those
operators.
"""

import math
import re

_WORD = re.compile(r"[a-z0-9]+")

# Small English stopword list, mirroring what plainto_tsquery('english') drops
STOPWORDS = frozenset(
    "a an and are as at be but by for from has have how i in is it its of on or "
    "that the this to was what when where which who why will with you your".split()
)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either is all zeros."""
    if len(a) != len(b):
        raise ValueError(f"Vector dimensions differ: {len(a)} != {len(b)}")

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def query_terms(query_text: str) -> list[str]:
    """Lexical query terms: lowercase words minus stopwords."""
    return [t for t in _WORD.findall(query_text.lower()) if t not in STOPWORDS]


def lexical_rank(content: str, terms: list[str]) -> float:
    """Raw lexical rank of content for the query terms.

    Like a plain ``tsquery`` the match requires every term to be present;
    otherwise the rank is 0.0. The rank is the density of term occurrences,
    which lands on the same small scale as ``ts_rank_cd``.
    """
    if not terms:
        return 0.0

    words = _WORD.findall(content.lower())
    if not words:
        return 0.0

    counts = {term: 0 for term in terms}
    for word in words:
        if word in counts:
            counts[word] += 1

    if any(count == 0 for count in counts.values()):
        return 0.0
    return sum(counts.values()) / len(words)


def fuse_scores(
    similarity: float,
    raw_lexical_rank: float,
    *,
    vector_weight: float = 0.7,
    lexical_weight: float = 0.3,
) -> float:
    """Combined score with the lexical contribution capped at 1.0."""
    return vector_weight * similarity + lexical_weight * min(raw_lexical_rank * 10, 1.0)
