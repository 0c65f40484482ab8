"""
Lexical scoring helpers.

Used by the keyword searcher for query term extraction and by the chunk
store as the scoring fallback on databases without native full-text
ranking (SQLite).
"""

import math
import re
from collections import Counter
from typing import Iterable, List, Sequence

TOKEN_RE = re.compile(r"[a-z0-9]+")

# Terms of this length or shorter carry no lexical signal.
MIN_TERM_LENGTH = 3

STOPWORDS = frozenset({
    "about", "after", "all", "also", "and", "any", "are", "because", "been",
    "before", "but", "can", "could", "did", "does", "doing", "for", "from",
    "had", "has", "have", "how", "into", "its", "more", "most", "not", "now",
    "off", "only", "other", "our", "out", "over", "should", "some", "such",
    "than", "that", "the", "their", "them", "then", "there", "these", "they",
    "this", "those", "too", "very", "was", "were", "what", "when", "where",
    "which", "while", "who", "whom", "why", "will", "with", "would", "you",
    "your",
})


def tokenize(text: str) -> List[str]:
    """Lowercase alphanumeric tokens."""
    return TOKEN_RE.findall(text.lower())


def query_terms(query: str) -> List[str]:
    """
    Distinct content terms of a query, in order of first appearance.

    Example:
        >>> query_terms("What is a deload week?")
        ['deload', 'week']
    """
    seen = set()
    terms = []
    for token in tokenize(query):
        if len(token) < MIN_TERM_LENGTH or token in STOPWORDS or token in seen:
            continue
        seen.add(token)
        terms.append(token)
    return terms


def lexical_score(terms: Sequence[str], text: str) -> float:
    """
    Term-frequency/coverage score of ``text`` for ``terms``.

    score = coverage * log(1 + total term frequency), where coverage is the
    fraction of query terms present. 0.0 when no term matches.
    """
    if not terms:
        return 0.0
    counts = Counter(tokenize(text))
    frequencies = [counts.get(term, 0) for term in terms]
    matched = sum(1 for f in frequencies if f > 0)
    if matched == 0:
        return 0.0
    coverage = matched / len(terms)
    return coverage * math.log1p(sum(frequencies))


def tsquery(terms: Iterable[str]) -> str:
    """OR-query for PostgreSQL ``to_tsquery``; terms are already alphanumeric."""
    return " | ".join(terms)
