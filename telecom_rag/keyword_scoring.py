"""
Keyword relevance scoring for hybrid reranking.

A query's priority keywords (see telecom_rag.keywords) are counted in the
document text with diminishing returns, plain query words add a smaller
contribution, and the total is normalized to 0-1 so scores stay comparable
across queries of different lengths.
"""
import math
import re
from dataclasses import dataclass, field

from telecom_rag.keywords import clean_token, extract_keywords_with_weights


@dataclass
class KeywordMatch:
    keyword: str
    weight: float
    count: int


@dataclass
class KeywordScore:
    score: float
    matches: list[KeywordMatch] = field(default_factory=list)


def count_keyword(keyword: str, text: str) -> int:
    """Count whole-word, case-insensitive occurrences of a literal keyword."""
    pattern = re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE)
    return len(pattern.findall(text))


def score_keywords(query: str, document_text: str) -> KeywordScore:
    """
    Calculate keyword relevance of a document for a query.

    Returns:
        KeywordScore with score in [0, 1] and the priority keywords found.
    """
    query_keywords = extract_keywords_with_weights(query)
    priority = {kw.keyword for kw in query_keywords}
    doc_lower = document_text.lower()

    matches: list[KeywordMatch] = []
    total = 0.0
    max_possible = 0.0

    for kw in query_keywords:
        max_possible += kw.weight
        count = count_keyword(kw.keyword, doc_lower)
        if count > 0:
            # log scale, capped at 2x the weight
            total += kw.weight * min(1 + math.log10(count), 2)
            matches.append(KeywordMatch(keyword=kw.keyword, weight=kw.weight, count=count))

    seen_words: set[str] = set()
    for word in query.lower().split():
        token = clean_token(word)
        if len(token) < 3 or token in priority or token in seen_words:
            continue
        seen_words.add(token)
        max_possible += 1.0
        if token in doc_lower:
            total += 0.5

    score = min(total / max_possible, 1.0) if max_possible > 0 else 0.0
    return KeywordScore(score=score, matches=matches)


def hybrid_score(
    semantic_score: float,
    keyword_score: float,
    semantic_weight: float = 0.6,
    keyword_weight: float = 0.4,
) -> float:
    """Weighted combination of vector similarity and keyword relevance."""
    return semantic_score * semantic_weight + keyword_score * keyword_weight


def keyword_boost(query: str, document_text: str) -> tuple[float, KeywordScore]:
    """
    Boost factor for documents containing high-priority keywords.

    Each matched keyword adds (weight - 1) * 5% per occurrence, counting at
    most 3 occurrences. The factor is capped at 1.5.
    """
    keyword_result = score_keywords(query, document_text)
    boost = 1.0
    for match in keyword_result.matches:
        boost += (match.weight - 1.0) * 0.05 * min(match.count, 3)
    return min(boost, 1.5), keyword_result
