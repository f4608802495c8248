"""
Hybrid reranker for RAG retrieval.

Combines the vector similarity returned by the index with a weighted keyword
score, then narrows the over-fetched candidate set:

    score -> sort -> dedupe by file -> dynamic threshold -> intent filter
          -> minimum-result guarantee -> cap

A source file is the unit of citation, so only its best chunk survives.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from telecom_rag.keyword_scoring import hybrid_score, keyword_boost, score_keywords
from telecom_rag.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class DocumentMetadata:
    """Payload stored alongside a chunk in the vector index."""
    file_name: str
    line_number: str | int
    text: str
    folder: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RetrievedDocument:
    """A chunk returned by vector search, with its similarity score (0..1)."""
    id: str
    score: float
    metadata: DocumentMetadata


@dataclass(frozen=True)
class RankedDocument(RetrievedDocument):
    """A retrieved chunk with its rerank scores."""
    original_rank: int
    semantic_score: float
    keyword_score: float
    hybrid_score: float
    final_score: float


@dataclass
class RerankerConfig:
    semantic_weight: float = 0.6
    keyword_weight: float = 0.4
    initial_retrieval_count: int = 20
    base_threshold: float = 0.27
    threshold_ratio: float = 0.9
    min_results: int = 2
    max_results: int = 5
    keyword_boost: bool = False

    @classmethod
    def from_settings(cls, settings) -> "RerankerConfig":
        return cls(
            semantic_weight=settings.semantic_weight,
            keyword_weight=settings.keyword_weight,
            initial_retrieval_count=settings.initial_retrieval_count,
            base_threshold=settings.rerank_base_threshold,
            threshold_ratio=settings.rerank_threshold_ratio,
            min_results=settings.rerank_min_results,
            max_results=settings.rerank_max_results,
            keyword_boost=settings.keyword_boost_enabled,
        )


@dataclass
class RerankerStats:
    """Statistics from the rerank pipeline."""
    input_count: int
    after_dedup: int
    threshold: float
    after_threshold: int
    intent: "Intent | None"
    after_intent: int
    fallback_applied: bool
    final_count: int


# =============================================================================
# Intent filtering
# =============================================================================

class Intent(str, Enum):
    """Coarse intent kinds that map to a document keyword filter."""
    PRICING = "pricing"
    GAMING = "gaming"
    BILLING = "billing"
    SPEED = "speed"
    PROCEDURE = "procedure"


# Checked in order; the first kind whose trigger appears in the label wins
INTENT_TRIGGERS: tuple[tuple[Intent, tuple[str, ...]], ...] = (
    (Intent.PRICING, ("pric", "tarif", "coût", "cost")),
    (Intent.GAMING, ("gam", "jeu")),
    (Intent.BILLING, ("bill", "factur", "pay")),
    (Intent.SPEED, ("speed", "debit", "lenteur")),
    (Intent.PROCEDURE, ("procedure", "comment", "how")),
)

INTENT_KEYWORDS: dict[Intent, tuple[str, ...]] = {
    Intent.PRICING: ("prix", "tarif", "da/mois", "dinar", "paiement", "facture"),
    Intent.GAMING: ("gaming", "jeu", "ping", "latence", "gamer"),
    Intent.BILLING: ("facture", "paiement", "payer", "edahabia", "cib", "poste"),
    Intent.SPEED: ("débit", "mbps", "vitesse", "lenteur", "test"),
    Intent.PROCEDURE: ("comment", "procédure", "étape", "guide", "démarche"),
}


def classify_intent(label: str | None) -> Intent | None:
    """
    Map a free-text intent label (e.g. from the ghost prompt) to an Intent.

    Returns None for empty, "unknown" or unrecognised labels.
    """
    if not isinstance(label, str) or not label:
        return None
    label_lower = label.lower()
    if label_lower == "unknown":
        return None
    for intent, triggers in INTENT_TRIGGERS:
        if any(trigger in label_lower for trigger in triggers):
            return intent
    return None


def filter_by_intent(documents: list[RankedDocument], intent: Intent) -> list[RankedDocument]:
    """Keep documents whose text contains at least one of the intent's keywords."""
    keywords = INTENT_KEYWORDS.get(intent, ())
    if not keywords:
        return documents
    return [
        doc for doc in documents
        if any(kw in doc.metadata.text.lower() for kw in keywords)
    ]


# =============================================================================
# Pipeline stages
# =============================================================================

def score_documents(
    query: str,
    documents: list[RetrievedDocument],
    config: RerankerConfig,
) -> list[RankedDocument]:
    """Attach semantic, keyword and hybrid scores, preserving retrieval order."""
    ranked = []
    for index, doc in enumerate(documents):
        if config.keyword_boost:
            boost, keyword_result = keyword_boost(query, doc.metadata.text)
        else:
            boost, keyword_result = 1.0, score_keywords(query, doc.metadata.text)

        combined = hybrid_score(
            doc.score,
            keyword_result.score,
            config.semantic_weight,
            config.keyword_weight,
        )
        ranked.append(
            RankedDocument(
                id=doc.id,
                score=doc.score,
                metadata=doc.metadata,
                original_rank=index + 1,
                semantic_score=doc.score,
                keyword_score=keyword_result.score,
                hybrid_score=combined,
                final_score=combined * boost,
            )
        )
    return ranked


def deduplicate_by_file(documents: list[RankedDocument]) -> list[RankedDocument]:
    """
    Keep only the first chunk per file name.

    Assumes documents are sorted by final_score, so the kept chunk is the best.
    """
    seen_files: set[str] = set()
    unique = []
    for doc in documents:
        if doc.metadata.file_name not in seen_files:
            seen_files.add(doc.metadata.file_name)
            unique.append(doc)
    return unique


def dynamic_threshold(top_score: float, base: float = 0.27, ratio: float = 0.9) -> float:
    """Tighten the bar relative to a strong top score, else use the fixed floor."""
    return top_score * ratio if top_score > base else base


def rerank_with_stats(
    query: str,
    documents: list[RetrievedDocument],
    intent: str | None = None,
    config: RerankerConfig | None = None,
) -> tuple[list[RankedDocument], RerankerStats]:
    """
    Full rerank pipeline.

    Args:
        query: Search query used for keyword scoring.
        documents: Over-fetched candidates in vector-index order.
        intent: Optional intent label; "unknown" or unmapped labels disable filtering.
        config: Weights, thresholds and limits (defaults to RerankerConfig()).

    Returns:
        Tuple of (ranked documents sorted by final_score desc, RerankerStats).
    """
    if config is None:
        config = RerankerConfig()

    ranked = score_documents(query, documents, config)

    # sort() is stable: ties keep retrieval order
    ranked.sort(key=lambda d: d.final_score, reverse=True)

    unique = deduplicate_by_file(ranked)

    top_score = unique[0].final_score if unique else 0.0
    threshold = dynamic_threshold(top_score, config.base_threshold, config.threshold_ratio)
    filtered = [doc for doc in unique if doc.final_score >= threshold]
    after_threshold = len(filtered)

    intent_kind = classify_intent(intent)
    if intent_kind is not None:
        intent_docs = filter_by_intent(filtered, intent_kind)
        if intent_docs:
            filtered = intent_docs
        else:
            logger.debug(f"rerank intent_filter skipped | intent={intent_kind.value} | reason=no_matches")
    after_intent = len(filtered)

    fallback_applied = False
    if len(filtered) < config.min_results and len(unique) >= config.min_results:
        filtered = unique[:config.min_results]
        fallback_applied = True

    result = filtered[:config.max_results]

    stats = RerankerStats(
        input_count=len(documents),
        after_dedup=len(unique),
        threshold=threshold,
        after_threshold=after_threshold,
        intent=intent_kind,
        after_intent=after_intent,
        fallback_applied=fallback_applied,
        final_count=len(result),
    )
    return result, stats


def rerank_documents(
    query: str,
    documents: list[RetrievedDocument],
    intent: str | None = None,
    config: RerankerConfig | None = None,
) -> list[RankedDocument]:
    """Rerank documents with the hybrid score and return the final selection."""
    result, stats = rerank_with_stats(query, documents, intent=intent, config=config)

    selected = [(d.metadata.file_name, round(d.final_score, 3)) for d in result]
    logger.info(
        f"rerank | input={stats.input_count} | after_dedup={stats.after_dedup} | "
        f"threshold={stats.threshold:.3f} | after_threshold={stats.after_threshold} | "
        f"intent={stats.intent.value if stats.intent else None} | after_intent={stats.after_intent} | "
        f"fallback={stats.fallback_applied} | final={stats.final_count} | selected={selected}"
    )
    return result
