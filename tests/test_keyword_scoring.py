"""
Tests for the keyword weight table and keyword scorer.

Run with: pytest tests/test_keyword_scoring.py -v -s
"""
import pytest

from telecom_rag.keyword_scoring import count_keyword, hybrid_score, keyword_boost, score_keywords
from telecom_rag.keywords import KEYWORD_WEIGHTS, extract_keywords_with_weights, get_keyword_weight


def test_keyword_weights():
    """Known keywords carry their category weight; unknown words weigh 1.0."""
    assert get_keyword_weight("gaming") == 2.5
    assert get_keyword_weight("GAMING") == 2.5
    assert get_keyword_weight("facture") == 1.8
    assert get_keyword_weight("bonjour") == 1.0
    # "solde" is in offers (2.0), mobile and billing (1.8): highest wins
    assert KEYWORD_WEIGHTS["solde"] == 2.0
    print("✓ Keyword weights verified")


def test_extract_keywords_with_weights():
    """Priority tokens are cleaned of punctuation; multi-word phrases are found."""
    found = {kw.keyword: kw.weight for kw in extract_keywords_with_weights("Le Pack Gamer, prix?")}

    assert found["pack"] == 2.0
    assert found["gamer"] == 2.5
    assert found["prix"] == 2.0
    assert found["pack gamer"] == 2.5
    assert "le" not in found
    print("✓ Keyword extraction verified")


def test_count_keyword_whole_words():
    assert count_keyword("jeu", "jeu, jeux et JEU") == 2
    assert count_keyword("fibre", "fibres") == 0


def test_gaming_pack_price_prefers_matching_document():
    """A document with "pack gamer" and "tarif" beats one with neither."""
    query = "gaming pack price"
    matching = score_keywords(query, "Le pack gamer est disponible au tarif de 2000 DA/mois.")
    unrelated = score_keywords(query, "Horaires d'ouverture des agences commerciales.")

    assert matching.score > unrelated.score
    assert unrelated.score == 0.0
    assert 0.0 < matching.score <= 1.0
    print(f"✓ Matching {matching.score:.3f} > unrelated {unrelated.score:.3f}")


def test_score_diminishing_returns_and_bounds():
    """More occurrences help, with log-scale diminishing returns capped at 1."""
    query = "promotion offre"
    once = score_keywords(query, "promotion")
    three = score_keywords(query, "promotion promotion promotion")
    many = score_keywords(query, " ".join(["promotion"] * 10))
    huge = score_keywords(query, " ".join(["promotion"] * 1000))

    assert once.score == pytest.approx(0.5)
    assert once.score < three.score < many.score
    # contribution is capped at twice the keyword weight
    assert many.score == pytest.approx(1.0)
    assert huge.score == pytest.approx(1.0)
    assert many.matches[0].count == 10


def test_non_priority_words_contribute_half():
    """Plain query words (>= 3 chars) add 0.5 out of 1.0 when present."""
    result = score_keywords("horaires agence oran", "Les horaires de l'agence d'Oran")
    # "agence" is a priority keyword (1.5); "horaires" and "oran" are plain words
    assert result.score > 0
    plain_only = score_keywords("horaires oran", "horaires oran")
    assert plain_only.score == pytest.approx(0.5)


def test_empty_query_scores_zero():
    assert score_keywords("", "anything").score == 0.0
    assert score_keywords("a b", "a b").score == 0.0


def test_hybrid_score_weights():
    assert hybrid_score(1.0, 0.0) == pytest.approx(0.6)
    assert hybrid_score(0.0, 1.0) == pytest.approx(0.4)
    assert hybrid_score(0.5, 0.5, 0.5, 0.5) == pytest.approx(0.5)


def test_keyword_boost_capped():
    """Boost grows with priority matches and never exceeds 1.5."""
    boost, _ = keyword_boost("gaming offre", "gaming gaming gaming offre offre offre")
    assert 1.0 < boost <= 1.5

    no_match, _ = keyword_boost("gaming", "rien à voir")
    assert no_match == 1.0

    capped, _ = keyword_boost(
        "gaming pubg fortnite fifa ping lag",
        "gaming pubg fortnite fifa ping lag " * 3,
    )
    assert capped == 1.5
