import math
from types import SimpleNamespace

import pytest

from meetcute.services.similarity import (
    DEFAULT_KEYWORD_RULES,
    STRATEGY_KEYWORD,
    STRATEGY_NONE,
    STRATEGY_VECTOR,
    KeywordRule,
    SimilarityResult,
    SimilarityScorer,
    cosine_similarity,
    describe_rules,
    fired_rules,
    normalize_text,
    vector_confidence,
)

HAT_STORY = "Saw someone in a black SF hat near Coco Apartments, Napa around 6pm, July 23rd."
BABY_STORY = (
    "There was a baby and a guy in a black SF hat outside Coco Apartments "
    "around 6pm on July 23rd in Napa."
)


def _memory(description: str, embedding=None):
    return SimpleNamespace(description=description, embedding=embedding)


def _unit(angle: float) -> list[float]:
    return [math.cos(angle), math.sin(angle)]


def test_normalize_text_unifies_times_and_strips_punctuation() -> None:
    assert normalize_text("Around 6 PM, at Coco's!") == "around 6pm at coco s"
    assert normalize_text("6:00 p.m.") == "6pm"
    assert normalize_text("") == ""


def test_keyword_rule_requires_two_tokens() -> None:
    with pytest.raises(ValueError):
        KeywordRule(name="lonely", tokens=("coffee",), reason="coffee")


def test_keyword_rule_fires_only_when_all_tokens_in_both_texts() -> None:
    rule = KeywordRule(name="venue_and_time", tokens=("coco apartment", "6pm"), reason="r")

    assert rule.fires("coco apartments at 6pm", "6 pm outside Coco Apartments")
    assert not rule.fires("coco apartments at 6pm", "coco apartments at noon")
    assert not rule.fires("coco apartments", "coco apartments at 6pm")


def test_keyword_rule_respects_word_boundaries() -> None:
    rule = KeywordRule(name="date", tokens=("july 23", "napa"), reason="r")

    assert rule.fires("napa on july 23rd", "July 23 in Napa")
    assert not rule.fires("napa on july 230", "july 23 in napa")
    assert not rule.fires("napanese july 23", "july 23 in napa")


def test_describe_rules_joins_reasons() -> None:
    fired = fired_rules(HAT_STORY, BABY_STORY, DEFAULT_KEYWORD_RULES)
    names = {r.name for r in fired}

    assert {"venue_and_time", "town_and_time", "hat_and_date", "venue_and_hat"} <= names
    assert "baby_and_date" not in names  # only one story mentions the baby

    text = describe_rules(fired)
    assert text.startswith("Shared details: ")
    assert "; and " in text
    assert describe_rules([]) == ""


def test_cosine_similarity_rejects_mismatched_lengths() -> None:
    with pytest.raises(ValueError):
        cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0


@pytest.mark.parametrize(
    "a,b",
    [
        (None, [1.0]),
        ([], [1.0]),
        ([1.0, 2.0], [1.0]),
        ([1.0, "x"], [1.0, 2.0]),
        ([1.0, float("nan")], [1.0, 2.0]),
        ([True, False], [1.0, 0.0]),
    ],
)
def test_vector_confidence_is_none_for_malformed_vectors(a, b) -> None:
    assert vector_confidence(a, b) is None


def test_vector_confidence_is_monotone_in_cosine_and_clamped() -> None:
    angles = [0.0, 0.3, 0.6, 1.0, 1.5, 2.0, 3.0]
    scores = [vector_confidence(_unit(0.0), _unit(a)) for a in angles]

    # Larger angle = smaller cosine = never a larger confidence
    assert all(x >= y for x, y in zip(scores, scores[1:]))
    assert all(0.0 <= s <= 1.0 for s in scores)
    assert scores[0] == pytest.approx(1.0)
    assert scores[-1] == 0.0


def test_scorer_candidate_only_at_or_above_threshold() -> None:
    scorer = SimilarityScorer(threshold=0.85, keyword_confidence=0.95, rules=())
    a = _memory("one", [1.0, 0.0])

    high = scorer.score(a, _memory("two", _unit(0.1)))
    low = scorer.score(a, _memory("two", _unit(1.0)))

    assert high.strategy == STRATEGY_VECTOR
    assert scorer.is_candidate(high)
    assert high.reason
    assert not scorer.is_candidate(low)
    assert low.reason == ""

    assert scorer.is_candidate(SimilarityResult(0.85, "", STRATEGY_VECTOR))
    assert not scorer.is_candidate(SimilarityResult(0.8499, "", STRATEGY_VECTOR))
    assert not scorer.is_candidate(SimilarityResult(0.0, "", STRATEGY_NONE))


def test_scorer_falls_back_to_keyword_rules() -> None:
    scorer = SimilarityScorer(threshold=0.85, keyword_confidence=0.95)

    result = scorer.score(_memory(HAT_STORY), _memory(BABY_STORY))

    assert result.strategy == STRATEGY_KEYWORD
    assert result.confidence == pytest.approx(0.95)
    assert "Coco Apartments" in result.reason


def test_keyword_rules_rescue_a_weak_vector_score() -> None:
    scorer = SimilarityScorer(threshold=0.85, keyword_confidence=0.95)

    result = scorer.score(_memory(HAT_STORY, _unit(0.0)), _memory(BABY_STORY, _unit(1.2)))

    assert result.strategy == STRATEGY_KEYWORD
    assert scorer.is_candidate(result)


def test_shared_common_word_never_matches() -> None:
    scorer = SimilarityScorer(threshold=0.85, keyword_confidence=0.95)

    result = scorer.score(
        _memory("I grabbed a coffee before work and read the paper."),
        _memory("We both reached for the last coffee on the counter."),
    )

    assert result.confidence == 0.0
    assert result.strategy == STRATEGY_NONE
    assert not scorer.is_candidate(result)


def test_scorer_reads_threshold_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    from meetcute.core.config import get_settings

    monkeypatch.setenv("MATCH_THRESHOLD", "0.5")
    get_settings.cache_clear()

    assert SimilarityScorer().threshold == 0.5
