"""
Tests for weighting, ranking, confidence and candidate explanations.
"""

from __future__ import annotations

import pytest

from gazetteer_geo.config import ScoringWeights
from gazetteer_geo.features import Candidate, FeatureScore
from gazetteer_geo.selector import Selector, confidence_label


def _candidate(place, **values):
    return Candidate(place=place, features={k: FeatureScore(v) for k, v in values.items()})


class TestScoringWeights:
    def test_defaults_sum_to_one(self):
        assert sum(ScoringWeights().as_dict().values()) == pytest.approx(1.0)

    def test_bad_sum_rejected(self):
        with pytest.raises(ValueError):
            ScoringWeights(population=0.5)


class TestRank:
    def test_weighted_sum(self, index, place_ids):
        c = _candidate(index.place(place_ids[("Lyon", "FR")]), population=1.0, prior=0.5)
        [ranked] = Selector().rank([c])
        assert ranked.final_score == pytest.approx(0.30 + 0.20 * 0.5)
        assert ranked.rank == 1
        assert ranked.normalized_score == pytest.approx(1.0)

    def test_tie_broken_by_population_then_id(self, index, place_ids):
        paris_fr = index.place(place_ids[("Paris", "FR")])
        paris_us = index.place(place_ids[("Paris", "US")])
        ranked = Selector().rank([_candidate(paris_us, prior=0.5), _candidate(paris_fr, prior=0.5)])
        assert [c.place.id for c in ranked] == [paris_fr.id, paris_us.id]

        ranked = Selector().rank([_candidate(paris_us), _candidate(paris_us)])
        assert [c.rank for c in ranked] == [1, 2]

    def test_zero_scores_normalize_to_zero(self, index, place_ids):
        ranked = Selector().rank([
            _candidate(index.place(place_ids[("Paris", "FR")])),
            _candidate(index.place(place_ids[("Paris", "US")])),
        ])
        assert all(c.normalized_score == 0.0 for c in ranked)


class TestConfidence:
    def test_empty(self):
        assert Selector.confidence([]) is None

    def test_single(self, index, place_ids):
        ranked = Selector().rank([_candidate(index.place(place_ids[("Lyon", "FR")]))])
        assert Selector.confidence(ranked) == 1.0

    def test_top_over_top_two(self, index, place_ids):
        ranked = Selector().rank([
            _candidate(index.place(place_ids[("Paris", "FR")]), population=0.6),
            _candidate(index.place(place_ids[("Paris", "US")]), population=0.2),
        ])
        assert Selector.confidence(ranked) == pytest.approx(0.75)

    def test_both_zero(self, index, place_ids):
        ranked = Selector().rank([
            _candidate(index.place(place_ids[("Paris", "FR")])),
            _candidate(index.place(place_ids[("Paris", "US")])),
        ])
        assert Selector.confidence(ranked) == 0.0

    @pytest.mark.parametrize("confidence,label", [
        (None, "none"), (0.95, "high"), (0.8, "moderate"), (0.7, "moderate"), (0.5, "low"),
    ])
    def test_labels(self, confidence, label):
        assert confidence_label(confidence) == label


class TestExplainCandidate:
    def test_fields(self, index, place_ids):
        paris = index.place(place_ids[("Paris", "FR")])
        c = _candidate(paris, population=0.9, admin=0.3, prior=0.91)
        [ranked] = Selector().rank([c])
        explanation = Selector().explain_candidate(ranked)
        assert explanation.place_id == paris.id
        assert explanation.features["coherence"] == 0.0
        assert explanation.weighted["admin"] == pytest.approx(0.045)
        assert explanation.normalized_score == pytest.approx(1.0)
        assert "large population" in explanation.reasoning
        assert "capital" in explanation.reasoning

    def test_no_signals(self, index, place_ids):
        c = _candidate(index.place(place_ids[("Lyon", "FR")]))
        [ranked] = Selector().rank([c])
        assert Selector().explain_candidate(ranked).reasoning == "no strong signals"
