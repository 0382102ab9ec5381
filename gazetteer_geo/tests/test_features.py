"""
Tests for the per-candidate features and the publisher prior.
"""

from __future__ import annotations

import threading

import pytest

from gazetteer_geo.config import ScoringConfig
from gazetteer_geo.extract import MentionExtractor
from gazetteer_geo.features import FEATURE_NAMES, FeatureScorer, admin_score, population_score
from gazetteer_geo.gazetteer import PlaceSummary
from gazetteer_geo.prior import PublisherPrior, StaticCoverage


def _summary(**overrides) -> PlaceSummary:
    fields = dict(
        id=1, name="X", kind="city", place_type="city", country_code="FR", admin1=None,
        admin2=None, population=None, lat=None, lon=None, feature_code=None,
        is_capital=False, names=frozenset({"x"}), slugs=frozenset({"x"}),
    )
    fields.update(overrides)
    return PlaceSummary(**fields)


@pytest.fixture
def scorer():
    prior = PublisherPrior(StaticCoverage({"lemonde": {"FR": 90, "US": 10}}), floor=0.1)
    return FeatureScorer(MentionExtractor(), prior, ScoringConfig())


def _by_country(candidates):
    return {c.place.country_code: c for c in candidates}


def _paris(index, text):
    return next(m for m in MentionExtractor().extract_text(index, text) if m.key == "paris")


class TestPopulation:
    def test_log_scale(self):
        assert population_score(1_000).value == pytest.approx(3 / 7)
        assert population_score(10_000_000).value == pytest.approx(1.0)

    def test_clamped(self):
        assert population_score(10 ** 9).value == 1.0

    def test_unknown(self):
        assert population_score(None).value == 0.0
        assert population_score(0).value == 0.0


class TestAdmin:
    def test_type_table(self):
        assert admin_score(_summary(place_type="country")).value == pytest.approx(0.4)
        assert admin_score(_summary(place_type="admin1")).value == pytest.approx(0.15)
        assert admin_score(_summary(place_type="city")).value == 0.0

    def test_designation(self):
        assert admin_score(_summary(feature_code="PPLA")).value == pytest.approx(0.2)
        assert admin_score(_summary(feature_code="PPLA2")).value == pytest.approx(0.1)
        assert admin_score(_summary(is_capital=True)).value == pytest.approx(0.3)

    def test_max_of_type_and_designation(self):
        s = admin_score(_summary(place_type="admin2", feature_code="PPLC"))
        assert s.value == pytest.approx(0.3)
        assert s.raw["type_boost"] == pytest.approx(0.05)


class TestPublisherPrior:
    def test_share(self):
        prior = PublisherPrior(StaticCoverage({"p": {"FR": 90, "US": 10}}), floor=0.1)
        value, raw = prior.score("p", "FR")
        assert value == pytest.approx(0.1 + 0.9 * 0.9)
        assert raw["share"] == pytest.approx(0.9)
        assert prior.score("p", "US")[0] == pytest.approx(0.19)
        assert prior.score("p", "DE")[0] == pytest.approx(0.1)

    def test_floor_without_publisher_or_coverage(self):
        prior = PublisherPrior(StaticCoverage({}), floor=0.1)
        assert prior.score(None, "FR")[0] == 0.1
        assert prior.score("unknown", "FR")[0] == 0.1
        assert PublisherPrior(None).score("p", "FR")[0] == 0.1

    def test_counts_cached_until_invalidated(self):
        class CountingSource:
            calls = 0

            def coverage_counts(self, publisher):
                CountingSource.calls += 1
                return {"FR": 1}

        prior = PublisherPrior(CountingSource())
        prior.score("p", "FR")
        prior.score("p", "US")
        assert CountingSource.calls == 1
        prior.invalidate()
        prior.score("p", "FR")
        assert CountingSource.calls == 2

    def test_concurrent_readers_fetch_once(self):
        class CountingSource:
            calls = 0

            def coverage_counts(self, publisher):
                CountingSource.calls += 1
                return {"FR": 3, "US": 1}

        prior = PublisherPrior(CountingSource())
        values = []

        def read():
            for _ in range(50):
                values.append(prior.score("p", "FR")[0])

        threads = [threading.Thread(target=read) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert CountingSource.calls == 1
        assert values == [pytest.approx(0.1 + 0.9 * 0.75)] * 200

    def test_bad_floor(self):
        with pytest.raises(ValueError):
            PublisherPrior(None, floor=1.5)

    def test_store_as_coverage_source(self, seeded_store, place_ids):
        seeded_store.record_coverage("kxas", place_ids[("Dallas", "US")], 3)
        seeded_store.record_coverage("kxas", place_ids[("Lyon", "FR")], 1)
        prior = PublisherPrior(seeded_store)
        assert prior.score("kxas", "US")[0] == pytest.approx(0.1 + 0.9 * 0.75)


class TestFeatureScorer:
    def test_all_features_present_and_bounded(self, scorer, index):
        candidates = scorer.score(index, _paris(index, "Paris"), "lemonde")
        assert len(candidates) == 2
        for c in candidates:
            assert set(c.features) == set(FEATURE_NAMES)
            assert all(0.0 <= c.value(name) <= 1.0 for name in FEATURE_NAMES)

    def test_prior_follows_publisher(self, scorer, index):
        by_cc = _by_country(scorer.score(index, _paris(index, "Paris"), "lemonde"))
        assert by_cc["FR"].value("prior") == pytest.approx(0.91)
        assert by_cc["US"].value("prior") == pytest.approx(0.19)

    def test_containment_by_region_name(self, scorer, index):
        by_cc = _by_country(scorer.score(index, _paris(index, "Paris, Texas"), None))
        assert by_cc["US"].value("containment") == 1.0
        assert by_cc["US"].value("context") == 1.0
        assert by_cc["FR"].value("containment") == 0.0
        assert by_cc["FR"].value("context") == 0.0

    def test_containment_by_code(self, scorer, index):
        by_cc = _by_country(scorer.score(index, _paris(index, "Paris (TX) officials said"), None))
        assert by_cc["US"].value("containment") == pytest.approx(0.8)
        assert by_cc["FR"].value("containment") == 0.0

    def test_containment_by_country_name(self, scorer, index):
        by_cc = _by_country(scorer.score(index, _paris(index, "Paris, France"), None))
        assert by_cc["FR"].value("containment") == 1.0
        assert by_cc["US"].value("containment") == 0.0

    def test_context_hits(self, scorer, index, place_ids):
        text = "Paris is a small town in Texas, a short drive from Dallas."
        by_cc = _by_country(scorer.score(index, _paris(index, text), None))
        us = by_cc["US"]
        assert us.features["context"].raw["region_hits"] == ["texas"]
        assert us.features["context"].raw["adjacent_place_ids"] == [place_ids[("Dallas", "US")]]
        assert us.value("context") == 1.0
        assert by_cc["FR"].value("context") == 0.0

    def test_country_hit_alone(self, scorer, index):
        by_cc = _by_country(scorer.score(index, _paris(index, "Paris was quiet, France reported"), None))
        assert by_cc["FR"].value("context") == pytest.approx(0.3)

    def test_coherence_starts_unapplied(self, scorer, index):
        for c in scorer.score(index, _paris(index, "Paris"), None):
            assert c.value("coherence") == 0.0
            assert c.features["coherence"].raw["applied"] is False
