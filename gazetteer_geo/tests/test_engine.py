"""
End-to-end tests for the disambiguation engine over the seeded world.
"""

from __future__ import annotations

import threading

import pytest

from gazetteer_geo.engine import DisambiguationEngine
from gazetteer_geo.errors import IndexUnavailable, InputError, NoCandidatesFound
from gazetteer_geo.selector import COHERENCE_METHOD, SCORING_METHOD


def _by_country(explanation):
    return {c.country_code: c for c in explanation.candidates}


class TestDisambiguate:
    def test_publisher_prior_picks_capital(self, engine, place_ids):
        [result] = engine.disambiguate(["Paris"], publisher_id="lemonde")
        assert result.status == "resolved"
        assert result.place_id == place_ids[("Paris", "FR")]
        assert result.confidence == pytest.approx(0.498 / (0.498 + 0.2265), abs=1e-3)
        assert result.method == SCORING_METHOD

    def test_containment_flips_choice(self, engine, place_ids):
        [result] = engine.disambiguate(
            [{"text": "Paris", "start": 0, "end": 5}], text="Paris, Texas"
        )
        assert result.place_id == place_ids[("Paris", "US")]
        assert result.country_code == "US"
        assert result.context == "Paris, Texas"

    def test_offsets_found_from_text(self, engine):
        [result] = engine.disambiguate(["Lyon"], text="We met in Lyon.")
        assert (result.start, result.end) == (10, 14)
        assert result.occurrences == [(10, 14)]

    def test_unknown_mention_unresolved(self, engine):
        results = engine.disambiguate(["Atlantis", "Lyon"])
        assert results[0].status == "unresolved"
        assert results[0].place_id is None
        assert results[0].confidence is None
        assert results[1].status == "resolved"

    def test_slug_fallback(self, engine, place_ids):
        [result] = engine.disambiguate(["usa"])
        assert result.place_id == place_ids[("United States", "US")]

    @pytest.mark.parametrize("mention", [
        {"text": "   "},
        {"start": 0},
        {"text": "Paris", "start": -1},
        {"text": "Paris", "start": 9, "end": 2},
        {"text": "Paris", "start": 4, "end": 4},
    ])
    def test_invalid_mention(self, engine, mention):
        with pytest.raises(InputError):
            engine.disambiguate([mention])

    def test_offsets_outside_document(self, engine):
        with pytest.raises(InputError):
            engine.disambiguate([{"text": "Paris", "start": 10, "end": 15}], text="Paris")

    def test_index_required(self, seeded_store):
        fresh = DisambiguationEngine(seeded_store)
        with pytest.raises(IndexUnavailable):
            fresh.disambiguate(["Paris"])


class TestAnalyze:
    def test_text_with_coherence(self, engine, place_ids):
        results = engine.analyze("Paris, Texas")
        by_key = {r.normalized: r for r in results}
        assert set(by_key) == {"paris", "texas"}
        assert by_key["paris"].place_id == place_ids[("Paris", "US")]
        assert by_key["texas"].place_id == place_ids[("Texas", "US")]
        assert all(r.method == COHERENCE_METHOD for r in results)

    def test_url_only(self, engine, place_ids):
        results = engine.analyze("", url="https://example.com/us/texas/paris/story")
        paris = next(r for r in results if r.normalized == "paris")
        assert paris.source == "url"
        assert paris.place_id == place_ids[("Paris", "US")]

    def test_url_hits_reported_with_text_hits(self, engine):
        [paris] = engine.analyze("Paris is lovely", url="https://example.com/paris/")
        assert paris.occurrences == [(0, 5)]
        assert paris.url_occurrences == [(1, 6)]
        assert paris.count == 2

    def test_nothing_found(self, engine):
        assert engine.analyze("nothing to see here") == []

    def test_results_are_write_once(self, engine, seeded_store):
        results = engine.analyze("Paris, Texas")
        assert seeded_store.save_resolved_mentions("doc-1", results) == 2
        assert seeded_store.save_resolved_mentions("doc-1", results) == 0
        rows = seeded_store.get_resolved_mentions("doc-1")
        assert [r["mention_key"] for r in rows] == ["paris", "texas"]


class TestExplain:
    def test_context_breakdown(self, engine):
        record = engine.explain(
            {"text": "Paris", "context": "Paris is a small town in Texas near Dallas"},
            publisher_id="lemonde",
        )
        by_cc = _by_country(record)
        assert by_cc["US"].features["context"] == pytest.approx(1.0)
        assert by_cc["FR"].features["context"] == 0.0
        assert by_cc["US"].raw["context"]["region_hits"] == ["texas"]
        assert set(record.weights) == {"population", "admin", "prior", "context", "coherence"}

    def test_candidates_ranked_with_summary(self, engine, place_ids):
        record = engine.explain("Paris", publisher_id="lemonde")
        assert record.selected_place_id == place_ids[("Paris", "FR")]
        assert [c.rank for c in record.candidates] == [1, 2]
        assert record.candidates[0].final_score > record.candidates[1].final_score
        assert sum(c.normalized_score for c in record.candidates) == pytest.approx(1.0)
        assert record.summary.startswith("Resolved 'Paris' to Paris (FR) with moderate confidence")

    def test_restricted_candidates(self, engine, place_ids):
        record = engine.explain("Paris", candidates=[place_ids[("Paris", "US")]])
        assert [c.place_id for c in record.candidates] == [place_ids[("Paris", "US")]]
        assert record.confidence == 1.0

    def test_other_mentions_feed_coherence(self, engine, place_ids):
        record = engine.explain("Paris", other_mentions=["Dallas"])
        assert record.method == COHERENCE_METHOD
        by_cc = _by_country(record)
        assert by_cc["US"].features["coherence"] > by_cc["FR"].features["coherence"]

    def test_no_candidates(self, engine):
        with pytest.raises(NoCandidatesFound):
            engine.explain("Atlantis")


class TestIndexLifecycle:
    def test_background_build(self, engine):
        future = engine.build_index(background=True)
        handle = future.result(timeout=30)
        assert handle.version == 2
        assert engine.registry.current().version == 2

    def test_reads_continue_during_background_build(self, engine, place_ids):
        results = []
        errors = []
        lock = threading.Lock()

        def resolve():
            try:
                for _ in range(20):
                    [r] = engine.disambiguate(["Paris"], publisher_id="lemonde")
                    with lock:
                        results.append(r.place_id)
            except Exception as e:
                with lock:
                    errors.append(e)

        futures = [engine.build_index(background=True) for _ in range(3)]
        threads = [threading.Thread(target=resolve) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        handles = [f.result(timeout=30) for f in futures]

        assert errors == []
        assert results == [place_ids[("Paris", "FR")]] * 80
        assert [h.version for h in handles] == [2, 3, 4]

    def test_ingest_then_rebuild(self, engine):
        assert engine.disambiguate(["Marseille"])[0].status == "unresolved"
        summary = engine.ingest_batch("osm", [
            {"kind": "city", "name": "Marseille", "country": "FR", "lat": 43.3, "lon": 5.37},
        ])
        assert summary.created == 1
        engine.build_index()
        assert engine.disambiguate(["Marseille"])[0].status == "resolved"

    def test_new_coverage_visible_after_rebuild(self, seeded_store, place_ids):
        e = DisambiguationEngine(seeded_store)
        e.build_index()
        try:
            before = e.explain("Paris", publisher_id="kxas")
            seeded_store.record_coverage("kxas", place_ids[("Dallas", "US")], 5)
            stale = e.explain("Paris", publisher_id="kxas")
            e.build_index()
            fresh = e.explain("Paris", publisher_id="kxas")
        finally:
            e.close()
        us = place_ids[("Paris", "US")]
        assert before.selected_place_id == stale.selected_place_id == place_ids[("Paris", "FR")]
        assert fresh.selected_place_id == us

    def test_store_coverage_used_by_default(self, seeded_store, place_ids):
        seeded_store.record_coverage("kxas", place_ids[("Dallas", "US")], 5)
        e = DisambiguationEngine(seeded_store)
        e.build_index()
        [result] = e.disambiguate(["Paris"], publisher_id="kxas")
        e.close()
        # every covered story is in the US, so the prior outweighs population
        assert result.place_id == place_ids[("Paris", "US")]
