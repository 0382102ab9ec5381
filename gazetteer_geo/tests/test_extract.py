"""
Tests for mention extraction from text and URLs against a seeded index.
"""

from __future__ import annotations

from gazetteer_geo.config import ExtractConfig
from gazetteer_geo.extract import MentionExtractor, extract_document


def _keys(mentions):
    return [m.key for m in mentions]


class TestTextExtraction:
    def test_longest_span_wins(self, index):
        mentions = MentionExtractor().extract_text(index, "Flooding across Île-de-France today")
        assert _keys(mentions) == ["ile de france"]
        m = mentions[0]
        assert m.text == "Île-de-France"
        assert (m.start, m.end) == (16, 29)
        assert m.source == "text"

    def test_repeats_are_merged(self, index):
        text = "Paris rallies. Later in Paris, more rallies."
        mentions = MentionExtractor().extract_text(index, text)
        assert _keys(mentions) == ["paris"]
        assert mentions[0].count == 2
        assert mentions[0].occurrences == ((0, 5), (24, 29))
        assert len(mentions[0].candidates) == 2

    def test_order_of_first_occurrence(self, index):
        mentions = MentionExtractor().extract_text(index, "From Lyon to Dallas via Lyon")
        assert _keys(mentions) == ["lyon", "dallas"]

    def test_lowercase_ignored_when_capitalization_required(self, index):
        assert MentionExtractor().extract_text(index, "the paris accords") == []
        relaxed = MentionExtractor(ExtractConfig(require_capitalized=False))
        assert _keys(relaxed.extract_text(index, "the paris accords")) == ["paris"]

    def test_organisation_followers_dropped(self, index):
        mentions = MentionExtractor().extract_text(index, "Paris Hilton and Texas Instruments visited Lyon")
        assert _keys(mentions) == ["lyon"]

    def test_person_titles_dropped(self, index):
        assert MentionExtractor().extract_text(index, "Interview with Mr. Dallas") == []

    def test_context_window(self, index):
        extractor = MentionExtractor(ExtractConfig(context_window_chars=6))
        m = extractor.extract_text(index, "I flew from Lyon yesterday")[0]
        assert m.context == " from Lyon yeste"
        assert m.context[m.context_offset:m.context_offset + len(m.text)] == "Lyon"

    def test_tokens_split_by_newline_do_not_join(self, index):
        mentions = MentionExtractor().extract_text(index, "United\nStates")
        assert "united states" not in _keys(mentions)


class TestUrlExtraction:
    def test_path_narrows_candidates(self, index, place_ids):
        mentions = MentionExtractor().extract_url(
            index, "https://news.example.com/us/texas/paris/story-123"
        )
        assert _keys(mentions) == ["us", "texas", "paris"]
        paris = mentions[2]
        assert paris.source == "url"
        assert [c.id for c in paris.candidates] == [place_ids[("Paris", "US")]]

    def test_unrelated_path_keeps_all_candidates(self, index):
        mentions = MentionExtractor().extract_url(index, "https://example.com/travel/paris-guide")
        assert _keys(mentions) == ["paris"]
        assert len(mentions[0].candidates) == 2

    def test_multiword_slug(self, index):
        mentions = MentionExtractor().extract_url(index, "https://example.com/ile-de-france/news")
        assert _keys(mentions) == ["ile-de-france"]

    def test_host_is_ignored(self, index):
        assert MentionExtractor().extract_url(index, "https://paris.example.com/") == []


class TestDocumentExtraction:
    def test_text_and_url_merge(self, index):
        mentions = extract_document(index, "Paris is lovely", url="https://example.com/paris/")
        assert len(mentions) == 1
        assert mentions[0].source == "text"
        assert mentions[0].count == 2
        assert mentions[0].occurrences == ((0, 5),)
        assert mentions[0].url_occurrences == ((1, 6),)

    def test_count_covers_text_and_url_hits(self, index):
        text = "Paris, then Paris again"
        for m in extract_document(index, text, url="https://example.com/paris/paris-guide"):
            assert m.count == len(m.occurrences) + len(m.url_occurrences)

    def test_url_only_mentions_appended(self, index):
        mentions = extract_document(index, "Paris is lovely", url="https://example.com/lyon/")
        assert [m.source for m in mentions] == ["text", "url"]

    def test_empty_document(self, index):
        assert extract_document(index) == []
