"""
Tests for name normalization, slugs, tokens and distances.
Pure functions, no store required.
"""

from __future__ import annotations

import pytest

from gazetteer_geo.normalize import (
    country_display_names,
    haversine_km,
    haversine_km_many,
    iter_tokens,
    normalize_name,
    slugify,
    subdivision_display_name,
)


class TestNormalizeName:
    def test_diacritics_dropped(self):
        assert normalize_name("São Paulo") == "sao paulo"
        assert normalize_name("Île-de-France") == "ile de france"
        assert normalize_name("Zürich") == "zurich"

    def test_case_and_whitespace(self):
        assert normalize_name("  NEW   York ") == "new york"
        assert normalize_name("Straße") == "strasse"

    def test_punctuation_becomes_space(self):
        assert normalize_name("St. Louis") == "st louis"
        assert normalize_name("Washington, D.C.") == "washington d c"

    def test_inner_apostrophe_kept(self):
        assert normalize_name("Côte d’Ivoire") == "cote d'ivoire"
        assert normalize_name("'Paris'") == "paris"

    def test_empty(self):
        assert normalize_name("") == ""
        assert normalize_name("!!!") == ""

    def test_idempotent(self):
        once = normalize_name("Saint-Germain-en-Laye")
        assert normalize_name(once) == once


class TestSlugify:
    def test_basic(self):
        assert slugify("New York City") == "new-york-city"
        assert slugify("Île-de-France") == "ile-de-france"

    def test_apostrophe_folds_into_separator(self):
        assert slugify("Côte d'Ivoire") == "cote-d-ivoire"

    def test_empty(self):
        assert slugify("   ") == ""


class TestTokens:
    def test_offsets_point_into_source(self):
        text = "From Paris to São Paulo"
        tokens = list(iter_tokens(text))
        assert [t[2] for t in tokens] == ["from", "paris", "to", "sao", "paulo"]
        start, end, _ = tokens[3]
        assert text[start:end] == "São"

    def test_apostrophe_joins_only_inside_word(self):
        tokens = [t[2] for t in iter_tokens("L'Aquila's 'old' town")]
        assert tokens == ["l'aquila's", "old", "town"]


class TestHaversine:
    def test_zero_distance(self):
        assert haversine_km(48.85, 2.35, 48.85, 2.35) == pytest.approx(0.0)

    def test_paris_to_london(self):
        assert haversine_km(48.8566, 2.3522, 51.5074, -0.1278) == pytest.approx(343.5, abs=2.0)

    def test_vectorized_matches_scalar(self):
        lats, lons = [51.5074, 40.7128], [-0.1278, -74.0060]
        many = haversine_km_many(48.8566, 2.3522, lats, lons)
        for d, lat, lon in zip(many, lats, lons):
            assert float(d) == pytest.approx(haversine_km(48.8566, 2.3522, lat, lon), rel=1e-9)


class TestDisplayNames:
    def test_country_names(self):
        names = country_display_names("FR")
        assert "France" in names
        assert "French Republic" in names

    def test_unknown_country(self):
        assert country_display_names("ZZ") == ()
        assert country_display_names(None) == ()

    def test_subdivision(self):
        assert subdivision_display_name("US", "TX") == "Texas"
        assert subdivision_display_name("US", None) is None
        assert subdivision_display_name("US", "QQ") is None
