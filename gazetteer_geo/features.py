"""
Per-candidate feature scores.

Every feature is bounded to [0, 1] and keeps the raw inputs it was computed
from, so the explanation can show exactly why a candidate scored as it did.

  population   log10(population) / 7, clamped; 0 when unknown
  admin        max(place-type boost, capital/seat designation boost)
  prior        publisher coverage share for the candidate's country
  context      country (0.3) + region (0.5) + adjacent place (0.7) hits
               in the context window, capped at 1 and never below
               the containment score
  containment  "Paris, Texas" / "Paris (Texas)" naming the candidate's
               own country, region or ancestor
  coherence    filled in later by the coherence pass
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Optional

from gazetteer_geo.config import ScoringConfig
from gazetteer_geo.extract import MentionExtractor, RawMention, Span
from gazetteer_geo.gazetteer import GazetteerIndex, PlaceSummary
from gazetteer_geo.normalize import (
    country_display_names,
    haversine_km,
    iter_tokens,
    normalize_name,
    subdivision_display_name,
)
from gazetteer_geo.prior import PublisherPrior

FEATURE_NAMES = ("population", "admin", "prior", "context", "containment", "coherence")

ADMIN_TYPE_BOOST = {
    "country": 0.4,
    "continent": 0.2,
    "admin1": 0.15,
    "admin2": 0.05,
    "city": 0.0,
    "locality": 0.0,
    "other": 0.0,
}
DESIGNATION_BOOST = {"PPLC": 0.3, "PPLA": 0.2, "PPLA2": 0.1}
CAPITAL_BOOST = DESIGNATION_BOOST["PPLC"]

CONTEXT_HIT_WEIGHTS = {"country": 0.3, "region": 0.5, "adjacent": 0.7}
CONTAINMENT_NAME_SCORE = 1.0
CONTAINMENT_CODE_SCORE = 0.8

_CONTAINMENT_RE = re.compile(r"^\s*(?:,\s*([^,.;:()\n]+)|\(\s*([^)\n]+)\))")
_MAX_CONTAINMENT_TOKENS = 4


@dataclass(frozen=True)
class FeatureScore:
    value: float
    raw: dict = field(default_factory=dict)


@dataclass
class Candidate:
    """Scoring-time state for one place a mention could refer to."""
    place: PlaceSummary
    features: dict[str, FeatureScore] = field(default_factory=dict)
    base_score: float = 0.0
    final_score: float = 0.0
    normalized_score: float = 0.0
    rank: int = 0

    def value(self, name: str) -> float:
        feature = self.features.get(name)
        return feature.value if feature else 0.0


def _clamp(x: float) -> float:
    return max(0.0, min(1.0, x))


def _contains_phrase(haystack: str, phrase: str) -> bool:
    return bool(phrase) and f" {phrase} " in f" {haystack} "


def population_score(population: Optional[int], divisor: float = 7.0) -> FeatureScore:
    if not population or population <= 0:
        return FeatureScore(0.0, {"population": population})
    return FeatureScore(
        _clamp(math.log10(population) / divisor),
        {"population": population, "divisor": divisor},
    )


def admin_score(place: PlaceSummary) -> FeatureScore:
    type_boost = ADMIN_TYPE_BOOST.get(place.place_type, 0.0)
    designation = DESIGNATION_BOOST.get((place.feature_code or "").upper(), 0.0)
    if place.is_capital:
        designation = max(designation, CAPITAL_BOOST)
    return FeatureScore(max(type_boost, designation), {
        "place_type": place.place_type,
        "feature_code": place.feature_code,
        "is_capital": place.is_capital,
        "type_boost": type_boost,
        "designation_boost": designation,
    })


@dataclass(frozen=True)
class _MentionContext:
    """Context facts shared by every candidate of one mention."""
    normalized: str
    following: str
    spans: tuple[Span, ...]


class FeatureScorer:
    def __init__(self, extractor: MentionExtractor, prior: PublisherPrior, config: ScoringConfig):
        self.extractor = extractor
        self.prior = prior
        self.config = config

    def score(self, index: GazetteerIndex, mention: RawMention,
              publisher_id: Optional[str]) -> list[Candidate]:
        ctx = self._mention_context(index, mention)
        candidates = []
        for place in mention.candidates:
            prior_value, prior_raw = self.prior.score(publisher_id, place.country_code)
            containment = self.containment_score(index, place, ctx.following)
            context = self.context_score(index, place, ctx, containment.value)
            candidates.append(Candidate(place=place, features={
                "population": population_score(place.population, self.config.population_log_divisor),
                "admin": admin_score(place),
                "prior": FeatureScore(_clamp(prior_value), prior_raw),
                "context": context,
                "containment": containment,
                "coherence": FeatureScore(0.0, {"applied": False}),
            }))
        return candidates

    def _mention_context(self, index: GazetteerIndex, mention: RawMention) -> _MentionContext:
        context = mention.context or ""
        if mention.context_offset is not None:
            rel_end = mention.context_offset + len(mention.text)
            remainder = context[:mention.context_offset] + " " + context[rel_end:]
            following = context[rel_end:]
        else:
            remainder, following = context, ""
            found = context.lower().find(mention.text.lower()) if mention.text else -1
            if found >= 0:
                rel_end = found + len(mention.text)
                remainder = context[:found] + " " + context[rel_end:]
                following = context[rel_end:]

        spans = tuple(
            s for s in self.extractor.find_spans(index, remainder) if s.key != mention.key
        )
        return _MentionContext(normalize_name(remainder), following, spans)

    # ── Container names ───────────────────────────────────────────────

    def country_names(self, index: GazetteerIndex, place: PlaceSummary) -> set[str]:
        names: set[str] = set()
        country = index.country_for(place)
        if country is not None and country.id != place.id:
            names |= country.names
        for ancestor in index.ancestors_of(place.id):
            if ancestor.place_type == "country":
                names |= ancestor.names
        if place.place_type != "country":
            names |= {normalize_name(n) for n in country_display_names(place.country_code)}
        names.discard("")
        return names

    def region_names(self, index: GazetteerIndex, place: PlaceSummary) -> set[str]:
        names: set[str] = set()
        admin1 = index.admin1_for(place)
        if admin1 is not None and admin1.id != place.id:
            names |= admin1.names
        for ancestor in index.ancestors_of(place.id):
            if ancestor.place_type in ("admin1", "admin2"):
                names |= ancestor.names
        if place.place_type not in ("country", "admin1"):
            names.add(normalize_name(subdivision_display_name(place.country_code, place.admin1) or ""))
        names.discard("")
        return names

    # ── Context and containment ───────────────────────────────────────

    def containment_score(self, index: GazetteerIndex, place: PlaceSummary,
                          following: str) -> FeatureScore:
        m = _CONTAINMENT_RE.match(following or "")
        if not m:
            return FeatureScore(0.0, {"phrase": None})
        phrase = (m.group(1) or m.group(2) or "").strip()
        tokens = [t for _, _, t in iter_tokens(phrase)][:_MAX_CONTAINMENT_TOKENS]
        raw_tokens = [phrase[s:e] for s, e, _ in iter_tokens(phrase)][:_MAX_CONTAINMENT_TOKENS]
        if not tokens:
            return FeatureScore(0.0, {"phrase": phrase})

        containers = self.country_names(index, place) | self.region_names(index, place)
        for ancestor in index.ancestors_of(place.id):
            containers |= ancestor.names
        for width in range(len(tokens), 0, -1):
            candidate_phrase = " ".join(tokens[:width])
            if candidate_phrase in containers:
                return FeatureScore(CONTAINMENT_NAME_SCORE, {
                    "phrase": phrase, "matched": candidate_phrase, "via": "name",
                })

        code = raw_tokens[0]
        codes = {c for c in (place.admin1, place.country_code) if c}
        if code.isupper() and code in codes:
            return FeatureScore(CONTAINMENT_CODE_SCORE, {"phrase": phrase, "matched": code, "via": "code"})
        return FeatureScore(0.0, {"phrase": phrase})

    def context_score(self, index: GazetteerIndex, place: PlaceSummary,
                      ctx: _MentionContext, containment: float) -> FeatureScore:
        country_names = self.country_names(index, place)
        region_names = self.region_names(index, place)
        country_hits = sorted(n for n in country_names if _contains_phrase(ctx.normalized, n))
        region_hits = sorted(n for n in region_names if _contains_phrase(ctx.normalized, n))

        container_ids = set(index.hierarchy.ancestors(place.id))
        for container in (index.country_for(place), index.admin1_for(place)):
            if container is not None:
                container_ids.add(container.id)

        adjacent: list[int] = []
        for span in ctx.spans:
            for other in span.candidates:
                if other.id == place.id or other.id in container_ids:
                    continue
                if other.names & (country_names | region_names):
                    continue
                if index.hierarchy.related(place.id, other.id) or self._nearby(place, other):
                    adjacent.append(other.id)
                    break

        keyword = 0.0
        if country_hits:
            keyword += CONTEXT_HIT_WEIGHTS["country"]
        if region_hits:
            keyword += CONTEXT_HIT_WEIGHTS["region"]
        if adjacent:
            keyword += CONTEXT_HIT_WEIGHTS["adjacent"]
        keyword = _clamp(keyword)

        return FeatureScore(max(keyword, containment), {
            "keyword_score": keyword,
            "containment_score": containment,
            "country_hits": country_hits,
            "region_hits": region_hits,
            "adjacent_place_ids": sorted(set(adjacent)),
        })

    def _nearby(self, a: PlaceSummary, b: PlaceSummary) -> bool:
        if not (a.has_coords and b.has_coords):
            return False
        return haversine_km(a.lat, a.lon, b.lat, b.lon) <= self.config.nearby_km
