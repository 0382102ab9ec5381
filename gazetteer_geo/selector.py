"""
Weighted combination, ranking, confidence and explanation.
"""

from __future__ import annotations

from typing import Optional

from gazetteer_geo.config import ScoringWeights
from gazetteer_geo.features import FEATURE_NAMES, Candidate
from gazetteer_geo.models import CandidateExplanation

SCORING_METHOD = "weighted-features"
COHERENCE_METHOD = "weighted-features+coherence"


def rank_key(c: Candidate) -> tuple:
    """Higher score first, then larger population, then lowest place id."""
    return (-c.final_score, -(c.place.population or 0), c.place.id)


def confidence_label(confidence: Optional[float]) -> str:
    if confidence is None:
        return "none"
    if confidence > 0.8:
        return "high"
    if confidence > 0.6:
        return "moderate"
    return "low"


class Selector:
    def __init__(self, weights: Optional[ScoringWeights] = None):
        self.weights = weights or ScoringWeights()

    def weighted(self, c: Candidate) -> dict[str, float]:
        return {name: w * c.value(name) for name, w in self.weights.as_dict().items()}

    def base_score(self, c: Candidate) -> float:
        """Weighted sum without coherence, used to pick coherence references."""
        return sum(v for name, v in self.weighted(c).items() if name != "coherence")

    def rank(self, candidates: list[Candidate]) -> list[Candidate]:
        for c in candidates:
            c.final_score = sum(self.weighted(c).values())
        ranked = sorted(candidates, key=rank_key)
        total = sum(c.final_score for c in ranked)
        for position, c in enumerate(ranked, start=1):
            c.rank = position
            c.normalized_score = c.final_score / total if total > 0 else 0.0
        return ranked

    @staticmethod
    def confidence(ranked: list[Candidate]) -> Optional[float]:
        if not ranked:
            return None
        if len(ranked) == 1:
            return 1.0
        top, second = ranked[0].final_score, ranked[1].final_score
        total = top + second
        if total <= 0:
            return 0.0
        return max(0.0, min(1.0, top / total))

    def reasoning(self, c: Candidate) -> str:
        reasons = []
        if c.value("population") > 0.5:
            reasons.append(f"large population ({c.place.population:,})")
        if c.value("prior") > 0.3:
            reasons.append(f"publisher frequently covers {c.place.country_code or 'this area'}")
        if c.value("context") > 0.3:
            if c.value("containment") >= c.value("context"):
                reasons.append("named with its containing region")
            else:
                reasons.append("context mentions related places")
        if c.value("coherence") > 0.5:
            reasons.append("geographically consistent with other mentions")
        if c.value("admin") > 0.1:
            kind = "capital" if c.place.is_capital else c.place.place_type
            reasons.append(f"administrative importance ({kind})")
        return "; ".join(reasons) if reasons else "no strong signals"

    def explain_candidate(self, c: Candidate) -> CandidateExplanation:
        weights = self.weights.as_dict()
        return CandidateExplanation(
            place_id=c.place.id,
            name=c.place.name,
            country_code=c.place.country_code,
            place_type=c.place.place_type,
            population=c.place.population,
            features={name: c.value(name) for name in FEATURE_NAMES},
            raw={name: dict(c.features[name].raw) for name in FEATURE_NAMES if name in c.features},
            weighted={name: weights.get(name, 0.0) * c.value(name) for name in FEATURE_NAMES},
            final_score=c.final_score,
            normalized_score=min(1.0, max(0.0, c.normalized_score)),
            rank=c.rank,
            reasoning=self.reasoning(c),
        )
