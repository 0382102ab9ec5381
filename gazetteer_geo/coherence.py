"""
Cross-mention geographic coherence for one document.

Each candidate is compared with the top-ranked candidate of every other
mention, where "top-ranked" uses the pre-coherence ``base_score``. Because
the reference candidates never depend on coherence itself, running the pass
again over the same candidates gives the same values.

All state lives in the candidate lists passed in; nothing is shared across
documents.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

from gazetteer_geo.features import Candidate, FeatureScore
from gazetteer_geo.gazetteer import PlaceSummary
from gazetteer_geo.normalize import haversine_km


def pairwise_proximity(a: PlaceSummary, b: PlaceSummary) -> Optional[float]:
    """``1 / (1 + log10(km + 1))``; None when either place lacks coordinates."""
    if not (a.has_coords and b.has_coords):
        return None
    distance = haversine_km(a.lat, a.lon, b.lat, b.lon)
    return 1.0 / (1.0 + math.log10(distance + 1.0))


def _base_rank_key(c: Candidate) -> tuple:
    return (-c.base_score, -(c.place.population or 0), c.place.id)


def apply_coherence(mentions: Sequence[list[Candidate]]) -> bool:
    """Set the coherence feature on every candidate. Returns whether it applied."""
    active = [i for i, cands in enumerate(mentions) if cands]
    if len(active) < 2:
        for cands in mentions:
            for c in cands:
                c.features["coherence"] = FeatureScore(0.0, {"applied": False, "mentions": len(active)})
        return False

    tops = {i: min(mentions[i], key=_base_rank_key) for i in active}

    for i in active:
        others = [tops[j] for j in active if j != i]
        for c in mentions[i]:
            contributions = []
            compared = []
            for other in others:
                value = pairwise_proximity(c.place, other.place)
                if value is None:
                    continue
                contributions.append(value)
                compared.append(other.place.id)
            score = sum(contributions) / len(contributions) if contributions else 0.0
            c.features["coherence"] = FeatureScore(score, {
                "applied": True,
                "compared_place_ids": compared,
                "pairs": len(contributions),
            })
    return True
