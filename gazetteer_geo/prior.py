"""
Publisher prior: how much of a publisher's past coverage falls in a country.

    prior = floor + (1 - floor) * share

where ``share`` is the publisher's coverage count for the candidate's
country over its total coverage. Unknown publishers get ``floor``.

Counts are read once per publisher and kept until ``invalidate()``, which
the engine calls after every index rebuild: coverage recorded in between
shows up with the next index version.
"""

from __future__ import annotations

import logging
import threading
from typing import Mapping, Optional, Protocol

logger = logging.getLogger(__name__)


class CoverageSource(Protocol):
    def coverage_counts(self, publisher: str) -> Mapping[str, int]:
        """Historical coverage count per country code for a publisher."""


class StaticCoverage:
    """In-memory coverage table, ``{publisher: {country_code: count}}``."""

    def __init__(self, counts: Mapping[str, Mapping[str, int]]):
        self._counts = {p: dict(c) for p, c in counts.items()}

    def coverage_counts(self, publisher: str) -> Mapping[str, int]:
        return dict(self._counts.get(publisher, {}))


class PublisherPrior:
    def __init__(self, source: Optional[CoverageSource], floor: float = 0.1):
        if not 0.0 <= floor <= 1.0:
            raise ValueError(f"prior floor must be in [0, 1], got {floor}")
        self.source = source
        self.floor = floor
        self._cache: dict[str, dict[str, int]] = {}
        self._lock = threading.Lock()

    def counts(self, publisher: str) -> dict[str, int]:
        with self._lock:
            cached = self._cache.get(publisher)
            if cached is None:
                cached = dict(self.source.coverage_counts(publisher)) if self.source else {}
                self._cache[publisher] = cached
            return cached

    def invalidate(self) -> None:
        with self._lock:
            self._cache = {}

    def score(self, publisher_id: Optional[str], country_code: Optional[str]) -> tuple[float, dict]:
        raw = {
            "publisher": publisher_id,
            "country_code": country_code,
            "country_count": 0,
            "total": 0,
            "floor": self.floor,
        }
        if not publisher_id:
            return self.floor, raw

        counts = self.counts(publisher_id)
        total = sum(counts.values())
        country_count = counts.get(country_code, 0) if country_code else 0
        raw.update(total=total, country_count=country_count)
        if total <= 0:
            return self.floor, raw

        share = country_count / total
        raw["share"] = share
        return self.floor + (1.0 - self.floor) * share, raw
