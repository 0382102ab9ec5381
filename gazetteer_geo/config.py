"""
Central configuration loaded from environment variables with sensible defaults.
Composite values (trust tables, language lists) use compact comma strings.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from functools import lru_cache


def _parse_trust(raw: str) -> dict[str, int]:
    """Parse ``"wikidata=80,geonames=70"`` into a dict."""
    table: dict[str, int] = {}
    for part in raw.split(","):
        if "=" not in part:
            continue
        key, _, value = part.partition("=")
        table[key.strip().lower()] = int(value.strip())
    return table


def _parse_list(raw: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class StoreConfig:
    path: str = os.getenv("GAZETTEER_DB_PATH", "data/gazetteer.sqlite")
    busy_timeout_ms: int = int(os.getenv("GAZETTEER_DB_BUSY_TIMEOUT_MS", "5000"))


@dataclass(frozen=True)
class IngestConfig:
    # ~0.05 degrees of latitude
    proximity_threshold_km: float = float(os.getenv("DEDUP_PROXIMITY_KM", "5.5"))
    # Same name + country but centroids further apart than this are different places
    name_match_max_km: float = float(os.getenv("DEDUP_NAME_MATCH_MAX_KM", "50.0"))
    source_trust: dict[str, int] = field(default_factory=lambda: _parse_trust(
        os.getenv("SOURCE_TRUST", "manual=100,wikidata=80,geonames=70,restcountries=60,osm=50")
    ))
    default_trust: int = int(os.getenv("SOURCE_TRUST_DEFAULT", "10"))
    language_priority: tuple[str, ...] = field(default_factory=lambda: _parse_list(
        os.getenv("NAME_LANGUAGE_PRIORITY", "en,und")
    ))
    file_batch_size: int = int(os.getenv("INGEST_FILE_BATCH_SIZE", "500"))

    def trust_for(self, source: str) -> int:
        return self.source_trust.get(source.lower(), self.default_trust)


@dataclass(frozen=True)
class IndexConfig:
    max_name_tokens: int = int(os.getenv("INDEX_MAX_NAME_TOKENS", "6"))
    rebuild_interval_minutes: int = int(os.getenv("INDEX_REBUILD_INTERVAL_MIN", "60"))
    scheduler_enabled: bool = os.getenv("INDEX_SCHEDULER_ENABLED", "true").lower() == "true"


@dataclass(frozen=True)
class ExtractConfig:
    context_window_chars: int = int(os.getenv("EXTRACT_CONTEXT_CHARS", "100"))
    require_capitalized: bool = os.getenv("EXTRACT_REQUIRE_CAPITALIZED", "true").lower() == "true"
    min_name_length: int = int(os.getenv("EXTRACT_MIN_NAME_LENGTH", "2"))


@dataclass(frozen=True)
class ScoringWeights:
    population: float = 0.30
    admin: float = 0.15
    prior: float = 0.20
    context: float = 0.20
    coherence: float = 0.15

    def __post_init__(self):
        total = sum(self.as_dict().values())
        if not math.isclose(total, 1.0, abs_tol=1e-9):
            raise ValueError(f"Scoring weights must sum to 1.0, got {total!r}")

    def as_dict(self) -> dict[str, float]:
        return {
            "population": self.population,
            "admin": self.admin,
            "prior": self.prior,
            "context": self.context,
            "coherence": self.coherence,
        }


@dataclass(frozen=True)
class ScoringConfig:
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    publisher_prior_floor: float = float(os.getenv("PUBLISHER_PRIOR_FLOOR", "0.1"))
    nearby_km: float = float(os.getenv("CONTEXT_NEARBY_KM", "150.0"))
    population_log_divisor: float = float(os.getenv("POPULATION_LOG_DIVISOR", "7.0"))
    # Bump when scoring logic changes so stored results are superseded, not mutated
    analysis_version: str = os.getenv("ANALYSIS_VERSION", "1")


@dataclass(frozen=True)
class Settings:
    store: StoreConfig = field(default_factory=StoreConfig)
    ingest: IngestConfig = field(default_factory=IngestConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    extract: ExtractConfig = field(default_factory=ExtractConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    env: str = os.getenv("APP_ENV", "development")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
