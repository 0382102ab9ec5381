"""
Layered duplicate detection for incoming places.

Strategies run in strict priority order and the first hit wins:
  1. external_id   exact (source, id) mapping already in the store
  2. admin_codes   same country + admin1 + admin2 for region-like types
  3. name_country  shared normalized name + country for city-like types
  4. proximity     same place-type bucket, centroids within a threshold
  5. identity      no coordinates: same type, a shared name and equal
                   country/admin codes, missing codes compared as missing
No hit means the caller creates a new place.

Callers run ``find`` inside the store transaction that performs the upsert,
so a concurrent batch cannot slip a duplicate in between.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from gazetteer_geo.config import IngestConfig
from gazetteer_geo.models import CITY_LIKE, REGION_LIKE, PlaceInput, PlaceType, proximity_bucket
from gazetteer_geo.normalize import haversine_km
from gazetteer_geo.store import GazetteerStore

logger = logging.getLogger(__name__)

STRATEGY_EXTERNAL_ID = "external_id"
STRATEGY_ADMIN_CODES = "admin_codes"
STRATEGY_NAME_COUNTRY = "name_country"
STRATEGY_PROXIMITY = "proximity"
STRATEGY_IDENTITY = "identity"
STRATEGY_NEW = "new"


@dataclass(frozen=True)
class DedupMatch:
    place_id: int
    strategy: str
    distance_km: Optional[float] = None


class PlaceMatcher:
    def __init__(self, store: GazetteerStore, config: IngestConfig):
        self.store = store
        self.config = config
        self._strategies: tuple[Callable[[PlaceInput], Optional[DedupMatch]], ...] = (
            self.by_external_id,
            self.by_admin_codes,
            self.by_name_and_country,
            self.by_proximity,
            self.by_identity,
        )

    def find(self, place: PlaceInput) -> Optional[DedupMatch]:
        for strategy in self._strategies:
            match = strategy(place)
            if match is not None:
                logger.debug("Matched %s to place %d via %s",
                             _label(place), match.place_id, match.strategy)
                return match
        return None

    def by_external_id(self, place: PlaceInput) -> Optional[DedupMatch]:
        for ref in place.external_ids:
            place_id = self.store.find_by_external_id(ref.source, ref.ext_id)
            if place_id is not None:
                return DedupMatch(place_id, STRATEGY_EXTERNAL_ID)
        return None

    def by_admin_codes(self, place: PlaceInput) -> Optional[DedupMatch]:
        if place.place_type not in REGION_LIKE or not place.country_code:
            return None
        if place.place_type == PlaceType.ADMIN1 and not place.admin1:
            return None
        if place.place_type == PlaceType.ADMIN2 and not (place.admin1 and place.admin2):
            return None
        place_id = self.store.find_by_admin_codes(
            place.place_type, place.country_code, place.admin1, place.admin2
        )
        return DedupMatch(place_id, STRATEGY_ADMIN_CODES) if place_id is not None else None

    def by_name_and_country(self, place: PlaceInput) -> Optional[DedupMatch]:
        if place.place_type not in CITY_LIKE or not place.country_code:
            return None
        rows = self.store.find_by_name_and_country(
            place.normalized_names(), place.country_code, CITY_LIKE
        )
        for row in rows:
            if place.has_coords and row["lat"] is not None and row["lng"] is not None:
                distance = haversine_km(place.lat, place.lon, row["lat"], row["lng"])
                # Same name, same country, far apart: a different town
                if distance > self.config.name_match_max_km:
                    continue
                return DedupMatch(row["id"], STRATEGY_NAME_COUNTRY, distance)
            return DedupMatch(row["id"], STRATEGY_NAME_COUNTRY)
        return None

    def by_proximity(self, place: PlaceInput) -> Optional[DedupMatch]:
        if not place.has_coords:
            return None
        hits = self.store.find_nearby(
            proximity_bucket(place.place_type),
            place.lat,
            place.lon,
            self.config.proximity_threshold_km,
            place.country_code,
        )
        if not hits:
            return None
        place_id, distance = hits[0]
        return DedupMatch(place_id, STRATEGY_PROXIMITY, distance)

    def by_identity(self, place: PlaceInput) -> Optional[DedupMatch]:
        # With coordinates, a proximity miss means a different place
        if place.has_coords:
            return None
        place_id = self.store.find_by_identity(
            place.place_type, place.normalized_names(),
            place.country_code, place.admin1, place.admin2,
        )
        return DedupMatch(place_id, STRATEGY_IDENTITY) if place_id is not None else None


def _label(place: PlaceInput) -> str:
    name = place.names[0].name if place.names else "?"
    return f"{name} ({place.place_type.value}, {place.country_code or '--'})"
