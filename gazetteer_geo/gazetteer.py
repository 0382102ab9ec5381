"""
In-memory gazetteer index built from a single scan of the store.

Structures:
  - name_index: normalized name -> place summaries carrying that name
  - slug_index: URL slug -> place summaries, for path-based extraction
  - hierarchy:  transitive closure of the containment graph
  - country_by_code / admin1_by_code: code lookups used by scoring

A built index is never mutated. ``IndexRegistry`` publishes a new snapshot
by swapping one reference, so readers always see either the old index or
the complete new one. A build that raises leaves the old index in place.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Mapping, Optional, Union

from gazetteer_geo.config import Settings, get_settings
from gazetteer_geo.errors import IndexUnavailable
from gazetteer_geo.hierarchy import HierarchyIndex
from gazetteer_geo.models import PlaceType
from gazetteer_geo.normalize import COUNTRY_CODE_SYNONYMS, slugify
from gazetteer_geo.store import GazetteerStore, StoreSnapshot

logger = logging.getLogger(__name__)

CAPITAL_FEATURE_CODES = frozenset({"PPLC"})


@dataclass(frozen=True)
class PlaceSummary:
    id: int
    name: str
    kind: str
    place_type: str
    country_code: Optional[str]
    admin1: Optional[str]
    admin2: Optional[str]
    population: Optional[int]
    lat: Optional[float]
    lon: Optional[float]
    feature_code: Optional[str]
    is_capital: bool
    names: frozenset[str]
    slugs: frozenset[str]

    @property
    def has_coords(self) -> bool:
        return self.lat is not None and self.lon is not None


@dataclass(frozen=True)
class IndexHandle:
    version: int
    built_at: datetime
    places: int
    names: int
    slugs: int
    edges: int
    duration_s: float


class GazetteerIndex:
    """Immutable lookup snapshot. Construct through ``build_index``."""

    def __init__(
        self,
        places: dict[int, PlaceSummary],
        name_index: dict[str, tuple[PlaceSummary, ...]],
        slug_index: dict[str, tuple[PlaceSummary, ...]],
        hierarchy: HierarchyIndex,
        country_by_code: dict[str, PlaceSummary],
        admin1_by_code: dict[tuple[str, str], PlaceSummary],
        max_name_tokens: int,
        version: int = 0,
        duration_s: float = 0.0,
    ):
        self.places: Mapping[int, PlaceSummary] = MappingProxyType(places)
        self.name_index: Mapping[str, tuple[PlaceSummary, ...]] = MappingProxyType(name_index)
        self.slug_index: Mapping[str, tuple[PlaceSummary, ...]] = MappingProxyType(slug_index)
        self.hierarchy = hierarchy
        self.country_by_code: Mapping[str, PlaceSummary] = MappingProxyType(country_by_code)
        self.admin1_by_code: Mapping[tuple[str, str], PlaceSummary] = MappingProxyType(admin1_by_code)
        self.max_name_tokens = max_name_tokens
        self.version = version
        self.built_at = datetime.now(timezone.utc)
        self.duration_s = duration_s

    def lookup_name(self, normalized: str) -> tuple[PlaceSummary, ...]:
        return self.name_index.get(normalized, ())

    def lookup_slug(self, slug: str) -> tuple[PlaceSummary, ...]:
        return self.slug_index.get(slug, ())

    def place(self, place_id: int) -> Optional[PlaceSummary]:
        return self.places.get(place_id)

    def is_ancestor(self, ancestor_id: int, place_id: int) -> bool:
        return self.hierarchy.is_ancestor(ancestor_id, place_id)

    def ancestors_of(self, place_id: int) -> list[PlaceSummary]:
        return [
            self.places[a] for a in sorted(self.hierarchy.ancestors(place_id)) if a in self.places
        ]

    def country_for(self, place: PlaceSummary) -> Optional[PlaceSummary]:
        if not place.country_code:
            return None
        return self.country_by_code.get(place.country_code)

    def admin1_for(self, place: PlaceSummary) -> Optional[PlaceSummary]:
        if not place.country_code or not place.admin1:
            return None
        return self.admin1_by_code.get((place.country_code, place.admin1))

    def handle(self) -> IndexHandle:
        return IndexHandle(
            version=self.version,
            built_at=self.built_at,
            places=len(self.places),
            names=len(self.name_index),
            slugs=len(self.slug_index),
            edges=len(self.hierarchy),
            duration_s=self.duration_s,
        )

    def stats(self) -> dict:
        h = self.handle()
        return {
            "version": h.version,
            "places": h.places,
            "names": h.names,
            "slugs": h.slugs,
            "edges": h.edges,
        }


def _slugs_for(place: dict, normalized_names: set[str]) -> set[str]:
    slugs = {slugify(n) for n in normalized_names}
    if place["place_type"] == PlaceType.COUNTRY.value and place["country_code"]:
        cc = place["country_code"]
        slugs.add(cc.lower())
        slugs.update(COUNTRY_CODE_SYNONYMS.get(cc, ()))
    slugs.discard("")
    return slugs


def _prefer(current: Optional[PlaceSummary], candidate: PlaceSummary) -> PlaceSummary:
    """Keep the more populous place for a code, lowest id on ties."""
    if current is None:
        return candidate
    key = lambda p: (-(p.population or 0), p.id)  # noqa: E731
    return min(current, candidate, key=key)


def build_index(source: Union[GazetteerStore, StoreSnapshot], version: int = 0,
                settings: Optional[Settings] = None) -> GazetteerIndex:
    """Build a complete index from the store in one pass."""
    settings = settings or get_settings()
    started = time.monotonic()
    snapshot = source.load_snapshot() if isinstance(source, GazetteerStore) else source

    names_by_place: dict[int, list[dict]] = {}
    for row in snapshot.names:
        names_by_place.setdefault(row["place_id"], []).append(row)

    capital_children = {e["child_id"] for e in snapshot.edges if e["relation"] == "capital_of"}

    places: dict[int, PlaceSummary] = {}
    name_lists: dict[str, list[PlaceSummary]] = {}
    slug_lists: dict[str, list[PlaceSummary]] = {}
    country_by_code: dict[str, PlaceSummary] = {}
    admin1_by_code: dict[tuple[str, str], PlaceSummary] = {}
    longest = 1

    for row in snapshot.places:
        name_rows = names_by_place.get(row["id"], [])
        normalized = {n["normalized"] for n in name_rows}
        if not normalized:
            logger.warning("Place %d has no names; left out of the name indexes", row["id"])
        display = row["canonical_name"] or (name_rows[0]["name"] if name_rows else f"place:{row['id']}")
        summary = PlaceSummary(
            id=row["id"],
            name=display,
            kind=row["kind"],
            place_type=row["place_type"],
            country_code=row["country_code"],
            admin1=row["admin1_code"],
            admin2=row["admin2_code"],
            population=row["population"],
            lat=row["lat"],
            lon=row["lng"],
            feature_code=row["feature_code"],
            is_capital=(
                row["id"] in capital_children
                or (row["feature_code"] or "").upper() in CAPITAL_FEATURE_CODES
                or row["kind"] == "capital"
            ),
            names=frozenset(normalized),
            slugs=frozenset(_slugs_for(row, normalized)),
        )
        places[summary.id] = summary

        for key in summary.names:
            name_lists.setdefault(key, []).append(summary)
            longest = max(longest, len(key.split()))
        for slug in summary.slugs:
            slug_lists.setdefault(slug, []).append(summary)

        if summary.country_code:
            if summary.place_type == PlaceType.COUNTRY.value:
                country_by_code[summary.country_code] = _prefer(
                    country_by_code.get(summary.country_code), summary
                )
            elif summary.place_type == PlaceType.ADMIN1.value and summary.admin1:
                code = (summary.country_code, summary.admin1)
                admin1_by_code[code] = _prefer(admin1_by_code.get(code), summary)

    hierarchy = HierarchyIndex((e["parent_id"], e["child_id"]) for e in snapshot.edges)

    by_id = lambda p: p.id  # noqa: E731
    index = GazetteerIndex(
        places=places,
        name_index={k: tuple(sorted(v, key=by_id)) for k, v in name_lists.items()},
        slug_index={k: tuple(sorted(v, key=by_id)) for k, v in slug_lists.items()},
        hierarchy=hierarchy,
        country_by_code=country_by_code,
        admin1_by_code=admin1_by_code,
        max_name_tokens=min(longest, settings.index.max_name_tokens),
        version=version,
        duration_s=round(time.monotonic() - started, 3),
    )
    logger.info("Built gazetteer index v%d: %s in %.2fs",
                version, index.stats(), index.duration_s)
    return index


class IndexRegistry:
    """Holds the current index behind a single swappable reference."""

    def __init__(self):
        self._current: Optional[GazetteerIndex] = None
        self._build_lock = threading.Lock()
        self._version = 0

    @property
    def is_ready(self) -> bool:
        return self._current is not None

    def current(self) -> GazetteerIndex:
        index = self._current
        if index is None:
            raise IndexUnavailable("no gazetteer index has been published yet")
        return index

    def publish(self, index: GazetteerIndex) -> None:
        self._current = index
        logger.info("Published gazetteer index v%d", index.version)

    def rebuild(self, store: GazetteerStore, settings: Optional[Settings] = None) -> IndexHandle:
        """Build from the store and publish; on failure the old index keeps serving."""
        with self._build_lock:
            version = self._version + 1
            try:
                index = build_index(store, version=version, settings=settings)
            except Exception:
                logger.error("Index build v%d failed; keeping v%d", version, self._version)
                raise
            self._version = version
            self.publish(index)
        return index.handle()
