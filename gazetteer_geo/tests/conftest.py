"""
Shared fixtures: sqlite stores under tmp_path and a small seeded world.
"""

from __future__ import annotations

import pytest

from gazetteer_geo.config import get_settings
from gazetteer_geo.engine import DisambiguationEngine
from gazetteer_geo.gazetteer import build_index
from gazetteer_geo.ingest import ingest_batch
from gazetteer_geo.models import PlaceRecord
from gazetteer_geo.prior import StaticCoverage
from gazetteer_geo.store import GazetteerStore

# Countries, regions and towns with enough overlap to be ambiguous:
# two Parises, a region whose name contains a country name, a Texas city
# that is a sibling of Paris, Texas.
WORLD = [
    {"kind": "country", "name": "France", "names": ["French Republic"], "country": "FR",
     "lat": 46.6, "lon": 2.2, "population": 68_000_000,
     "external_ids": [{"source": "iso", "id": "FR"}]},
    {"kind": "country", "name": "United States", "country": "US",
     "lat": 39.8, "lon": -98.6, "population": 331_000_000,
     "external_ids": [{"source": "iso", "id": "US"}]},
    {"kind": "state", "name": "Texas", "country": "US", "admin1": "TX",
     "lat": 31.0, "lon": -99.0, "population": 29_000_000},
    {"kind": "region", "name": "Île-de-France", "country": "FR", "admin1": "11",
     "lat": 48.7, "lon": 2.5, "population": 12_000_000},
    {"kind": "capital", "name": "Paris", "country": "FR", "admin1": "11",
     "lat": 48.8566, "lon": 2.3522, "population": 2_100_000, "feature_code": "PPLC"},
    {"kind": "city", "name": "Paris", "country": "US", "admin1": "TX",
     "lat": 33.66, "lon": -95.55, "population": 25_000},
    {"kind": "city", "name": "Lyon", "country": "FR", "lat": 45.76, "lon": 4.83,
     "population": 513_000},
    {"kind": "city", "name": "Dallas", "country": "US", "admin1": "TX",
     "lat": 32.78, "lon": -96.80, "population": 1_300_000},
]


GEONAMES_PARIS = "\t".join([
    "2988507", "Paris", "Paris", "Lutece,Parigi,Paryz", "48.85341", "2.3488", "P", "PPLC",
    "FR", "", "11", "75", "751", "75056", "2138551", "", "42", "Europe/Paris", "2024-01-01",
])


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def world():
    return [dict(r) for r in WORLD]


@pytest.fixture
def geonames_paris():
    """One line of a GeoNames dump, tab separated, 19 columns."""
    return GEONAMES_PARIS


@pytest.fixture
def store(tmp_path):
    s = GazetteerStore(str(tmp_path / "gazetteer.sqlite"))
    yield s
    s.close()


@pytest.fixture
def seeded_store(store):
    summary = ingest_batch(store, "manual", WORLD)
    assert summary.rejected == 0
    return store


@pytest.fixture
def index(seeded_store):
    return build_index(seeded_store, version=1)


@pytest.fixture
def place_ids(seeded_store):
    """``{(name, country_code): place_id}`` for the seeded world."""
    ids = {}
    for place_id in range(1, seeded_store.count_places() + 1):
        place = seeded_store.get_place(place_id)
        ids[(place["canonical_name"], place["country_code"])] = place_id
    return ids


@pytest.fixture
def place_factory():
    def make(name: str, kind: str = "city", source: str = "manual", **fields):
        return PlaceRecord(kind=kind, name=name, **fields).to_place_inputs(source)[0]
    return make


@pytest.fixture
def coverage():
    return StaticCoverage({"lemonde": {"FR": 90, "US": 10}})


@pytest.fixture
def engine(seeded_store, coverage):
    e = DisambiguationEngine(seeded_store, coverage=coverage)
    e.build_index()
    yield e
    e.close()
