"""
Pydantic models used across the gazetteer for validation and serialization.
These are pure data objects, no database coupling.

Source records are a tagged variant: one model per known source schema
(Wikidata, GeoNames, REST Countries) plus a generic shape for anything else.
Every variant normalizes into ``PlaceInput`` at the ingestion boundary.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from gazetteer_geo.normalize import normalize_name


# ── Enums ──────────────────────────────────────────────────────────────

class PlaceType(str, Enum):
    COUNTRY = "country"
    ADMIN1 = "admin1"
    ADMIN2 = "admin2"
    CITY = "city"
    LOCALITY = "locality"
    CONTINENT = "continent"
    OTHER = "other"


class NameKind(str, Enum):
    OFFICIAL = "official"
    COMMON = "common"
    ALIAS = "alias"
    ENDONYM = "endonym"
    EXONYM = "exonym"


# Free-form source kinds mapped onto the normalized place_type enum
KIND_TO_PLACE_TYPE: dict[str, PlaceType] = {
    "country": PlaceType.COUNTRY,
    "sovereign_state": PlaceType.COUNTRY,
    "nation": PlaceType.COUNTRY,
    "region": PlaceType.ADMIN1,
    "state": PlaceType.ADMIN1,
    "province": PlaceType.ADMIN1,
    "admin1": PlaceType.ADMIN1,
    "adm1": PlaceType.ADMIN1,
    "county": PlaceType.ADMIN2,
    "district": PlaceType.ADMIN2,
    "admin2": PlaceType.ADMIN2,
    "adm2": PlaceType.ADMIN2,
    "city": PlaceType.CITY,
    "town": PlaceType.CITY,
    "capital": PlaceType.CITY,
    "admin_capital": PlaceType.CITY,
    "admin2_capital": PlaceType.CITY,
    "municipality": PlaceType.CITY,
    "village": PlaceType.LOCALITY,
    "hamlet": PlaceType.LOCALITY,
    "locality": PlaceType.LOCALITY,
    "suburb": PlaceType.LOCALITY,
    "neighbourhood": PlaceType.LOCALITY,
    "neighborhood": PlaceType.LOCALITY,
    "continent": PlaceType.CONTINENT,
    "supranational": PlaceType.CONTINENT,
}

REGION_LIKE = frozenset({PlaceType.COUNTRY, PlaceType.ADMIN1, PlaceType.ADMIN2})
CITY_LIKE = frozenset({PlaceType.CITY, PlaceType.LOCALITY})


def place_type_for_kind(kind: str) -> PlaceType:
    return KIND_TO_PLACE_TYPE.get(kind.strip().lower(), PlaceType.OTHER)


def proximity_bucket(place_type: PlaceType) -> frozenset[PlaceType]:
    """Place types that may be merged with each other by distance alone."""
    if place_type in CITY_LIKE:
        return CITY_LIKE
    return frozenset({place_type})


# ── Canonical ingestion shape ─────────────────────────────────────────

class NameInput(BaseModel):
    name: str
    lang: str = "und"
    script: Optional[str] = None
    name_kind: NameKind = NameKind.COMMON
    is_preferred: bool = False
    is_official: bool = False
    source: Optional[str] = None

    @field_validator("lang", mode="before")
    @classmethod
    def default_lang(cls, v):
        return v or "und"

    @property
    def normalized(self) -> str:
        return normalize_name(self.name)


class ExternalRef(BaseModel):
    source: str
    ext_id: str = Field(..., validation_alias=AliasChoices("ext_id", "id", "external_id"))

    model_config = {"populate_by_name": True}

    @field_validator("ext_id", mode="before")
    @classmethod
    def coerce_str(cls, v):
        return str(v) if v is not None else v


class ParentRef(ExternalRef):
    relation: str = "admin_parent"


class PlaceInput(BaseModel):
    """One place in canonical shape, ready for dedup and upsert."""
    source: str
    kind: str
    place_type: PlaceType
    country_code: Optional[str] = None
    admin1: Optional[str] = None
    admin2: Optional[str] = None
    population: Optional[int] = Field(None, ge=0)
    lat: Optional[float] = Field(None, ge=-90.0, le=90.0)
    lon: Optional[float] = Field(None, ge=-180.0, le=180.0)
    bbox: Optional[tuple[float, float, float, float]] = None
    feature_code: Optional[str] = None
    names: list[NameInput] = Field(default_factory=list)
    external_ids: list[ExternalRef] = Field(default_factory=list)
    parents: list[ParentRef] = Field(default_factory=list)

    @field_validator("country_code", mode="before")
    @classmethod
    def upper_country(cls, v):
        if v is None or not str(v).strip():
            return None
        return str(v).strip().upper()

    @field_validator("admin1", "admin2", "feature_code", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if v is None or not str(v).strip():
            return None
        return str(v).strip()

    @property
    def has_coords(self) -> bool:
        return self.lat is not None and self.lon is not None

    def normalized_names(self) -> set[str]:
        return {n.normalized for n in self.names if n.normalized}


# ── Source record variants ────────────────────────────────────────────

class PlaceRecord(BaseModel):
    """Generic record for sources without a dedicated schema."""
    kind: str
    name: Optional[str] = None
    names: list[NameInput] = Field(default_factory=list)
    lang: str = "und"
    place_type: Optional[PlaceType] = None
    country_code: Optional[str] = Field(None, validation_alias=AliasChoices("country_code", "country"))
    admin1: Optional[str] = Field(None, validation_alias=AliasChoices("admin1", "admin1_code"))
    admin2: Optional[str] = Field(None, validation_alias=AliasChoices("admin2", "admin2_code"))
    population: Optional[int] = None
    lat: Optional[float] = Field(None, validation_alias=AliasChoices("lat", "latitude"))
    lon: Optional[float] = Field(None, validation_alias=AliasChoices("lon", "lng", "longitude"))
    bbox: Optional[tuple[float, float, float, float]] = None
    feature_code: Optional[str] = None
    external_ids: list[ExternalRef] = Field(default_factory=list)
    parents: list[ParentRef] = Field(default_factory=list)

    model_config = {"populate_by_name": True, "extra": "allow"}

    @field_validator("names", mode="before")
    @classmethod
    def names_from_strings(cls, v):
        """names can arrive as plain strings or as name objects."""
        if isinstance(v, list):
            return [{"name": n} if isinstance(n, str) else n for n in v]
        return v

    def to_place_inputs(self, source: str) -> list[PlaceInput]:
        names = list(self.names)
        if self.name:
            names.insert(0, NameInput(name=self.name, lang=self.lang, is_preferred=True))
        return [PlaceInput(
            source=source,
            kind=self.kind,
            place_type=self.place_type or place_type_for_kind(self.kind),
            country_code=self.country_code,
            admin1=self.admin1,
            admin2=self.admin2,
            population=self.population,
            lat=self.lat,
            lon=self.lon,
            bbox=self.bbox,
            feature_code=self.feature_code,
            names=[n.model_copy(update={"source": n.source or source}) for n in names],
            external_ids=self.external_ids,
            parents=self.parents,
        )]


class WikidataRecord(BaseModel):
    qid: str
    kind: str
    labels: dict[str, str] = Field(default_factory=dict)
    aliases: dict[str, list[str]] = Field(default_factory=dict)
    country_code: Optional[str] = None
    admin1: Optional[str] = None
    admin2: Optional[str] = None
    population: Optional[int] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    geonames_id: Optional[str] = None
    osm_id: Optional[str] = None
    parent_qids: list[str] = Field(default_factory=list)

    model_config = {"extra": "allow"}

    @field_validator("qid")
    @classmethod
    def check_qid(cls, v: str) -> str:
        v = v.strip().upper()
        if not v.startswith("Q") or not v[1:].isdigit():
            raise ValueError(f"not a Wikidata item id: {v!r}")
        return v

    def to_place_inputs(self, source: str) -> list[PlaceInput]:
        names = [
            NameInput(name=label, lang=lang, is_preferred=True, source=source)
            for lang, label in sorted(self.labels.items())
        ]
        for lang, alias_list in sorted(self.aliases.items()):
            names.extend(
                NameInput(name=a, lang=lang, name_kind=NameKind.ALIAS, source=source)
                for a in alias_list
            )
        ext = [ExternalRef(source="wikidata", ext_id=self.qid)]
        if self.geonames_id:
            ext.append(ExternalRef(source="geonames", ext_id=self.geonames_id))
        if self.osm_id:
            ext.append(ExternalRef(source="osm", ext_id=self.osm_id))
        return [PlaceInput(
            source=source,
            kind=self.kind,
            place_type=place_type_for_kind(self.kind),
            country_code=self.country_code,
            admin1=self.admin1,
            admin2=self.admin2,
            population=self.population,
            lat=self.lat,
            lon=self.lon,
            names=names,
            external_ids=ext,
            parents=[ParentRef(source="wikidata", ext_id=q) for q in self.parent_qids],
        )]


# Column order of the GeoNames allCountries / cities dumps
GEONAMES_COLUMNS = (
    "geonameid", "name", "asciiname", "alternatenames", "latitude", "longitude",
    "feature_class", "feature_code", "country_code", "cc2", "admin1_code",
    "admin2_code", "admin3_code", "admin4_code", "population", "elevation",
    "dem", "timezone", "modification_date",
)

GEONAMES_FEATURE_KINDS = {
    "PPLC": "capital",
    "PPLA": "admin_capital",
    "PPLA2": "admin2_capital",
    "PPL": "city",
    "PCLI": "country",
    "PCLD": "country",
    "PCLS": "country",
    "PCLF": "country",
    "ADM1": "region",
    "ADM2": "county",
    "CONT": "continent",
}


class GeoNamesRecord(BaseModel):
    geonameid: str
    name: str
    asciiname: Optional[str] = None
    alternatenames: list[str] = Field(default_factory=list)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    feature_class: Optional[str] = None
    feature_code: Optional[str] = None
    country_code: Optional[str] = None
    admin1_code: Optional[str] = None
    admin2_code: Optional[str] = None
    population: Optional[int] = None

    model_config = {"extra": "ignore"}

    @field_validator("geonameid", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v) if v is not None else v

    @field_validator("alternatenames", mode="before")
    @classmethod
    def split_alternates(cls, v):
        if isinstance(v, str):
            return [a.strip() for a in v.split(",") if a.strip()]
        return v or []

    @field_validator("latitude", "longitude", "population", "admin1_code", "admin2_code",
                     "country_code", "feature_class", "feature_code", mode="before")
    @classmethod
    def empty_to_none(cls, v):
        return None if v == "" else v

    @classmethod
    def from_tsv_line(cls, line: str) -> "GeoNamesRecord":
        parts = line.rstrip("\n").split("\t")
        if len(parts) < len(GEONAMES_COLUMNS) - 1:
            raise ValueError(f"expected {len(GEONAMES_COLUMNS)} columns, got {len(parts)}")
        return cls.model_validate(dict(zip(GEONAMES_COLUMNS, parts)))

    @property
    def kind(self) -> str:
        code = (self.feature_code or "").upper()
        if code in GEONAMES_FEATURE_KINDS:
            return GEONAMES_FEATURE_KINDS[code]
        if self.feature_class == "P":
            return "locality"
        return "other"

    def to_place_inputs(self, source: str) -> list[PlaceInput]:
        kind = self.kind
        place_type = place_type_for_kind(kind)
        names = [NameInput(name=self.name, is_preferred=True, source=source)]
        if self.asciiname and self.asciiname != self.name:
            names.append(NameInput(name=self.asciiname, name_kind=NameKind.ALIAS, source=source))
        names.extend(
            NameInput(name=alt, name_kind=NameKind.ALIAS, source=source)
            for alt in self.alternatenames
        )
        is_country = place_type == PlaceType.COUNTRY
        return [PlaceInput(
            source=source,
            kind=kind,
            place_type=place_type,
            country_code=self.country_code,
            admin1=None if is_country else self.admin1_code,
            admin2=None if is_country or place_type == PlaceType.ADMIN1 else self.admin2_code,
            population=self.population or None,
            lat=self.latitude,
            lon=self.longitude,
            feature_code=self.feature_code,
            names=names,
            external_ids=[ExternalRef(source="geonames", ext_id=self.geonameid)],
        )]


class RestCountriesRecord(BaseModel):
    cca2: str
    name_common: str
    name_official: Optional[str] = None
    native_names: dict[str, str] = Field(default_factory=dict)
    alt_spellings: list[str] = Field(default_factory=list)
    capital: list[str] = Field(default_factory=list)
    population: Optional[int] = None
    latlng: Optional[tuple[float, float]] = None
    capital_latlng: Optional[tuple[float, float]] = None

    model_config = {"extra": "ignore"}

    @field_validator("cca2")
    @classmethod
    def check_cca2(cls, v: str) -> str:
        v = v.strip().upper()
        if len(v) != 2 or not v.isalpha():
            raise ValueError(f"not an ISO alpha-2 code: {v!r}")
        return v

    @field_validator("capital", mode="before")
    @classmethod
    def capital_list(cls, v):
        if isinstance(v, str):
            return [v]
        return v or []

    def to_place_inputs(self, source: str) -> list[PlaceInput]:
        names = [NameInput(name=self.name_common, lang="en", is_preferred=True, source=source)]
        if self.name_official and self.name_official != self.name_common:
            names.append(NameInput(
                name=self.name_official, lang="en", name_kind=NameKind.OFFICIAL,
                is_official=True, source=source,
            ))
        names.extend(
            NameInput(name=native, lang=lang, name_kind=NameKind.ENDONYM, source=source)
            for lang, native in sorted(self.native_names.items())
        )
        names.extend(
            NameInput(name=alt, name_kind=NameKind.ALIAS, source=source)
            for alt in self.alt_spellings
            if len(alt) > 2
        )
        lat, lon = self.latlng if self.latlng else (None, None)
        places = [PlaceInput(
            source=source,
            kind="country",
            place_type=PlaceType.COUNTRY,
            country_code=self.cca2,
            population=self.population,
            lat=lat,
            lon=lon,
            feature_code="PCLI",
            names=names,
            external_ids=[ExternalRef(source=source, ext_id=self.cca2)],
        )]
        if self.capital:
            capital_name = self.capital[0]
            clat, clon = self.capital_latlng if self.capital_latlng else (None, None)
            places.append(PlaceInput(
                source=source,
                kind="capital",
                place_type=PlaceType.CITY,
                country_code=self.cca2,
                lat=clat,
                lon=clon,
                feature_code="PPLC",
                names=[NameInput(name=capital_name, lang="en", is_preferred=True, source=source)],
                external_ids=[ExternalRef(
                    source=source, ext_id=capital_external_id(self.cca2, capital_name),
                )],
                parents=[ParentRef(source=source, ext_id=self.cca2, relation="capital_of")],
            ))
        return places


def capital_external_id(country_code: str, capital_name: str) -> str:
    return f"capital:{country_code.upper()}:{normalize_name(capital_name)}"


SOURCE_RECORD_MODELS: dict[str, type[BaseModel]] = {
    "wikidata": WikidataRecord,
    "geonames": GeoNamesRecord,
    "restcountries": RestCountriesRecord,
}


# ── Ingestion results ─────────────────────────────────────────────────

class Rejection(BaseModel):
    position: int
    reason: str


class IngestionSummary(BaseModel):
    source: str
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    rejected: int = 0
    names_added: int = 0
    edges_added: int = 0
    edges_rejected: int = 0
    match_strategies: dict[str, int] = Field(default_factory=dict)
    rejections: list[Rejection] = Field(default_factory=list)
    cursor: Optional[str] = None
    duration_s: float = 0.0


# ── Disambiguation I/O ────────────────────────────────────────────────

MentionSource = Literal["text", "url", "input"]
ResolutionStatus = Literal["resolved", "unresolved"]


class MentionInput(BaseModel):
    text: str
    start: Optional[int] = Field(None, ge=0)
    end: Optional[int] = Field(None, ge=0)
    context: Optional[str] = None

    @field_validator("text")
    @classmethod
    def non_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("mention text is blank")
        return v

    @model_validator(mode="after")
    def ordered_offsets(self) -> "MentionInput":
        if self.start is not None and self.end is not None and self.end <= self.start:
            raise ValueError(f"mention end {self.end} must be after start {self.start}")
        return self


class ResolvedMention(BaseModel):
    """Final, flat output for one mention."""
    mention: str
    normalized: str
    start: Optional[int] = None
    end: Optional[int] = None
    occurrences: list[tuple[int, int]] = Field(default_factory=list)
    url_occurrences: list[tuple[int, int]] = Field(default_factory=list)
    count: int = 1
    context: str = ""
    source: MentionSource = "input"
    status: ResolutionStatus
    place_id: Optional[int] = None
    place_name: Optional[str] = None
    country_code: Optional[str] = None
    place_type: Optional[str] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    score: Optional[float] = None
    method: str
    version: str

    @property
    def key(self) -> str:
        return self.normalized


class CandidateExplanation(BaseModel):
    place_id: int
    name: str
    country_code: Optional[str] = None
    place_type: str
    population: Optional[int] = None
    features: dict[str, float]
    raw: dict[str, dict]
    weighted: dict[str, float]
    final_score: float
    normalized_score: float = Field(..., ge=0.0, le=1.0)
    rank: int
    reasoning: str


class ExplanationRecord(BaseModel):
    mention: str
    publisher_id: Optional[str] = None
    selected_place_id: Optional[int] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    method: str
    version: str
    weights: dict[str, float]
    candidates: list[CandidateExplanation] = Field(default_factory=list)
    summary: str = ""
