"""
String and geometry helpers shared by ingestion, indexing and scoring.

Normalization is the join key between stored names and text spans, so the
same function must be used on both sides:
  - NFKD decomposition, combining marks dropped ("São Paulo" -> "sao paulo")
  - casefolded
  - any character other than a word character or apostrophe becomes a space
  - whitespace collapsed
"""

from __future__ import annotations

import math
import re
import unicodedata
from functools import lru_cache
from typing import Iterator, Optional

import numpy as np
import pycountry

EARTH_RADIUS_KM = 6371.0088

_APOSTROPHES = str.maketrans({"’": "'", "‘": "'", "`": "'", "ʼ": "'"})
_NON_WORD_RE = re.compile(r"[^\w']+")
_EDGE_APOSTROPHE_RE = re.compile(r"(^'+|'+$|(?<=\s)'+|'+(?=\s))")
_WHITESPACE_RE = re.compile(r"\s+")
_SLUG_RE = re.compile(r"[^a-z0-9]+")

# Word tokens; an apostrophe only joins when it sits between word characters
TOKEN_RE = re.compile(r"\w+(?:['’‘ʼ]\w+)*")

# Alternative spellings that show up as URL path segments (/us/, /uk/, /usa/)
COUNTRY_CODE_SYNONYMS: dict[str, tuple[str, ...]] = {
    "US": ("usa", "america", "united-states", "united-states-of-america", "u-s"),
    "GB": ("uk", "britain", "great-britain", "united-kingdom", "england"),
    "AE": ("uae", "emirates"),
    "KR": ("south-korea",),
    "KP": ("north-korea",),
    "RU": ("russia",),
    "CZ": ("czechia",),
    "NL": ("holland", "netherlands"),
}


def normalize_name(text: str) -> str:
    """Lowercase, strip diacritics and punctuation, collapse whitespace."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text.translate(_APOSTROPHES))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    folded = _NON_WORD_RE.sub(" ", stripped.casefold())
    folded = _EDGE_APOSTROPHE_RE.sub(" ", folded)
    return _WHITESPACE_RE.sub(" ", folded).strip()


def slugify(text: str) -> str:
    """URL-path-friendly form of a name, derived from its normalized text."""
    return _SLUG_RE.sub("-", normalize_name(text)).strip("-")


def iter_tokens(text: str) -> Iterator[tuple[int, int, str]]:
    """Yield ``(start, end, normalized_token)`` for each word token in text."""
    for m in TOKEN_RE.finditer(text):
        token = normalize_name(m.group(0))
        if token:
            yield m.start(), m.end(), token


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = phi2 - phi1
    dlmb = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def haversine_km_many(lat: float, lon: float, lats, lons) -> np.ndarray:
    """Vectorized distance from one point to many."""
    lats_r = np.radians(np.asarray(lats, dtype=np.float64))
    lons_r = np.radians(np.asarray(lons, dtype=np.float64))
    phi = math.radians(lat)
    a = (
        np.sin((lats_r - phi) / 2.0) ** 2
        + math.cos(phi) * np.cos(lats_r) * np.sin((lons_r - math.radians(lon)) / 2.0) ** 2
    )
    return 2 * EARTH_RADIUS_KM * np.arcsin(np.minimum(1.0, np.sqrt(a)))


# ── ISO display names ─────────────────────────────────────────────────

@lru_cache(maxsize=512)
def country_display_names(country_code: Optional[str]) -> tuple[str, ...]:
    """Names pycountry knows for an ISO alpha-2 code (empty when unknown)."""
    if not country_code:
        return ()
    try:
        country = pycountry.countries.get(alpha_2=country_code.upper())
    except LookupError:
        return ()
    if country is None:
        return ()
    names = [country.name]
    for attr in ("common_name", "official_name"):
        value = getattr(country, attr, None)
        if value and value not in names:
            names.append(value)
    return tuple(names)


@lru_cache(maxsize=4096)
def subdivision_display_name(country_code: Optional[str], admin1: Optional[str]) -> Optional[str]:
    """ISO 3166-2 name for ``<cc>-<admin1>`` codes such as US-TX."""
    if not country_code or not admin1:
        return None
    try:
        sub = pycountry.subdivisions.get(code=f"{country_code.upper()}-{admin1.upper()}")
    except LookupError:
        return None
    return sub.name if sub is not None else None
