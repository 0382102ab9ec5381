"""
Typed errors raised by the gazetteer core.

Ingestion errors are per-record, index-build errors abort that build only,
and disambiguation errors are per-call.
"""

from __future__ import annotations

from typing import Optional


class GazetteerError(Exception):
    """Base class for all gazetteer errors."""


class InputError(GazetteerError):
    """A source record or name could not be parsed into the minimal shape."""


class HierarchyCycleError(InputError):
    """Adding the edge would make the hierarchy cyclic."""

    def __init__(self, parent_id: int, child_id: int):
        super().__init__(f"edge {parent_id} -> {child_id} would create a cycle")
        self.parent_id = parent_id
        self.child_id = child_id


class AmbiguousCanonicalNameError(GazetteerError):
    """Two names tie on every ranking criterion except their id."""

    def __init__(self, place_id: int, fallback_name_id: int):
        super().__init__(
            f"place {place_id}: canonical name ambiguous, falling back to name {fallback_name_id}"
        )
        self.place_id = place_id
        self.fallback_name_id = fallback_name_id


class IndexUnavailable(GazetteerError):
    """No index has been published yet."""


class StoreUnavailable(GazetteerError):
    """The backing store could not be reached or used."""


class NoCandidatesFound(GazetteerError):
    """A mention matched nothing in the gazetteer."""

    def __init__(self, mention: str, detail: Optional[str] = None):
        super().__init__(detail or f"no gazetteer candidates for {mention!r}")
        self.mention = mention
