"""
Durable gazetteer store on SQLite.

Holds places, their multilingual names, the containment hierarchy and
external-id cross references, plus the bookkeeping tables used around the
core (ingestion runs, resumable checkpoints, publisher coverage counts and
write-once resolved mentions).

All access goes through one connection guarded by a re-entrant lock, so the
store is a single writer. ``transaction()`` opens ``BEGIN IMMEDIATE`` so a
dedup lookup and the insert that follows it are one atomic unit.
"""

from __future__ import annotations

import json
import logging
import math
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterable, Iterator, NamedTuple, Optional

from gazetteer_geo import db
from gazetteer_geo.config import Settings, get_settings
from gazetteer_geo.errors import (
    AmbiguousCanonicalNameError,
    HierarchyCycleError,
    InputError,
    StoreUnavailable,
)
from gazetteer_geo.models import (
    ExternalRef,
    IngestionSummary,
    NameInput,
    PlaceInput,
    PlaceType,
    ResolvedMention,
)
from gazetteer_geo.normalize import haversine_km_many

logger = logging.getLogger(__name__)

_NOW_SQL = "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"

# (PlaceInput attribute, places column) pairs merged on upsert
_MERGE_FIELDS = (
    ("kind", "kind"),
    ("place_type", "place_type"),
    ("country_code", "country_code"),
    ("admin1", "admin1_code"),
    ("admin2", "admin2_code"),
    ("population", "population"),
    ("lat", "lat"),
    ("lon", "lng"),
    ("bbox", "bbox"),
    ("feature_code", "feature_code"),
)

_KM_PER_DEGREE = 111.32


class UpsertResult(NamedTuple):
    place_id: int
    created: bool
    changed: bool


@dataclass(frozen=True)
class StoreSnapshot:
    """Everything the index builder needs, read in one transaction."""
    places: list[dict]
    names: list[dict]
    edges: list[dict]


@contextmanager
def _guard(action: str) -> Iterator[None]:
    try:
        yield
    except (sqlite3.OperationalError, sqlite3.ProgrammingError) as e:
        raise StoreUnavailable(f"{action} failed: {e}") from e


def _column_value(attr: str, value):
    if isinstance(value, PlaceType):
        return value.value
    if attr == "bbox" and value is not None:
        return json.dumps(list(value))
    return value


def _language_rank(lang: str, priority: tuple[str, ...]) -> int:
    primary = (lang or "und").split("-")[0].lower()
    for i, preferred in enumerate(priority):
        if primary == preferred.lower():
            return i
    return len(priority)


def choose_canonical_name(place_id: int, names: list[dict], priority: tuple[str, ...]) -> int:
    """
    Pick the canonical PlaceName id for a place.

    Order: official first, then preferred, then language priority, then the
    shortest display text, then lowest id. Raises AmbiguousCanonicalNameError
    when the two best names differ in text but tie on everything except id;
    the error carries the lowest-id fallback.
    """
    if not names:
        raise InputError(f"place {place_id} has no names")

    def rank(row: dict) -> tuple:
        return (
            not row["is_official"],
            not row["is_preferred"],
            _language_rank(row["lang"], priority),
            len(row["name"]),
        )

    ranked = sorted(names, key=lambda r: (rank(r), r["id"]))
    best = ranked[0]
    if len(ranked) > 1:
        runner_up = ranked[1]
        if rank(runner_up) == rank(best) and runner_up["normalized"] != best["normalized"]:
            raise AmbiguousCanonicalNameError(place_id, best["id"])
    return best["id"]


class GazetteerStore:
    """Parameterized read/write operations over the gazetteer tables."""

    def __init__(self, path: Optional[str] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.path = path or self.settings.store.path
        self._lock = threading.RLock()
        self._conn = db.connect(self.path, self.settings.store.busy_timeout_ms)
        db.run_migrations(self._conn)

    def __enter__(self) -> "GazetteerStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ── Transactions ──────────────────────────────────────────────────

    @contextmanager
    def transaction(self, immediate: bool = True) -> Iterator[sqlite3.Connection]:
        """Serialized transaction; nested use joins the outer one."""
        with self._lock:
            conn = self._conn
            with _guard("begin transaction"):
                nested = conn.in_transaction
                if not nested:
                    conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            if nested:
                yield conn
                return
            try:
                yield conn
            except BaseException:
                with _guard("rollback"):
                    conn.rollback()
                raise
            with _guard("commit"):
                conn.commit()

    def _fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock, _guard("query"):
            return self._conn.execute(sql, params).fetchall()

    def _fetchone(self, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with self._lock, _guard("query"):
            return self._conn.execute(sql, params).fetchone()

    # ── Places ────────────────────────────────────────────────────────

    def trust_for(self, source: str) -> int:
        return self.settings.ingest.trust_for(source)

    def upsert_place(self, attrs: PlaceInput, match_id: Optional[int] = None) -> UpsertResult:
        """
        Insert a place, or merge ``attrs`` into an existing one.

        Without ``match_id`` the record's external ids are consulted first,
        so retrying the same upsert never creates a second place. A field is
        merged when the stored value is null, or overwritten when the incoming
        source is strictly more trusted than the one that last wrote the place.
        """
        trust = self.trust_for(attrs.source)
        with self.transaction() as conn, _guard("upsert place"):
            if match_id is None:
                match_id = self._match_external_ids(conn, attrs.external_ids)

            if match_id is None:
                cur = conn.execute(
                    """
                    INSERT INTO places (kind, place_type, country_code, admin1_code, admin2_code,
                                        population, lat, lng, bbox, feature_code, source, trust)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    tuple(_column_value(a, getattr(attrs, a)) for a, _ in _MERGE_FIELDS)
                    + (attrs.source, trust),
                )
                place_id = cur.lastrowid
                for ref in attrs.external_ids:
                    self._insert_external_id(conn, place_id, ref.source, ref.ext_id)
                return UpsertResult(place_id, True, True)

            row = conn.execute("SELECT * FROM places WHERE id = ?", (match_id,)).fetchone()
            if row is None:
                raise InputError(f"place {match_id} does not exist")

            updates: dict[str, object] = {}
            for attr, column in _MERGE_FIELDS:
                value = _column_value(attr, getattr(attrs, attr))
                if value is None:
                    continue
                existing = row[column]
                if existing is None or (trust > row["trust"] and existing != value):
                    updates[column] = value
            if updates and trust > row["trust"]:
                updates["source"] = attrs.source
                updates["trust"] = trust

            assignments = "".join(f"{col} = ?, " for col in updates)
            conn.execute(
                f"UPDATE places SET {assignments}updated_at = {_NOW_SQL} WHERE id = ?",
                tuple(updates.values()) + (match_id,),
            )
            for ref in attrs.external_ids:
                self._insert_external_id(conn, match_id, ref.source, ref.ext_id)
            return UpsertResult(match_id, False, bool(updates))

    def get_place(self, place_id: int) -> Optional[dict]:
        row = self._fetchone(
            """
            SELECT p.*, n.name AS canonical_name
            FROM places p LEFT JOIN place_names n ON n.id = p.canonical_name_id
            WHERE p.id = ?
            """,
            (place_id,),
        )
        return dict(row) if row else None

    def count_places(self) -> int:
        return self._fetchone("SELECT COUNT(*) FROM places")[0]

    # ── Names ─────────────────────────────────────────────────────────

    def add_name(self, place_id: int, name: NameInput) -> Optional[int]:
        """Add a name variant; returns None when it is an exact duplicate."""
        normalized = name.normalized
        if not normalized:
            raise InputError(f"name {name.name!r} normalizes to an empty string")

        with self.transaction() as conn, _guard("add name"):
            place = conn.execute("SELECT source FROM places WHERE id = ?", (place_id,)).fetchone()
            if place is None:
                raise InputError(f"place {place_id} does not exist")
            source = name.source or place["source"]

            duplicate = conn.execute(
                """
                SELECT id FROM place_names
                WHERE place_id = ? AND normalized = ? AND lang = ? AND source = ?
                """,
                (place_id, normalized, name.lang, source),
            ).fetchone()
            if duplicate:
                return None

            preferred = name.is_preferred
            if preferred:
                taken = conn.execute(
                    "SELECT 1 FROM place_names WHERE place_id = ? AND lang = ? AND is_preferred = 1",
                    (place_id, name.lang),
                ).fetchone()
                preferred = taken is None

            cur = conn.execute(
                """
                INSERT INTO place_names (place_id, name, normalized, lang, script, name_kind,
                                         is_preferred, is_official, source)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    place_id, name.name.strip(), normalized, name.lang, name.script,
                    name.name_kind.value, int(preferred), int(name.is_official), source,
                ),
            )
            return cur.lastrowid

    def get_names(self, place_id: int) -> list[dict]:
        rows = self._fetchall(
            "SELECT * FROM place_names WHERE place_id = ? ORDER BY id", (place_id,)
        )
        return [dict(r) for r in rows]

    def set_canonical_name(self, place_id: int) -> int:
        """Re-evaluate and store the canonical name; returns its name id."""
        with self.transaction() as conn, _guard("set canonical name"):
            rows = conn.execute(
                """
                SELECT id, name, normalized, lang, is_preferred, is_official
                FROM place_names WHERE place_id = ?
                """,
                (place_id,),
            ).fetchall()
            try:
                name_id = choose_canonical_name(
                    place_id, [dict(r) for r in rows], self.settings.ingest.language_priority
                )
            except AmbiguousCanonicalNameError as e:
                logger.warning("%s", e)
                name_id = e.fallback_name_id
            conn.execute(
                "UPDATE places SET canonical_name_id = ? WHERE id = ?", (name_id, place_id)
            )
            return name_id

    # ── Hierarchy ─────────────────────────────────────────────────────

    def add_hierarchy_edge(self, parent_id: int, child_id: int,
                           relation: str = "admin_parent") -> bool:
        """Add a direct containment edge; False when it already exists."""
        if parent_id == child_id:
            raise HierarchyCycleError(parent_id, child_id)

        with self.transaction() as conn, _guard("add hierarchy edge"):
            found = conn.execute(
                "SELECT COUNT(*) FROM places WHERE id IN (?, ?)", (parent_id, child_id)
            ).fetchone()[0]
            if found != 2:
                raise InputError(f"edge {parent_id} -> {child_id} references a missing place")

            exists = conn.execute(
                "SELECT 1 FROM place_hierarchy WHERE parent_id = ? AND child_id = ?",
                (parent_id, child_id),
            ).fetchone()
            if exists:
                return False
            if self._is_ancestor(conn, child_id, parent_id):
                raise HierarchyCycleError(parent_id, child_id)

            conn.execute(
                "INSERT INTO place_hierarchy (parent_id, child_id, relation, depth) VALUES (?, ?, ?, 1)",
                (parent_id, child_id, relation),
            )
            return True

    @staticmethod
    def _is_ancestor(conn: sqlite3.Connection, ancestor_id: int, place_id: int) -> bool:
        row = conn.execute(
            """
            WITH RECURSIVE up(id) AS (
                SELECT parent_id FROM place_hierarchy WHERE child_id = ?
                UNION
                SELECT h.parent_id FROM place_hierarchy h JOIN up ON h.child_id = up.id
            )
            SELECT 1 FROM up WHERE id = ? LIMIT 1
            """,
            (place_id, ancestor_id),
        ).fetchone()
        return row is not None

    def parents_of(self, place_id: int) -> list[int]:
        rows = self._fetchall(
            "SELECT parent_id FROM place_hierarchy WHERE child_id = ? ORDER BY parent_id",
            (place_id,),
        )
        return [r[0] for r in rows]

    def children_of(self, place_id: int) -> list[int]:
        rows = self._fetchall(
            "SELECT child_id FROM place_hierarchy WHERE parent_id = ? ORDER BY child_id",
            (place_id,),
        )
        return [r[0] for r in rows]

    # ── External ids ──────────────────────────────────────────────────

    def find_by_external_id(self, source: str, ext_id: str) -> Optional[int]:
        row = self._fetchone(
            "SELECT place_id FROM place_external_ids WHERE source = ? AND ext_id = ?",
            (source, str(ext_id)),
        )
        return row[0] if row else None

    def add_external_id(self, place_id: int, source: str, ext_id: str) -> bool:
        with self.transaction() as conn, _guard("add external id"):
            return self._insert_external_id(conn, place_id, source, ext_id)

    @staticmethod
    def _match_external_ids(conn: sqlite3.Connection, refs: list[ExternalRef]) -> Optional[int]:
        for ref in refs:
            row = conn.execute(
                "SELECT place_id FROM place_external_ids WHERE source = ? AND ext_id = ?",
                (ref.source, ref.ext_id),
            ).fetchone()
            if row:
                return row[0]
        return None

    @staticmethod
    def _insert_external_id(conn: sqlite3.Connection, place_id: int, source: str, ext_id: str) -> bool:
        cur = conn.execute(
            "INSERT OR IGNORE INTO place_external_ids (source, ext_id, place_id) VALUES (?, ?, ?)",
            (source, str(ext_id), place_id),
        )
        if cur.rowcount == 0:
            owner = conn.execute(
                "SELECT place_id FROM place_external_ids WHERE source = ? AND ext_id = ?",
                (source, str(ext_id)),
            ).fetchone()[0]
            if owner != place_id:
                logger.warning("External id %s:%s already maps to place %d, not %d",
                               source, ext_id, owner, place_id)
            return False
        return True

    # ── Dedup lookups ─────────────────────────────────────────────────

    def find_by_admin_codes(self, place_type: PlaceType, country_code: str,
                            admin1: Optional[str], admin2: Optional[str]) -> Optional[int]:
        row = self._fetchone(
            """
            SELECT id FROM places
            WHERE place_type = ? AND country_code = ?
              AND admin1_code IS ? AND admin2_code IS ?
            ORDER BY id LIMIT 1
            """,
            (place_type.value, country_code, admin1, admin2),
        )
        return row[0] if row else None

    def find_by_name_and_country(self, normalized_names: Iterable[str], country_code: str,
                                 place_types: Iterable[PlaceType]) -> list[dict]:
        names = sorted(set(normalized_names))
        types = sorted(t.value for t in place_types)
        if not names or not types:
            return []
        rows = self._fetchall(
            f"""
            SELECT DISTINCT p.id, p.lat, p.lng
            FROM places p JOIN place_names n ON n.place_id = p.id
            WHERE n.normalized IN ({",".join("?" * len(names))})
              AND p.country_code = ?
              AND p.place_type IN ({",".join("?" * len(types))})
            ORDER BY p.id
            """,
            tuple(names) + (country_code,) + tuple(types),
        )
        return [dict(r) for r in rows]

    def find_by_identity(self, place_type: PlaceType, normalized_names: Iterable[str],
                         country_code: Optional[str], admin1: Optional[str],
                         admin2: Optional[str]) -> Optional[int]:
        """Same type, a shared normalized name and equal codes, nulls included."""
        names = sorted(set(normalized_names))
        if not names:
            return None
        row = self._fetchone(
            f"""
            SELECT p.id FROM places p JOIN place_names n ON n.place_id = p.id
            WHERE n.normalized IN ({",".join("?" * len(names))})
              AND p.place_type = ?
              AND p.country_code IS ? AND p.admin1_code IS ? AND p.admin2_code IS ?
            ORDER BY p.id LIMIT 1
            """,
            tuple(names) + (place_type.value, country_code, admin1, admin2),
        )
        return row[0] if row else None

    def find_nearby(self, place_types: Iterable[PlaceType], lat: float, lon: float,
                    radius_km: float, country_code: Optional[str] = None) -> list[tuple[int, float]]:
        """
        Places of the given types within ``radius_km``, nearest first.

        A degree bounding box narrows the scan in SQL; exact distances are
        computed with numpy. Places carrying a different country code than
        ``country_code`` are never returned.
        """
        types = sorted(t.value for t in place_types)
        dlat = radius_km / _KM_PER_DEGREE
        dlon = radius_km / (_KM_PER_DEGREE * max(math.cos(math.radians(lat)), 0.01))
        rows = self._fetchall(
            f"""
            SELECT id, lat, lng, country_code FROM places
            WHERE place_type IN ({",".join("?" * len(types))})
              AND lat BETWEEN ? AND ? AND lng BETWEEN ? AND ?
            """,
            tuple(types) + (lat - dlat, lat + dlat, lon - dlon, lon + dlon),
        )
        rows = [
            r for r in rows
            if not (country_code and r["country_code"] and r["country_code"] != country_code)
        ]
        if not rows:
            return []
        dists = haversine_km_many(lat, lon, [r["lat"] for r in rows], [r["lng"] for r in rows])
        hits = [(r["id"], float(d)) for r, d in zip(rows, dists) if d <= radius_km]
        return sorted(hits, key=lambda h: (h[1], h[0]))

    # ── Retire / merge ────────────────────────────────────────────────

    def merge_places(self, keep_id: int, retire_id: int) -> None:
        """
        Retire ``retire_id`` into ``keep_id``.

        Names, hierarchy edges, external-id mappings and coverage counts move
        to the survivor; null survivor attributes are filled from the retired
        place. Edges that would become self-loops or cycles are dropped.
        """
        if keep_id == retire_id:
            raise InputError("cannot merge a place into itself")

        with self.transaction() as conn, _guard("merge places"):
            keep = conn.execute("SELECT * FROM places WHERE id = ?", (keep_id,)).fetchone()
            retire = conn.execute("SELECT * FROM places WHERE id = ?", (retire_id,)).fetchone()
            if keep is None or retire is None:
                raise InputError(f"cannot merge {retire_id} into {keep_id}: place missing")

            for name in conn.execute(
                "SELECT * FROM place_names WHERE place_id = ? ORDER BY id", (retire_id,)
            ).fetchall():
                duplicate = conn.execute(
                    """
                    SELECT 1 FROM place_names
                    WHERE place_id = ? AND normalized = ? AND lang = ? AND source = ?
                    """,
                    (keep_id, name["normalized"], name["lang"], name["source"]),
                ).fetchone()
                if duplicate:
                    conn.execute("DELETE FROM place_names WHERE id = ?", (name["id"],))
                    continue
                preferred = name["is_preferred"]
                if preferred and conn.execute(
                    "SELECT 1 FROM place_names WHERE place_id = ? AND lang = ? AND is_preferred = 1",
                    (keep_id, name["lang"]),
                ).fetchone():
                    preferred = 0
                conn.execute(
                    "UPDATE place_names SET place_id = ?, is_preferred = ? WHERE id = ?",
                    (keep_id, preferred, name["id"]),
                )

            edges = conn.execute(
                """
                SELECT parent_id, child_id, relation FROM place_hierarchy
                WHERE parent_id = ? OR child_id = ?
                """,
                (retire_id, retire_id),
            ).fetchall()
            conn.execute(
                "DELETE FROM place_hierarchy WHERE parent_id = ? OR child_id = ?",
                (retire_id, retire_id),
            )
            for edge in edges:
                parent = keep_id if edge["parent_id"] == retire_id else edge["parent_id"]
                child = keep_id if edge["child_id"] == retire_id else edge["child_id"]
                if parent == child or self._is_ancestor(conn, child, parent):
                    logger.warning("Dropping edge %d -> %d while merging %d into %d",
                                   parent, child, retire_id, keep_id)
                    continue
                conn.execute(
                    """
                    INSERT OR IGNORE INTO place_hierarchy (parent_id, child_id, relation, depth)
                    VALUES (?, ?, ?, 1)
                    """,
                    (parent, child, edge["relation"]),
                )

            conn.execute(
                "UPDATE place_external_ids SET place_id = ? WHERE place_id = ?", (keep_id, retire_id)
            )
            conn.execute(
                """
                INSERT INTO publisher_coverage (publisher, place_id, count)
                SELECT publisher, ?, count FROM publisher_coverage WHERE place_id = ?
                ON CONFLICT (publisher, place_id) DO UPDATE SET count = count + excluded.count
                """,
                (keep_id, retire_id),
            )
            conn.execute("DELETE FROM publisher_coverage WHERE place_id = ?", (retire_id,))

            fills = {
                column: retire[column]
                for _, column in _MERGE_FIELDS
                if keep[column] is None and retire[column] is not None
            }
            if fills:
                assignments = ", ".join(f"{col} = ?" for col in fills)
                conn.execute(
                    f"UPDATE places SET {assignments}, updated_at = {_NOW_SQL} WHERE id = ?",
                    tuple(fills.values()) + (keep_id,),
                )

            conn.execute("DELETE FROM places WHERE id = ?", (retire_id,))
            self.set_canonical_name(keep_id)
        logger.info("Merged place %d into %d", retire_id, keep_id)

    # ── Index snapshot ────────────────────────────────────────────────

    def load_snapshot(self) -> StoreSnapshot:
        """Read places, names and edges for the index builder."""
        with self.transaction(immediate=False) as conn, _guard("load snapshot"):
            places = conn.execute(
                """
                SELECT p.id, p.kind, p.place_type, p.country_code, p.admin1_code, p.admin2_code,
                       p.population, p.lat, p.lng, p.feature_code, n.name AS canonical_name
                FROM places p LEFT JOIN place_names n ON n.id = p.canonical_name_id
                ORDER BY p.id
                """
            ).fetchall()
            names = conn.execute(
                "SELECT id, place_id, name, normalized, lang FROM place_names ORDER BY id"
            ).fetchall()
            edges = conn.execute(
                "SELECT parent_id, child_id, relation FROM place_hierarchy ORDER BY parent_id, child_id"
            ).fetchall()
        return StoreSnapshot(
            places=[dict(r) for r in places],
            names=[dict(r) for r in names],
            edges=[dict(r) for r in edges],
        )

    # ── Checkpoints and ingestion runs ────────────────────────────────

    def save_checkpoint(self, source: str, cursor: str) -> None:
        with self.transaction() as conn, _guard("save checkpoint"):
            conn.execute(
                f"""
                INSERT INTO ingestion_checkpoints (source, cursor) VALUES (?, ?)
                ON CONFLICT (source) DO UPDATE SET
                    cursor = excluded.cursor,
                    updated_at = {_NOW_SQL}
                """,
                (source, str(cursor)),
            )

    def get_checkpoint(self, source: str) -> Optional[str]:
        row = self._fetchone("SELECT cursor FROM ingestion_checkpoints WHERE source = ?", (source,))
        return row[0] if row else None

    def start_ingestion_run(self, source: str) -> int:
        with self.transaction() as conn, _guard("start ingestion run"):
            cur = conn.execute("INSERT INTO ingestion_runs (source) VALUES (?)", (source,))
            return cur.lastrowid

    def finish_ingestion_run(self, run_id: int, summary: IngestionSummary,
                             status: str = "completed") -> None:
        with self.transaction() as conn, _guard("finish ingestion run"):
            conn.execute(
                f"""
                UPDATE ingestion_runs
                SET status = ?, completed_at = {_NOW_SQL},
                    created = ?, updated = ?, rejected = ?, summary = ?
                WHERE id = ?
                """,
                (status, summary.created, summary.updated, summary.rejected,
                 summary.model_dump_json(), run_id),
            )

    def get_ingestion_run(self, run_id: int) -> Optional[dict]:
        row = self._fetchone("SELECT * FROM ingestion_runs WHERE id = ?", (run_id,))
        return dict(row) if row else None

    # ── Publisher coverage ────────────────────────────────────────────

    def record_coverage(self, publisher: str, place_id: int, count: int = 1) -> None:
        with self.transaction() as conn, _guard("record coverage"):
            conn.execute(
                """
                INSERT INTO publisher_coverage (publisher, place_id, count) VALUES (?, ?, ?)
                ON CONFLICT (publisher, place_id) DO UPDATE SET count = count + excluded.count
                """,
                (publisher, place_id, count),
            )

    def coverage_counts(self, publisher: str) -> dict[str, int]:
        """Historical mention counts for a publisher, per country code."""
        rows = self._fetchall(
            """
            SELECT p.country_code, SUM(c.count)
            FROM publisher_coverage c JOIN places p ON p.id = c.place_id
            WHERE c.publisher = ? AND p.country_code IS NOT NULL
            GROUP BY p.country_code
            """,
            (publisher,),
        )
        return {r[0]: int(r[1]) for r in rows}

    # ── Resolved mentions ─────────────────────────────────────────────

    def save_resolved_mentions(self, document_id: str, mentions: Iterable[ResolvedMention]) -> int:
        """Persist results; an existing (document, mention, method, version) row is kept."""
        written = 0
        with self.transaction() as conn, _guard("save resolved mentions"):
            for m in mentions:
                cur = conn.execute(
                    """
                    INSERT OR IGNORE INTO resolved_mentions
                        (document_id, mention_key, mention, start_offset, end_offset, context,
                         status, place_id, confidence, method, version)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (document_id, m.key, m.mention, m.start, m.end, m.context, m.status,
                     m.place_id, m.confidence, m.method, m.version),
                )
                written += cur.rowcount
        return written

    def get_resolved_mentions(self, document_id: str) -> list[dict]:
        rows = self._fetchall(
            "SELECT * FROM resolved_mentions WHERE document_id = ? ORDER BY id", (document_id,)
        )
        return [dict(r) for r in rows]
