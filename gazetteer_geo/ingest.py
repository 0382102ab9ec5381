"""
Ingestion of source records into the gazetteer store.

Each record is parsed into its source variant, normalized into one or more
``PlaceInput`` objects, deduplicated and upserted inside its own
transaction. A record that cannot be parsed into a kind plus at least one
usable name is rejected and reported; the batch carries on.

After a batch:
  - hierarchy edges are linked (explicit parent refs, else by admin codes)
  - canonical names of every touched place are re-evaluated
  - the source checkpoint is saved when a cursor was given
"""

from __future__ import annotations

import json
import logging
import time
from collections import Counter
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from pydantic import BaseModel, ValidationError

from gazetteer_geo.config import Settings
from gazetteer_geo.dedup import STRATEGY_NEW, PlaceMatcher
from gazetteer_geo.errors import HierarchyCycleError, InputError
from gazetteer_geo.models import (
    SOURCE_RECORD_MODELS,
    GeoNamesRecord,
    IngestionSummary,
    PlaceInput,
    PlaceRecord,
    PlaceType,
    Rejection,
    RestCountriesRecord,
    WikidataRecord,
)
from gazetteer_geo.store import GazetteerStore

logger = logging.getLogger(__name__)

SourceRecord = Union[WikidataRecord, GeoNamesRecord, RestCountriesRecord, PlaceRecord]

# Parent lookups tried, most specific first, when a record names no parent
_CODE_PARENTS: dict[PlaceType, tuple[PlaceType, ...]] = {
    PlaceType.ADMIN1: (PlaceType.COUNTRY,),
    PlaceType.ADMIN2: (PlaceType.ADMIN1, PlaceType.COUNTRY),
    PlaceType.CITY: (PlaceType.ADMIN2, PlaceType.ADMIN1, PlaceType.COUNTRY),
    PlaceType.LOCALITY: (PlaceType.ADMIN2, PlaceType.ADMIN1, PlaceType.COUNTRY),
    PlaceType.OTHER: (PlaceType.ADMIN1, PlaceType.COUNTRY),
}


def _first_error(e: ValidationError) -> str:
    err = e.errors()[0]
    loc = ".".join(str(part) for part in err.get("loc", ())) or "record"
    return f"{loc}: {err.get('msg', 'invalid')}"


def parse_source_record(source_tag: str, payload: Any) -> SourceRecord:
    """Validate a raw payload into the record variant for its source."""
    if isinstance(payload, (WikidataRecord, GeoNamesRecord, RestCountriesRecord, PlaceRecord)):
        return payload
    model = SOURCE_RECORD_MODELS.get(source_tag.lower(), PlaceRecord)
    try:
        if isinstance(payload, str) and model is GeoNamesRecord:
            return GeoNamesRecord.from_tsv_line(payload)
        if isinstance(payload, BaseModel):
            payload = payload.model_dump()
        if not isinstance(payload, dict):
            raise InputError(f"unparseable {source_tag} record of type {type(payload).__name__}")
        return model.model_validate(payload)
    except ValidationError as e:
        raise InputError(_first_error(e)) from e
    except ValueError as e:
        raise InputError(str(e)) from e


def normalize_record(source_tag: str, payload: Any) -> list[PlaceInput]:
    """Parse a payload and convert it to canonical places with usable names."""
    record = parse_source_record(source_tag, payload)
    try:
        places = record.to_place_inputs(source_tag)
    except ValidationError as e:
        raise InputError(_first_error(e)) from e

    normalized = []
    for place in places:
        if not place.kind.strip():
            raise InputError("record has no kind")
        names = [n for n in place.names if n.normalized]
        if not names:
            raise InputError(f"{place.kind} record has no usable name")
        normalized.append(place.model_copy(update={"names": names}))
    return normalized


class Ingestor:
    """Serialized write path from source records into the store."""

    def __init__(self, store: GazetteerStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or store.settings
        self.matcher = PlaceMatcher(store, self.settings.ingest)

    def ingest_batch(self, source_tag: str, records: Iterable[Any],
                     cursor: Optional[str] = None) -> IngestionSummary:
        started = time.monotonic()
        summary = IngestionSummary(source=source_tag, cursor=cursor)
        strategies: Counter[str] = Counter()
        run_id = self.store.start_ingestion_run(source_tag)
        touched: set[int] = set()
        to_link: list[tuple[int, PlaceInput]] = []

        try:
            for position, payload in enumerate(records):
                try:
                    to_link.extend(self._ingest_record(source_tag, payload, summary, strategies))
                except InputError as e:
                    summary.rejected += 1
                    summary.rejections.append(Rejection(position=position, reason=str(e)))
                    logger.warning("Rejected %s record #%d: %s", source_tag, position, e)

            for place_id, place in to_link:
                touched.add(place_id)
                self._link_hierarchy(place_id, place, summary)
            for place_id in sorted(touched):
                self.store.set_canonical_name(place_id)
            if cursor is not None:
                self.store.save_checkpoint(source_tag, cursor)
        except Exception:
            summary.match_strategies = dict(strategies)
            summary.duration_s = round(time.monotonic() - started, 3)
            self.store.finish_ingestion_run(run_id, summary, status="failed")
            raise

        summary.match_strategies = dict(strategies)
        summary.duration_s = round(time.monotonic() - started, 3)
        self.store.finish_ingestion_run(run_id, summary)
        logger.info(
            "Ingested %s batch: created=%d updated=%d unchanged=%d rejected=%d in %.2fs",
            source_tag, summary.created, summary.updated, summary.unchanged,
            summary.rejected, summary.duration_s,
        )
        return summary

    def _ingest_record(self, source_tag: str, payload: Any, summary: IngestionSummary,
                       strategies: Counter) -> list[tuple[int, PlaceInput]]:
        places = normalize_record(source_tag, payload)

        outcomes = []
        with self.store.transaction():
            for place in places:
                match = self.matcher.find(place)
                result = self.store.upsert_place(place, match_id=match.place_id if match else None)
                added = sum(
                    1 for name in place.names
                    if self.store.add_name(result.place_id, name) is not None
                )
                outcomes.append((place, match, result, added))

        # Counted only once the record's transaction has committed
        ingested = []
        for place, match, result, added in outcomes:
            strategies[match.strategy if match else STRATEGY_NEW] += 1
            summary.names_added += added
            if result.created:
                summary.created += 1
            elif result.changed or added:
                summary.updated += 1
            else:
                summary.unchanged += 1
            ingested.append((result.place_id, place))
        return ingested

    def _link_hierarchy(self, place_id: int, place: PlaceInput, summary: IngestionSummary) -> None:
        parents: list[tuple[int, str]] = []
        for ref in place.parents:
            parent_id = self.store.find_by_external_id(ref.source, ref.ext_id)
            if parent_id is None:
                logger.debug("Parent %s:%s of place %d not in store yet",
                             ref.source, ref.ext_id, place_id)
                continue
            parents.append((parent_id, ref.relation))
        if not place.parents:
            parent_id = self._parent_by_codes(place)
            if parent_id is not None:
                parents.append((parent_id, "admin_parent"))

        for parent_id, relation in parents:
            if parent_id == place_id:
                continue
            try:
                if self.store.add_hierarchy_edge(parent_id, place_id, relation):
                    summary.edges_added += 1
            except HierarchyCycleError as e:
                summary.edges_rejected += 1
                logger.warning("Rejected hierarchy edge for place %d: %s", place_id, e)

    def _parent_by_codes(self, place: PlaceInput) -> Optional[int]:
        if not place.country_code:
            return None
        for parent_type in _CODE_PARENTS.get(place.place_type, ()):
            if parent_type == PlaceType.ADMIN2:
                if not (place.admin1 and place.admin2):
                    continue
                codes = (place.admin1, place.admin2)
            elif parent_type == PlaceType.ADMIN1:
                if not place.admin1:
                    continue
                codes = (place.admin1, None)
            else:
                codes = (None, None)
            parent_id = self.store.find_by_admin_codes(parent_type, place.country_code, *codes)
            if parent_id is not None:
                return parent_id
        return None


def ingest_batch(store: GazetteerStore, source_tag: str, records: Iterable[Any],
                 cursor: Optional[str] = None) -> IngestionSummary:
    return Ingestor(store).ingest_batch(source_tag, records, cursor=cursor)


def _combine(total: IngestionSummary, part: IngestionSummary, offset: int) -> None:
    for counter in ("created", "updated", "unchanged", "rejected",
                    "names_added", "edges_added", "edges_rejected"):
        setattr(total, counter, getattr(total, counter) + getattr(part, counter))
    for strategy, count in part.match_strategies.items():
        total.match_strategies[strategy] = total.match_strategies.get(strategy, 0) + count
    total.rejections.extend(
        Rejection(position=r.position + offset, reason=r.reason) for r in part.rejections
    )
    total.cursor = part.cursor
    total.duration_s = round(total.duration_s + part.duration_s, 3)


def ingest_jsonl(store: GazetteerStore, source_tag: str, path: Union[str, Path],
                 batch_size: Optional[int] = None, resume: bool = True) -> IngestionSummary:
    """
    Ingest a JSON-lines file (or a raw GeoNames dump) in checkpointed batches.

    The cursor is the number of lines consumed; with ``resume`` the lines
    before the saved checkpoint are skipped, so an interrupted run picks up
    after its last completed batch.
    """
    settings = store.settings
    batch_size = batch_size or settings.ingest.file_batch_size
    ingestor = Ingestor(store, settings)

    checkpoint = store.get_checkpoint(source_tag) if resume else None
    skip = int(checkpoint) if checkpoint and checkpoint.isdigit() else 0
    if skip:
        logger.info("Resuming %s ingestion after line %d", source_tag, skip)

    total = IngestionSummary(source=source_tag, cursor=checkpoint)
    batch: list[Any] = []
    seen = 0
    batch_start = skip
    line_no = 0
    with open(path, encoding="utf-8") as fh:
        for line_no, line in enumerate(fh, start=1):
            if line_no <= skip:
                continue
            line = line.strip()
            if line and not line.startswith("#"):
                try:
                    batch.append(json.loads(line))
                except json.JSONDecodeError:
                    batch.append(line)
            if line_no - batch_start >= batch_size:
                part = ingestor.ingest_batch(source_tag, batch, cursor=str(line_no))
                _combine(total, part, seen)
                seen += len(batch)
                batch, batch_start = [], line_no
    if line_no > batch_start:
        part = ingestor.ingest_batch(source_tag, batch, cursor=str(line_no))
        _combine(total, part, seen)
    return total
