"""
Disambiguation engine: the surface the analysis pipeline talks to.

    build_index()   rebuild from the store and publish atomically
    disambiguate()  resolve caller-supplied mentions
    analyze()       extract mentions from text/URL, then resolve them
    explain()       full per-candidate breakdown for one mention
    ingest_batch()  write source records into the store

Every call reads the current index reference once and keeps all scoring
state local to the call, so independent documents can be resolved
concurrently while a new index is being built in the background.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Iterable, Optional, Sequence, Union

from pydantic import ValidationError

from gazetteer_geo.coherence import apply_coherence
from gazetteer_geo.config import Settings
from gazetteer_geo.errors import InputError, NoCandidatesFound
from gazetteer_geo.extract import MentionExtractor, RawMention
from gazetteer_geo.features import Candidate, FeatureScorer
from gazetteer_geo.gazetteer import GazetteerIndex, IndexHandle, IndexRegistry
from gazetteer_geo.ingest import Ingestor
from gazetteer_geo.models import (
    ExplanationRecord,
    IngestionSummary,
    MentionInput,
    ResolvedMention,
)
from gazetteer_geo.normalize import normalize_name, slugify
from gazetteer_geo.prior import CoverageSource, PublisherPrior
from gazetteer_geo.selector import COHERENCE_METHOD, SCORING_METHOD, Selector, confidence_label
from gazetteer_geo.store import GazetteerStore

logger = logging.getLogger(__name__)

MentionLike = Union[MentionInput, RawMention, dict, str]


class DisambiguationEngine:
    def __init__(self, store: GazetteerStore, coverage: Optional[CoverageSource] = None,
                 settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or store.settings
        scoring = self.settings.scoring

        self.registry = IndexRegistry()
        self.extractor = MentionExtractor(self.settings.extract)
        self.prior = PublisherPrior(coverage if coverage is not None else store,
                                    scoring.publisher_prior_floor)
        self.scorer = FeatureScorer(self.extractor, self.prior, scoring)
        self.selector = Selector(scoring.weights)
        self.ingestor = Ingestor(store, self.settings)

        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    # ── Index lifecycle ───────────────────────────────────────────────

    def build_index(self, background: bool = False) -> Union[IndexHandle, "Future[IndexHandle]"]:
        """Rebuild and publish. With ``background`` the build runs on a worker thread."""
        if background:
            return self._worker().submit(self._rebuild)
        return self._rebuild()

    def _rebuild(self) -> IndexHandle:
        handle = self.registry.rebuild(self.store, self.settings)
        self.prior.invalidate()
        return handle

    def _worker(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="index-build")
            return self._executor

    def close(self) -> None:
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None

    # ── Ingestion ─────────────────────────────────────────────────────

    def ingest_batch(self, source_tag: str, records: Iterable[Any],
                     cursor: Optional[str] = None) -> IngestionSummary:
        return self.ingestor.ingest_batch(source_tag, records, cursor=cursor)

    # ── Resolution ────────────────────────────────────────────────────

    def disambiguate(self, mentions: Sequence[MentionLike], publisher_id: Optional[str] = None,
                     text: Optional[str] = None) -> list[ResolvedMention]:
        """
        Resolve mentions that were found elsewhere.

        ``text`` is the document the mention offsets point into; when given,
        each mention's context window is cut from it.
        """
        index = self.registry.current()
        raw = [self._to_raw(index, m, text) for m in mentions]
        return self._resolve(index, raw, publisher_id)

    def analyze(self, text: str, url: Optional[str] = None,
                publisher_id: Optional[str] = None) -> list[ResolvedMention]:
        index = self.registry.current()
        raw = self.extractor.extract(index, text or "", url)
        return self._resolve(index, raw, publisher_id)

    def explain(self, mention: MentionLike, candidates: Optional[Sequence[int]] = None,
                publisher_id: Optional[str] = None,
                other_mentions: Sequence[MentionLike] = ()) -> ExplanationRecord:
        """
        Score one mention and return the full breakdown.

        ``candidates`` restricts scoring to the given place ids; by default
        every place carrying the mention's name is scored. ``other_mentions``
        from the same document feed the coherence pass.
        """
        index = self.registry.current()
        target = self._to_raw(index, mention, None, candidate_ids=candidates)
        if not target.candidates:
            raise NoCandidatesFound(target.text)
        others = [self._to_raw(index, m, None) for m in other_mentions]

        ranked_lists, applied = self._score_document(index, [target] + others, publisher_id)
        ranked = ranked_lists[0]
        confidence = self.selector.confidence(ranked)
        winner = ranked[0]
        return ExplanationRecord(
            mention=target.text,
            publisher_id=publisher_id,
            selected_place_id=winner.place.id,
            confidence=confidence,
            method=COHERENCE_METHOD if applied else SCORING_METHOD,
            version=self.settings.scoring.analysis_version,
            weights=self.selector.weights.as_dict(),
            candidates=[self.selector.explain_candidate(c) for c in ranked],
            summary=(
                f"Resolved {target.text!r} to {winner.place.name} "
                f"({winner.place.country_code or '--'}) with {confidence_label(confidence)} "
                f"confidence ({confidence:.2f})"
            ),
        )

    def _score_document(self, index: GazetteerIndex, mentions: list[RawMention],
                        publisher_id: Optional[str]) -> tuple[list[list[Candidate]], bool]:
        per_mention = [self.scorer.score(index, m, publisher_id) for m in mentions]
        for cands in per_mention:
            for c in cands:
                c.base_score = self.selector.base_score(c)
        applied = apply_coherence(per_mention)
        return [self.selector.rank(cands) for cands in per_mention], applied

    def _resolve(self, index: GazetteerIndex, mentions: list[RawMention],
                 publisher_id: Optional[str]) -> list[ResolvedMention]:
        ranked_lists, applied = self._score_document(index, mentions, publisher_id)
        method = COHERENCE_METHOD if applied else SCORING_METHOD
        version = self.settings.scoring.analysis_version

        results = []
        for mention, ranked in zip(mentions, ranked_lists):
            common = dict(
                mention=mention.text,
                normalized=mention.key,
                start=mention.start,
                end=mention.end,
                occurrences=list(mention.occurrences),
                url_occurrences=list(mention.url_occurrences),
                count=mention.count,
                context=mention.context,
                source=mention.source,
                method=method,
                version=version,
            )
            if not ranked:
                logger.debug("%s", NoCandidatesFound(mention.text))
                results.append(ResolvedMention(status="unresolved", **common))
                continue
            top = ranked[0]
            results.append(ResolvedMention(
                status="resolved",
                place_id=top.place.id,
                place_name=top.place.name,
                country_code=top.place.country_code,
                place_type=top.place.place_type,
                confidence=self.selector.confidence(ranked),
                score=top.final_score,
                **common,
            ))
        logger.debug("Resolved %d mentions against index v%d", len(results), index.version)
        return results

    # ── Mention coercion ──────────────────────────────────────────────

    def _to_raw(self, index: GazetteerIndex, mention: MentionLike, text: Optional[str],
                candidate_ids: Optional[Sequence[int]] = None) -> RawMention:
        if isinstance(mention, RawMention):
            return mention
        try:
            if isinstance(mention, str):
                mention = MentionInput(text=mention)
            elif not isinstance(mention, MentionInput):
                mention = MentionInput.model_validate(mention)
        except ValidationError as e:
            raise InputError(f"invalid mention: {e.errors()[0].get('msg', 'invalid')}") from e

        key = normalize_name(mention.text)
        if candidate_ids is not None:
            candidates = tuple(
                index.place(pid) for pid in sorted(set(candidate_ids)) if index.place(pid) is not None
            )
        else:
            candidates = index.lookup_name(key) or index.lookup_slug(slugify(mention.text))

        start, end = mention.start, mention.end
        context, context_offset = mention.context or "", None
        if text is not None:
            if start is None:
                found = text.find(mention.text)
                if found >= 0:
                    start, end = found, found + len(mention.text)
            elif end is None:
                end = start + len(mention.text)
            if start is not None:
                if start > end or end > len(text):
                    raise InputError(f"offsets {start}:{end} fall outside the document")
                context = self.extractor.context_window(text, start, end)
                context_offset = start - max(0, start - self.extractor.config.context_window_chars)

        return RawMention(
            text=mention.text,
            key=key,
            start=start,
            end=end,
            context=context,
            source="input",
            candidates=candidates,
            context_offset=context_offset,
            occurrences=((start, end),) if start is not None and end is not None else (),
        )
