"""
Mention extraction against a published gazetteer index.

Text: word tokens are normalized and every window of up to
``index.max_name_tokens`` tokens is looked up in the name index. Overlaps
are resolved in favour of the longest span, so "New York City" beats
"York" beats "New". Repeats of the same name are merged into one mention
carrying every occurrence offset.

URLs: the path is split into segments and each segment into slug tokens;
windows are looked up in the slug index the same way. When an earlier path
segment names an ancestor of a later mention's candidates, the later
mention is narrowed to those descendants (/us/texas/paris).

Spans that are really organisations or people ("Paris Hilton",
"Texas Instruments", "Mr Jordan") are dropped using small word lists.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Optional
from urllib.parse import unquote, urlsplit

from gazetteer_geo.config import ExtractConfig, get_settings
from gazetteer_geo.gazetteer import GazetteerIndex, PlaceSummary
from gazetteer_geo.normalize import iter_tokens, slugify

logger = logging.getLogger(__name__)

# Normalized words that turn a preceding place name into something else
NON_PLACE_FOLLOWERS = frozenset({
    "hilton", "instruments", "inc", "corp", "corporation", "ltd", "llc", "plc",
    "saint", "rangers", "fc", "jets", "times", "post",
})
# Normalized words that turn a following place name into a person
PERSON_TITLES = frozenset({"mr", "mrs", "ms", "miss", "dr", "sir", "lady", "lord"})

_URL_TOKEN_RE = re.compile(r"[^\s_.\-+]+")
_MAX_TOKEN_GAP = 3


@dataclass(frozen=True)
class Span:
    start: int
    end: int
    key: str
    candidates: tuple[PlaceSummary, ...]


@dataclass(frozen=True)
class RawMention:
    text: str
    key: str
    start: Optional[int]
    end: Optional[int]
    context: str
    source: str
    candidates: tuple[PlaceSummary, ...]
    # Position of the mention inside ``context``, when known
    context_offset: Optional[int] = None
    occurrences: tuple[tuple[int, int], ...] = field(default_factory=tuple)
    # URL path offsets of a text mention that the URL also names
    url_occurrences: tuple[tuple[int, int], ...] = field(default_factory=tuple)
    count: int = 1

    @property
    def merge_key(self) -> str:
        return slugify(self.key)


def _resolve_overlaps(matches: list[Span]) -> list[Span]:
    chosen: list[Span] = []
    for span in sorted(matches, key=lambda s: (-(s.end - s.start), s.start)):
        if any(span.start < c.end and c.start < span.end for c in chosen):
            continue
        chosen.append(span)
    return sorted(chosen, key=lambda s: s.start)


class MentionExtractor:
    def __init__(self, config: Optional[ExtractConfig] = None):
        self.config = config or get_settings().extract

    # ── Text ──────────────────────────────────────────────────────────

    def find_spans(self, index: GazetteerIndex, text: str,
                   require_capitalized: Optional[bool] = None) -> list[Span]:
        """Non-overlapping name spans in ``text``, longest first, in text order."""
        if require_capitalized is None:
            require_capitalized = self.config.require_capitalized
        tokens = list(iter_tokens(text))
        matches: list[Span] = []

        for i in range(len(tokens)):
            if require_capitalized and not text[tokens[i][0]].isupper():
                continue
            widest = min(index.max_name_tokens, len(tokens) - i)
            for width in range(widest, 0, -1):
                window = tokens[i:i + width]
                if not self._contiguous(text, window):
                    continue
                key = " ".join(t[2] for t in window)
                if len(key) < self.config.min_name_length:
                    continue
                candidates = index.lookup_name(key)
                if candidates:
                    matches.append(Span(window[0][0], window[-1][1], key, candidates))
                    break

        spans = _resolve_overlaps(matches)
        return [s for s in spans if not self._looks_non_place(text, s)]

    @staticmethod
    def _contiguous(text: str, window: list[tuple[int, int, str]]) -> bool:
        for (_, prev_end, _), (next_start, _, _) in zip(window, window[1:]):
            gap = text[prev_end:next_start]
            if len(gap) > _MAX_TOKEN_GAP or "\n" in gap:
                return False
        return True

    @staticmethod
    def _looks_non_place(text: str, span: Span) -> bool:
        following = next(iter_tokens(text[span.end:span.end + 40]), None)
        if following and following[0] <= 2 and following[2] in NON_PLACE_FOLLOWERS:
            logger.debug("Dropping %r: followed by %r", span.key, following[2])
            return True
        preceding = list(iter_tokens(text[max(0, span.start - 12):span.start]))
        if preceding and preceding[-1][2] in PERSON_TITLES:
            logger.debug("Dropping %r: preceded by title %r", span.key, preceding[-1][2])
            return True
        return False

    def context_window(self, text: str, start: int, end: int) -> str:
        w = self.config.context_window_chars
        return text[max(0, start - w):end + w]

    def extract_text(self, index: GazetteerIndex, text: str) -> list[RawMention]:
        merged: dict[str, dict] = {}
        for span in self.find_spans(index, text):
            entry = merged.get(span.key)
            if entry is None:
                merged[span.key] = {"span": span, "occurrences": [(span.start, span.end)]}
            else:
                entry["occurrences"].append((span.start, span.end))

        mentions = []
        for key, entry in merged.items():
            span = entry["span"]
            mentions.append(RawMention(
                text=text[span.start:span.end],
                key=key,
                start=span.start,
                end=span.end,
                context=self.context_window(text, span.start, span.end),
                source="text",
                context_offset=span.start - max(0, span.start - self.config.context_window_chars),
                candidates=span.candidates,
                occurrences=tuple(entry["occurrences"]),
                count=len(entry["occurrences"]),
            ))
        return mentions

    # ── URLs ──────────────────────────────────────────────────────────

    def extract_url(self, index: GazetteerIndex, url: str) -> list[RawMention]:
        path = unquote(urlsplit(url).path or "")
        spans: list[Span] = []
        offset = 0
        for segment in path.split("/"):
            spans.extend(self._segment_spans(index, segment, offset))
            offset += len(segment) + 1

        mentions: list[RawMention] = []
        seen: dict[str, int] = {}
        for span in spans:
            candidates = self._narrow_by_path(index, span, mentions)
            if span.key in seen:
                prior = mentions[seen[span.key]]
                mentions[seen[span.key]] = replace(
                    prior,
                    occurrences=prior.occurrences + ((span.start, span.end),),
                    count=prior.count + 1,
                )
                continue
            seen[span.key] = len(mentions)
            mentions.append(RawMention(
                text=path[span.start:span.end],
                key=span.key,
                start=span.start,
                end=span.end,
                context=path,
                source="url",
                context_offset=span.start,
                candidates=candidates,
                occurrences=((span.start, span.end),),
            ))
        return mentions

    def _segment_spans(self, index: GazetteerIndex, segment: str, offset: int) -> list[Span]:
        tokens = [(m.start(), m.end(), m.group(0).lower()) for m in _URL_TOKEN_RE.finditer(segment)]
        matches: list[Span] = []
        for i in range(len(tokens)):
            widest = min(index.max_name_tokens, len(tokens) - i)
            for width in range(widest, 0, -1):
                window = tokens[i:i + width]
                key = slugify("-".join(t[2] for t in window))
                if len(key) < self.config.min_name_length:
                    continue
                candidates = index.lookup_slug(key)
                if candidates:
                    matches.append(Span(offset + window[0][0], offset + window[-1][1], key, candidates))
                    break
        return _resolve_overlaps(matches)

    @staticmethod
    def _narrow_by_path(index: GazetteerIndex, span: Span,
                        earlier: list[RawMention]) -> tuple[PlaceSummary, ...]:
        candidates = span.candidates
        for mention in earlier:
            parent_ids = {p.id for p in mention.candidates}
            narrowed = tuple(
                c for c in candidates
                if any(index.is_ancestor(pid, c.id) for pid in parent_ids)
            )
            if narrowed:
                candidates = narrowed
        return candidates

    # ── Documents ─────────────────────────────────────────────────────

    def extract(self, index: GazetteerIndex, text: str = "",
                url: Optional[str] = None) -> list[RawMention]:
        """
        Text mentions first, then URL-only mentions; same names merge.

        A merged mention keeps text offsets in ``occurrences`` and URL path
        offsets in ``url_occurrences``; ``count`` covers both.
        """
        mentions = self.extract_text(index, text) if text else []
        if url:
            by_key = {m.merge_key: i for i, m in enumerate(mentions)}
            for url_mention in self.extract_url(index, url):
                pos = by_key.get(url_mention.merge_key)
                if pos is None:
                    by_key[url_mention.merge_key] = len(mentions)
                    mentions.append(url_mention)
                    continue
                merged = mentions[pos]
                mentions[pos] = replace(
                    merged,
                    url_occurrences=merged.url_occurrences + url_mention.occurrences,
                    count=merged.count + url_mention.count,
                )
        return mentions


def extract_document(index: GazetteerIndex, text: str = "", url: Optional[str] = None,
                     config: Optional[ExtractConfig] = None) -> list[RawMention]:
    return MentionExtractor(config).extract(index, text, url)
