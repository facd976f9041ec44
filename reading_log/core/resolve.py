from __future__ import annotations

import logging
import re
from dataclasses import fields, replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from reading_log.core.models import NormalizedBook, RawBook
from reading_log.core.normalize import normalize_tags
from reading_log.core.scoring import (
    SAME_BOOK_THRESHOLD,
    is_same_book,
    normalize_author_for_match,
    normalize_for_match,
)

logger = logging.getLogger(__name__)

_WS_RE = re.compile(r"\s+")
_RAW_FIELDS = tuple(f.name for f in fields(RawBook))


# -----------------------------
# Merge rules (existing, incoming) -> kept
# -----------------------------
def prefer_existing(existing, incoming):
    return existing or incoming


def earliest(existing: Optional[datetime], incoming: Optional[datetime]) -> Optional[datetime]:
    if existing is None:
        return incoming
    if incoming is None:
        return existing
    return incoming if incoming < existing else existing


def latest(existing: Optional[datetime], incoming: Optional[datetime]) -> Optional[datetime]:
    if existing is None:
        return incoming
    if incoming is None:
        return existing
    return incoming if incoming > existing else existing


def highest(existing: Optional[float], incoming: Optional[float]) -> Optional[float]:
    if existing is None:
        return incoming
    if incoming is None:
        return existing
    return incoming if incoming > existing else existing


def longest(existing: Optional[str], incoming: Optional[str]) -> Optional[str]:
    if not incoming:
        return existing
    if not existing:
        return incoming
    return incoming if len(incoming) > len(existing) else existing


def ordered_union(existing: Iterable[str], incoming: Iterable[str]) -> Tuple[str, ...]:
    return normalize_tags(tuple(existing or ()) + tuple(incoming or ()))


def union_sources(existing: Iterable[str], incoming: Iterable[str]) -> Tuple[str, ...]:
    return ordered_union(existing, incoming)


def union_tags(existing: Iterable[str], incoming: Iterable[str]) -> Tuple[str, ...]:
    return ordered_union(existing, incoming)


MergeRule = Callable[[object, object], object]

# Fields not listed keep the existing entry's value (title, author, status, ...).
MERGE_POLICY: Dict[str, MergeRule] = {
    "sources": union_sources,
    "cover_url": prefer_existing,
    "isbn": prefer_existing,
    "started_date": earliest,
    "completed_date": latest,
    "rating": highest,
    "tags": union_tags,
    "review": longest,
}


# -----------------------------
# Canonical entries
# -----------------------------
def book_id(title: str, author: str) -> str:
    nt = normalize_for_match(title)
    na = normalize_author_for_match(author)
    return _WS_RE.sub("-", f"{nt}-{na}").lower()


def record_sources(record: RawBook) -> Tuple[str, ...]:
    if isinstance(record, NormalizedBook) and record.sources:
        return ordered_union(record.sources, (record.source,))
    return (record.source,)


def to_canonical(record: RawBook) -> NormalizedBook:
    """
    Mint a canonical entry. Entries re-loaded from a previous snapshot keep
    their id so it stays stable across runs.
    """
    existing_id = record.id if isinstance(record, NormalizedBook) else ""
    return NormalizedBook(
        **{name: getattr(record, name) for name in _RAW_FIELDS},
        normalized_title=normalize_for_match(record.title),
        normalized_author=normalize_author_for_match(record.author),
        id=existing_id or book_id(record.title, record.author),
        sources=record_sources(record),
    )


def merge_book(existing: NormalizedBook, incoming: RawBook) -> NormalizedBook:
    updates = {}
    for name, rule in MERGE_POLICY.items():
        new_val = record_sources(incoming) if name == "sources" else getattr(incoming, name)
        updates[name] = rule(getattr(existing, name), new_val)
    return replace(existing, **updates)


class CollisionResolver:
    """
    Greedy first-match deduplication.

    Records are processed in input order against a growing library; each one
    merges into the first entry (in insertion order) that looks like the same
    book, otherwise it becomes a new entry. Results depend on input order and
    are not transitively closed; callers that need stable output must feed a
    stable order.
    """

    def __init__(self, threshold: float = SAME_BOOK_THRESHOLD) -> None:
        self.threshold = threshold
        self._library: List[NormalizedBook] = []
        self.merged = 0
        self.created = 0

    @property
    def books(self) -> List[NormalizedBook]:
        return list(self._library)

    def find_match(self, record: RawBook) -> Optional[int]:
        for idx, existing in enumerate(self._library):
            if is_same_book(record, existing, self.threshold):
                return idx
        return None

    def add(self, record: RawBook) -> NormalizedBook:
        idx = self.find_match(record)
        if idx is None:
            entry = to_canonical(record)
            self._library.append(entry)
            self.created += 1
            return entry

        existing = self._library[idx]
        entry = merge_book(existing, record)
        self._library[idx] = entry
        self.merged += 1
        logger.debug("merged %r (%s) into %s", record.title, record.source, existing.id)
        return entry

    def resolve(self, records: Sequence[RawBook]) -> List[NormalizedBook]:
        for record in records:
            self.add(record)
        logger.info(
            "resolved %s records into %s books (merged=%s)",
            len(records),
            len(self._library),
            self.merged,
        )
        return self.books


def resolve_collisions(records: Sequence[RawBook], threshold: float = SAME_BOOK_THRESHOLD) -> List[NormalizedBook]:
    return CollisionResolver(threshold).resolve(records)
