from __future__ import annotations

import re
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Protocol

from reading_log.core.models import NormalizedBook
from reading_log.core.resolve import ordered_union, prefer_existing

ENRICHABLE_FIELDS = ("cover_url", "isbn", "review", "rating", "tags")
MAX_SUBJECT_TAGS = 5
MAX_DESCRIPTION_LEN = 500

_WS_RE = re.compile(r"\s+")


class Enricher(Protocol):
    """A metadata provider: returns only the fields it can fill in."""

    name: str

    def enrich(self, book: NormalizedBook) -> Dict[str, Any]:
        ...


def subject_tags(subjects: Iterable[str], limit: int = MAX_SUBJECT_TAGS) -> List[str]:
    out: List[str] = []
    for s in subjects:
        tag = _WS_RE.sub("-", str(s).strip().lower())
        if tag:
            out.append(tag)
        if len(out) >= limit:
            break
    return out


def clip_description(text: str, max_len: int = MAX_DESCRIPTION_LEN) -> str:
    return (text or "").strip()[:max_len]


def apply_enrichment(book: NormalizedBook, partial: Dict[str, Any]) -> NormalizedBook:
    """Fill gaps only: existing cover, isbn, review and rating always win."""
    updates: Dict[str, Any] = {}
    for name in ENRICHABLE_FIELDS:
        if name not in partial or partial[name] is None:
            continue
        if name == "tags":
            updates[name] = ordered_union(book.tags, partial[name])
        elif name == "rating":
            updates[name] = book.rating if book.rating is not None else float(partial[name])
        else:
            updates[name] = prefer_existing(getattr(book, name), partial[name])
    return replace(book, **updates) if updates else book


def needs_enrichment(book: NormalizedBook) -> bool:
    return not book.cover_url or not book.review or not book.isbn
