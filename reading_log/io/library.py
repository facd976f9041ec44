from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set

from reading_log.core.models import NormalizedBook
from reading_log.core.normalize import normalize_tags, parse_datetime
from reading_log.io.storage import JsonStorage

logger = logging.getLogger(__name__)

LIBRARY_KEY = "books.json"

# python attribute -> JSON key used by the reading-log site
LIBRARY_FIELDS = {
    "id": "id",
    "title": "title",
    "author": "author",
    "cover_url": "coverUrl",
    "isbn": "isbn",
    "source": "source",
    "status": "status",
    "started_date": "startedDate",
    "completed_date": "completedDate",
    "rating": "rating",
    "review": "review",
    "tags": "tags",
    "normalized_title": "normalizedTitle",
    "normalized_author": "normalizedAuthor",
    "sources": "sources",
}


def format_datetime(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat().replace("+00:00", "Z")


def book_to_dict(book: NormalizedBook) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for attr, key in LIBRARY_FIELDS.items():
        val = getattr(book, attr)
        if isinstance(val, datetime):
            val = format_datetime(val)
        elif isinstance(val, tuple):
            val = list(val)
        if val is None:
            continue
        out[key] = val
    return out


def _opt_str(val: Any) -> Optional[str]:
    if val is None:
        return None
    s = str(val).strip()
    return s or None


def _opt_float(val: Any) -> Optional[float]:
    if val is None or isinstance(val, bool):
        return None
    try:
        return float(val)
    except (TypeError, ValueError):
        return None


def book_from_dict(d: Any) -> Optional[NormalizedBook]:
    if not isinstance(d, dict):
        return None
    title = _opt_str(d.get("title"))
    author = _opt_str(d.get("author"))
    if not title or not author:
        return None

    sources_raw = d.get("sources") if isinstance(d.get("sources"), list) else []
    sources = normalize_tags(sources_raw)
    source = _opt_str(d.get("source")) or (sources[0] if sources else "manual")
    if source not in sources:
        sources = sources + (source,)
    tags = d.get("tags") if isinstance(d.get("tags"), list) else []

    return NormalizedBook(
        title=title,
        author=author,
        source=source,
        status=_opt_str(d.get("status")) or "read",
        cover_url=_opt_str(d.get("coverUrl")),
        isbn=_opt_str(d.get("isbn")),
        started_date=parse_datetime(d.get("startedDate")),
        completed_date=parse_datetime(d.get("completedDate")),
        rating=_opt_float(d.get("rating")),
        review=_opt_str(d.get("review")),
        tags=normalize_tags(tags),
        normalized_title=str(d.get("normalizedTitle") or ""),
        normalized_author=str(d.get("normalizedAuthor") or ""),
        id=str(d.get("id") or ""),
        sources=sources,
    )


def read_library(storage: JsonStorage, key: str = LIBRARY_KEY) -> List[NormalizedBook]:
    data = storage.read(key)
    if data is None:
        return []
    if not isinstance(data, list):
        logger.warning("library snapshot %s is not a list; ignoring it", key)
        return []
    books: List[NormalizedBook] = []
    skipped = 0
    for item in data:
        book = book_from_dict(item)
        if book is None:
            skipped += 1
            continue
        books.append(book)
    if skipped:
        logger.warning("skipped %s malformed entries in %s", skipped, key)
    return books


def read_library_ids(storage: JsonStorage, key: str = LIBRARY_KEY) -> Set[str]:
    data = storage.read(key)
    if not isinstance(data, list):
        return set()
    return {str(item["id"]) for item in data if isinstance(item, dict) and item.get("id")}


def write_library(storage: JsonStorage, books: Sequence[NormalizedBook], key: str = LIBRARY_KEY) -> None:
    storage.write(key, [book_to_dict(b) for b in books])
    logger.info("saved %s books -> %s", len(books), key)
