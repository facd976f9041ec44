from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

from reading_log.core.models import BOOK_SOURCES, BOOK_STATUSES, RawBook
from reading_log.core.normalize import normalize_tags, parse_datetime

logger = logging.getLogger(__name__)


class Collector(Protocol):
    source: str

    def collect(self) -> List[RawBook]:
        ...


def _opt_str(val: Any) -> Optional[str]:
    if val is None:
        return None
    s = str(val).strip()
    return s or None


def _opt_rating(val: Any) -> Optional[float]:
    if val is None or isinstance(val, bool):
        return None
    try:
        r = float(val)
    except (TypeError, ValueError):
        return None
    if r < 0 or r > 5:
        return None
    return r


def _tags(val: Any) -> tuple:
    if val is None:
        return ()
    if isinstance(val, str):
        return normalize_tags(t for t in val.split(","))
    if isinstance(val, (list, tuple, set)):
        return normalize_tags(str(t) for t in val)
    return ()


def coerce_raw_book(data: Dict[str, Any], source: str) -> Optional[RawBook]:
    """
    Map a loosely typed record (frontmatter, feed item) to a RawBook.

    Returns None when title or author is missing; such records never reach
    the resolver. Unknown status falls back to "read", bad dates and ratings
    to None.
    """
    if source not in BOOK_SOURCES:
        raise ValueError(f"unknown book source: {source!r}")
    title = _opt_str(data.get("title"))
    author = _opt_str(data.get("author"))
    if not title or not author:
        logger.debug("rejecting %s record without title/author: %r", source, data.get("title"))
        return None

    status = _opt_str(data.get("status")) or "read"
    if status not in BOOK_STATUSES:
        logger.debug("unknown status %r for %r; using 'read'", status, title)
        status = "read"

    return RawBook(
        title=title,
        author=author,
        source=source,
        status=status,
        cover_url=_opt_str(data.get("coverUrl")),
        isbn=_opt_str(data.get("isbn")),
        started_date=parse_datetime(data.get("startedDate")),
        completed_date=parse_datetime(data.get("completedDate")),
        rating=_opt_rating(data.get("rating")),
        review=_opt_str(data.get("review")),
        tags=_tags(data.get("tags")),
    )
