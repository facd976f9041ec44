from __future__ import annotations

import re
from dataclasses import replace
from datetime import date, datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Iterable, List, Optional, Sequence, Tuple, TypeVar

from reading_log.core.models import RawBook

_WS_RE = re.compile(r"\s+")
_GOODREADS_SIZE_RE = re.compile(r"_S[XY]\d+_")
_MULTI_DOT_RE = re.compile(r"\.{2,}")

B = TypeVar("B", bound=RawBook)


def normalize_isbn(x: Optional[str]) -> str:
    x = (x or "").strip()
    return re.sub(r"[^0-9Xx]", "", x).upper()


def swap_last_first(author: str) -> str:
    """
    "Herbert, Frank" -> "Frank Herbert".

    Only applies when a single comma splits the name into exactly two parts.
    "Le Guin, Ursula K., Jr." and "Pratchett, Terry, Gaiman, Neil" are left
    alone, so multi-author strings keep their commas.
    """
    parts = [p.strip() for p in author.split(",")]
    if len(parts) != 2:
        return author
    return f"{parts[1]} {parts[0]}".strip()


def strip_trailing_parenthetical(title: str) -> str:
    """
    Drop one balanced "(...)" group that ends the title, nested groups
    included: "The Hobbit (Middle-earth (Prequel))" -> "The Hobbit".
    Unbalanced titles are returned unchanged.
    """
    if not title.endswith(")"):
        return title
    depth = 0
    for i in range(len(title) - 1, -1, -1):
        ch = title[i]
        if ch == ")":
            depth += 1
        elif ch == "(":
            depth -= 1
            if depth == 0:
                return title[:i].rstrip()
    return title


def normalize_title(title: str) -> str:
    t = _WS_RE.sub(" ", (title or "").strip())
    return strip_trailing_parenthetical(t).strip()


def normalize_author(author: str) -> str:
    return swap_last_first((author or "").strip())


def normalize_cover_url(url: Optional[str], source: str) -> Optional[str]:
    if not url:
        return None
    # goodreads CDN encodes thumbnail size in the path: ..._SX98_.jpg
    if source == "goodreads":
        url = _GOODREADS_SIZE_RE.sub("", url)
        url = _MULTI_DOT_RE.sub(".", url)
    return url


def normalize_tags(values: Optional[Iterable[str]]) -> Tuple[str, ...]:
    seen = set()
    out: List[str] = []
    for v in values or ():
        s = str(v).strip()
        if not s or s in seen:
            continue
        seen.add(s)
        out.append(s)
    return tuple(out)


def parse_datetime(value: object) -> Optional[datetime]:
    """
    Best-effort date parsing for collector and snapshot values.

    Accepts datetime/date objects, ISO-8601 strings (with or without a
    trailing "Z") and RFC-822 strings as found in RSS feeds. Naive values
    are taken as UTC. Anything unparseable returns None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    else:
        s = str(value).strip()
        if not s:
            return None
        dt = None
        iso = s[:-1] + "+00:00" if s.endswith(("Z", "z")) else s
        try:
            dt = datetime.fromisoformat(iso)
        except ValueError:
            try:
                dt = parsedate_to_datetime(s)
            except (TypeError, ValueError, IndexError):
                return None
        if dt is None:
            return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def normalize_book(book: B) -> B:
    return replace(
        book,
        title=normalize_title(book.title),
        author=normalize_author(book.author),
        cover_url=normalize_cover_url(book.cover_url, book.source),
    )


def normalize_books(books: Sequence[B]) -> List[B]:
    return [normalize_book(b) for b in books]
