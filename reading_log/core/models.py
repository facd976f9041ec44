from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

BOOK_SOURCES = ("goodreads", "audible", "spotify", "physical", "manual")
BOOK_STATUSES = ("currently-reading", "read", "want-to-read")


@dataclass(frozen=True)
class RawBook:
    title: str
    author: str
    source: str  # one of BOOK_SOURCES
    status: str = "read"  # one of BOOK_STATUSES
    cover_url: Optional[str] = None
    isbn: Optional[str] = None
    started_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    rating: Optional[float] = None
    review: Optional[str] = None
    tags: Tuple[str, ...] = ()


@dataclass(frozen=True)
class NormalizedBook(RawBook):
    normalized_title: str = ""
    normalized_author: str = ""
    id: str = ""
    sources: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SyncEntry:
    last_sync: Optional[datetime]
    last_book_count: int = 0
    last_book_ids: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ChangeEntry:
    id: str
    title: str
    author: str
    added_at: datetime


@dataclass(frozen=True)
class ChangeResult:
    new_books: List[NormalizedBook]
    count: int
