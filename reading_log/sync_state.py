from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

from reading_log.core.models import RawBook, SyncEntry
from reading_log.core.normalize import parse_datetime
from reading_log.io.library import format_datetime
from reading_log.io.storage import JsonStorage

logger = logging.getLogger(__name__)

SYNC_STATE_KEY = ".sync-state.json"

B = TypeVar("B", bound=RawBook)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def relevant_date(book: RawBook) -> Optional[datetime]:
    return book.completed_date or book.started_date


def filter_since(books: Sequence[B], watermark: Optional[datetime]) -> List[B]:
    """
    Keep records dated on/after the watermark. Undated records are always
    kept: without a date there is no way to tell they were already seen.
    """
    if watermark is None:
        return list(books)
    out: List[B] = []
    for b in books:
        d = relevant_date(b)
        if d is None or d >= watermark:
            out.append(b)
    return out


def _entry_from_dict(d: object) -> Optional[SyncEntry]:
    if not isinstance(d, dict):
        return None
    try:
        count = int(d.get("lastBookCount") or 0)
    except (TypeError, ValueError):
        count = 0
    ids = d.get("lastBookIds")
    return SyncEntry(
        last_sync=parse_datetime(d.get("lastSync")),
        last_book_count=count,
        last_book_ids=[str(x) for x in ids] if isinstance(ids, list) else [],
    )


def _entry_to_dict(entry: SyncEntry) -> dict:
    return {
        "lastSync": format_datetime(entry.last_sync),
        "lastBookCount": entry.last_book_count,
        "lastBookIds": list(entry.last_book_ids),
    }


class SyncStateStore:
    """
    Per-source sync watermarks.

    Every call re-reads the document; read-modify-write is not atomic, so
    aggregation runs must not overlap.
    """

    def __init__(
        self,
        storage: JsonStorage,
        key: str = SYNC_STATE_KEY,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.storage = storage
        self.key = key
        self.clock = clock

    def load(self) -> Dict[str, SyncEntry]:
        data = self.storage.read(self.key)
        if data is None:
            return {}
        if not isinstance(data, dict):
            logger.warning("sync state %s is not an object, starting fresh", self.key)
            return {}
        out: Dict[str, SyncEntry] = {}
        for source, raw in data.items():
            entry = _entry_from_dict(raw)
            if entry is not None:
                out[str(source)] = entry
        return out

    def save(self, state: Dict[str, SyncEntry]) -> bool:
        try:
            self.storage.write(self.key, {k: _entry_to_dict(v) for k, v in state.items()})
        except (OSError, TypeError, ValueError) as e:
            logger.error("failed to save sync state %s: %r", self.key, e)
            return False
        return True

    def entry(self, source: str) -> Optional[SyncEntry]:
        return self.load().get(source)

    def get(self, source: str) -> Optional[datetime]:
        entry = self.entry(source)
        return entry.last_sync if entry else None

    def set(self, source: str, count: int, ids: Optional[Iterable[str]] = None) -> SyncEntry:
        state = self.load()
        entry = SyncEntry(
            last_sync=self.clock(),
            last_book_count=int(count),
            last_book_ids=list(ids or []),
        )
        state[source] = entry
        self.save(state)
        return entry

    def last_book_count(self, source: str) -> int:
        entry = self.entry(source)
        return entry.last_book_count if entry else 0

    def has_new_books(self, source: str, current_count: int) -> bool:
        return current_count > self.last_book_count(source)
