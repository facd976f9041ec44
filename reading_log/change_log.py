from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from reading_log.core.models import ChangeEntry, ChangeResult, NormalizedBook
from reading_log.core.normalize import parse_datetime
from reading_log.io.library import LIBRARY_KEY, format_datetime, read_library_ids
from reading_log.io.storage import JsonStorage
from reading_log.sync_state import utc_now

logger = logging.getLogger(__name__)

CHANGE_LOG_KEY = ".change-log.json"
CHANGE_LOG_CAP = 50


@dataclass
class ChangeLedger:
    new_books: List[ChangeEntry] = field(default_factory=list)
    last_check: Optional[datetime] = None


def _entry_from_dict(d: object) -> Optional[ChangeEntry]:
    if not isinstance(d, dict) or not d.get("id"):
        return None
    return ChangeEntry(
        id=str(d["id"]),
        title=str(d.get("title") or ""),
        author=str(d.get("author") or ""),
        added_at=parse_datetime(d.get("addedAt")) or utc_now(),
    )


class ChangeLog:
    """
    Ledger of books that appeared since the previous saved library.

    Previous ids come from the persisted library snapshot, so diff() must
    run before the new snapshot is written and record() only after the
    write succeeded.
    """

    def __init__(
        self,
        storage: JsonStorage,
        key: str = CHANGE_LOG_KEY,
        library_key: str = LIBRARY_KEY,
        clock: Callable[[], datetime] = utc_now,
        cap: int = CHANGE_LOG_CAP,
    ) -> None:
        self.storage = storage
        self.key = key
        self.library_key = library_key
        self.clock = clock
        self.cap = max(1, int(cap))

    def load(self) -> ChangeLedger:
        data = self.storage.read(self.key)
        if not isinstance(data, dict):
            if data is not None:
                logger.warning("change log %s is not an object, starting fresh", self.key)
            return ChangeLedger(last_check=self.clock())
        entries = []
        for raw in data.get("newBooks") or []:
            entry = _entry_from_dict(raw)
            if entry is not None:
                entries.append(entry)
        return ChangeLedger(
            new_books=entries,
            last_check=parse_datetime(data.get("lastCheck")) or self.clock(),
        )

    def save(self, ledger: ChangeLedger) -> bool:
        payload = {
            "newBooks": [
                {
                    "id": e.id,
                    "title": e.title,
                    "author": e.author,
                    "addedAt": format_datetime(e.added_at),
                }
                for e in ledger.new_books
            ],
            "lastCheck": format_datetime(ledger.last_check),
        }
        try:
            self.storage.write(self.key, payload)
        except (OSError, TypeError, ValueError) as e:
            logger.error("failed to save change log %s: %r", self.key, e)
            return False
        return True

    def append(self, ledger: ChangeLedger, entries: Sequence[ChangeEntry]) -> ChangeLedger:
        ledger.new_books = (list(ledger.new_books) + list(entries))[-self.cap:]
        ledger.last_check = self.clock()
        return ledger

    def diff(self, current: Sequence[NormalizedBook]) -> ChangeResult:
        """Books in `current` whose id is not in the saved library. Writes nothing."""
        previous_ids = read_library_ids(self.storage, self.library_key)
        new_books = [b for b in current if b.id not in previous_ids]
        return ChangeResult(new_books=new_books, count=len(new_books))

    def record(self, new_books: Sequence[NormalizedBook]) -> bool:
        now = self.clock()
        entries = [ChangeEntry(id=b.id, title=b.title, author=b.author, added_at=now) for b in new_books]
        if new_books:
            logger.info("detected %s new book(s)", len(new_books))
        return self.save(self.append(self.load(), entries))

    def detect_new(self, current: Sequence[NormalizedBook]) -> ChangeResult:
        changes = self.diff(current)
        self.record(changes.new_books)
        return changes

    def recent(self, limit: int = 10) -> List[ChangeEntry]:
        entries = self.load().new_books
        if limit <= 0:
            return []
        return list(reversed(entries[-limit:]))

    def clear(self) -> None:
        self.save(ChangeLedger(last_check=self.clock()))
