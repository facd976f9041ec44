from dataclasses import replace
from datetime import datetime, timezone

import pytest

from reading_log.aggregate import Aggregator, ids_by_source, sort_by_completed
from reading_log.change_log import ChangeLog
from reading_log.core.models import RawBook
from reading_log.core.resolve import to_canonical
from reading_log.io.library import read_library
from reading_log.io.storage import MemoryStorage
from reading_log.sync_state import SyncStateStore

UTC = timezone.utc


def _dt(y: int, m: int, d: int) -> datetime:
    return datetime(y, m, d, tzinfo=UTC)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class _Collector:
    def __init__(self, source: str, books) -> None:
        self.source = source
        self.books = list(books)
        self.error = None

    def collect(self):
        if self.error is not None:
            raise self.error
        return list(self.books)


class _Broken:
    source = "goodreads"

    def collect(self):
        raise RuntimeError("feed exploded")


class _TagEnricher:
    def __init__(self) -> None:
        self.calls = 0

    def enrich_books(self, books):
        self.calls += 1
        return [replace(b, tags=b.tags + ("enriched",)) for b in books]


def _raw(title: str, author: str, source: str, **kw) -> RawBook:
    return RawBook(title=title, author=author, source=source, **kw)


def test_full_run_dedups_and_persists() -> None:
    storage = MemoryStorage()
    manual = _Collector(
        "manual",
        [_raw("Dune", "Herbert, Frank", "manual", completed_date=_dt(2023, 5, 1), rating=4.0)],
    )
    goodreads = _Collector(
        "goodreads",
        [
            _raw("Dune (Dune, #1)", "Frank Herbert", "goodreads", completed_date=_dt(2023, 6, 1), rating=5.0),
            _raw("Foundation", "Isaac Asimov", "goodreads", completed_date=_dt(2022, 1, 1)),
            _raw("Emma", "Jane Austen", "goodreads"),
        ],
    )
    agg = Aggregator(collectors=[manual, goodreads], storage=storage, clock=_Clock(_dt(2024, 1, 1)))
    result = agg.run()

    assert result.books_count == 3
    assert result.new_books_count == 3
    assert not result.incremental
    assert [b.title for b in result.books] == ["Dune", "Foundation", "Emma"]

    dune = result.books[0]
    assert dune.id == "dune-frank-herbert"
    assert dune.author == "Frank Herbert"
    assert dune.sources == ("manual", "goodreads")
    assert dune.completed_date == _dt(2023, 6, 1)
    assert dune.rating == 5.0

    assert [b.id for b in read_library(storage)] == [b.id for b in result.books]
    assert result.sources["goodreads"].count == 3
    assert result.sources["manual"].count == 1

    state = SyncStateStore(storage)
    assert state.get("goodreads") == _dt(2024, 1, 1)
    assert state.last_book_count("goodreads") == 3


def test_incremental_run_uses_watermark() -> None:
    storage = MemoryStorage()
    clock = _Clock(_dt(2024, 1, 1))
    goodreads = _Collector("goodreads", [_raw("Dune", "Frank Herbert", "goodreads", completed_date=_dt(2023, 1, 1))])

    Aggregator(collectors=[goodreads], storage=storage, incremental=True, clock=clock).run()

    clock.now = _dt(2024, 6, 1)
    goodreads.books = [
        _raw("Dune", "Frank Herbert", "goodreads", completed_date=_dt(2023, 1, 1), rating=1.0),
        _raw("Hyperion", "Dan Simmons", "goodreads", completed_date=_dt(2023, 6, 1)),
        _raw("Neuromancer", "William Gibson", "goodreads", completed_date=_dt(2024, 3, 1)),
        _raw("Emma", "Jane Austen", "goodreads"),
    ]
    result = Aggregator(collectors=[goodreads], storage=storage, incremental=True, clock=clock).run()

    assert result.incremental
    assert [b.title for b in result.books] == ["Neuromancer", "Dune", "Emma"]
    assert [b.title for b in result.new_books] == ["Neuromancer", "Emma"]
    # filtered-out record never reached the merge
    assert result.books[1].rating is None
    assert SyncStateStore(storage).get("goodreads") == _dt(2024, 6, 1)


def test_incremental_without_library_is_full() -> None:
    storage = MemoryStorage()
    SyncStateStore(storage, clock=lambda: _dt(2024, 1, 1)).set("goodreads", 1, ["x"])
    goodreads = _Collector("goodreads", [_raw("Hyperion", "Dan Simmons", "goodreads", completed_date=_dt(2023, 6, 1))])

    result = Aggregator(collectors=[goodreads], storage=storage, incremental=True).run()
    assert not result.incremental
    assert [b.title for b in result.books] == ["Hyperion"]


def test_failing_collector_is_empty() -> None:
    storage = MemoryStorage()
    manual = _Collector("manual", [_raw("Emma", "Jane Austen", "manual")])
    result = Aggregator(collectors=[_Broken(), manual], storage=storage).run()
    assert [b.title for b in result.books] == ["Emma"]


def test_enricher_runs_before_persist() -> None:
    storage = MemoryStorage()
    enricher = _TagEnricher()
    manual = _Collector("manual", [_raw("Emma", "Jane Austen", "manual")])
    Aggregator(collectors=[manual], storage=storage, enricher=enricher).run()

    assert enricher.calls == 1
    assert read_library(storage)[0].tags == ("enriched",)


def test_second_full_run_reports_no_new_books() -> None:
    storage = MemoryStorage()
    manual = _Collector("manual", [_raw("Emma", "Jane Austen", "manual")])
    Aggregator(collectors=[manual], storage=storage).run()
    result = Aggregator(collectors=[manual], storage=storage).run()
    assert result.new_books_count == 0
    assert result.sources["manual"].new_count == 0


def test_sort_and_group_helpers() -> None:
    a = to_canonical(_raw("A", "X", "manual", completed_date=_dt(2020, 1, 1)))
    b = to_canonical(_raw("B", "X", "manual"))
    c = to_canonical(_raw("C", "X", "goodreads", completed_date=_dt(2024, 1, 1)))
    d = to_canonical(_raw("D", "X", "goodreads"))
    assert [x.title for x in sort_by_completed([a, b, c, d])] == ["C", "A", "B", "D"]
    assert ids_by_source([a, c]) == {"manual": [a.id], "goodreads": [c.id]}


class _LibraryWriteFails(MemoryStorage):
    def write(self, key, data) -> None:
        if key == "books.json":
            raise OSError("read-only filesystem")
        super().write(key, data)


def test_failed_source_keeps_its_watermark() -> None:
    storage = MemoryStorage()
    clock = _Clock(_dt(2024, 1, 1))
    goodreads = _Collector("goodreads", [_raw("Dune", "Frank Herbert", "goodreads", completed_date=_dt(2023, 1, 1))])
    Aggregator(collectors=[goodreads], storage=storage, incremental=True, clock=clock).run()

    clock.now = _dt(2024, 6, 1)
    goodreads.error = RuntimeError("feed down")
    result = Aggregator(collectors=[goodreads], storage=storage, incremental=True, clock=clock).run()
    assert result.fetched_sources == set()
    assert [b.title for b in result.books] == ["Dune"]
    assert SyncStateStore(storage).get("goodreads") == _dt(2024, 1, 1)

    clock.now = _dt(2024, 7, 1)
    goodreads.error = None
    goodreads.books = [_raw("Neuromancer", "William Gibson", "goodreads", completed_date=_dt(2024, 3, 1))]
    result = Aggregator(collectors=[goodreads], storage=storage, incremental=True, clock=clock).run()
    assert [b.title for b in result.books] == ["Neuromancer", "Dune"]
    assert SyncStateStore(storage).get("goodreads") == _dt(2024, 7, 1)


def test_one_failing_shelf_holds_the_source_watermark() -> None:
    storage = MemoryStorage()
    read_shelf = _Collector("goodreads", [_raw("Dune", "Frank Herbert", "goodreads")])
    current_shelf = _Collector("goodreads", [])
    current_shelf.error = RuntimeError("timeout")
    manual = _Collector("manual", [_raw("Emma", "Jane Austen", "manual")])

    result = Aggregator(collectors=[read_shelf, current_shelf, manual], storage=storage).run()
    assert result.fetched_sources == {"manual"}
    state = SyncStateStore(storage)
    assert state.get("goodreads") is None
    assert state.get("manual") is not None


def test_failed_library_write_does_not_log_changes() -> None:
    storage = _LibraryWriteFails()
    manual = _Collector("manual", [_raw("Emma", "Jane Austen", "manual")])

    for _ in range(2):
        with pytest.raises(OSError):
            Aggregator(collectors=[manual], storage=storage).run()

    assert ChangeLog(storage).load().new_books == []
    assert SyncStateStore(storage).get("manual") is None


def test_changes_logged_once_after_successful_write() -> None:
    storage = MemoryStorage()
    manual = _Collector("manual", [_raw("Emma", "Jane Austen", "manual")])
    Aggregator(collectors=[manual], storage=storage).run()
    Aggregator(collectors=[manual], storage=storage).run()
    assert [e.id for e in ChangeLog(storage).load().new_books] == ["emma-jane-austen"]


def test_pre_1970_books_sort_before_undated() -> None:
    undated = to_canonical(_raw("Undated", "X", "manual"))
    old = to_canonical(_raw("Old", "X", "manual", completed_date=_dt(1965, 5, 1)))
    newer = to_canonical(_raw("Newer", "X", "manual", completed_date=_dt(1999, 1, 1)))
    assert [b.title for b in sort_by_completed([undated, old, newer])] == ["Newer", "Old", "Undated"]


def test_run_persists_analytics() -> None:
    storage = MemoryStorage()
    manual = _Collector(
        "manual",
        [
            _raw("Dune", "Frank Herbert", "manual", completed_date=_dt(2024, 2, 1), rating=5.0),
            _raw("Emma", "Jane Austen", "manual", status="currently-reading"),
        ],
    )
    result = Aggregator(collectors=[manual], storage=storage, clock=_Clock(_dt(2024, 6, 1)), yearly_goal=12).run()

    saved = storage.read("analytics.json")
    assert saved == result.analytics
    assert saved["overview"]["totalBooks"] == 1
    assert saved["overview"]["currentlyReading"] == 1
    assert saved["goals"]["booksThisYear"] == 1
    assert saved["goals"]["targetThisYear"] == 12
    assert saved["generatedAt"] == "2024-06-01T00:00:00Z"
