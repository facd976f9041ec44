import json
from datetime import datetime, timezone

from reading_log.core.models import RawBook
from reading_log.io.storage import FileStorage, MemoryStorage
from reading_log.sync_state import SyncStateStore, filter_since, relevant_date

UTC = timezone.utc


class _FailingStorage(MemoryStorage):
    def write(self, key, data) -> None:
        raise OSError("disk full")


def _clock(dt: datetime):
    return lambda: dt


def _raw(title: str, **kw) -> RawBook:
    return RawBook(title=title, author="Someone", source="goodreads", **kw)


def test_first_sync_has_no_watermark() -> None:
    store = SyncStateStore(MemoryStorage())
    assert store.get("goodreads") is None
    assert store.last_book_count("goodreads") == 0


def test_set_and_get_watermark() -> None:
    now = datetime(2024, 1, 1, tzinfo=UTC)
    store = SyncStateStore(MemoryStorage(), clock=_clock(now))
    store.set("goodreads", 2, ["dune-frank-herbert", "foundation-isaac-asimov"])

    assert store.get("goodreads") == now
    assert store.get("manual") is None
    assert store.last_book_count("goodreads") == 2
    assert store.entry("goodreads").last_book_ids == ["dune-frank-herbert", "foundation-isaac-asimov"]
    assert store.has_new_books("goodreads", 3)
    assert not store.has_new_books("goodreads", 2)


def test_state_file_layout(tmp_path) -> None:
    store = SyncStateStore(FileStorage(str(tmp_path)), clock=_clock(datetime(2024, 1, 1, tzinfo=UTC)))
    store.set("manual", 1, ["dune-frank-herbert"])
    data = json.loads((tmp_path / ".sync-state.json").read_text(encoding="utf-8"))
    assert data == {
        "manual": {
            "lastSync": "2024-01-01T00:00:00Z",
            "lastBookCount": 1,
            "lastBookIds": ["dune-frank-herbert"],
        }
    }


def test_malformed_state_is_fresh(tmp_path) -> None:
    (tmp_path / ".sync-state.json").write_text("{not json", encoding="utf-8")
    store = SyncStateStore(FileStorage(str(tmp_path)))
    assert store.load() == {}
    assert store.get("goodreads") is None

    mem = MemoryStorage({".sync-state.json": ["unexpected"]})
    assert SyncStateStore(mem).load() == {}

    mem = MemoryStorage({".sync-state.json": {"goodreads": {"lastSync": "yesterday", "lastBookCount": "x"}}})
    store = SyncStateStore(mem)
    assert store.get("goodreads") is None
    assert store.last_book_count("goodreads") == 0


def test_write_failure_is_not_fatal() -> None:
    store = SyncStateStore(_FailingStorage())
    entry = store.set("goodreads", 1, ["x"])
    assert entry.last_book_count == 1
    assert not store.save({})


def test_incremental_watermark_filter() -> None:
    watermark = datetime(2024, 1, 1, tzinfo=UTC)
    old = _raw("Old", completed_date=datetime(2023, 12, 1, tzinfo=UTC))
    new = _raw("New", completed_date=datetime(2024, 2, 1, tzinfo=UTC))
    undated = _raw("Undated")
    started = _raw("Started", started_date=datetime(2024, 3, 1, tzinfo=UTC))
    boundary = _raw("Boundary", completed_date=watermark)
    # completion date wins over a later start date
    finished_before = _raw(
        "Finished before",
        started_date=datetime(2024, 5, 1, tzinfo=UTC),
        completed_date=datetime(2023, 1, 1, tzinfo=UTC),
    )

    kept = filter_since([old, new, undated, started, boundary, finished_before], watermark)
    assert [b.title for b in kept] == ["New", "Undated", "Started", "Boundary"]
    assert filter_since([old], None) == [old]
    assert relevant_date(undated) is None
