from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from reading_log.change_log import ChangeLog
from reading_log.collectors.base import Collector
from reading_log.core.models import NormalizedBook, RawBook
from reading_log.core.normalize import normalize_books
from reading_log.core.resolve import CollisionResolver
from reading_log.enrich.metadata_enricher import MetadataEnricher
from reading_log.io.library import read_library, write_library
from reading_log.io.report import ANALYTICS_KEY, DEFAULT_YEARLY_GOAL, build_report_data
from reading_log.io.storage import JsonStorage
from reading_log.sync_state import SyncStateStore, filter_since, utc_now

logger = logging.getLogger(__name__)

_MIN_DATE = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class SourceSummary:
    count: int = 0
    new_count: int = 0


@dataclass
class AggregateResult:
    books: List[NormalizedBook]
    new_books: List[NormalizedBook]
    incremental: bool
    sources: Dict[str, SourceSummary] = field(default_factory=dict)
    fetched_sources: Set[str] = field(default_factory=set)
    analytics: Dict[str, Any] = field(default_factory=dict)
    seconds: float = 0.0

    @property
    def books_count(self) -> int:
        return len(self.books)

    @property
    def new_books_count(self) -> int:
        return len(self.new_books)


def sort_by_completed(books: Sequence[NormalizedBook]) -> List[NormalizedBook]:
    """Most recently completed first; undated books keep their order at the end."""
    return sorted(
        books,
        key=lambda b: (b.completed_date is not None, b.completed_date or _MIN_DATE),
        reverse=True,
    )


def ids_by_source(books: Sequence[NormalizedBook]) -> Dict[str, List[str]]:
    out: Dict[str, List[str]] = {}
    for b in books:
        for source in b.sources:
            out.setdefault(source, []).append(b.id)
    return out


class Aggregator:
    """
    One aggregation run: collect -> filter -> normalize -> resolve ->
    enrich -> detect changes -> persist.

    Collection runs concurrently; resolution is sequential over
    `existing library + new records` so the outcome depends only on input
    order. Runs must not overlap: state files are rewritten without locks.
    """

    def __init__(
        self,
        *,
        collectors: Sequence[Collector],
        storage: JsonStorage,
        enricher: Optional[MetadataEnricher] = None,
        incremental: bool = False,
        clock: Callable[[], datetime] = utc_now,
        collect_concurrency: int = 4,
        yearly_goal: int = DEFAULT_YEARLY_GOAL,
    ) -> None:
        self.collectors = list(collectors)
        self.storage = storage
        self.enricher = enricher
        self.incremental = incremental
        self.collect_concurrency = max(1, int(collect_concurrency))
        self.yearly_goal = yearly_goal
        self.clock = clock
        self.sync_state = SyncStateStore(storage, clock=clock)
        self.change_log = ChangeLog(storage, clock=clock)

    def _collect_one(self, collector: Collector) -> Optional[List[RawBook]]:
        try:
            return list(collector.collect())
        except Exception as e:
            logger.error("collector %s failed: %r", collector.source, e)
            return None

    def collect(self, incremental: bool) -> Tuple[List[RawBook], Set[str]]:
        """
        Records from all collectors in collector order, plus the sources whose
        collectors all succeeded. A source with any failing collector is left
        out so its watermark does not move.
        """
        if not self.collectors:
            return [], set()
        with ThreadPoolExecutor(max_workers=min(self.collect_concurrency, len(self.collectors))) as ex:
            # map() keeps collector order, so resolver input stays deterministic
            results = list(ex.map(self._collect_one, self.collectors))

        records: List[RawBook] = []
        failed: Set[str] = set()
        for collector, books in zip(self.collectors, results):
            if books is None:
                failed.add(collector.source)
                continue
            if incremental:
                watermark = self.sync_state.get(collector.source)
                if watermark is not None:
                    fresh = filter_since(books, watermark)
                    logger.info(
                        "%s: %s new since %s (%s fetched)",
                        collector.source,
                        len(fresh),
                        watermark.isoformat(),
                        len(books),
                    )
                    books = fresh
                else:
                    logger.info("%s: %s books (first sync)", collector.source, len(books))
            records.extend(books)
        fetched = {c.source for c in self.collectors} - failed
        return records, fetched

    def update_sync_state(self, books: Sequence[NormalizedBook], fetched: Set[str]) -> None:
        for source, ids in ids_by_source(books).items():
            if source not in fetched:
                logger.debug("%s was not fetched this run; keeping its sync state", source)
                continue
            self.sync_state.set(source, len(ids), ids)

    def write_analytics(self, books: Sequence[NormalizedBook]) -> Dict[str, Any]:
        data = build_report_data(books, now=self.clock(), yearly_goal=self.yearly_goal)
        try:
            self.storage.write(ANALYTICS_KEY, data)
        except (OSError, TypeError, ValueError) as e:
            logger.error("failed to save analytics %s: %r", ANALYTICS_KEY, e)
        return data

    def run(self) -> AggregateResult:
        start = time.time()

        existing = read_library(self.storage) if self.incremental else []
        is_incremental = self.incremental and bool(existing)
        if is_incremental:
            logger.info("incremental mode: %s existing books", len(existing))

        raw, fetched = self.collect(is_incremental)
        normalized = normalize_books(raw)
        logger.info("normalized %s new records", len(normalized))

        resolver = CollisionResolver()
        books = resolver.resolve(list(existing) + normalized)
        if is_incremental:
            logger.info("%+d books since last run", len(books) - len(existing))

        if self.enricher is not None:
            books = self.enricher.enrich_books(books)

        books = sort_by_completed(books)

        changes = self.change_log.diff(books)
        for b in changes.new_books[:5]:
            logger.info("new: %s by %s", b.title, b.author)
        if changes.count > 5:
            logger.info("... and %s more", changes.count - 5)

        write_library(self.storage, books)
        self.change_log.record(changes.new_books)
        self.update_sync_state(books, fetched)
        analytics = self.write_analytics(books)

        new_ids = {b.id for b in changes.new_books}
        sources: Dict[str, SourceSummary] = {}
        for source, ids in ids_by_source(books).items():
            sources[source] = SourceSummary(
                count=len(ids),
                new_count=sum(1 for i in ids if i in new_ids),
            )

        return AggregateResult(
            books=books,
            new_books=changes.new_books,
            incremental=is_incremental,
            sources=sources,
            fetched_sources=fetched,
            analytics=analytics,
            seconds=time.time() - start,
        )
